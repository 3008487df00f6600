"""Celery application instance shared across the backend.

Celery is the delay queue: delivery jobs are sent with a countdown and stay
in Redis until due. Start a worker with:
    celery -A app.celery_app worker -Q reminder -l info --concurrency=4
and the hourly reconciliation sweep with:
    celery -A app.celery_app beat -l info
"""

from celery import Celery

from config import settings

BROKER_URL = settings.REDIS_URL

celery_app = Celery("whispr_backend", broker=BROKER_URL, backend=BROKER_URL)

# Global task settings
celery_app.conf.task_acks_late = True
celery_app.conf.task_reject_on_worker_lost = True
celery_app.conf.task_serializer = "json"
celery_app.conf.accept_content = ["json"]
celery_app.conf.result_serializer = "json"
celery_app.conf.result_expires = 24 * 3600
celery_app.conf.worker_prefetch_multiplier = 1
celery_app.conf.timezone = "UTC"
celery_app.conf.enable_utc = True

# Countdown jobs sit unacknowledged in the worker until due; Redis hands them
# to another worker once this timeout passes, so it must exceed typical delays.
celery_app.conf.broker_transport_options = {"visibility_timeout": 2 * 24 * 3600}

celery_app.conf.task_routes = {
    "app.workers.reminder.deliver": {"queue": "reminder"},
    "app.workers.reminder.reconcile": {"queue": "reminder"},
}

# Beat schedule: re-drive unscheduled / stalled reminders
celery_app.conf.beat_schedule = {
    "reconcile-reminders": {
        "task": "app.workers.reminder.reconcile",
        "schedule": float(settings.RECONCILE_INTERVAL_SECONDS),
    }
}

# --- Ensure tasks are registered ---
import app.workers.reminder  # noqa: E402,F401
