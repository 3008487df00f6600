"""Celery tasks that drive the delivery worker and the reconciler.

Tasks are plain synchronous functions so they run under Celery's default
prefork pool; each one runs its async body with ``asyncio.run`` inside a
fresh ``service_scope``.

Retries: a failed delivery is re-queued with the backoff carried in the
job's own kwargs until ``max_attempts`` is spent, then abandoned (logged,
never reported to the user). The reconciler may re-drive it later.
"""

from __future__ import annotations

import asyncio
import logging

from app.celery_app import celery_app
from app.services.delay_queue import Backoff
from app import runtime

_LOGGER = logging.getLogger(__name__)


async def _deliver(reminder_id: str, index: int) -> str:
    async with runtime.service_scope() as services:
        outcome = await services.worker.on_job_due(reminder_id, index)
    return outcome.value


async def _reconcile() -> dict:
    async with runtime.service_scope() as services:
        result = await services.reconciler.sweep()
    return {
        "scheduled": len(result.scheduled),
        "redriven": len(result.redriven),
        "skipped": len(result.skipped),
        "failed": len(result.failed),
    }


# ---------------------------------------------------------------------------
# Celery Tasks
# ---------------------------------------------------------------------------

@celery_app.task(name="app.workers.reminder.deliver", bind=True)
def deliver(
    self,
    reminder_id: str,
    index: int,
    max_attempts: int = 3,
    backoff_type: str = "exponential",
    backoff_base: float = 2.0,
):  # noqa: D401
    """Deliver schedule entry ``index`` of ``reminder_id``."""
    try:
        return asyncio.run(_deliver(reminder_id, index))
    except Exception as exc:  # noqa: BLE001
        attempt = self.request.retries + 1
        if attempt >= max_attempts:
            _LOGGER.error(
                "Giving up on reminder %s[%d] after %d attempts: %s",
                reminder_id, index, attempt, exc,
            )
            raise
        countdown = Backoff(backoff_type, backoff_base).countdown(self.request.retries)
        _LOGGER.warning(
            "Delivery of reminder %s[%d] failed (attempt %d/%d), retrying in %.0fs: %s",
            reminder_id, index, attempt, max_attempts, countdown, exc,
        )
        raise self.retry(exc=exc, countdown=countdown, max_retries=max_attempts - 1)


@celery_app.task(name="app.workers.reminder.reconcile", bind=True, max_retries=3)
def reconcile(self):  # noqa: D401
    """Schedule reminders that have no jobs and re-drive stalled entries."""
    try:
        return asyncio.run(_reconcile())
    except Exception as exc:  # noqa: BLE001
        _LOGGER.exception("Reconciliation sweep failed")
        raise self.retry(exc=exc, countdown=60)
