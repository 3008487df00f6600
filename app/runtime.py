"""Startup wiring: builds every service from explicit dependencies.

Nothing is instantiated at import time. The web process builds one
``Services`` for its lifetime; Celery tasks open a short ``service_scope``
per run because each task drives its own event loop.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from app.services.delay_queue import Backoff, CeleryDelayQueue, DelayQueue
from app.services.delivery import NotificationSender, ReminderWorker
from app.services.extractor import ReminderExtractor
from app.services.pipeline import Extractor, MessagePipeline
from app.services.reconciler import Reconciler
from app.services.scheduler import ReminderScheduler
from app.utils.sms import SmsNotifier
from config import Settings, settings
from db.db import ReminderStore, make_engine


@dataclass
class Services:
    store: ReminderStore
    queue: DelayQueue
    sender: NotificationSender
    scheduler: ReminderScheduler
    worker: ReminderWorker
    reconciler: Reconciler
    pipeline: MessagePipeline


def build_services(
    engine: AsyncEngine,
    *,
    config: Settings = settings,
    queue: Optional[DelayQueue] = None,
    sender: Optional[NotificationSender] = None,
    extractor: Optional[Extractor] = None,
) -> Services:
    if queue is None:
        from app.celery_app import celery_app
        queue = CeleryDelayQueue(celery_app)
    if sender is None:
        sender = SmsNotifier(
            config.TELNYX_API_KEY, config.TELNYX_FROM_NUMBER, timeout=config.SEND_TIMEOUT_SECONDS
        )
    if extractor is None:
        extractor = ReminderExtractor(
            config.OPENAI_API_KEY, model=config.OPENAI_MODEL, timeout=config.OPENAI_TIMEOUT
        )

    store = ReminderStore.from_engine(engine)
    scheduler = ReminderScheduler(
        store,
        queue,
        max_attempts=config.JOB_MAX_ATTEMPTS,
        backoff=Backoff("exponential", config.JOB_BACKOFF_BASE_SECONDS),
        enforce_quiet_hours=config.ENFORCE_QUIET_HOURS,
    )
    return Services(
        store=store,
        queue=queue,
        sender=sender,
        scheduler=scheduler,
        worker=ReminderWorker(store, sender),
        reconciler=Reconciler(
            store,
            scheduler,
            queue,
            redrive_grace=timedelta(seconds=config.REDRIVE_GRACE_SECONDS),
            max_redrives=config.MAX_REDRIVES,
        ),
        pipeline=MessagePipeline(
            store,
            scheduler,
            sender,
            extractor,
            default_timezone=config.DEFAULT_TIMEZONE,
            default_timing=config.DEFAULT_REMINDER_TIMING,
        ),
    )


@asynccontextmanager
async def service_scope(config: Settings = settings) -> AsyncIterator[Services]:
    """Services on a throw-away engine, disposed when the block exits."""
    engine = make_engine(null_pool=True)
    try:
        yield build_services(engine, config=config)
    finally:
        await engine.dispose()
