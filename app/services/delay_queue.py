"""Delay-queue seam between the scheduler and the Celery runtime.

A job is a ``DeliveryJob`` payload plus ``JobOptions``: how long to wait
before it becomes eligible, how many attempts it gets, and how retries back
off. ``CeleryDelayQueue`` maps that onto ``send_task(..., countdown=...)``;
the retry policy travels in the task kwargs so the ``deliver`` task can
honour it without any shared state.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Literal, Protocol

from celery import Celery

from app.types.reminder_contract import DeliveryJob

_LOGGER = logging.getLogger(__name__)

DELIVER_TASK = "app.workers.reminder.deliver"
REMINDER_QUEUE = "reminder"


@dataclass(frozen=True)
class Backoff:
    type: Literal["exponential", "fixed"] = "exponential"
    base_delay: float = 2.0

    def countdown(self, retries: int) -> float:
        """Seconds to wait before retry number ``retries + 1``."""
        if self.type == "fixed":
            return self.base_delay
        return self.base_delay * (2 ** retries)


@dataclass(frozen=True)
class JobOptions:
    delay: float
    max_attempts: int = 3
    backoff: Backoff = field(default_factory=Backoff)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")


class DelayQueue(Protocol):
    async def enqueue(self, job: DeliveryJob, options: JobOptions) -> str:
        """Queue ``job`` to run no earlier than ``options.delay`` seconds from now."""
        ...


def job_kwargs(job: DeliveryJob, options: JobOptions) -> dict:
    return {
        "reminder_id": job.reminder_id,
        "index": job.scheduled_reminder_index,
        "max_attempts": options.max_attempts,
        "backoff_type": options.backoff.type,
        "backoff_base": options.backoff.base_delay,
    }


class CeleryDelayQueue:
    """``DelayQueue`` backed by a Celery broker (Redis in production)."""

    def __init__(
        self,
        app: Celery,
        *,
        task_name: str = DELIVER_TASK,
        queue: str = REMINDER_QUEUE,
    ):
        self._app = app
        self._task_name = task_name
        self._queue = queue

    async def enqueue(self, job: DeliveryJob, options: JobOptions) -> str:
        # send_task talks to the broker synchronously
        result = await asyncio.to_thread(
            self._app.send_task,
            self._task_name,
            kwargs=job_kwargs(job, options),
            countdown=max(options.delay, 0.0),
            queue=self._queue,
        )
        _LOGGER.debug(
            "Enqueued %s[%s] as task %s (delay %.0fs)",
            job.reminder_id, job.scheduled_reminder_index, result.id, options.delay,
        )
        return result.id
