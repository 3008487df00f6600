"""Periodic backstop for reminders whose delivery jobs never made it.

Two passes per sweep:

1. Pending reminders with a future deadline and an *empty* schedule are
   scheduled from scratch. A non-empty schedule is the guard against
   scheduling twice, so repeated sweeps are harmless.
2. Unsent entries that are overdue by more than the grace period (their job
   was lost, or exhausted its retries) get a fresh job for the same index,
   at most ``max_redrives`` times per entry.

Errors are isolated per reminder; one bad row never aborts the sweep.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Tuple

from app.services.delay_queue import DelayQueue
from app.services.scheduler import Clock, ReminderScheduler, live_offsets, utcnow
from app.types.reminder_contract import DeliveryJob
from db.db import ReminderStore

_LOGGER = logging.getLogger(__name__)


@dataclass
class SweepResult:
    scheduled: List[str] = field(default_factory=list)
    redriven: List[Tuple[str, int]] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def touched(self) -> int:
        return len(self.scheduled) + len(self.redriven)


class Reconciler:
    def __init__(
        self,
        store: ReminderStore,
        scheduler: ReminderScheduler,
        queue: DelayQueue,
        *,
        redrive_grace: timedelta = timedelta(hours=1),
        max_redrives: int = 1,
        clock: Clock = utcnow,
    ):
        self._store = store
        self._scheduler = scheduler
        self._queue = queue
        self._redrive_grace = redrive_grace
        self._max_redrives = max_redrives
        self._clock = clock

    async def sweep(self) -> SweepResult:
        result = SweepResult()
        now = self._clock()

        _LOGGER.info("Checking for unscheduled reminders...")
        for reminder in await self._store.find_unscheduled_reminders(now):
            try:
                user = await self._store.get_user(reminder.user_id)
                if user is None:
                    _LOGGER.info("Skipping reminder %s: owner %s not found",
                                 reminder.reminder_id, reminder.user_id)
                    result.skipped.append(reminder.reminder_id)
                    continue
                if not live_offsets(reminder.deadline, user.reminder_timing, now):
                    # nothing left to schedule; leave the row untouched
                    _LOGGER.debug("Skipping reminder %s: no offset left before %s",
                                  reminder.reminder_id, reminder.deadline.isoformat())
                    result.skipped.append(reminder.reminder_id)
                    continue
                count = await self._scheduler.schedule_reminder(reminder, user)
                _LOGGER.info("Scheduled reminder %s (%d entries)", reminder.reminder_id, count)
                result.scheduled.append(reminder.reminder_id)
            except Exception:  # noqa: BLE001
                _LOGGER.exception("Error scheduling reminder %s", reminder.reminder_id)
                result.failed.append(reminder.reminder_id)

        if self._max_redrives > 0:
            stalled = await self._store.find_stalled_entries(
                overdue_before=now - self._redrive_grace,
                now=now,
                max_redrives=self._max_redrives,
            )
            for reminder_id, entry in stalled:
                try:
                    job = DeliveryJob(reminder_id=reminder_id, scheduled_reminder_index=entry.index)
                    await self._queue.enqueue(job, self._scheduler.job_options(0.0))
                    await self._store.increment_redrive(reminder_id, entry.index)
                    _LOGGER.warning(
                        "Re-drove reminder %s[%d] scheduled for %s",
                        reminder_id, entry.index, entry.scheduled_for.isoformat(),
                    )
                    result.redriven.append((reminder_id, entry.index))
                except Exception:  # noqa: BLE001
                    _LOGGER.exception("Error re-driving reminder %s[%d]", reminder_id, entry.index)
                    result.failed.append(reminder_id)

        _LOGGER.info(
            "Sweep done: %d scheduled, %d re-driven, %d skipped, %d failed",
            len(result.scheduled), len(result.redriven), len(result.skipped), len(result.failed),
        )
        return result
