"""Turns a reminder's deadline and its owner's timing preferences into
delivery jobs.

Every offset in ``user.reminder_timing`` (hours before the deadline) yields
one schedule entry and one delay-queue job, unless its fire time is already
in the past, in which case it is dropped without trace. The schedule is
persisted before any job is enqueued; a crash in between leaves entries with
no job behind them, which the reconciler re-drives.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, List, Optional
from zoneinfo import ZoneInfo

from app.services.delay_queue import Backoff, DelayQueue, JobOptions
from app.types.reminder_contract import DeliveryJob, QuietHours, Reminder, User
from db.db import ReminderStore

_LOGGER = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def defer_past_quiet_hours(
    fire_at: datetime, deadline: datetime, quiet: QuietHours, tz: ZoneInfo
) -> datetime:
    """Move ``fire_at`` to the end of the user's quiet window if it lands in it.

    The deadline wins: when the end of the window is not before the deadline
    the original time is kept.
    """
    local = fire_at.astimezone(tz)
    if not quiet.contains(local.hour):
        return fire_at
    window_end = local.replace(hour=quiet.end, minute=0, second=0, microsecond=0)
    if window_end <= local:
        window_end += timedelta(days=1)
    shifted = window_end.astimezone(timezone.utc)
    return shifted if shifted < deadline else fire_at


def live_offsets(deadline: datetime, timing: Iterable[int], now: datetime) -> List[int]:
    """Offsets (hours before ``deadline``) whose fire time is still ahead."""
    return [hours for hours in timing if deadline - timedelta(hours=hours) > now]


def compute_fire_times(
    deadline: datetime,
    timing: Iterable[int],
    now: datetime,
    *,
    quiet_hours: Optional[QuietHours] = None,
    tz: Optional[ZoneInfo] = None,
) -> List[datetime]:
    fire_times: List[datetime] = []
    for hours in live_offsets(deadline, timing, now):
        fire_at = deadline - timedelta(hours=hours)
        if quiet_hours is not None and tz is not None:
            fire_at = defer_past_quiet_hours(fire_at, deadline, quiet_hours, tz)
        fire_times.append(fire_at)
    return fire_times


class ReminderScheduler:
    def __init__(
        self,
        store: ReminderStore,
        queue: DelayQueue,
        *,
        max_attempts: int = 3,
        backoff: Backoff | None = None,
        enforce_quiet_hours: bool = False,
        clock: Clock = utcnow,
    ):
        self._store = store
        self._queue = queue
        self._max_attempts = max_attempts
        self._backoff = backoff or Backoff("exponential", 2.0)
        self._enforce_quiet_hours = enforce_quiet_hours
        self._clock = clock

    def job_options(self, delay: float) -> JobOptions:
        return JobOptions(delay=delay, max_attempts=self._max_attempts, backoff=self._backoff)

    async def schedule_reminder(self, reminder: Reminder, user: User) -> int:
        """Persist the schedule for ``reminder`` and enqueue one job per entry.

        Overwrites any previous schedule list. Returns how many entries were
        scheduled; 0 when every offset already lies in the past.
        """
        now = self._clock()
        fire_times = compute_fire_times(
            reminder.deadline,
            user.reminder_timing,
            now,
            quiet_hours=user.quiet_hours if self._enforce_quiet_hours else None,
            tz=ZoneInfo(user.timezone) if self._enforce_quiet_hours else None,
        )

        await self._store.replace_schedule(
            reminder.reminder_id, fire_times, expected_version=reminder.version
        )

        for index, fire_at in enumerate(fire_times):
            job = DeliveryJob(reminder_id=reminder.reminder_id, scheduled_reminder_index=index)
            await self._queue.enqueue(job, self.job_options((fire_at - now).total_seconds()))
            _LOGGER.info(
                "Scheduled reminder %s[%d] for %s", reminder.reminder_id, index, fire_at.isoformat()
            )

        if not fire_times:
            _LOGGER.info(
                "Deadline of reminder %s too close for any offset %s",
                reminder.reminder_id, user.reminder_timing,
            )
        return len(fire_times)
