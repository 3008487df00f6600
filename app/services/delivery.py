"""Runs one due delivery job: re-validate, send, mark.

Nothing here is trusted from enqueue time. Each attempt reloads the reminder
and its owner, so cancellation and deactivation take effect lazily on jobs
that are already queued. Stale targets are a no-op, not an error; only a
failed send raises, and the queue's retry policy takes it from there.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Protocol

from app.services.messages import render_reminder
from app.services.scheduler import Clock, utcnow
from app.types.reminder_contract import ReminderStatus
from app.utils.sms import DeliveryError
from db.db import ReminderStore

_LOGGER = logging.getLogger(__name__)


class NotificationSender(Protocol):
    async def send(self, to: str, body: str) -> str:
        ...


class DeliveryOutcome(str, Enum):
    SENT = "sent"
    MISSING_REMINDER = "missing_reminder"
    CANCELLED = "cancelled"
    MISSING_USER = "missing_user"
    INACTIVE_USER = "inactive_user"
    MISSING_ENTRY = "missing_entry"
    ALREADY_SENT = "already_sent"


class ReminderWorker:
    def __init__(self, store: ReminderStore, sender: NotificationSender, *, clock: Clock = utcnow):
        self._store = store
        self._sender = sender
        self._clock = clock

    async def on_job_due(self, reminder_id: str, index: int) -> DeliveryOutcome:
        reminder = await self._store.get_reminder(reminder_id)
        if reminder is None:
            _LOGGER.info("Reminder %s not found; dropping job %d", reminder_id, index)
            return DeliveryOutcome.MISSING_REMINDER
        if reminder.status == ReminderStatus.CANCELLED:
            _LOGGER.info("Reminder %s cancelled; dropping job %d", reminder_id, index)
            return DeliveryOutcome.CANCELLED

        user = await self._store.get_user(reminder.user_id)
        if user is None:
            _LOGGER.info("User %s not found for reminder %s", reminder.user_id, reminder_id)
            return DeliveryOutcome.MISSING_USER
        if not user.is_active:
            _LOGGER.info("User %s inactive for reminder %s", reminder.user_id, reminder_id)
            return DeliveryOutcome.INACTIVE_USER

        entry = reminder.entry(index)
        if entry is None:
            # schedule write failed or was replaced after this job was queued
            _LOGGER.warning(
                "Reminder %s has no schedule entry %d (%d entries)",
                reminder_id, index, len(reminder.scheduled_reminders),
            )
            return DeliveryOutcome.MISSING_ENTRY
        if entry.sent:
            _LOGGER.info("Reminder %s[%d] already sent at %s", reminder_id, index, entry.sent_at)
            return DeliveryOutcome.ALREADY_SENT

        try:
            delivery_id = await self._sender.send(user.phone_number, render_reminder(reminder, user))
        except DeliveryError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise DeliveryError(f"sender failed for reminder {reminder_id}[{index}]: {exc}") from exc

        if not await self._store.mark_entry_sent(reminder_id, index, self._clock()):
            _LOGGER.info("Reminder %s[%d] was marked by a concurrent delivery", reminder_id, index)
        _LOGGER.info("Reminder sent: %s[%d] (%s)", reminder_id, index, delivery_id)
        return DeliveryOutcome.SENT
