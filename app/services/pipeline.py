"""Inbound message processing: commands, extraction and reminder creation.

Flow for a text that is not a command:
1. Acknowledge, then ask the extraction service for a task and deadline.
2. No deadline → tell the user how to phrase one.
3. Otherwise store the reminder, hand it to the scheduler and confirm.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Protocol, Sequence

from app.services import messages
from app.services.delivery import NotificationSender
from app.services.scheduler import Clock, ReminderScheduler, live_offsets, utcnow
from app.types.reminder_contract import (
    DEFAULT_REMINDER_TIMING,
    ExtractedReminder,
    ReminderStatus,
    User,
)
from db.db import ReminderStore, StaleReminderError

_LOGGER = logging.getLogger(__name__)


class Extractor(Protocol):
    async def extract(self, text: str, *, now: datetime, tz_name: str) -> ExtractedReminder:
        ...


class MessagePipeline:
    def __init__(
        self,
        store: ReminderStore,
        scheduler: ReminderScheduler,
        sender: NotificationSender,
        extractor: Extractor,
        *,
        default_timezone: str = "Africa/Lagos",
        default_timing: Sequence[int] = DEFAULT_REMINDER_TIMING,
        clock: Clock = utcnow,
    ):
        self._store = store
        self._scheduler = scheduler
        self._sender = sender
        self._extractor = extractor
        self._default_timezone = default_timezone
        self._default_timing = list(default_timing)
        self._clock = clock

    async def _reply(self, to: str, body: str) -> None:
        await self._sender.send(to, body)

    async def handle_inbound(self, phone_number: str, text: str) -> None:
        """Entry point for the webhook. Never raises; failures are logged and
        the user gets a generic error reply."""
        try:
            await self._process(phone_number, text)
        except Exception:  # noqa: BLE001
            _LOGGER.exception("Process message error for %s", phone_number)
            try:
                await self._reply(phone_number, messages.FAILURE_TEXT)
            except Exception:  # noqa: BLE001
                _LOGGER.exception("Could not send failure notice to %s", phone_number)

    async def _process(self, phone_number: str, text: str) -> None:
        user = await self._store.find_user_by_phone(phone_number)
        if user is None:
            user = await self._store.create_user(
                phone_number,
                timezone=self._default_timezone,
                reminder_timing=self._default_timing,
            )
            _LOGGER.info("New user created: %s", phone_number)
            await self._reply(phone_number, messages.WELCOME_TEXT)
            return

        await self._store.touch_user(user.user_id, self._clock())

        command = text.strip().lower()
        if command == "/help":
            await self._reply(phone_number, messages.HELP_TEXT)
            return
        if command == "/list":
            await self._handle_list(user)
            return
        if command == "/delete" or command.startswith("/delete "):
            await self._handle_delete(user, command[len("/delete"):].strip())
            return

        await self._reply(phone_number, messages.PROCESSING_TEXT)
        extracted = await self._extractor.extract(text, now=self._clock(), tz_name=user.timezone)
        if extracted.deadline is None:
            await self._reply(phone_number, messages.NO_DEADLINE_TEXT)
            return

        now = self._clock()
        reminder = await self._store.create_reminder(user.user_id, text, extracted)
        try:
            scheduled = await self._scheduler.schedule_reminder(reminder, user)
        except StaleReminderError:
            # a reconciler sweep got there first
            reminder = await self._store.get_reminder(reminder.reminder_id)
            if reminder is None:
                raise
            scheduled = len(reminder.scheduled_reminders)
            _LOGGER.info("Reminder %s was scheduled concurrently", reminder.reminder_id)
        _LOGGER.info("Reminder %s created with %d scheduled entries", reminder.reminder_id, scheduled)
        offsets = live_offsets(reminder.deadline, user.reminder_timing, now) if scheduled else []
        await self._reply(phone_number, messages.render_confirmation(reminder, user, offsets))

    async def _handle_list(self, user: User) -> None:
        reminders = await self._store.list_active_reminders(user.user_id, self._clock())
        await self._reply(user.phone_number, messages.render_list(reminders, user))

    async def _handle_delete(self, user: User, short_id: str) -> None:
        if not short_id:
            await self._reply(user.phone_number, messages.DELETE_USAGE_TEXT)
            return
        reminder = await self._store.find_by_short_id(user.user_id, short_id)
        if reminder is None:
            await self._reply(user.phone_number, messages.NOT_FOUND_TEXT)
            return
        # queued jobs stay in the broker; the worker drops them on sight
        await self._store.set_status(reminder.reminder_id, ReminderStatus.CANCELLED)
        _LOGGER.info("Reminder %s cancelled by %s", reminder.reminder_id, user.phone_number)
        await self._reply(user.phone_number, messages.DELETED_TEXT)
