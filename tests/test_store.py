from datetime import datetime, timedelta, timezone

import pytest

from app.types.reminder_contract import ExtractedReminder, ReminderStatus
from db.db import StaleReminderError

from conftest import NOW, make_reminder, make_user


@pytest.mark.asyncio
async def test_user_defaults(store):
    user = await store.create_user("+2348000000009")

    loaded = await store.find_user_by_phone("+2348000000009")
    assert loaded.user_id == user.user_id
    assert loaded.reminder_timing == [24, 1]
    assert loaded.timezone == "Africa/Lagos"
    assert (loaded.quiet_hours.start, loaded.quiet_hours.end) == (22, 7)
    assert loaded.is_active is True
    assert loaded.last_active.tzinfo is not None


@pytest.mark.asyncio
async def test_touch_user_updates_last_active(store):
    user = await make_user(store)
    at = datetime(2030, 1, 1, tzinfo=timezone.utc)

    await store.touch_user(user.user_id, at)

    assert (await store.get_user(user.user_id)).last_active == at


@pytest.mark.asyncio
async def test_reminder_round_trips_with_aware_deadline(store):
    user = await make_user(store)
    deadline = NOW + timedelta(days=1, minutes=7)
    reminder = await make_reminder(store, user, deadline, course="MTH 101", type="exam", notes="Hall B")

    loaded = await store.get_reminder(reminder.reminder_id)
    assert loaded.deadline == deadline
    assert loaded.deadline.tzinfo is not None
    assert loaded.extracted.course == "MTH 101"
    assert loaded.extracted.type == "exam"
    assert loaded.status == ReminderStatus.PENDING
    assert loaded.scheduled_reminders == []
    assert loaded.version == 0


@pytest.mark.asyncio
async def test_reminder_without_deadline_is_rejected(store):
    user = await make_user(store)
    with pytest.raises(ValueError):
        await store.create_reminder(user.user_id, "no date", ExtractedReminder(task="Read"))


@pytest.mark.asyncio
async def test_replace_schedule_checks_version(store):
    user = await make_user(store)
    reminder = await make_reminder(store, user, NOW + timedelta(days=2))
    times = [NOW + timedelta(hours=1), NOW + timedelta(hours=2)]

    stored = await store.replace_schedule(reminder.reminder_id, times, expected_version=0)
    assert stored.version == 1
    assert [e.index for e in stored.scheduled_reminders] == [0, 1]

    with pytest.raises(StaleReminderError):
        await store.replace_schedule(reminder.reminder_id, times[:1], expected_version=0)
    assert len((await store.get_reminder(reminder.reminder_id)).scheduled_reminders) == 2


@pytest.mark.asyncio
async def test_mark_entry_sent_is_field_level(store):
    user = await make_user(store)
    reminder = await make_reminder(store, user, NOW + timedelta(days=2))
    await store.replace_schedule(
        reminder.reminder_id, [NOW + timedelta(hours=1), NOW + timedelta(hours=2)], expected_version=0
    )

    assert await store.mark_entry_sent(reminder.reminder_id, 1, NOW) is True
    assert await store.mark_entry_sent(reminder.reminder_id, 0, NOW) is True
    assert await store.mark_entry_sent(reminder.reminder_id, 0, NOW) is False
    assert await store.mark_entry_sent(reminder.reminder_id, 7, NOW) is False

    loaded = await store.get_reminder(reminder.reminder_id)
    assert [e.sent for e in loaded.scheduled_reminders] == [True, True]
    assert loaded.status == ReminderStatus.SENT


@pytest.mark.asyncio
async def test_mark_entry_sent_keeps_cancellation(store):
    user = await make_user(store)
    reminder = await make_reminder(store, user, NOW + timedelta(days=2))
    await store.replace_schedule(reminder.reminder_id, [NOW + timedelta(hours=1)], expected_version=0)
    await store.set_status(reminder.reminder_id, ReminderStatus.CANCELLED)

    await store.mark_entry_sent(reminder.reminder_id, 0, NOW)

    assert (await store.get_reminder(reminder.reminder_id)).status == ReminderStatus.CANCELLED


@pytest.mark.asyncio
async def test_active_list_and_short_id_lookup(store):
    user = await make_user(store)
    other = await make_user(store, phone="+2348000000002")
    later = await make_reminder(store, user, NOW + timedelta(days=5), task="Later")
    sooner = await make_reminder(store, user, NOW + timedelta(days=1), task="Sooner")
    await make_reminder(store, user, NOW - timedelta(days=1), task="Past")
    gone = await make_reminder(store, user, NOW + timedelta(days=2), task="Gone")
    await store.set_status(gone.reminder_id, ReminderStatus.CANCELLED)
    await make_reminder(store, other, NOW + timedelta(days=1), task="Not mine")

    active = await store.list_active_reminders(user.user_id, NOW)
    assert [r.extracted.task for r in active] == ["Sooner", "Later"]

    found = await store.find_by_short_id(user.user_id, later.short_id)
    assert found.reminder_id == later.reminder_id
    assert await store.find_by_short_id(other.user_id, sooner.short_id) is None
    assert await store.find_by_short_id(user.user_id, gone.short_id) is None


@pytest.mark.asyncio
async def test_naive_datetimes_are_refused(store):
    user = await make_user(store)
    reminder = await make_reminder(store, user, NOW + timedelta(days=2))

    with pytest.raises(Exception, match="timezone-aware"):
        await store.replace_schedule(
            reminder.reminder_id, [datetime(2025, 10, 21, 9, 0)], expected_version=0
        )
