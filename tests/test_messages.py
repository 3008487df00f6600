from datetime import datetime, timezone

from app.services.messages import format_deadline, render_confirmation, render_list, render_reminder
from app.types.reminder_contract import ExtractedReminder, Reminder, User

DEADLINE = datetime(2025, 12, 30, 22, 59, tzinfo=timezone.utc)


def _user(**kwargs):
    return User(user_id="u1", phone_number="+2348000000001", timezone="Africa/Lagos", **kwargs)


def _reminder(**extracted):
    return Reminder(
        reminder_id="0f2c5a1e-5b5d-4c8e-9f1a-1234567890ab",
        user_id="u1",
        original_message="forwarded",
        extracted=ExtractedReminder(task="Final essay", deadline=DEADLINE, **extracted),
    )


def test_deadline_is_shown_in_user_timezone():
    # 22:59 UTC is 23:59 in Lagos
    assert format_deadline(DEADLINE, "Africa/Lagos") == "Tue Dec 30, 2025 11:59 PM"


def test_reminder_body_with_course_and_notes():
    body = render_reminder(_reminder(course="ENG 210", notes="Submit on the portal"), _user())

    assert body.splitlines() == [
        "Reminder!",
        "",
        "Final essay",
        "ENG 210",
        "Due: Tue Dec 30, 2025 11:59 PM",
        "",
        "Submit on the portal",
    ]


def test_reminder_body_without_optional_fields():
    body = render_reminder(_reminder(), _user())

    assert "ENG" not in body
    assert body.endswith("Due: Tue Dec 30, 2025 11:59 PM")


def test_confirmation_mentions_offsets_and_short_id():
    text = render_confirmation(_reminder(type="assignment"), _user(reminder_timing=[48, 24, 1]), offsets=[48, 24, 1])

    assert "ID: 7890ab" in text
    assert "Type: assignment" in text
    assert "48h, 24h and 1h before" in text


def test_confirmation_when_nothing_was_scheduled():
    text = render_confirmation(_reminder(), _user(), offsets=[])

    assert "too close" in text


def test_list_numbers_reminders():
    text = render_list([_reminder(), _reminder(course="X")], _user())

    assert text.startswith("Your Reminders (2)")
    assert "1. Final essay" in text
    assert "2. Final essay" in text
    assert "Dec 30, 2025" in text


def test_confirmation_lists_only_scheduled_offsets():
    text = render_confirmation(_reminder(), _user(), offsets=[1])

    assert "I'll remind you 1h before!" in text
    assert "24h" not in text
