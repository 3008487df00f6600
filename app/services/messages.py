"""Plain-text SMS bodies sent to users."""

from __future__ import annotations

from datetime import datetime
from typing import Sequence
from zoneinfo import ZoneInfo

from app.types.reminder_contract import Reminder, User

WELCOME_TEXT = (
    "Welcome to Whispr!\n\n"
    "Forward me your academic messages and I'll remind you before deadlines.\n\n"
    "Commands:\n/list - View reminders\n/help - Get help"
)

HELP_TEXT = (
    "Whispr Help\n\n"
    "Just forward me messages with deadlines and I'll remind you!\n\n"
    "Commands:\n"
    "/list - View active reminders\n"
    "/delete [id] - Remove a reminder\n"
    "/help - Show this message\n\n"
    "Examples:\n"
    "\"Assignment 2 due Friday 11:59pm\"\n"
    "\"Math exam next Monday 9am\""
)

PROCESSING_TEXT = "Processing your message..."

NO_DEADLINE_TEXT = (
    "I couldn't find a deadline in your message.\n\n"
    "Try including a date like:\n"
    "- \"Due tomorrow\"\n"
    "- \"Submit by Dec 30\"\n"
    "- \"Exam next Monday\""
)

NO_REMINDERS_TEXT = "No active reminders.\n\nForward me messages to create reminders!"
NOT_FOUND_TEXT = "Reminder not found. Use /list to see IDs."
DELETED_TEXT = "Reminder deleted!"
DELETE_USAGE_TEXT = "Usage: /delete [id]. Use /list to see IDs."
FAILURE_TEXT = "Something went wrong processing your message. Please try again."


def format_deadline(deadline: datetime, tz_name: str) -> str:
    return deadline.astimezone(ZoneInfo(tz_name)).strftime("%a %b %d, %Y %I:%M %p")


def format_date(deadline: datetime, tz_name: str) -> str:
    return deadline.astimezone(ZoneInfo(tz_name)).strftime("%b %d, %Y")


def _describe_offsets(hours: Sequence[int]) -> str:
    labels = [f"{h}h" for h in hours]
    if len(labels) <= 1:
        return "".join(labels)
    return ", ".join(labels[:-1]) + " and " + labels[-1]


def render_reminder(reminder: Reminder, user: User) -> str:
    ex = reminder.extracted
    lines = ["Reminder!", "", ex.task]
    if ex.course:
        lines.append(ex.course)
    lines.append(f"Due: {format_deadline(reminder.deadline, user.timezone)}")
    if ex.location:
        lines.append(f"Where: {ex.location}")
    if ex.notes:
        lines.extend(["", ex.notes])
    return "\n".join(lines)


def render_confirmation(reminder: Reminder, user: User, offsets: Sequence[int]) -> str:
    """``offsets`` are the hours-before that actually got a schedule entry."""
    ex = reminder.extracted
    lines = ["Reminder created!", "", ex.task]
    if ex.course:
        lines.append(ex.course)
    lines.append(format_deadline(reminder.deadline, user.timezone))
    lines.append(f"Type: {ex.type}")
    lines.extend(["", f"ID: {reminder.short_id}"])
    if offsets:
        lines.append(f"I'll remind you {_describe_offsets(offsets)} before!")
    else:
        lines.append("That deadline is too close for a reminder, but it's on your /list.")
    return "\n".join(lines)


def render_list(reminders: Sequence[Reminder], user: User) -> str:
    if not reminders:
        return NO_REMINDERS_TEXT
    parts = [f"Your Reminders ({len(reminders)})", ""]
    for i, r in enumerate(reminders, start=1):
        parts.append(f"{i}. {r.extracted.task}")
        parts.append(f"   {format_date(r.deadline, user.timezone)}")
        parts.append(f"   ID: {r.short_id}")
        parts.append("")
    parts.append("Use /delete [id] to remove")
    return "\n".join(parts)
