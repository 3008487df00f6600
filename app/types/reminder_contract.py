"""Pydantic models shared by the scheduler, the delivery worker, the
reconciler and the message pipeline.

They are detached snapshots of what is persisted in ``db.db``; services read
and pass them around without holding a database session open.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

ReminderType = Literal["assignment", "exam", "class", "deadline", "event", "other"]

DEFAULT_REMINDER_TIMING = [24, 1]


class ReminderStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


def _require_aware(v: Optional[datetime]) -> Optional[datetime]:
    if v is not None and v.tzinfo is None:
        raise ValueError("datetime must be timezone-aware")
    return v


class QuietHours(BaseModel):
    """Hour-of-day window (local to the user) where delivery is suppressed."""

    start: int = Field(default=22, ge=0, le=23)
    end: int = Field(default=7, ge=0, le=23)

    def contains(self, hour: int) -> bool:
        if self.start == self.end:
            return False
        if self.start < self.end:
            return self.start <= hour < self.end
        # window wraps midnight, e.g. 22 -> 7
        return hour >= self.start or hour < self.end


class User(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    phone_number: str
    name: Optional[str] = None
    timezone: str = "Africa/Lagos"
    reminder_timing: List[int] = Field(default_factory=lambda: list(DEFAULT_REMINDER_TIMING))
    quiet_hours: QuietHours = Field(default_factory=QuietHours)
    is_active: bool = True
    created_at: Optional[datetime] = None
    last_active: Optional[datetime] = None

    @field_validator("timezone")
    def _validate_tz(cls, v):  # noqa: N805
        try:
            from zoneinfo import ZoneInfo
            ZoneInfo(v)
        except Exception:
            raise ValueError(f"timezone '{v}' is not a valid Olson timezone string")
        return v

    @field_validator("reminder_timing")
    def _positive_offsets(cls, v: list[int]):  # noqa: N805
        if any(h < 0 for h in v):
            raise ValueError("reminder_timing offsets must not be negative")
        return v


class ExtractedReminder(BaseModel):
    """What the extraction service pulled out of a forwarded message."""

    task: str
    course: Optional[str] = None
    type: ReminderType = "other"
    deadline: Optional[datetime] = None
    location: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("deadline")
    def _aware_deadline(cls, v):  # noqa: N805
        return _require_aware(v)

    @field_validator("type", mode="before")
    def _fallback_type(cls, v):  # noqa: N805
        allowed = {"assignment", "exam", "class", "deadline", "event", "other"}
        return v if v in allowed else "other"


class ScheduleEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    index: int
    scheduled_for: datetime
    sent: bool = False
    sent_at: Optional[datetime] = None
    redrive_count: int = 0


class Reminder(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    reminder_id: str
    user_id: str
    original_message: str
    extracted: ExtractedReminder
    status: ReminderStatus = ReminderStatus.PENDING
    scheduled_reminders: List[ScheduleEntry] = Field(default_factory=list)
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _deadline_required(self):
        if self.extracted.deadline is None:
            raise ValueError("a stored reminder must carry extracted.deadline")
        return self

    @property
    def deadline(self) -> datetime:
        return self.extracted.deadline  # type: ignore[return-value]

    @property
    def short_id(self) -> str:
        return self.reminder_id[-6:]

    def entry(self, index: int) -> Optional[ScheduleEntry]:
        if 0 <= index < len(self.scheduled_reminders):
            return self.scheduled_reminders[index]
        return None


class DeliveryJob(BaseModel):
    """Payload carried by a delay-queue job."""

    reminder_id: str
    scheduled_reminder_index: int = Field(ge=0)
