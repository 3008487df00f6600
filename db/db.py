"""
Async persistence for users, reminders and their delivery schedules.
Uses SQLAlchemy 2.0 + asyncpg driver – no raw SQL strings in app code.

Services never touch ORM rows directly: ``ReminderStore`` hands out pydantic
snapshots from ``app.types.reminder_contract`` and exposes the narrow,
field-level updates the scheduler, worker and reconciler need.
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import NamedTuple, Sequence
from uuid import uuid4

from sqlalchemy import (
    JSON, DateTime, ForeignKey, String, Text, case, delete, exists, select, update
)
from sqlalchemy.engine import Dialect
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.pool import NullPool
from sqlalchemy.types import TypeDecorator

from app.types.reminder_contract import (
    DEFAULT_REMINDER_TIMING,
    ExtractedReminder,
    QuietHours,
    Reminder,
    ReminderStatus,
    ScheduleEntry,
    User,
)


class StaleReminderError(RuntimeError):
    """Raised when a reminder changed between read and a whole-schedule write."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timestamp column that only accepts and only returns aware UTC datetimes."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("timezone-aware datetime required")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: datetime | None, dialect: Dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            # SQLite drops the offset; everything is written as UTC
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


# ──────────────────────────────────────────────────────────────────────
# 1. Declarative metadata
# ──────────────────────────────────────────────────────────────────────
class Base(DeclarativeBase):
    pass

# ──────────────────────────────────────────────────────────────────────
# 2. Lazy engine / session factory
# ──────────────────────────────────────────────────────────────────────
_engine: AsyncEngine | None = None


def _build_url() -> str:
    url = os.getenv("DATABASE_URL") or os.getenv("DATABASE_PUBLIC_URL")
    if not url:
        raise RuntimeError("DATABASE_URL not set")
    if "+asyncpg" not in url:
        url = url.replace("postgres://", "postgresql+asyncpg://", 1).replace(
            "postgresql://", "postgresql+asyncpg://", 1
        )
    return url


def make_engine(url: str | None = None, *, null_pool: bool = False) -> AsyncEngine:
    """Build a fresh engine. ``null_pool`` is for short-lived event loops
    (one ``asyncio.run`` per Celery task) where pooled connections must not
    outlive the loop that opened them."""
    if null_pool:
        return create_async_engine(url or _build_url(), poolclass=NullPool)
    return create_async_engine(url or _build_url(), pool_size=5, max_overflow=5)


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = make_engine()
    return _engine


async def dispose_engine():
    global _engine
    if _engine is not None:
        await _engine.dispose()
        _engine = None

# ──────────────────────────────────────────────────────────────────────
# 3. ORM models
# ──────────────────────────────────────────────────────────────────────

class UserRow(Base):
    __tablename__ = "users"

    user_id:         Mapped[str] = mapped_column(String(36), primary_key=True)
    phone_number:    Mapped[str] = mapped_column(String(64), unique=True)
    name:            Mapped[str | None] = mapped_column(String(255))
    timezone:        Mapped[str] = mapped_column(String(64), default="Africa/Lagos")
    reminder_timing: Mapped[list[int]] = mapped_column(
        JSON, default=lambda: list(DEFAULT_REMINDER_TIMING)
    )
    quiet_start:     Mapped[int] = mapped_column(default=22)
    quiet_end:       Mapped[int] = mapped_column(default=7)
    is_active:       Mapped[bool] = mapped_column(default=True)
    created_at:      Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow)
    last_active:     Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow)


class ReminderRow(Base):
    __tablename__ = "reminders"

    reminder_id:      Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id:          Mapped[str] = mapped_column(String(36), index=True)
    original_message: Mapped[str] = mapped_column(Text)
    task:             Mapped[str] = mapped_column(Text)
    course:           Mapped[str | None] = mapped_column(String(255))
    reminder_type:    Mapped[str] = mapped_column(String(32), default="other")
    deadline:         Mapped[datetime] = mapped_column(UTCDateTime(), index=True)
    location:         Mapped[str | None] = mapped_column(String(255))
    notes:            Mapped[str | None] = mapped_column(Text)
    status:           Mapped[str] = mapped_column(String(16), default="pending", index=True)
    version:          Mapped[int] = mapped_column(default=0)
    created_at:       Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow)
    updated_at:       Mapped[datetime] = mapped_column(
        UTCDateTime(), default=_utcnow, onupdate=_utcnow
    )

    entries: Mapped[list[ScheduledReminderRow]] = relationship(
        order_by="ScheduledReminderRow.index",
        lazy="selectin",
        cascade="all, delete-orphan",
    )


class ScheduledReminderRow(Base):
    __tablename__ = "scheduled_reminders"

    reminder_id:   Mapped[str] = mapped_column(
        ForeignKey("reminders.reminder_id", ondelete="CASCADE"), primary_key=True
    )
    index:         Mapped[int] = mapped_column("idx", primary_key=True)
    scheduled_for: Mapped[datetime] = mapped_column(UTCDateTime(), index=True)
    sent:          Mapped[bool] = mapped_column(default=False)
    sent_at:       Mapped[datetime | None] = mapped_column(UTCDateTime())
    redrive_count: Mapped[int] = mapped_column(default=0)


# ──────────────────────────────────────────────────────────────────────
# 4. DDL helper (tests and local dev; production uses Alembic)
# ──────────────────────────────────────────────────────────────────────
async def create_all(engine: AsyncEngine | None = None):
    async with (engine or get_engine()).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# ──────────────────────────────────────────────────────────────────────
# 5. Row -> snapshot conversion
# ──────────────────────────────────────────────────────────────────────
def _to_user(row: UserRow) -> User:
    return User(
        user_id=row.user_id,
        phone_number=row.phone_number,
        name=row.name,
        timezone=row.timezone,
        reminder_timing=list(row.reminder_timing or []),
        quiet_hours=QuietHours(start=row.quiet_start, end=row.quiet_end),
        is_active=row.is_active,
        created_at=row.created_at,
        last_active=row.last_active,
    )


def _to_reminder(row: ReminderRow) -> Reminder:
    return Reminder(
        reminder_id=row.reminder_id,
        user_id=row.user_id,
        original_message=row.original_message,
        extracted=ExtractedReminder(
            task=row.task,
            course=row.course,
            type=row.reminder_type,
            deadline=row.deadline,
            location=row.location,
            notes=row.notes,
        ),
        status=ReminderStatus(row.status),
        scheduled_reminders=[ScheduleEntry.model_validate(e) for e in row.entries],
        version=row.version,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class StalledEntry(NamedTuple):
    reminder_id: str
    entry: ScheduleEntry


_ACTIVE_STATUSES = (ReminderStatus.PENDING.value, ReminderStatus.SENT.value)


# ──────────────────────────────────────────────────────────────────────
# 6. Store
# ──────────────────────────────────────────────────────────────────────
class ReminderStore:
    """Reminder/User persistence backed by one async session factory."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    @classmethod
    def from_engine(cls, engine: AsyncEngine) -> "ReminderStore":
        return cls(async_sessionmaker(engine, expire_on_commit=False))

    # 6.1 Users -----------------------------------------------------------
    async def get_user(self, user_id: str) -> User | None:
        async with self._session_maker() as s:
            row = await s.get(UserRow, user_id)
            return _to_user(row) if row else None

    async def find_user_by_phone(self, phone_number: str) -> User | None:
        async with self._session_maker() as s:
            res = await s.execute(
                select(UserRow).where(UserRow.phone_number == phone_number)
            )
            row = res.scalar_one_or_none()
            return _to_user(row) if row else None

    async def create_user(
        self,
        phone_number: str,
        *,
        timezone: str = "Africa/Lagos",
        reminder_timing: Sequence[int] | None = None,
        quiet_hours: QuietHours | None = None,
        is_active: bool = True,
    ) -> User:
        quiet = quiet_hours or QuietHours()
        row = UserRow(
            user_id=str(uuid4()),
            phone_number=phone_number,
            timezone=timezone,
            reminder_timing=list(
                DEFAULT_REMINDER_TIMING if reminder_timing is None else reminder_timing
            ),
            quiet_start=quiet.start,
            quiet_end=quiet.end,
            is_active=is_active,
        )
        async with self._session_maker() as s, s.begin():
            s.add(row)
        return _to_user(row)

    async def touch_user(self, user_id: str, at: datetime | None = None) -> None:
        async with self._session_maker() as s, s.begin():
            await s.execute(
                update(UserRow)
                .where(UserRow.user_id == user_id)
                .values(last_active=at or _utcnow())
            )

    async def set_user_active(self, user_id: str, is_active: bool) -> None:
        async with self._session_maker() as s, s.begin():
            await s.execute(
                update(UserRow)
                .where(UserRow.user_id == user_id)
                .values(is_active=is_active)
            )

    # 6.2 Reminders -------------------------------------------------------
    async def create_reminder(
        self, user_id: str, original_message: str, extracted: ExtractedReminder
    ) -> Reminder:
        if extracted.deadline is None:
            raise ValueError("cannot store a reminder without a deadline")
        row = ReminderRow(
            reminder_id=str(uuid4()),
            user_id=user_id,
            original_message=original_message,
            task=extracted.task,
            course=extracted.course,
            reminder_type=extracted.type,
            deadline=extracted.deadline,
            location=extracted.location,
            notes=extracted.notes,
            status=ReminderStatus.PENDING.value,
            version=0,
            entries=[],
        )
        async with self._session_maker() as s, s.begin():
            s.add(row)
        return _to_reminder(row)

    async def get_reminder(self, reminder_id: str) -> Reminder | None:
        async with self._session_maker() as s:
            row = await s.get(ReminderRow, reminder_id)
            return _to_reminder(row) if row else None

    async def set_status(self, reminder_id: str, status: ReminderStatus) -> bool:
        async with self._session_maker() as s, s.begin():
            res = await s.execute(
                update(ReminderRow)
                .where(ReminderRow.reminder_id == reminder_id)
                .values(status=status.value, updated_at=_utcnow())
            )
            return res.rowcount == 1

    async def replace_schedule(
        self,
        reminder_id: str,
        fire_times: Sequence[datetime],
        *,
        expected_version: int,
    ) -> Reminder:
        """Overwrite the whole schedule list in one transaction.

        The reminder's ``version`` must still equal ``expected_version``;
        otherwise ``StaleReminderError`` is raised and nothing is written.
        """
        async with self._session_maker() as s, s.begin():
            res = await s.execute(
                update(ReminderRow)
                .where(
                    ReminderRow.reminder_id == reminder_id,
                    ReminderRow.version == expected_version,
                )
                .values(version=ReminderRow.version + 1, updated_at=_utcnow())
            )
            if res.rowcount != 1:
                raise StaleReminderError(
                    f"reminder {reminder_id} changed since version {expected_version}"
                )
            await s.execute(
                delete(ScheduledReminderRow).where(
                    ScheduledReminderRow.reminder_id == reminder_id
                )
            )
            s.add_all(
                ScheduledReminderRow(
                    reminder_id=reminder_id,
                    index=i,
                    scheduled_for=at,
                    sent=False,
                    redrive_count=0,
                )
                for i, at in enumerate(fire_times)
            )
        stored = await self.get_reminder(reminder_id)
        if stored is None:
            raise StaleReminderError(f"reminder {reminder_id} vanished during scheduling")
        return stored

    async def mark_entry_sent(
        self, reminder_id: str, index: int, sent_at: datetime
    ) -> bool:
        """Flag one entry as delivered and move the reminder to ``sent``.

        Field-level updates only, so two entries of the same reminder firing
        together cannot overwrite each other. A reminder cancelled meanwhile
        keeps its ``cancelled`` status. Returns False when the entry does not
        exist or was already marked.
        """
        async with self._session_maker() as s, s.begin():
            res = await s.execute(
                update(ScheduledReminderRow)
                .where(
                    ScheduledReminderRow.reminder_id == reminder_id,
                    ScheduledReminderRow.index == index,
                    ScheduledReminderRow.sent.is_(False),
                )
                .values(sent=True, sent_at=sent_at)
            )
            if res.rowcount == 0:
                return False
            await s.execute(
                update(ReminderRow)
                .where(ReminderRow.reminder_id == reminder_id)
                .values(
                    status=case(
                        (
                            ReminderRow.status == ReminderStatus.CANCELLED.value,
                            ReminderRow.status,
                        ),
                        else_=ReminderStatus.SENT.value,
                    ),
                    version=ReminderRow.version + 1,
                    updated_at=sent_at,
                )
            )
            return True

    async def increment_redrive(self, reminder_id: str, index: int) -> None:
        async with self._session_maker() as s, s.begin():
            await s.execute(
                update(ScheduledReminderRow)
                .where(
                    ScheduledReminderRow.reminder_id == reminder_id,
                    ScheduledReminderRow.index == index,
                )
                .values(redrive_count=ScheduledReminderRow.redrive_count + 1)
            )

    # 6.3 Queries ---------------------------------------------------------
    async def list_active_reminders(self, user_id: str, now: datetime) -> list[Reminder]:
        async with self._session_maker() as s:
            res = await s.execute(
                select(ReminderRow)
                .where(
                    ReminderRow.user_id == user_id,
                    ReminderRow.status.in_(_ACTIVE_STATUSES),
                    ReminderRow.deadline >= now,
                )
                .order_by(ReminderRow.deadline)
            )
            return [_to_reminder(r) for r in res.scalars()]

    async def find_by_short_id(self, user_id: str, short_id: str) -> Reminder | None:
        """Active (pending/sent) reminder of ``user_id`` whose id ends with ``short_id``."""
        async with self._session_maker() as s:
            res = await s.execute(
                select(ReminderRow)
                .where(
                    ReminderRow.user_id == user_id,
                    ReminderRow.status.in_(_ACTIVE_STATUSES),
                    ReminderRow.reminder_id.endswith(short_id, autoescape=True),
                )
                .order_by(ReminderRow.created_at.desc())
                .limit(1)
            )
            row = res.scalar_one_or_none()
            return _to_reminder(row) if row else None

    async def find_unscheduled_reminders(self, now: datetime, limit: int = 500) -> list[Reminder]:
        """Pending reminders with an empty schedule and a deadline not yet past."""
        has_entries = exists().where(
            ScheduledReminderRow.reminder_id == ReminderRow.reminder_id
        )
        async with self._session_maker() as s:
            res = await s.execute(
                select(ReminderRow)
                .where(
                    ReminderRow.status == ReminderStatus.PENDING.value,
                    ~has_entries,
                    ReminderRow.deadline >= now,
                )
                .order_by(ReminderRow.deadline)
                .limit(limit)
            )
            return [_to_reminder(r) for r in res.scalars()]

    async def find_stalled_entries(
        self,
        *,
        overdue_before: datetime,
        now: datetime,
        max_redrives: int,
        limit: int = 500,
    ) -> list[StalledEntry]:
        """Unsent entries whose fire time is older than ``overdue_before`` on
        reminders that are still active and whose deadline is still ahead."""
        async with self._session_maker() as s:
            res = await s.execute(
                select(ScheduledReminderRow)
                .join(
                    ReminderRow,
                    ReminderRow.reminder_id == ScheduledReminderRow.reminder_id,
                )
                .where(
                    ScheduledReminderRow.sent.is_(False),
                    ScheduledReminderRow.scheduled_for <= overdue_before,
                    ScheduledReminderRow.redrive_count < max_redrives,
                    ReminderRow.status.in_(_ACTIVE_STATUSES),
                    ReminderRow.deadline > now,
                )
                .order_by(ScheduledReminderRow.scheduled_for)
                .limit(limit)
            )
            return [
                StalledEntry(row.reminder_id, ScheduleEntry.model_validate(row))
                for row in res.scalars()
            ]

