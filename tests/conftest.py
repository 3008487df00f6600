from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from app.services.delivery import ReminderWorker
from app.services.scheduler import ReminderScheduler
from app.types.reminder_contract import ExtractedReminder
from app.utils.sms import DeliveryError
from db.db import ReminderStore, create_all

NOW = datetime(2025, 10, 20, 12, 0, tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now += timedelta(**delta)


class FakeQueue:
    """Records enqueued jobs instead of talking to a broker."""

    def __init__(self):
        self.jobs = []

    async def enqueue(self, job, options):
        self.jobs.append((job, options))
        return f"job-{len(self.jobs)}"

    def indices(self, reminder_id):
        return [j.scheduled_reminder_index for j, _ in self.jobs if j.reminder_id == reminder_id]


class FakeSender:
    def __init__(self, fail_times: int = 0):
        self.sent = []
        self.fail_times = fail_times

    async def send(self, to, body):
        if self.fail_times:
            self.fail_times -= 1
            raise DeliveryError("carrier unavailable")
        self.sent.append((to, body))
        return f"msg-{len(self.sent)}"

    def bodies(self):
        return [body for _, body in self.sent]


class FakeExtractor:
    def __init__(self, result=None, exc=None):
        self.result = result
        self.exc = exc
        self.calls = []

    async def extract(self, text, *, now, tz_name):
        self.calls.append((text, now, tz_name))
        if self.exc is not None:
            raise self.exc
        return self.result


@pytest_asyncio.fixture
async def store():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_all(engine)
    yield ReminderStore.from_engine(engine)
    await engine.dispose()


@pytest.fixture
def clock():
    return FrozenClock(NOW)


@pytest.fixture
def queue():
    return FakeQueue()


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
def scheduler(store, queue, clock):
    return ReminderScheduler(store, queue, clock=clock)


@pytest.fixture
def worker(store, sender, clock):
    return ReminderWorker(store, sender, clock=clock)


async def make_user(store, phone="+2348000000001", **kwargs):
    return await store.create_user(phone, timezone=kwargs.pop("timezone", "UTC"), **kwargs)


async def make_reminder(store, user, deadline, task="Submit assignment 2", **extracted):
    return await store.create_reminder(
        user.user_id,
        f"{task} due {deadline.isoformat()}",
        ExtractedReminder(task=task, deadline=deadline, **extracted),
    )
