from types import SimpleNamespace

import pytest

from app.services.delay_queue import Backoff, CeleryDelayQueue, JobOptions
from app.types.reminder_contract import DeliveryJob


def test_exponential_backoff_doubles():
    backoff = Backoff("exponential", 2.0)
    assert [backoff.countdown(n) for n in range(3)] == [2.0, 4.0, 8.0]


def test_fixed_backoff():
    assert Backoff("fixed", 5.0).countdown(4) == 5.0


def test_job_options_need_an_attempt():
    with pytest.raises(ValueError):
        JobOptions(delay=10, max_attempts=0)


class FakeCelery:
    def __init__(self):
        self.calls = []

    def send_task(self, name, **options):
        self.calls.append((name, options))
        return SimpleNamespace(id=f"task-{len(self.calls)}")


@pytest.mark.asyncio
async def test_celery_queue_sends_countdown_and_retry_policy():
    app = FakeCelery()
    queue = CeleryDelayQueue(app)

    task_id = await queue.enqueue(
        DeliveryJob(reminder_id="r1", scheduled_reminder_index=1),
        JobOptions(delay=3600.5, max_attempts=3, backoff=Backoff("exponential", 2.0)),
    )

    assert task_id == "task-1"
    name, options = app.calls[0]
    assert name == "app.workers.reminder.deliver"
    assert options["countdown"] == 3600.5
    assert options["queue"] == "reminder"
    assert options["kwargs"] == {
        "reminder_id": "r1",
        "index": 1,
        "max_attempts": 3,
        "backoff_type": "exponential",
        "backoff_base": 2.0,
    }


@pytest.mark.asyncio
async def test_negative_delay_is_clamped():
    app = FakeCelery()
    await CeleryDelayQueue(app).enqueue(
        DeliveryJob(reminder_id="r1", scheduled_reminder_index=0), JobOptions(delay=-5)
    )
    assert app.calls[0][1]["countdown"] == 0.0
