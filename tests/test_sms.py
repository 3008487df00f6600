import time
from types import SimpleNamespace

import pytest
import telnyx

from app.utils.sms import DeliveryError, SmsNotifier


@pytest.fixture
def notifier(monkeypatch):
    monkeypatch.setattr(telnyx, "api_key", None, raising=False)
    return SmsNotifier("KEY_test", "+15550000000", timeout=0.05)


@pytest.mark.asyncio
async def test_dev_mode_without_credentials():
    dev = SmsNotifier(None, None)

    assert dev.dev_mode
    assert (await dev.send("+2348000000001", "hi")).startswith("dev-")


@pytest.mark.asyncio
async def test_send_goes_through_telnyx(notifier, monkeypatch):
    calls = []

    def create(**kwargs):
        calls.append(kwargs)
        return SimpleNamespace(id="msg-42")

    monkeypatch.setattr(telnyx.Message, "create", staticmethod(create))

    assert await notifier.send("+2348000000001", "Reminder!") == "msg-42"
    assert calls == [{"from_": "+15550000000", "to": "+2348000000001", "text": "Reminder!"}]


@pytest.mark.asyncio
async def test_slow_send_times_out_as_delivery_error(notifier):
    def slow(to, body):
        time.sleep(0.3)
        return "late"

    notifier._create = slow

    with pytest.raises(DeliveryError, match="timed out"):
        await notifier.send("+2348000000001", "Reminder!")


@pytest.mark.asyncio
async def test_sdk_error_becomes_delivery_error(notifier):
    def broken(to, body):
        raise RuntimeError("invalid destination")

    notifier._create = broken

    with pytest.raises(DeliveryError, match="invalid destination"):
        await notifier.send("+2348000000001", "Reminder!")
