from __future__ import annotations

import asyncio
import logging
from uuid import uuid4

import telnyx

_LOGGER = logging.getLogger(__name__)


class DeliveryError(RuntimeError):
    """An SMS could not be handed to the carrier. Always treated as retryable."""


class SmsNotifier:
    """Notification sender over Telnyx messaging.

    Without credentials it runs in dev mode: the body is logged and a
    synthetic delivery id is returned.
    """

    def __init__(self, api_key: str | None, from_number: str | None, *, timeout: float = 15.0):
        self._api_key = api_key
        self._from_number = from_number
        self._timeout = timeout
        if api_key:
            telnyx.api_key = api_key

    @property
    def dev_mode(self) -> bool:
        return not self._api_key or not self._from_number

    def _create(self, to: str, body: str) -> str:
        message = telnyx.Message.create(from_=self._from_number, to=to, text=body)
        return message.id

    async def send(self, to: str, body: str) -> str:
        if self.dev_mode:
            _LOGGER.info("[SMS] DEV mode: would send to %s: %s", to, body)
            return f"dev-{uuid4()}"
        try:
            delivery_id = await asyncio.wait_for(
                asyncio.to_thread(self._create, to, body), timeout=self._timeout
            )
        except asyncio.TimeoutError as exc:
            raise DeliveryError(f"send to {to} timed out after {self._timeout}s") from exc
        except Exception as exc:  # noqa: BLE001
            raise DeliveryError(f"send to {to} failed: {exc}") from exc
        _LOGGER.info("Message sent to %s: %s", to, delivery_id)
        return delivery_id
