"""One-off reconciliation sweep, for hosts that schedule cron jobs instead
of running Celery beat:
    python -m app.scripts.reconcile_reminders
"""

from __future__ import annotations

import asyncio
import logging

from app.runtime import service_scope
from app.utils.log import configure_logging
from config import settings

_LOGGER = logging.getLogger(__name__)


async def main() -> int:
    async with service_scope() as services:
        result = await services.reconciler.sweep()
    return result.touched


if __name__ == "__main__":  # pragma: no cover
    configure_logging(settings.LOG_LEVEL)
    _LOGGER.info("[CRON] reconcile_reminders: job started")
    try:
        touched = asyncio.run(main())
        _LOGGER.info("[CRON] reconcile_reminders: job completed (%d reminders touched)", touched)
    except Exception:  # noqa: BLE001
        _LOGGER.exception("[CRON] reconcile_reminders: job failed")
        raise SystemExit(1)
