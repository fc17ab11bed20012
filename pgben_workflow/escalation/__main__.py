"""Run the escalation scheduler against the configured database.

    python -m pgben_workflow.escalation

Settings come from ``PGBEN_*`` environment variables or ``.env``. The runner
only expires cases and raises notifications, so it needs no approver
directory.
"""

from __future__ import annotations

import asyncio
import logging
import signal

from ..core.config import settings
from ..core.logging_config import setup_logging
from ..factory import build_sql_core
from ..providers import StaticAuthorizationProvider

logger = logging.getLogger(__name__)


async def main() -> None:
    services, engine = await build_sql_core(authorization=StaticAuthorizationProvider())
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)
    try:
        await services.scheduler.run(settings.scheduler.interval_seconds, stop_event)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    setup_logging()
    asyncio.run(main())
