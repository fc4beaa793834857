"""
Headless auto-score worker process entrypoint.

Runs only the automation engine, without the HTTP API, until SIGINT or
SIGTERM. Use this when the management UI talks to the rule document
directly and no backend server is running.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal

from .core.config import settings
from .core.db import SessionLocal, engine
from .core.logging_config import setup_logging
from .models import Base
from .services.automation import build_auto_score_service

logger = logging.getLogger("worker")


async def run_worker(stop_event: asyncio.Event) -> None:
    if settings.auto_create_db:
        Base.metadata.create_all(bind=engine)
    service = build_auto_score_service(settings.data_dir, SessionLocal, tz_name=settings.autoscore_timezone)
    await service.start()
    logger.info("Worker started rules=%s enabled=%s", len(service.rules), service.is_enabled())
    try:
        await stop_event.wait()
    finally:
        await service.dispose()


def main() -> int:
    setup_logging(settings.log_level, settings.log_file)
    logger.info("Worker booted (pid=%s)", os.getpid())

    async def _main() -> None:
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                # Windows event loops have no signal handlers.
                pass
        await run_worker(stop_event)

    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        return 0
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
