"""
Entry point: run the publishing scheduler until interrupted.

Usage::

    python run.py
"""

import asyncio
import logging
import signal
import sys

from dotenv import load_dotenv

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("run")


async def main() -> None:
    from postflow.config import get_settings, validate_env
    from postflow.logging import LogComponent, init_logger
    from postflow.scheduling import InMemoryJobStore, PublishingScheduler, SchedulingSystem
    from postflow.tools import HttpPlatformPublisher

    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())
    validate_env(settings)

    # ---- Store ---------------------------------------------------------------
    if settings.store_backend == "supabase":
        from postflow.database import get_db

        store = await get_db()
        event_client = store
        logger.info("Database connected")
    else:
        store = InMemoryJobStore()
        event_client = None
        logger.warning("Using the in-memory store: jobs are lost on exit")

    event_log = init_logger(settings.log_dir, supabase_client=event_client, min_level=settings.log_level)
    await event_log.info(
        LogComponent.STARTUP,
        "Scheduler starting",
        data={
            "store_backend": settings.store_backend,
            "check_interval_seconds": settings.check_interval_seconds,
            "platforms": sorted(settings.publisher_endpoints),
        },
    )

    # ---- Engine --------------------------------------------------------------
    system = SchedulingSystem(store, settings)
    publisher = HttpPlatformPublisher(settings.publisher_endpoints)
    scheduler = PublishingScheduler.from_settings(system, publisher, settings, event_log=event_log)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(scheduler.stop()))
        except NotImplementedError:
            # Windows event loops: fall back to KeyboardInterrupt
            pass

    try:
        await scheduler.start()
    finally:
        await event_log.flush()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Interrupted")
        sys.exit(0)
