#!/usr/bin/env python

"""
SprintFlow Engine - Main Entry Point

Runs the engine's maintenance loop: creates the database tables, then
auto-stops timers that exceeded their session limit every
`expiry_sweep_seconds` until interrupted.

Usage:
    python main.py

Configuration:
    SPRINTFLOW_DATABASE_URL, SPRINTFLOW_LOG_LEVEL, SPRINTFLOW_EXPIRY_SWEEP_SECONDS
    or config/settings.yaml for the default time-tracking policy
"""

import asyncio
import logging
import sys

from sprintflow.engine import WorkEngine
from sprintflow.infra.config import get_settings
from sprintflow.infra.db import DatabaseEngine, init_db

logger = logging.getLogger("sprintflow")


def configure_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )


async def run():
    settings = get_settings()
    await init_db(settings.get_db_url())
    engine = WorkEngine(default_policy=settings.default_policy)

    logger.info(f"Timer expiry sweep every {settings.expiry_sweep_seconds}s")
    try:
        while True:
            stopped = await engine.expire_timers()
            if stopped:
                logger.info(f"Auto-stopped {stopped} expired timer(s)")
            await asyncio.sleep(settings.expiry_sweep_seconds)
    finally:
        await engine.shutdown()
        await DatabaseEngine.reset()


def main():
    """Main entry point"""
    configure_logging(get_settings().log_level)
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Shutting down")
    return 0


if __name__ == "__main__":
    sys.exit(main())
