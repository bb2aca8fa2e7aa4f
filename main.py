"""
Main entry point for the practice scheduling service.
Runs the HTTP API and the reminder scheduler on one event loop.
"""

import asyncio
import sys

from aiohttp import web

from api import create_app
from config import settings
from scheduler import setup_scheduler, shutdown_scheduler
from utils.logging_config import quiet_third_party_loggers, setup_logging

logger = setup_logging(
    name=__name__, log_level=settings.log_level, log_file="service.log", log_dir="logs"
)


async def main() -> None:
    """Start the API server and scheduler, then wait until cancelled."""
    runner = None
    try:
        logger.info("Starting practice scheduling service...")
        quiet_third_party_loggers()

        setup_scheduler()

        app = create_app()
        runner = web.AppRunner(app)
        await runner.setup()
        site = web.TCPSite(runner, host=settings.host, port=settings.port)
        await site.start()
        logger.info(f"API server listening on {settings.host}:{settings.port}")

        await asyncio.Event().wait()

    except asyncio.CancelledError:
        logger.info("Service cancelled")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        raise
    finally:
        logger.info("Shutting down...")
        shutdown_scheduler()
        if runner is not None:
            await runner.cleanup()
        logger.info("Service shutdown complete")


if __name__ == "__main__":
    try:
        settings.validate_all_required()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(0)
