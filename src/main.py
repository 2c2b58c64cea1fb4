#!/usr/bin/env python3
"""Main entry point for CronKeeper."""

import asyncio
import logging
import os
import sys
from pathlib import Path
import uvicorn

# Add src to path
sys.path.insert(0, str(Path(__file__).parent))

from config import settings


def configure_logging():
    handlers = [logging.StreamHandler()]
    if settings.log_file:
        log_dir = os.path.dirname(settings.log_file)
        if log_dir:
            Path(log_dir).mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(settings.log_file))

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


logger = logging.getLogger(__name__)


def run_http_server():
    """Run the HTTP API server with the scheduler in the same process."""
    logger.info(f"Starting HTTP server on {settings.api_host}:{settings.api_port}")

    uvicorn.run(
        "api.http_server:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
        log_level=settings.log_level.lower()
    )


async def run_worker():
    """Run only the scheduler, without the HTTP API."""
    from database import db_manager
    from scheduler import SchedulerManager

    db_manager.initialize()
    scheduler_manager = SchedulerManager(db_manager)
    scheduler_manager.initialize()

    try:
        await asyncio.Event().wait()
    finally:
        scheduler_manager.shutdown()
        await scheduler_manager.drain()
        db_manager.close()


def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="CronKeeper Scheduler")
    parser.add_argument(
        "--mode",
        choices=["http", "worker"],
        default="http",
        help="http runs the API and the scheduler, worker runs the scheduler only (default: http)"
    )
    parser.add_argument(
        "--host",
        default=settings.api_host,
        help=f"HTTP server host (default: {settings.api_host})"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=settings.api_port,
        help=f"HTTP server port (default: {settings.api_port})"
    )

    args = parser.parse_args()
    configure_logging()

    # Update settings if provided
    settings.api_host = args.host
    settings.api_port = args.port

    try:
        if args.mode == "http":
            run_http_server()
        else:
            asyncio.run(run_worker())

    except KeyboardInterrupt:
        logger.info("Shutting down CronKeeper...")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
