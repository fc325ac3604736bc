"""Entry point for running the watcher as a background subprocess."""

import asyncio
import logging
import os
import sys
from pathlib import Path

from .core.watcher import Watcher, WatcherStartupError
from .utils.logging_setup import setup_watcher_logging


async def main_async():
    """Main async entry point."""
    state_dir = Path(os.environ.get("WORKFLOW_WATCHER_STATE_DIR", ".workflow-watcher"))
    setup_watcher_logging(state_dir, os.environ.get("WORKFLOW_WATCHER_LOG_LEVEL", "INFO"))
    logger = logging.getLogger(__name__)

    watcher = Watcher(state_dir, project_dir=Path.cwd())
    try:
        if not await watcher.start():
            logger.info("Another watcher is already running, exiting")
            return
        await watcher.run_health_check()
        await watcher.run_forever()
    except WatcherStartupError as e:
        logger.error(f"Watcher could not start: {e}")
        sys.exit(1)
    except asyncio.CancelledError:
        logger.info("Watcher interrupted, shutting down")
    finally:
        await watcher.stop()


def main():
    """Main entry point for the watcher subprocess."""
    try:
        asyncio.run(main_async())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
