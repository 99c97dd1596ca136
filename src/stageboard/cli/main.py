# src/stageboard/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, optionally starts remote sync, then
runs the console REPL until /exit, EOF or Ctrl+C.
"""

from __future__ import annotations

import asyncio
import logging

from ..cli.bootstrap import create_initial_state, shutdown, start_remote_sync
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)


async def main() -> None:
    settings = get_settings()

    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    log_file = setup_logging(
        log_dir=settings.data_dir,
        app_name=settings.app_name,
        console_level=console_level,
    )

    logger.info("Starting %s (log file %s)", settings.app_name, log_file)

    state = create_initial_state(settings=settings)

    if settings.sync_enabled:
        status = await start_remote_sync(state)
        logger.info("Sync state: %s", status.state.value)
    elif settings.sync_configured:
        logger.info("Remote sync configured but disabled; use /sync on")

    try:
        await run_console_loop(state)
    finally:
        await shutdown(state)
        logger.info("Bye.")


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
