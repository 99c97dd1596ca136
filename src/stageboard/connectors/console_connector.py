# src/stageboard/connectors/console_connector.py

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from ..cli.commands import format_stage, registry as command_registry
from ..core.stages import StageId
from ..core.state import AppState

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


async def run_console_loop(state: AppState) -> None:
    """
    Interactive REPL on the event loop.

    input() runs in a worker thread so fire-and-forget remote writes, the
    snapshot poller and the debounced local save keep running while the
    user types. Command handlers themselves run on the loop thread.
    """
    logger.info("Console connector started.")
    app_name = str(getattr(state.settings, "app_name", "stageboard"))
    _print_ts(f"[{app_name}] Use /help for commands, /exit to quit.")

    def emit(text: str) -> None:
        _print_ts(text)

    last_error = state.engine.sync_error

    def on_status() -> None:
        nonlocal last_error
        err = state.engine.sync_error
        if err and err != last_error:
            emit(f"[SYNC] error: {err}")
        last_error = err

    remove_listener = state.engine.add_status_listener(on_status)
    try:
        while True:
            try:
                line = (await asyncio.to_thread(input, ">>> ")).strip()
            except EOFError:
                logger.info("Console EOF received, exiting.")
                break
            except KeyboardInterrupt:
                logger.info("Console KeyboardInterrupt, exiting.")
                print()
                break

            if not line:
                continue

            if line.lower() in ("/exit", "/quit"):
                logger.info("Console exit command received.")
                break

            if not line.startswith("/"):
                # Bare text lists a stage by name, e.g. "draft".
                match = StageId.try_parse(line.lower())
                if match is None:
                    emit("Commands start with '/'. Use /help.")
                else:
                    emit(format_stage(state, match))
                continue

            try:
                reply = command_registry.handle(state, line, emit=emit)
            except Exception:
                logger.exception("Command handler crashed.")
                reply = "Internal error while handling a command."

            if reply is not None:
                emit(reply)
    finally:
        remove_listener()
        logger.info("Console connector finished.")
