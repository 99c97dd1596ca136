# src/stageboard/storage/debounce.py

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)


class Debouncer:
    """
    Trailing-edge debounce for a no-arg sink (local persistence).

    Calls within `delay_seconds` of each other collapse into one call that
    runs after the last of them. Scheduling uses the running asyncio loop;
    without one the sink runs immediately (nothing could fire it later).
    """

    def __init__(self, fn: Callable[[], None], delay_seconds: float = 0.2) -> None:
        self._fn = fn
        self._delay = max(0.0, float(delay_seconds))
        self._handle: asyncio.TimerHandle | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def __call__(self) -> None:
        self.cancel()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._run()
            return
        self._handle = loop.call_later(self._delay, self._fire)

    def _fire(self) -> None:
        self._handle = None
        self._run()

    def _run(self) -> None:
        try:
            self._fn()
        except Exception:
            # A failed local write must not break the event loop; next change retries.
            logger.exception("Debounced sink failed")

    def flush(self) -> None:
        """Run a pending call now (shutdown path). No-op when nothing is pending."""
        if self._handle is None:
            return
        self.cancel()
        self._run()

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
