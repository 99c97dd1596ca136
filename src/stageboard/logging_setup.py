# src/stageboard/logging_setup.py

from __future__ import annotations

import logging
import sys
from collections.abc import Mapping
from pathlib import Path

# Console thresholds for chatty stageboard subsystems. The poller and the
# debounced saver log on every tick/write; the file log still gets everything.
DEFAULT_QUIET: dict[str, int] = {
    "stageboard.remote": logging.WARNING,
    "stageboard.storage": logging.WARNING,
}


class _ConsoleNoiseFilter(logging.Filter):
    """
    Keep the interactive console readable while the REPL is in use.

    stageboard records pass unless a more specific `quiet` prefix raises the
    bar for them (longest prefix wins). Everything else, including captured
    Python warnings, only shows at ERROR+.
    """

    def __init__(self, quiet: Mapping[str, int] | None = None) -> None:
        super().__init__()
        self._quiet = sorted(
            (quiet if quiet is not None else DEFAULT_QUIET).items(),
            key=lambda kv: len(kv[0]),
            reverse=True,
        )

    def _threshold(self, name: str) -> int | None:
        for prefix, level in self._quiet:
            if name == prefix or name.startswith(prefix + "."):
                return level
        if name == "stageboard" or name.startswith("stageboard."):
            return None
        return logging.ERROR

    def filter(self, record: logging.LogRecord) -> bool:
        threshold = self._threshold(record.name)
        return threshold is None or record.levelno >= threshold


def setup_logging(
    *,
    log_dir: str | Path = ".local/stageboard",
    app_name: str = "stageboard",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
    quiet: Mapping[str, int] | None = None,
) -> Path:
    """
    Configure the root logger once, before the first record is emitted.

    Console (stderr) gets the filtered view; `<log_dir>/<app_name>.log` gets
    the full stream. Returns the log file path.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"{app_name}.log"

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(console_level)
    ch.setFormatter(fmt)
    ch.addFilter(_ConsoleNoiseFilter(quiet))
    root.addHandler(ch)

    fh = logging.FileHandler(str(log_file), encoding="utf-8")
    fh.setLevel(file_level)
    fh.setFormatter(fmt)
    root.addHandler(fh)

    logging.captureWarnings(True)
    return log_file
