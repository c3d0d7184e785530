# src/pillar_engine/logging_setup.py

from __future__ import annotations

import logging
import sys
from pathlib import Path

ENGINE_LOGGER = "pillar_engine"

# Engine loggers that log per task/user at DEBUG; kept off the console below INFO.
_CHATTY = ("pillar_engine.notifications.scheduler", "pillar_engine.notifications.generator")


class _ConsoleNoiseFilter(logging.Filter):
    """Engine logs pass (chatty modules only from INFO); everything else, py.warnings included, only from ERROR."""

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name
        if name != ENGINE_LOGGER and not name.startswith(ENGINE_LOGGER + "."):
            return record.levelno >= logging.ERROR
        if name.startswith(_CHATTY):
            return record.levelno >= logging.INFO
        return True


def setup_logging(
    *,
    log_dir: str | Path = ".local/pillar",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> Path:
    """
    Filtered console logging plus a full log file. Call once at startup.

    Returns the log file path (<log_dir>/pillar.log).
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "pillar.log"

    root = logging.getLogger()
    root.setLevel(min(console_level, file_level))
    for old in list(root.handlers):
        root.removeHandler(old)
        old.close()

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.addFilter(_ConsoleNoiseFilter())

    file_handler = logging.FileHandler(str(log_file), encoding="utf-8")
    file_handler.setLevel(file_level)

    for handler in (console, file_handler):
        handler.setFormatter(fmt)
        root.addHandler(handler)

    logging.captureWarnings(True)
    return log_file
