"""
Logging setup for StakeFlow servers.

Engine, API and storage loggers (``stakeflow_engine``, ``stakeflow_api``,
``stakeflow_storage``) all propagate to the root logger configured here.
Staking records carry ``op``, ``caller`` and ``amount`` through
``extra=``; both formats surface them:

    human   12:00:01 INFO    stakeflow_engine <stake> caller=sfAlice amount=100: ...
    json    {"ts": ..., "level": "INFO", "op": "stake", "caller": "sfAlice", ...}

Colour is used only when the console is a terminal.  A log file, when
configured, always receives JSON lines.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, TextIO

CONTEXT_FIELDS = ("op", "caller", "amount")

_LEVEL_COLOURS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[1;31m",
}


def _context(record: logging.LogRecord) -> dict:
    return {
        name: getattr(record, name)
        for name in CONTEXT_FIELDS
        if getattr(record, name, None) is not None
    }


class _JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            **_context(record),
        }
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class _HumanFormatter(logging.Formatter):
    """One line per record; the operation name is shown as ``<op>``."""

    def __init__(self, colour: bool = False):
        super().__init__()
        self.colour = colour

    def format(self, record: logging.LogRecord) -> str:
        ctx = _context(record)
        op = ctx.pop("op", None)
        head = f"{datetime.fromtimestamp(record.created):%H:%M:%S} {record.levelname:<7}"
        if self.colour:
            head = f"{_LEVEL_COLOURS.get(record.levelno, '')}{head}\033[0m"
        parts = [head, record.name]
        if op:
            parts.append(f"<{op}>")
        parts.extend(f"{k}={v}" for k, v in ctx.items())
        line = " ".join(parts) + f": {record.getMessage()}"
        if record.exc_info and record.exc_info[1]:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _level_name(level: str) -> str:
    name = str(level).upper()
    if not isinstance(logging.getLevelName(name), int):
        raise ValueError(f"Unknown log level: {level}")
    return name


def setup_logging(
    level: str = "INFO",
    fmt: str = "human",
    log_file: Optional[str] = None,
    stream: Optional[TextIO] = None,
) -> None:
    """
    Replace the root logger's handlers with StakeFlow's.

    *fmt* is ``"human"`` or ``"json"`` for the console (stderr unless
    *stream* is given).  *log_file* adds a JSON-lines file handler.
    Calling this again reconfigures instead of stacking handlers.
    """
    if fmt not in ("human", "json"):
        raise ValueError(f"Unknown log format: {fmt}")
    root = logging.getLogger()
    root.setLevel(_level_name(level))
    root.handlers.clear()

    stream = stream or sys.stderr
    console = logging.StreamHandler(stream)
    if fmt == "json":
        console.setFormatter(_JSONFormatter())
    else:
        console.setFormatter(_HumanFormatter(colour=stream.isatty()))
    root.addHandler(console)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(_JSONFormatter())
        root.addHandler(file_handler)


def set_level(level: str) -> str:
    """Change the root level at runtime; returns the level name applied."""
    name = _level_name(level)
    logging.getLogger().setLevel(name)
    return name
