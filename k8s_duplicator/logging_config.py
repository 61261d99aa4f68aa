"""
Logging Configuration - Structured logging setup.

JSON lines for clusters (collected by the node's log agent), colored
short lines for a terminal.

## Environment Variables

- LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
- LOG_FORMAT: json, text (default: text)
- LOG_COLOR: 0 disables ANSI colors in text output

## Usage

    from k8s_duplicator.logging_config import setup_logging

    setup_logging()  # Call once at startup

Reconcile context travels in ``extra``:

    logger.info("Created duplicate", extra={"reconcile_id": rid, "namespace": ns})
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import IO, Any, Dict, Optional

# Extra record attributes copied into the output when present
CONTEXT_FIELDS = ("reconcile_id", "request", "namespace", "secret", "operation", "worker")

# Client libraries that log every request at INFO/DEBUG
NOISY_LOGGERS = ("kubernetes", "urllib3", "werkzeug")


def record_context(record: logging.LogRecord) -> Dict[str, Any]:
    """Controller context attached to a record through ``extra``."""
    return {
        name: getattr(record, name)
        for name in CONTEXT_FIELDS
        if getattr(record, name, None) not in (None, "")
    }


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line.

    {"ts": "...", "level": "...", "logger": "...", "message": "...", "namespace": "...", ...}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(record_context(record))

        if record.exc_info:
            entry["error_type"] = record.exc_info[0].__name__ if record.exc_info[0] else None
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class HumanFormatter(logging.Formatter):
    """
    Short lines for a terminal, context appended as key=value.

    12:34:56 INFO    reconcile    Created duplicate  namespace=a secret=secretA
    """

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    DIM = "\033[2m"
    RESET = "\033[0m"

    def __init__(self, use_color: Optional[bool] = None):
        super().__init__()
        self.use_color = sys.stderr.isatty() if use_color is None else use_color

    def _paint(self, text: str, code: str) -> str:
        return f"{code}{text}{self.RESET}" if self.use_color and code else text

    def format(self, record: logging.LogRecord) -> str:
        when = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = self._paint(f"{record.levelname:7}", self.COLORS.get(record.levelname, ""))
        source = record.name.rsplit(".", 1)[-1][:12]

        line = f"{when} {level} {source:12} {record.getMessage()}"

        context = record_context(record)
        if context:
            pairs = " ".join(f"{k}={v}" for k, v in context.items())
            line = f"{line}  {self._paint(pairs, self.DIM)}"

        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(
    level: Optional[str] = None,
    format_type: Optional[str] = None,
    stream: Optional[IO[str]] = None,
) -> None:
    """
    Configure the root logger.

    Args:
        level: DEBUG, INFO, WARNING or ERROR; defaults to LOG_LEVEL or INFO.
        format_type: json or text; defaults to LOG_FORMAT or text.
        stream: Destination; defaults to stderr.
    """
    log_level = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    log_format = (format_type or os.environ.get("LOG_FORMAT", "text")).lower()
    numeric_level = getattr(logging, log_level, logging.INFO)

    formatter: logging.Formatter
    if log_format == "json":
        formatter = JSONFormatter()
    else:
        use_color = False if os.environ.get("LOG_COLOR") == "0" else None
        formatter = HumanFormatter(use_color=use_color)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    logging.getLogger(__name__).debug(f"Logging configured: level={log_level}, format={log_format}")
