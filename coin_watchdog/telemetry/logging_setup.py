"""Centralized logging configuration for the watchdog."""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from logging import Logger
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Dict

# Attributes every LogRecord carries; anything else came in through ``extra=``.
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """Serialize LogRecord fields as JSON for ingestion-friendly logs."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        for key, value in record.__dict__.items():
            if key.startswith("_") or key in _RESERVED_ATTRS or key in payload:
                continue
            try:
                json.dumps({key: value})
            except TypeError:
                value = repr(value)
            payload[key] = value
        return json.dumps(payload, ensure_ascii=False)


CONSOLE_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def configure_logging(
    *,
    log_dir: Path,
    level: str = "INFO",
    console_level: str = "WARNING",
    logger_name: str = "coin_watchdog",
) -> Logger:
    """Route package logs to a JSON-lines file and a short stderr summary.

    stdout carries the display sink's JSON lines, so the console handler
    writes plain text to stderr and only from ``console_level`` up. The file
    receives every record at ``level`` with its ``extra=`` fields.
    """

    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "watchdog_current.jsonl"
    file_handler = TimedRotatingFileHandler(log_file, when="midnight", backupCount=14, encoding="utf-8")
    file_handler.setFormatter(JsonFormatter())

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(console_level.upper())
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))

    logger = logging.getLogger(logger_name)
    logger.setLevel(level.upper())
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    logger.addHandler(file_handler)
    logger.addHandler(console_handler)
    logger.propagate = False
    logger.debug("Logging configured", extra={"log_file": str(log_file), "console_level": console_level.upper()})
    return logger


__all__ = ["CONSOLE_FORMAT", "JsonFormatter", "configure_logging"]
