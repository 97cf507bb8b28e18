"""
observability/logger.py — One JSON object per log line.

Log messages are event names ("turns_persisted", "stream_complete") and
the details travel in extra={...}, which lands as top-level keys:

{"ts": "2026-10-19T09:12:03.118000+00:00", "level": "INFO",
 "logger": "relay.llm.relay", "message": "stream_complete",
 "session_id": "3f6c...", "fragments": 41, "partial": false}

All relay.* loggers propagate to the "relay" package logger, which owns
the single JSON handler and the configured level.
"""
import json
import logging
import time
from datetime import datetime, timezone

PACKAGE_LOGGER = "relay"

# LogRecord attributes that are not caller-supplied extras
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        line: dict = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        line.update((k, v) for k, v in vars(record).items() if k not in _RECORD_ATTRS)

        if record.exc_info:
            line["exception"] = self.formatException(record.exc_info)

        return json.dumps(line, default=str)


def _package_logger() -> logging.Logger:
    root = logging.getLogger(PACKAGE_LOGGER)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(JSONFormatter())
        root.addHandler(handler)
        root.propagate = False
        root.setLevel(logging.INFO)
    return root


def get_logger(name: str) -> logging.Logger:
    """logger = get_logger(__name__); logger.info("event_name", extra={...})"""
    _package_logger()
    return logging.getLogger(name)


def configure_level(level: str) -> None:
    _package_logger().setLevel(level.upper())


class Timer:
    """`with Timer() as t: ...` then read t.elapsed_ms."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, *_) -> None:
        self.elapsed_ms = int((time.perf_counter() - self._start) * 1000)
