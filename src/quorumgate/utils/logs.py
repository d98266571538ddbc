"""
Logging setup for processes embedding the consensus gate.

Library modules only ever call `logging.getLogger(__name__)`; nothing is
configured on import. A host application calls configure_logging() once.

Besides the console (or rotating file) handler, a MemoryLogHandler keeps the
last 500 records in a ring buffer so operators can poll recent validator
failures without tailing a file.
"""

import itertools
import logging
import logging.handlers
import sys
import threading
from collections import deque
from datetime import datetime
from typing import List, Optional

DEFAULT_FORMAT = "[QUORUMGATE] %(message)s"
LOG_BUFFER_SIZE = 500

# Circular buffer of recent records (shared by every MemoryLogHandler)
_LOG_BUFFER = deque(maxlen=LOG_BUFFER_SIZE)
_LOG_BUFFER_LOCK = threading.Lock()


# Collector failure kinds, passed as `extra={"failure": kind}`
FAILURE_TYPES = {
    "timeout": "timeout",
    "deadline": "timeout",
    "error": "error",
}


def classify(record: logging.LogRecord) -> str:
    """
    Buffer type of a record: the collector's failure kind when it set one,
    otherwise the level.
    """
    failure = getattr(record, "failure", None)
    if failure in FAILURE_TYPES:
        return FAILURE_TYPES[failure]
    if record.levelno >= logging.ERROR:
        return "error"
    if record.levelno >= logging.WARNING:
        return "warning"
    return "info"


class MemoryLogHandler(logging.Handler):
    """Keeps recent records in the shared ring buffer for polling."""

    _ids = itertools.count(1)

    def emit(self, record):
        try:
            entry = {
                "epoch": int(record.created * 1000),
                "timestamp": datetime.fromtimestamp(record.created).strftime("%H:%M:%S"),
                "logger": record.name,
                "message": self.format(record),
                "type": classify(record),
                "level": record.levelname,
                "failure": getattr(record, "failure", None),
                "validator_id": getattr(record, "validator_id", None),
            }
            with _LOG_BUFFER_LOCK:
                entry["id"] = next(MemoryLogHandler._ids)
                _LOG_BUFFER.append(entry)
        except Exception:
            self.handleError(record)


def get_recent_logs(since_id: int = 0, limit: int = 100) -> List[dict]:
    """
    Get recent log entries.

    Args:
        since_id: Return entries with id greater than this (0 for all)
        limit: Maximum number of entries (most recent kept)
    """
    with _LOG_BUFFER_LOCK:
        logs = list(_LOG_BUFFER)

    if since_id > 0:
        logs = [log for log in logs if log['id'] > since_id]
    if len(logs) > limit:
        logs = logs[-limit:]
    return logs


def clear_recent_logs() -> None:
    with _LOG_BUFFER_LOCK:
        _LOG_BUFFER.clear()


def _create_handler(log_file: Optional[str]) -> logging.Handler:
    if log_file:
        # Keep the last 5MB
        return logging.handlers.RotatingFileHandler(
            log_file, maxBytes=5 * 1024 * 1024, backupCount=2, encoding='utf-8'
        )
    return logging.StreamHandler(sys.stdout)


def configure_logging(
    level: int = logging.INFO,
    log_file: Optional[str] = None,
    fmt: str = DEFAULT_FORMAT,
    logger_name: str = "quorumgate",
) -> logging.Logger:
    """
    Configure the package logger.

    Clears handlers installed by a previous call, so calling it twice does
    not duplicate output.

    Args:
        level: Log level for the package logger
        log_file: Write to a rotating file instead of stdout
        fmt: Format string for the console/file handler
        logger_name: Logger to configure

    Returns:
        The configured logger
    """
    logger = logging.getLogger(logger_name)
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()
    logger.setLevel(level)

    handler = _create_handler(log_file)
    handler.setFormatter(logging.Formatter(fmt))
    logger.addHandler(handler)

    memory_handler = MemoryLogHandler()
    memory_handler.setFormatter(logging.Formatter('%(message)s'))
    memory_handler.setLevel(level)
    logger.addHandler(memory_handler)

    return logger
