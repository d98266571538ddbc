# quorumgate/utils/__init__.py
"""Ambient helpers (logging setup)."""

from quorumgate.utils.logs import (
    MemoryLogHandler,
    configure_logging,
    get_recent_logs,
)

__all__ = [
    "MemoryLogHandler",
    "configure_logging",
    "get_recent_logs",
]
