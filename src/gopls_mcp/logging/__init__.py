"""Runtime logging and the tool-call audit log."""

from .audit import AuditEvent, JsonlAuditLogger, sanitize_arguments, utc_timestamp
from .runtime import configure_logging

__all__ = [
    "AuditEvent",
    "JsonlAuditLogger",
    "configure_logging",
    "sanitize_arguments",
    "utc_timestamp",
]
