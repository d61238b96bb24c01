# LocalPass - Local encrypted credential vault
#
# Credentials are encrypted one by one under a key stretched from a single
# master password and kept in a local SQLite file. Nothing leaves the machine.

__version__ = "1.0.0"
__author__ = "LocalPass Team"
__description__ = "Local encrypted credential vault"

from .core import (
    EventSeverity,
    EventType,
    get_audit_logger,
)

__all__ = [
    "__version__",
    "EventType",
    "EventSeverity",
    "get_audit_logger",
]
