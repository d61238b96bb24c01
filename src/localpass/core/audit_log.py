# Core - Vault Audit Log
#
# Append-only, structured record of every security-relevant vault event
# (setup, unlock attempts, locks, password changes, entry mutations).
# Events carry ids and counts only: passwords, entry fields and key
# material are never logged.

import logging
import os
import socket
import sys
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

import structlog


class EventType(str, Enum):
    """Types of vault events that can be logged."""

    # Vault lifecycle
    VAULT_CREATED = "vault.created"
    VAULT_UNLOCKED = "vault.unlocked"
    VAULT_UNLOCK_FAILED = "vault.unlock.failed"
    VAULT_LOCKED = "vault.locked"
    VAULT_AUTO_LOCKED = "vault.auto_locked"
    VAULT_PASSWORD_CHANGED = "vault.password.changed"
    VAULT_ERROR = "vault.error"

    # Entries
    ENTRY_ADDED = "vault.entry.added"
    ENTRY_UPDATED = "vault.entry.updated"
    ENTRY_DELETED = "vault.entry.deleted"
    ENTRIES_IMPORTED = "vault.entry.imported"
    RECORD_SKIPPED = "vault.record.skipped"

    # Settings
    PREFERENCE_CHANGED = "preference.changed"

    # System
    SYSTEM_START = "system.start"
    SYSTEM_STOP = "system.stop"


class EventSeverity(str, Enum):
    """
    Severity levels for vault events.

    - INFO: Normal activity
    - INVESTIGATE: Something unusual worth a look (skipped record)
    - ALERT: Failed authentication
    - CRITICAL: Operation failed, data may need attention
    """
    INFO = "info"
    INVESTIGATE = "investigate"
    ALERT = "alert"
    CRITICAL = "critical"


_LEVELS = {
    EventSeverity.INFO: logging.INFO,
    EventSeverity.INVESTIGATE: logging.WARNING,
    EventSeverity.ALERT: logging.WARNING,
    EventSeverity.CRITICAL: logging.ERROR,
}


class AuditLogger:
    """
    Append-only audit logger for vault events.

    Features:
    - Structured JSON lines (structlog)
    - Automatic timestamp and event ID
    - Host/user context on every event
    - One file per day under ``log_dir``
    """

    def __init__(self, log_dir: Optional[Path] = None):
        """
        Initialize audit logger.

        Args:
            log_dir: Directory for audit logs (default: ./audit_logs)
        """
        self.log_dir = Path(log_dir) if log_dir else Path("./audit_logs")
        self.log_dir.mkdir(parents=True, exist_ok=True)

        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.stdlib.add_logger_name,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer()
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )

        self._setup_file_handler()

        self.logger = structlog.get_logger("localpass.audit")

    def _setup_file_handler(self):
        """Attach a daily append-mode file handler to the audit logger."""
        today = datetime.now().strftime("%Y-%m-%d")
        self.log_file = self.log_dir / f"audit_{today}.log"

        file_handler = logging.FileHandler(self.log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter('%(message)s'))  # structlog renders

        audit_logger = logging.getLogger("localpass.audit")
        audit_logger.addHandler(file_handler)
        audit_logger.setLevel(logging.INFO)
        self._file_handler = file_handler

    def close(self) -> None:
        """Detach and close the file handler."""
        logging.getLogger("localpass.audit").removeHandler(self._file_handler)
        self._file_handler.close()

    def log_event(
        self,
        event_type: EventType,
        severity: EventSeverity,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Log a vault event (append-only).

        Args:
            event_type: Type of event
            severity: Severity level
            message: Human-readable description (no secrets)
            details: Additional non-sensitive details (ids, counts)

        Returns:
            str: Event ID (UUID) for reference
        """
        event_id = str(uuid4())

        event_data = {
            "event_id": event_id,
            "event_type": event_type.value,
            "severity": severity.value,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "details": details or {},
            "context": self._get_default_context(),
        }

        self.logger.log(_LEVELS[severity], "vault_event", **event_data)

        return event_id

    def log_vault_event(
        self,
        event_type: EventType,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        severity: EventSeverity = EventSeverity.INFO,
    ) -> str:
        """
        Log a Vault event with the "Vault:" prefix.

        Args:
            event_type: Type of Vault event
            message: Event description
            details: Additional details (never log actual passwords!)
            severity: Defaults to INFO
        """
        return self.log_event(
            event_type=event_type,
            severity=severity,
            message=f"Vault: {message}",
            details=details
        )

    def _get_default_context(self) -> Dict[str, Any]:
        """OS user, hostname and platform."""
        return {
            "os_user": os.getenv("USERNAME") or os.getenv("USER"),
            "hostname": socket.gethostname(),
            "platform": sys.platform,
        }


# Global logger instance
_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Get global audit logger (singleton pattern)."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger


def set_audit_logger(instance: Optional[AuditLogger]) -> None:
    """Replace the singleton (startup configuration and tests).

    The previous instance is closed so its file stops receiving events.
    """
    global _audit_logger
    if _audit_logger is not None and _audit_logger is not instance:
        _audit_logger.close()
    _audit_logger = instance


def log_security_event(
    event_type: EventType,
    severity: EventSeverity,
    message: str,
    **kwargs
) -> str:
    """
    Convenience function for logging vault events.

    Usage:
        log_security_event(
            EventType.SYSTEM_START,
            EventSeverity.INFO,
            "LocalPass starting",
            details={"version": "1.0.0"}
        )
    """
    return get_audit_logger().log_event(event_type, severity, message, **kwargs)
