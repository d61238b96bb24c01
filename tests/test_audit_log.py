"""
Tests for the structured audit log.
"""

import json

from localpass.core.audit_log import (
    AuditLogger,
    EventSeverity,
    EventType,
    get_audit_logger,
    log_security_event,
    set_audit_logger,
)


def _events(logger):
    lines = logger.log_file.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines if line.strip()]


def test_event_written_as_json_line(tmp_path):
    logger = AuditLogger(log_dir=tmp_path / "logs")
    try:
        event_id = logger.log_vault_event(
            EventType.ENTRY_ADDED, "Entry added", details={"entry_id": "abc"}
        )
        events = [e for e in _events(logger) if e["event_id"] == event_id]
    finally:
        logger.close()

    assert len(events) == 1
    event = events[0]
    assert event["event_type"] == EventType.ENTRY_ADDED.value
    assert event["severity"] == "info"
    assert event["message"] == "Vault: Entry added"
    assert event["details"] == {"entry_id": "abc"}
    assert "hostname" in event["context"]


def test_log_file_is_per_day(tmp_path):
    logger = AuditLogger(log_dir=tmp_path)
    try:
        assert logger.log_file.parent == tmp_path
        assert logger.log_file.name.startswith("audit_")
        assert logger.log_file.suffix == ".log"
    finally:
        logger.close()


def test_singleton_helpers(tmp_path):
    logger = AuditLogger(log_dir=tmp_path)
    set_audit_logger(logger)
    assert get_audit_logger() is logger

    event_id = log_security_event(
        EventType.SYSTEM_START, EventSeverity.INFO, "LocalPass starting"
    )
    assert any(e["event_id"] == event_id for e in _events(logger))


def test_severity_recorded(tmp_path):
    logger = AuditLogger(log_dir=tmp_path)
    try:
        logger.log_vault_event(
            EventType.VAULT_UNLOCK_FAILED, "Unlock failed", severity=EventSeverity.ALERT
        )
        severities = [e["severity"] for e in _events(logger)]
    finally:
        logger.close()
    assert "alert" in severities


def test_replacing_singleton_closes_previous(tmp_path):
    first = AuditLogger(log_dir=tmp_path / "first")
    second = AuditLogger(log_dir=tmp_path / "second")
    set_audit_logger(first)
    set_audit_logger(second)

    event_id = log_security_event(
        EventType.SYSTEM_START, EventSeverity.INFO, "LocalPass starting"
    )

    assert any(e["event_id"] == event_id for e in _events(second))
    assert all(e["event_id"] != event_id for e in _events(first))
