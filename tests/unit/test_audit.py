"""Tests for agent_mtls.audit — CertificateAuditLogger."""
from __future__ import annotations

import datetime
import json
import logging
from pathlib import Path

import pytest

from agent_mtls.audit import AuditEvent, CertificateAuditLogger


@pytest.fixture()
def memory_logger() -> CertificateAuditLogger:
    return CertificateAuditLogger()


@pytest.fixture()
def log_path(tmp_path: Path) -> Path:
    return tmp_path / "logs" / "audit.jsonl"


class TestAuditEvent:
    def test_to_dict(self) -> None:
        ts = datetime.datetime(2026, 3, 1, 12, 0, tzinfo=datetime.timezone.utc)
        event = AuditEvent("certificate_issued", "agent-1", {"serial_number": "4"}, ts)
        assert event.to_dict() == {
            "timestamp": "2026-03-01T12:00:00+00:00",
            "event_type": "certificate_issued",
            "agent_id": "agent-1",
            "details": {"serial_number": "4"},
        }


class TestInMemory:
    def test_drain_returns_and_clears(self, memory_logger: CertificateAuditLogger) -> None:
        memory_logger.log_reuse("agent-1", 3)
        [event] = memory_logger.drain_buffer()
        assert event["event_type"] == "certificate_reused"
        assert event["details"] == {"serial_number": "3"}
        assert memory_logger.drain_buffer() == []

    def test_read_events_does_not_clear(self, memory_logger: CertificateAuditLogger) -> None:
        memory_logger.log_revocation("agent-1", 9)
        assert len(memory_logger.read_events()) == 1
        assert len(memory_logger.read_events()) == 1

    def test_issuance_details(self, memory_logger: CertificateAuditLogger) -> None:
        expires = datetime.datetime(2027, 1, 1, tzinfo=datetime.timezone.utc)
        memory_logger.log_issuance("agent-1", 12, expires)
        [event] = memory_logger.drain_buffer()
        assert event["details"] == {
            "serial_number": "12",
            "expires_at": "2027-01-01T00:00:00+00:00",
        }

    def test_validation_success_has_no_reason(self, memory_logger: CertificateAuditLogger) -> None:
        memory_logger.log_validation("agent-1", success=True)
        [event] = memory_logger.drain_buffer()
        assert event["event_type"] == "certificate_validated"
        assert event["details"] == {}

    def test_validation_failure_records_reason(self, memory_logger: CertificateAuditLogger) -> None:
        memory_logger.log_validation("agent-1", success=False, reason="expired")
        [event] = memory_logger.drain_buffer()
        assert event["event_type"] == "certificate_validation_failed"
        assert event["details"] == {"reason": "expired"}


class TestFileBacked:
    def test_creates_parent_directory(self, log_path: Path) -> None:
        CertificateAuditLogger(log_path)
        assert log_path.parent.is_dir()

    def test_appends_one_json_line_per_event(self, log_path: Path) -> None:
        audit = CertificateAuditLogger(log_path)
        audit.log_issuance_failure("agent-1", "disk full")
        audit.log_event("custom_event", "agent-2", note="x")

        lines = log_path.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 2
        assert json.loads(lines[0])["details"] == {"error": "disk full"}
        assert json.loads(lines[1])["event_type"] == "custom_event"

    def test_read_events_from_file(self, log_path: Path) -> None:
        audit = CertificateAuditLogger(log_path)
        assert audit.read_events() == []
        audit.log_revocation("agent-1", 1)
        assert [e["agent_id"] for e in audit.read_events()] == ["agent-1"]

    def test_file_mode_leaves_buffer_empty(self, log_path: Path) -> None:
        audit = CertificateAuditLogger(log_path)
        audit.log_reuse("agent-1", 1)
        assert audit.drain_buffer() == []


class TestBoundedBuffer:
    def test_keeps_only_most_recent_events(self) -> None:
        audit = CertificateAuditLogger(max_buffered=3)
        for serial in range(1, 11):
            audit.log_reuse("agent-1", serial)
        events = audit.drain_buffer()
        assert [e["details"]["serial_number"] for e in events] == ["8", "9", "10"]

    def test_repeated_validations_do_not_grow_buffer(self) -> None:
        audit = CertificateAuditLogger(max_buffered=50)
        for _ in range(1000):
            audit.log_validation("agent-1", success=False, reason="decode-error")
        assert len(audit.read_events()) == 50

    def test_rejects_non_positive_capacity(self) -> None:
        with pytest.raises(ValueError):
            CertificateAuditLogger(max_buffered=0)


class TestWriteFailure:
    def test_unwritable_path_is_logged_not_raised(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        audit = CertificateAuditLogger(tmp_path)
        with caplog.at_level(logging.ERROR, logger="agent_mtls.audit"):
            audit.log_validation("agent-1", success=False, reason="decode-error")
        assert "Failed to write audit event certificate_validation_failed" in caplog.text

    def test_later_events_still_attempted(self, tmp_path: Path) -> None:
        log_path = tmp_path / "audit.jsonl"
        audit = CertificateAuditLogger(log_path)
        log_path.mkdir()
        audit.log_reuse("agent-1", 1)
        log_path.rmdir()
        audit.log_reuse("agent-1", 2)
        [event] = audit.read_events()
        assert event["details"] == {"serial_number": "2"}
