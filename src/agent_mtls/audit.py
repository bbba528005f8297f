"""CertificateAuditLogger — JSONL audit trail for certificate events.

Issuance, reuse, revocation and validation outcomes are appended as single
JSON lines to the configured file, giving operators an append-only record
of every trust decision. Private key material is never part of an event.

If no file path is configured the logger keeps the most recent events in a
bounded in-memory buffer that can be drained via :meth:`drain_buffer`.
A failed write to the audit file is reported through :mod:`logging` and
never interrupts the certificate operation that produced the event.
"""
from __future__ import annotations

import datetime
import json
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_BUFFERED = 10_000


@dataclass
class AuditEvent:
    """A single auditable certificate event.

    Parameters
    ----------
    event_type:
        Short snake_case string identifying the event (e.g. "certificate_issued").
    agent_id:
        The agent whose certificate is involved.
    details:
        Arbitrary key-value metadata about the event.
    timestamp:
        UTC datetime of the event. Defaults to now.
    """

    event_type: str
    agent_id: str
    details: dict[str, object] = field(default_factory=dict)
    timestamp: datetime.datetime = field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc)
    )

    def to_dict(self) -> dict[str, object]:
        """Serialize to a plain dictionary suitable for JSON encoding."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type,
            "agent_id": self.agent_id,
            "details": self.details,
        }


class CertificateAuditLogger:
    """Append-only JSONL audit logger. Thread-safe.

    Parameters
    ----------
    log_path:
        Path to the JSONL file, created along with its parent directories
        if missing. If None, events are buffered in memory only.
    max_buffered:
        Capacity of the in-memory buffer. Once full, the oldest event is
        discarded for each new one.
    """

    def __init__(
        self,
        log_path: Optional[Path] = None,
        max_buffered: int = DEFAULT_MAX_BUFFERED,
    ) -> None:
        if max_buffered < 1:
            raise ValueError(f"max_buffered must be positive, got {max_buffered}")
        self._log_path = log_path
        self._buffer: deque[str] = deque(maxlen=max_buffered)
        self._lock = threading.Lock()

        if log_path is not None:
            log_path.parent.mkdir(parents=True, exist_ok=True)

    def log(self, event: AuditEvent) -> None:
        line = json.dumps(event.to_dict(), separators=(",", ":"), default=str)
        with self._lock:
            if self._log_path is None:
                self._buffer.append(line)
                return
            try:
                with self._log_path.open("a", encoding="utf-8") as fh:
                    fh.write(line + "\n")
            except OSError as exc:
                logger.error(
                    "Failed to write audit event %s for agent %r to %s: %s",
                    event.event_type,
                    event.agent_id,
                    self._log_path,
                    exc,
                )

    def log_event(self, event_type: str, agent_id: str, **details: object) -> None:
        """Log an event without constructing an :class:`AuditEvent` first."""
        self.log(AuditEvent(event_type=event_type, agent_id=agent_id, details=dict(details)))

    # ------------------------------------------------------------------
    # Convenience event loggers
    # ------------------------------------------------------------------

    def log_issuance(self, agent_id: str, serial_number: int, expires_at: datetime.datetime) -> None:
        self.log_event(
            "certificate_issued",
            agent_id,
            serial_number=str(serial_number),
            expires_at=expires_at.isoformat(),
        )

    def log_reuse(self, agent_id: str, serial_number: int) -> None:
        self.log_event("certificate_reused", agent_id, serial_number=str(serial_number))

    def log_issuance_failure(self, agent_id: str, error: str) -> None:
        self.log_event("certificate_issuance_failed", agent_id, error=error)

    def log_revocation(self, agent_id: str, serial_number: int) -> None:
        self.log_event("certificate_revoked", agent_id, serial_number=str(serial_number))

    def log_validation(
        self,
        agent_id: str,
        success: bool,
        reason: Optional[str] = None,
    ) -> None:
        """Log a certificate validation outcome."""
        details: dict[str, object] = {}
        if reason is not None:
            details["reason"] = reason
        self.log_event(
            "certificate_validated" if success else "certificate_validation_failed",
            agent_id,
            **details,
        )

    # ------------------------------------------------------------------
    # Buffer access
    # ------------------------------------------------------------------

    def drain_buffer(self) -> list[dict[str, object]]:
        """Return and clear all buffered events (in-memory mode only)."""
        with self._lock:
            lines = list(self._buffer)
            self._buffer.clear()
        return [json.loads(line) for line in lines]

    def read_events(self) -> list[dict[str, object]]:
        """Return every event from the log file, or the buffer when unset."""
        with self._lock:
            if self._log_path is None:
                return [json.loads(line) for line in self._buffer]
            if not self._log_path.exists():
                return []
            with self._log_path.open("r", encoding="utf-8") as fh:
                return [json.loads(line) for line in fh if line.strip()]
