"""Local revocation list of agent certificate serial numbers.

Revoking an agent removes its record from the store; this list remembers
the serial of the removed certificate, and which agent held it, so a copy
still held by the agent (or an attacker) keeps failing validation. It is
consulted only by this process and is not published as a CRL.

On disk the list is a JSON object mapping serial numbers (as strings) to
agent ids::

    {"revoked": {"3": "billing-agent", "7": "search-agent"}}
"""
from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Optional

from agent_mtls.certificates.files import write_file
from agent_mtls.errors import ConfigurationError

REVOKED_SERIALS_FILE = "revoked-serials.json"


class RevocationList:
    """Thread-safe serial -> agent_id map with optional JSON persistence.

    Parameters
    ----------
    persist_path:
        JSON file the list is loaded from at construction and rewritten to
        after every revocation. ``None`` keeps the list in memory.

    Raises
    ------
    ConfigurationError
        If ``persist_path`` exists but cannot be parsed.
    """

    def __init__(self, persist_path: Optional[Path] = None) -> None:
        self._entries: dict[int, str] = {}
        self._guard = threading.Lock()
        self._path = persist_path

        if persist_path is not None and persist_path.exists():
            self._entries = _read_entries(persist_path)

    def revoke_cert(self, serial_number: int, agent_id: str = "") -> None:
        """Mark *serial_number* as revoked.

        Raises
        ------
        PersistenceError
            If the list could not be written. The serial stays revoked in
            memory.
        """
        with self._guard:
            self._entries[serial_number] = agent_id
            if self._path is not None:
                write_file(self._path, _encode(self._entries))

    def is_revoked(self, serial_number: int) -> bool:
        with self._guard:
            return serial_number in self._entries

    def revoked_serials(self) -> frozenset[int]:
        with self._guard:
            return frozenset(self._entries)

    def revoked_for(self, agent_id: str) -> list[int]:
        """Return the revoked serials once held by *agent_id*, ascending."""
        with self._guard:
            return sorted(s for s, owner in self._entries.items() if owner == agent_id)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


def _encode(entries: dict[int, str]) -> bytes:
    body = {"revoked": {str(serial): entries[serial] for serial in sorted(entries)}}
    return json.dumps(body, indent=2).encode("utf-8")


def _read_entries(path: Path) -> dict[int, str]:
    try:
        body = json.loads(path.read_text(encoding="utf-8"))
        return {int(serial): str(owner) for serial, owner in body["revoked"].items()}
    except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
        raise ConfigurationError(f"Corrupt revocation list {path}: {exc}") from exc
