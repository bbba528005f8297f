"""Tests for agent_mtls.certificates.revocation — RevocationList."""
from __future__ import annotations

import json
import threading
from pathlib import Path

import pytest

from agent_mtls.certificates.revocation import RevocationList
from agent_mtls.errors import ConfigurationError


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def revocation_list() -> RevocationList:
    return RevocationList()


@pytest.fixture()
def persist_path(tmp_path: Path) -> Path:
    return tmp_path / "revoked-serials.json"


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class TestInMemory:
    def test_not_revoked_initially(self, revocation_list: RevocationList) -> None:
        assert revocation_list.is_revoked(1) is False
        assert len(revocation_list) == 0

    def test_revoke_marks_serial(self, revocation_list: RevocationList) -> None:
        revocation_list.revoke_cert(7)
        assert revocation_list.is_revoked(7) is True
        assert revocation_list.is_revoked(8) is False

    def test_revoking_twice_is_idempotent(self, revocation_list: RevocationList) -> None:
        revocation_list.revoke_cert(3)
        revocation_list.revoke_cert(3)
        assert len(revocation_list) == 1

    def test_revoked_for_agent(self, revocation_list: RevocationList) -> None:
        revocation_list.revoke_cert(4, "agent-1")
        revocation_list.revoke_cert(2, "agent-1")
        revocation_list.revoke_cert(3, "agent-2")
        assert revocation_list.revoked_for("agent-1") == [2, 4]
        assert revocation_list.revoked_for("agent-3") == []

    def test_snapshot_is_immutable(self, revocation_list: RevocationList) -> None:
        revocation_list.revoke_cert(1)
        snapshot = revocation_list.revoked_serials()
        revocation_list.revoke_cert(2)
        assert snapshot == frozenset({1})

    def test_concurrent_revocations(self, revocation_list: RevocationList) -> None:
        threads = [
            threading.Thread(target=revocation_list.revoke_cert, args=(n,))
            for n in range(1, 51)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert revocation_list.revoked_serials() == frozenset(range(1, 51))


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class TestPersistence:
    def test_missing_file_means_empty_list(self, persist_path: Path) -> None:
        assert len(RevocationList(persist_path)) == 0
        assert not persist_path.exists()

    def test_revoke_writes_file(self, persist_path: Path) -> None:
        revocations = RevocationList(persist_path)
        revocations.revoke_cert(5, "agent-b")
        revocations.revoke_cert(2, "agent-a")
        data = json.loads(persist_path.read_text(encoding="utf-8"))
        assert data == {"revoked": {"2": "agent-a", "5": "agent-b"}}

    def test_reload_from_disk(self, persist_path: Path) -> None:
        RevocationList(persist_path).revoke_cert(42, "agent-1")
        reloaded = RevocationList(persist_path)
        assert reloaded.is_revoked(42) is True
        assert reloaded.revoked_for("agent-1") == [42]

    def test_invalid_json_is_configuration_error(self, persist_path: Path) -> None:
        persist_path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="Corrupt revocation list"):
            RevocationList(persist_path)

    def test_missing_key_is_configuration_error(self, persist_path: Path) -> None:
        persist_path.write_text(json.dumps({"serials": [1]}), encoding="utf-8")
        with pytest.raises(ConfigurationError):
            RevocationList(persist_path)

    def test_list_instead_of_mapping_is_configuration_error(self, persist_path: Path) -> None:
        persist_path.write_text(json.dumps({"revoked": [1, 2]}), encoding="utf-8")
        with pytest.raises(ConfigurationError):
            RevocationList(persist_path)

    def test_non_integer_serial_is_configuration_error(self, persist_path: Path) -> None:
        persist_path.write_text(json.dumps({"revoked": {"abc": "agent-1"}}), encoding="utf-8")
        with pytest.raises(ConfigurationError):
            RevocationList(persist_path)
