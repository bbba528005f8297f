"""Certificate storage — in-memory index and per-agent files on disk.

:class:`CertificateStore` maps each agent to its current certificate.
:class:`FilesystemCertStore` keeps the durable copy under
``<cert_path>/<agent_id>/`` as ``agent-key.pem``, ``agent-cert.pem`` and
``ca-cert.pem``.
"""
from __future__ import annotations

import logging
import os
import re
import shutil
import tempfile
import threading
import uuid
from pathlib import Path
from typing import Optional

from agent_mtls.certificates import codec
from agent_mtls.certificates.agent_cert import AgentCertificate
from agent_mtls.certificates.files import (
    PRIVATE_FILE_MODE,
    read_file,
    write_file,
)
from agent_mtls.errors import (
    CertificateEncodingError,
    InvalidAgentIdError,
    PersistenceError,
)

logger = logging.getLogger(__name__)

AGENT_KEY_FILE = "agent-key.pem"
AGENT_CERT_FILE = "agent-cert.pem"
AGENT_CA_CERT_FILE = "ca-cert.pem"

_AGENT_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")


def validate_agent_id(agent_id: str) -> str:
    """Return *agent_id* if it is safe as a commonName, DNS label and directory.

    Raises
    ------
    InvalidAgentIdError
        If the identifier is empty, too long, starts with a dot or contains
        characters outside ``[A-Za-z0-9._-]``.
    """
    if not isinstance(agent_id, str) or not _AGENT_ID_PATTERN.match(agent_id):
        raise InvalidAgentIdError(agent_id)
    return agent_id


class CertificateStore:
    """Thread-safe in-memory mapping of agent_id to its current certificate.

    Records are immutable, so a reader always sees either the previous or
    the new record for an agent, never a mix of both.
    """

    def __init__(self) -> None:
        self._certs: dict[str, AgentCertificate] = {}
        self._lock = threading.Lock()

    def get(self, agent_id: str) -> Optional[AgentCertificate]:
        with self._lock:
            return self._certs.get(agent_id)

    def put(self, cert: AgentCertificate) -> None:
        """Insert or replace the record for ``cert.agent_id``."""
        with self._lock:
            self._certs[cert.agent_id] = cert

    def remove(self, agent_id: str) -> Optional[AgentCertificate]:
        """Remove and return the record for *agent_id*, or None if absent."""
        with self._lock:
            return self._certs.pop(agent_id, None)

    def values(self) -> list[AgentCertificate]:
        """Return a snapshot of all stored records."""
        with self._lock:
            return list(self._certs.values())

    def agent_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._certs)

    def __contains__(self, agent_id: object) -> bool:
        with self._lock:
            return agent_id in self._certs

    def __len__(self) -> int:
        with self._lock:
            return len(self._certs)


class FilesystemCertStore:
    """Filesystem-backed persistence of issued agent certificates.

    Writes go to a hidden staging directory which is renamed into place
    once every file is flushed to disk, so an agent directory always holds
    a complete key, certificate and CA copy. Entries whose names start with
    a dot are internal and never treated as agents.

    Parameters
    ----------
    base_dir:
        Root certificate directory (the CA files live alongside).
    """

    def __init__(self, base_dir: Path) -> None:
        self._base_dir = Path(base_dir)
        self._base_dir.mkdir(parents=True, exist_ok=True)

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def save(self, cert: AgentCertificate) -> None:
        """Durably write the certificate files for ``cert.agent_id``.

        Raises
        ------
        PersistenceError
            If any file cannot be written. The previous files for the agent,
            if any, are left in place.
        """
        agent_dir = self.agent_dir(cert.agent_id)
        try:
            staging = Path(
                tempfile.mkdtemp(prefix=f".{cert.agent_id}.staging-", dir=self._base_dir)
            )
        except OSError as exc:
            raise PersistenceError(f"Cannot create staging directory: {exc}") from exc

        try:
            write_file(staging / AGENT_KEY_FILE, cert.key_pem, PRIVATE_FILE_MODE)
            write_file(staging / AGENT_CERT_FILE, cert.cert_pem)
            write_file(staging / AGENT_CA_CERT_FILE, cert.ca_cert_pem)
            self._swap_into_place(staging, agent_dir)
        except PersistenceError:
            _remove_tree(staging)
            raise

    def delete(self, agent_id: str) -> bool:
        """Remove the agent's certificate directory.

        Returns
        -------
        bool
            True if a directory was removed, False if none existed.

        Raises
        ------
        PersistenceError
            If the directory exists but could not be detached.
        """
        agent_dir = self.agent_dir(agent_id)
        if not agent_dir.exists():
            return False
        tombstone = self._base_dir / f".{agent_id}.revoked-{uuid.uuid4().hex}"
        try:
            os.rename(agent_dir, tombstone)
        except OSError as exc:
            raise PersistenceError(
                f"Failed to remove certificate files for {agent_id!r}: {exc}"
            ) from exc
        _remove_tree(tombstone)
        return True

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def exists(self, agent_id: str) -> bool:
        return self.agent_dir(agent_id).is_dir()

    def list_agents(self) -> list[str]:
        """Return sorted agent IDs that have a certificate directory."""
        return sorted(
            entry.name
            for entry in self._base_dir.iterdir()
            if entry.is_dir() and not entry.name.startswith(".")
        )

    def load(self, agent_id: str) -> AgentCertificate:
        """Rebuild the record for *agent_id* from its files.

        Validity and serial number are read back from the certificate.

        Raises
        ------
        KeyError
            If no directory exists for *agent_id*.
        PersistenceError
            If a file is missing or unreadable.
        CertificateEncodingError
            If the stored certificate is malformed.
        """
        agent_dir = self.agent_dir(agent_id)
        if not agent_dir.is_dir():
            raise KeyError(f"No certificate stored for agent_id={agent_id!r}")

        key_pem = read_file(agent_dir / AGENT_KEY_FILE)
        cert_pem = read_file(agent_dir / AGENT_CERT_FILE)
        ca_cert_pem = read_file(agent_dir / AGENT_CA_CERT_FILE)
        cert = codec.decode(cert_pem)

        return AgentCertificate(
            agent_id=agent_id,
            key_pem=key_pem,
            cert_pem=cert_pem,
            ca_cert_pem=ca_cert_pem,
            issued_at=cert.not_valid_before_utc,
            expires_at=cert.not_valid_after_utc,
            serial_number=cert.serial_number,
        )

    def load_all(self) -> list[AgentCertificate]:
        """Load every readable agent record; broken directories are skipped."""
        records: list[AgentCertificate] = []
        for agent_id in self.list_agents():
            try:
                validate_agent_id(agent_id)
                records.append(self.load(agent_id))
            except (InvalidAgentIdError, PersistenceError, CertificateEncodingError, ValueError) as exc:
                logger.warning("Skipping stored certificate for %r: %s", agent_id, exc)
        return records

    def agent_dir(self, agent_id: str) -> Path:
        """Return the directory path for *agent_id*."""
        return self._base_dir / validate_agent_id(agent_id)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _swap_into_place(self, staging: Path, agent_dir: Path) -> None:
        backup: Optional[Path] = None
        try:
            if agent_dir.exists():
                backup = self._base_dir / f".{agent_dir.name}.previous-{uuid.uuid4().hex}"
                os.rename(agent_dir, backup)
            try:
                os.rename(staging, agent_dir)
            except OSError:
                if backup is not None:
                    os.rename(backup, agent_dir)
                    backup = None
                raise
        except OSError as exc:
            raise PersistenceError(
                f"Failed to install certificate files in {agent_dir}: {exc}"
            ) from exc
        if backup is not None:
            _remove_tree(backup)


def _remove_tree(path: Path) -> None:
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Could not remove %s: %s", path, exc)
