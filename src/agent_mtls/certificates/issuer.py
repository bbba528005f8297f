"""IssuanceService — issue, reuse, revoke and report on agent certificates.

Issuance for a given agent is serialised by a per-agent lock, so two
concurrent requests for the same agent can never both mint a "current"
certificate; the second caller simply receives the first caller's record.
Files are written before the in-memory store is updated, so a persistence
failure leaves both the store and the disk as they were.
"""
from __future__ import annotations

import datetime
import logging
import threading
import weakref
from typing import Callable, Optional

from agent_mtls.audit import CertificateAuditLogger
from agent_mtls.certificates import codec, keys
from agent_mtls.certificates.agent_cert import AgentCertificate, AgentInfo
from agent_mtls.certificates.ca import CertificateAuthority
from agent_mtls.certificates.revocation import RevocationList
from agent_mtls.certificates.status import CertificateStatus
from agent_mtls.certificates.store import (
    CertificateStore,
    FilesystemCertStore,
    validate_agent_id,
)
from agent_mtls.config import MTLSConfig
from agent_mtls.errors import (
    CertificateEncodingError,
    IssuanceError,
    KeyGenerationError,
    PersistenceError,
    SigningError,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class IssuanceService:
    """Issues agent certificates signed by a :class:`CertificateAuthority`.

    Parameters
    ----------
    ca:
        The signing authority.
    store:
        In-memory index of current certificates.
    config:
        Validity period, key size and subject defaults.
    files:
        Durable per-agent storage. ``None`` keeps certificates in memory only.
    revocations:
        Receives the serial of every revoked certificate.
    audit:
        Optional audit trail.
    clock:
        Returns the current UTC time.
    """

    def __init__(
        self,
        ca: CertificateAuthority,
        store: CertificateStore,
        config: MTLSConfig,
        files: Optional[FilesystemCertStore] = None,
        revocations: Optional[RevocationList] = None,
        audit: Optional[CertificateAuditLogger] = None,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ) -> None:
        self._ca = ca
        self._store = store
        self._config = config
        self._files = files
        self._revocations = revocations
        self._audit = audit
        self._clock = clock
        self._expiring_soon = datetime.timedelta(days=config.expiring_soon_days)
        # Entries vanish once no caller holds the lock.
        self._agent_locks: weakref.WeakValueDictionary[str, threading.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._agent_locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def issue(self, agent_id: str, agent_info: Optional[AgentInfo] = None) -> AgentCertificate:
        """Return a valid certificate for *agent_id*, issuing one if needed.

        An unexpired certificate already in the store is returned unchanged.
        Otherwise a fresh key pair is generated and a leaf certificate is
        signed with the next serial number, persisted and stored.

        Raises
        ------
        InvalidAgentIdError
            If *agent_id* is not a usable identifier.
        IssuanceError
            If key generation, signing, encoding or persistence fails. The
            store is left untouched.
        """
        validate_agent_id(agent_id)
        info = agent_info or AgentInfo()

        with self._lock_for(agent_id):
            now = self._clock()
            existing = self._store.get(agent_id)
            if existing is not None and existing.expires_at > now:
                logger.info(
                    "Using existing valid certificate for agent %r (serial=%d)",
                    agent_id,
                    existing.serial_number,
                )
                if self._audit is not None:
                    self._audit.log_reuse(agent_id, existing.serial_number)
                return existing

            try:
                record = self._mint(agent_id, info, now)
                if self._files is not None:
                    self._files.save(record)
            except (KeyGenerationError, SigningError, CertificateEncodingError, PersistenceError) as exc:
                logger.error("Failed to issue certificate for agent %r: %s", agent_id, exc)
                if self._audit is not None:
                    self._audit.log_issuance_failure(agent_id, str(exc))
                raise IssuanceError(agent_id, exc) from exc

            self._store.put(record)

        logger.info(
            "Issued new agent certificate for %r (serial=%d, expires_at=%s)",
            agent_id,
            record.serial_number,
            record.expires_at.isoformat(),
        )
        if self._audit is not None:
            self._audit.log_issuance(agent_id, record.serial_number, record.expires_at)
        return record

    def _mint(self, agent_id: str, info: AgentInfo, now: datetime.datetime) -> AgentCertificate:
        config = self._config
        agent_key = keys.generate_private_key(config.agent_key_size)

        try:
            subject = codec.build_name(
                common_name=agent_id,
                organization=info.organization or config.agent_organization,
                organizational_unit=config.organizational_unit,
                country=config.ca_country,
                state=config.ca_state,
                locality=config.ca_locality,
                email=info.email or "",
            )
        except ValueError as exc:
            raise CertificateEncodingError(f"Invalid subject attributes: {exc}") from exc

        serial = self._ca.allocate_serial()
        cert = self._ca.sign_leaf(
            public_key=agent_key.public_key(),
            subject=subject,
            dns_names=[agent_id, f"{agent_id}.{config.dns_suffix}"],
            not_before=now,
            validity_days=config.certificate_validity_days,
            serial_number=serial,
        )

        return AgentCertificate(
            agent_id=agent_id,
            key_pem=keys.private_key_to_pem(agent_key),
            cert_pem=codec.encode(cert),
            ca_cert_pem=self._ca.cert_pem,
            issued_at=cert.not_valid_before_utc,
            expires_at=cert.not_valid_after_utc,
            serial_number=serial,
        )

    # ------------------------------------------------------------------
    # Revocation
    # ------------------------------------------------------------------

    def revoke(self, agent_id: str) -> bool:
        """Remove the agent's certificate from the store and from disk.

        The serial of the removed certificate is added to the revocation
        list, if one is configured. Revocation is local: only relying parties
        that consult this store will reject the revoked certificate.

        Returns
        -------
        bool
            True if a certificate was revoked, False if none existed.

        Raises
        ------
        PersistenceError
            If the files on disk could not be removed. The in-memory record
            is kept so memory and disk stay consistent.
        """
        validate_agent_id(agent_id)
        with self._lock_for(agent_id):
            removed_files = self._files.delete(agent_id) if self._files is not None else False
            removed = self._store.remove(agent_id)
            if removed is not None and self._revocations is not None:
                self._revocations.revoke_cert(removed.serial_number, agent_id)

        if removed is None and not removed_files:
            return False

        serial = removed.serial_number if removed is not None else 0
        logger.info("Agent certificate revoked for %r (serial=%d)", agent_id, serial)
        if self._audit is not None:
            self._audit.log_revocation(agent_id, serial)
        return True

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self, agent_id: str) -> Optional[CertificateStatus]:
        """Return the status of the agent's current certificate, or None."""
        cert = self._store.get(agent_id)
        if cert is None:
            return None
        return CertificateStatus.from_certificate(cert, self._clock(), self._expiring_soon)

    def list_statuses(self) -> list[CertificateStatus]:
        """Return the status of every stored certificate, ordered by agent_id."""
        now = self._clock()
        return [
            CertificateStatus.from_certificate(cert, now, self._expiring_soon)
            for cert in sorted(self._store.values(), key=lambda c: c.agent_id)
        ]

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _lock_for(self, agent_id: str) -> threading.Lock:
        with self._agent_locks_guard:
            lock = self._agent_locks.get(agent_id)
            if lock is None:
                lock = threading.Lock()
                self._agent_locks[agent_id] = lock
            return lock
