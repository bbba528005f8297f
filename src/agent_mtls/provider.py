"""MutualTLSProvider — the certificate surface offered to the gateway.

One provider is constructed at process start and passed to whatever needs
agent certificates. Construction bootstraps the CA (fatal on
:class:`ConfigurationError`) and reloads certificates persisted by earlier
runs.

Key generation is CPU-bound. Request handlers should use
:meth:`MutualTLSProvider.issue_async`, which runs issuance on a bounded
worker pool, instead of calling :meth:`issue` inline.
"""
from __future__ import annotations

import datetime
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Optional

from agent_mtls.audit import CertificateAuditLogger
from agent_mtls.certificates.agent_cert import AgentCertificate, AgentInfo
from agent_mtls.certificates.ca import CertificateAuthority
from agent_mtls.certificates.issuer import IssuanceService
from agent_mtls.certificates.revocation import REVOKED_SERIALS_FILE, RevocationList
from agent_mtls.certificates.status import CertificateStatus
from agent_mtls.certificates.store import CertificateStore, FilesystemCertStore
from agent_mtls.certificates.tls import TLSContextFactory, TransportSecurityContext
from agent_mtls.certificates.verifier import ValidationService
from agent_mtls.config import MTLSConfig

logger = logging.getLogger(__name__)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class MutualTLSProvider:
    """Owns the CA and certificate store and exposes issuance and validation.

    Parameters
    ----------
    config:
        Storage location, validity period and subject defaults.
    audit:
        Audit trail. Defaults to a file logger at ``config.audit_log_path``
        when set; with neither, no audit events are recorded.
    clock:
        Returns the current UTC time.
    """

    def __init__(
        self,
        config: MTLSConfig,
        audit: Optional[CertificateAuditLogger] = None,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ) -> None:
        self._config = config
        if audit is None and config.audit_log_path is not None:
            audit = CertificateAuditLogger(config.audit_log_path)
        self._audit = audit
        self._ca = CertificateAuthority.bootstrap(config, clock=clock)
        self._files = FilesystemCertStore(config.cert_path)
        self._store = CertificateStore()
        self._revocations = RevocationList(Path(config.cert_path) / REVOKED_SERIALS_FILE)

        for record in self._files.load_all():
            self._store.put(record)
        if len(self._store):
            logger.info("Loaded %d stored agent certificate(s)", len(self._store))

        self._issuer = IssuanceService(
            ca=self._ca,
            store=self._store,
            config=config,
            files=self._files,
            revocations=self._revocations,
            audit=self._audit,
            clock=clock,
        )
        self._validator = ValidationService(
            ca=self._ca,
            store=self._store,
            revocations=self._revocations,
            audit=self._audit,
            clock=clock,
        )
        self._executor = ThreadPoolExecutor(
            max_workers=config.worker_pool_size,
            thread_name_prefix="agent-mtls-issue",
        )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def ca(self) -> CertificateAuthority:
        return self._ca

    @property
    def audit(self) -> Optional[CertificateAuditLogger]:
        return self._audit

    @property
    def revocations(self) -> RevocationList:
        return self._revocations

    def ca_certificate_pem(self) -> bytes:
        return self._ca.cert_pem

    # ------------------------------------------------------------------
    # Certificate operations
    # ------------------------------------------------------------------

    def issue(self, agent_id: str, agent_info: Optional[AgentInfo] = None) -> AgentCertificate:
        """See :meth:`IssuanceService.issue`."""
        return self._issuer.issue(agent_id, agent_info)

    def issue_async(
        self, agent_id: str, agent_info: Optional[AgentInfo] = None
    ) -> "Future[AgentCertificate]":
        """Run :meth:`issue` on the worker pool and return its future."""
        return self._executor.submit(self._issuer.issue, agent_id, agent_info)

    def validate(self, certificate: bytes | str, agent_id: str) -> bool:
        """See :meth:`ValidationService.validate`."""
        return self._validator.validate(certificate, agent_id)

    def revoke(self, agent_id: str) -> bool:
        """See :meth:`IssuanceService.revoke`."""
        return self._issuer.revoke(agent_id)

    def status(self, agent_id: str) -> Optional[CertificateStatus]:
        return self._issuer.status(agent_id)

    def list_statuses(self) -> list[CertificateStatus]:
        return self._issuer.list_statuses()

    def build_transport_context(self, cert: AgentCertificate) -> TransportSecurityContext:
        return TLSContextFactory.build(cert)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Wait for in-flight issuances and stop the worker pool."""
        self._executor.shutdown(wait=True)

    def __enter__(self) -> "MutualTLSProvider":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
