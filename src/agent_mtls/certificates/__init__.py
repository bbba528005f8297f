"""Certificate management for agent mutual TLS.

Provides the root CA, X.509 issuance, local revocation, status reporting,
validation and TLS context construction for agents talking to each other
through the gateway.
"""
from __future__ import annotations

from agent_mtls.certificates.agent_cert import AgentCertificate, AgentInfo
from agent_mtls.certificates.ca import CertificateAuthority
from agent_mtls.certificates.codec import CertificateFields
from agent_mtls.certificates.issuer import IssuanceService
from agent_mtls.certificates.revocation import RevocationList
from agent_mtls.certificates.status import CertificateState, CertificateStatus
from agent_mtls.certificates.store import CertificateStore, FilesystemCertStore
from agent_mtls.certificates.tls import TLSContextFactory, TransportSecurityContext
from agent_mtls.certificates.verifier import ValidationService

__all__ = [
    "AgentCertificate",
    "AgentInfo",
    "CertificateAuthority",
    "CertificateFields",
    "CertificateState",
    "CertificateStatus",
    "CertificateStore",
    "FilesystemCertStore",
    "IssuanceService",
    "RevocationList",
    "TLSContextFactory",
    "TransportSecurityContext",
    "ValidationService",
]
