"""agent-mtls — mutual-TLS certificate authority for agent-to-agent authentication.

Public API
----------
The stable public surface is everything exported from this module.
Anything inside submodules not re-exported here is considered private
and may change without notice.

Quick start
-----------
::

    from agent_mtls import MTLSConfig, MutualTLSProvider

    with MutualTLSProvider(MTLSConfig(cert_path="./certs")) as provider:
        cert = provider.issue("billing-agent")
        assert provider.validate(cert.cert_pem, "billing-agent")
        server_ctx = provider.build_transport_context(cert).server_context()
"""
from __future__ import annotations

__version__: str = "0.1.0"

from agent_mtls.audit import AuditEvent, CertificateAuditLogger
from agent_mtls.certificates.agent_cert import AgentCertificate, AgentInfo
from agent_mtls.certificates.ca import CertificateAuthority
from agent_mtls.certificates.issuer import IssuanceService
from agent_mtls.certificates.revocation import RevocationList
from agent_mtls.certificates.status import CertificateState, CertificateStatus
from agent_mtls.certificates.store import CertificateStore, FilesystemCertStore
from agent_mtls.certificates.tls import TLSContextFactory, TransportSecurityContext
from agent_mtls.certificates.verifier import ValidationService
from agent_mtls.config import MTLSConfig
from agent_mtls.errors import (
    CertificateEncodingError,
    ConfigurationError,
    InvalidAgentIdError,
    IssuanceError,
    KeyGenerationError,
    MTLSError,
    PersistenceError,
    SigningError,
    ValidationFailure,
)
from agent_mtls.provider import MutualTLSProvider

__all__ = [
    "__version__",
    # provider
    "MutualTLSProvider",
    "MTLSConfig",
    # certificates
    "AgentCertificate",
    "AgentInfo",
    "CertificateAuthority",
    "CertificateState",
    "CertificateStatus",
    "CertificateStore",
    "FilesystemCertStore",
    "IssuanceService",
    "RevocationList",
    "TLSContextFactory",
    "TransportSecurityContext",
    "ValidationService",
    # audit
    "AuditEvent",
    "CertificateAuditLogger",
    # errors
    "CertificateEncodingError",
    "ConfigurationError",
    "InvalidAgentIdError",
    "IssuanceError",
    "KeyGenerationError",
    "MTLSError",
    "PersistenceError",
    "SigningError",
    "ValidationFailure",
]
