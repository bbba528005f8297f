"""Exception hierarchy for the mutual-TLS certificate authority.

Validation failures are deliberately absent: :meth:`ValidationService.validate`
returns ``False`` and logs a :class:`ValidationFailure` reason code instead of
raising.
"""
from __future__ import annotations

from enum import Enum


class MTLSError(Exception):
    """Base class for all errors raised by agent_mtls."""


class ConfigurationError(MTLSError):
    """Certificate storage is missing, unreadable, or inconsistent.

    Raised while bootstrapping the CA; fatal to process startup.
    """


class KeyGenerationError(MTLSError):
    """An asymmetric key pair could not be generated."""


class CertificateEncodingError(MTLSError):
    """PEM input could not be decoded into a certificate or key."""


class SigningError(MTLSError):
    """The CA failed to sign a certificate."""


class PersistenceError(MTLSError):
    """Reading or writing certificate material on disk failed."""


class InvalidAgentIdError(MTLSError, ValueError):
    """The agent identifier cannot be used as a subject or directory name."""

    def __init__(self, agent_id: str) -> None:
        super().__init__(f"Invalid agent_id: {agent_id!r}")
        self.agent_id = agent_id


class IssuanceError(MTLSError):
    """Issuing a certificate for an agent failed.

    Parameters
    ----------
    agent_id:
        The agent the certificate was being issued for.
    cause:
        The underlying key generation, signing, encoding or persistence error.
    """

    def __init__(self, agent_id: str, cause: Exception) -> None:
        super().__init__(f"Certificate issuance failed for agent {agent_id!r}: {cause}")
        self.agent_id = agent_id
        self.cause = cause


class ValidationFailure(str, Enum):
    """Reason codes logged when a presented certificate is rejected."""

    MALFORMED = "malformed"
    UNTRUSTED_ISSUER = "untrusted-issuer"
    BAD_SIGNATURE = "bad-signature"
    NOT_YET_VALID = "not-yet-valid"
    EXPIRED = "expired"
    REVOKED = "revoked"
    SUBJECT_MISMATCH = "subject-mismatch"
    STORE_MISMATCH = "store-mismatch"
