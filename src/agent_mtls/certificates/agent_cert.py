"""Issued agent certificate records.

An :class:`AgentCertificate` is immutable once issued. Re-issuance for the
same agent produces a new record that replaces the old one in the store.
"""
from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import Optional

from cryptography import x509
from pydantic import BaseModel

from agent_mtls.certificates import codec


class AgentInfo(BaseModel):
    """Optional descriptive attributes supplied when requesting a certificate.

    ``organization`` and ``email`` are folded into the certificate subject;
    ``name`` and ``description`` are informational only.
    """

    name: str = ""
    organization: Optional[str] = None
    email: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class AgentCertificate:
    """A signed X.509 certificate issued to an agent.

    Parameters
    ----------
    agent_id:
        Agent identifier; also the certificate subject commonName.
    key_pem:
        PEM-encoded private key owned by the agent.
    cert_pem:
        PEM-encoded leaf certificate signed by the CA.
    ca_cert_pem:
        PEM-encoded CA certificate for chain validation by relying parties.
    issued_at:
        Start of the validity window (UTC).
    expires_at:
        End of the validity window (UTC).
    serial_number:
        Serial number allocated by the CA at issuance.
    """

    agent_id: str
    key_pem: bytes = field(repr=False)
    cert_pem: bytes = field(repr=False)
    ca_cert_pem: bytes = field(repr=False)
    issued_at: datetime.datetime
    expires_at: datetime.datetime
    serial_number: int

    def __post_init__(self) -> None:
        if self.expires_at <= self.issued_at:
            raise ValueError("expires_at must be later than issued_at")

    def load_x509(self) -> x509.Certificate:
        """Parse and return the X.509 certificate object."""
        return codec.decode(self.cert_pem)

    def is_expired(self, now: datetime.datetime) -> bool:
        """Return True once *now* is past expires_at.

        The expiry instant itself is still inside the validity window, as it
        is for certificate validation.
        """
        return now > self.expires_at
