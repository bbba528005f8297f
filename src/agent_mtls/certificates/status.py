"""Derived certificate status reporting."""
from __future__ import annotations

import datetime
from dataclasses import dataclass
from enum import Enum

from agent_mtls.certificates.agent_cert import AgentCertificate

DEFAULT_EXPIRING_SOON = datetime.timedelta(days=7)


class CertificateState(str, Enum):
    VALID = "valid"
    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"


@dataclass(frozen=True)
class CertificateStatus:
    """Point-in-time view of an issued certificate.

    Parameters
    ----------
    agent_id:
        The certificate owner.
    serial_number:
        Serial number of the certificate.
    issued_at:
        Start of the validity window.
    expires_at:
        End of the validity window.
    is_expired:
        True once ``expires_at`` has passed.
    expires_in:
        Time left until expiry; zero once expired.
    status:
        Coarse classification used by dashboards and rotation jobs.
    """

    agent_id: str
    serial_number: int
    issued_at: datetime.datetime
    expires_at: datetime.datetime
    is_expired: bool
    expires_in: datetime.timedelta
    status: CertificateState

    @classmethod
    def from_certificate(
        cls,
        cert: AgentCertificate,
        now: datetime.datetime,
        expiring_soon: datetime.timedelta = DEFAULT_EXPIRING_SOON,
    ) -> "CertificateStatus":
        """Compute the status of *cert* as of *now*."""
        is_expired = cert.is_expired(now)
        expires_in = max(cert.expires_at - now, datetime.timedelta(0))

        if is_expired:
            state = CertificateState.EXPIRED
        elif expires_in < expiring_soon:
            state = CertificateState.EXPIRING_SOON
        else:
            state = CertificateState.VALID

        return cls(
            agent_id=cert.agent_id,
            serial_number=cert.serial_number,
            issued_at=cert.issued_at,
            expires_at=cert.expires_at,
            is_expired=is_expired,
            expires_in=expires_in,
            status=state,
        )

    def to_dict(self) -> dict[str, object]:
        """Serialize to a plain dictionary suitable for JSON encoding."""
        return {
            "agent_id": self.agent_id,
            "serial_number": str(self.serial_number),
            "issued_at": self.issued_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "is_expired": self.is_expired,
            "expires_in_seconds": int(self.expires_in.total_seconds()),
            "status": self.status.value,
        }
