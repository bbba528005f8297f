"""MTLSConfig — settings for the certificate authority.

All settings can be overridden through environment variables prefixed with
``MTLS_`` (for example ``MTLS_CERT_PATH`` or
``MTLS_CERTIFICATE_VALIDITY_DAYS``).
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class MTLSConfig(BaseSettings):
    """Configuration for CA bootstrap, issuance and status reporting.

    Parameters
    ----------
    enabled:
        Whether the gateway should require mutual TLS between agents.
    cert_path:
        Root directory holding the CA files and per-agent subdirectories.
    certificate_validity_days:
        Validity period of agent certificates.
    ca_validity_days:
        Validity period of a newly generated root certificate.
    ca_key_size:
        RSA modulus size for the CA key. At least 3072 bits.
    agent_key_size:
        RSA modulus size for agent keys. At least 2048 bits.
    expiring_soon_days:
        Certificates with less than this many days left report
        ``expiring_soon``.
    worker_pool_size:
        Maximum number of concurrent background issuances.
    audit_log_path:
        Optional JSONL file receiving audit events.
    """

    model_config = SettingsConfigDict(
        env_prefix="MTLS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    enabled: bool = True
    cert_path: Path = Path("./certs")
    certificate_validity_days: int = Field(default=365, gt=0)
    ca_validity_days: int = Field(default=3650, gt=0)
    ca_key_size: int = Field(default=4096, ge=3072)
    agent_key_size: int = Field(default=2048, ge=2048)

    # Root CA subject
    ca_country: str = "US"
    ca_state: str = "CA"
    ca_locality: str = "San Francisco"
    ca_organization: str = "Agent Gateway CA"
    ca_organizational_unit: str = "Agent Authentication"
    ca_common_name: str = "Agent Gateway Root CA"

    # Agent certificate subject defaults
    agent_organization: str = "Agent Gateway Agent"
    organizational_unit: str = "Agent Authentication"
    dns_suffix: str = "agent-gateway.local"

    expiring_soon_days: int = Field(default=7, gt=0)
    worker_pool_size: int = Field(default=2, gt=0)
    audit_log_path: Optional[Path] = None

    @field_validator("dns_suffix")
    @classmethod
    def _strip_dns_suffix(cls, value: str) -> str:
        value = value.strip().strip(".")
        if not value:
            raise ValueError("dns_suffix must not be empty")
        return value
