"""X.509 certificate construction, signing and PEM encoding.

Root and leaf certificates are built here with the extensions an mTLS
deployment expects. Every timestamp handed to a builder is truncated to
whole seconds because the ASN.1 time encodings drop sub-second precision;
truncating up front keeps the in-memory record identical to what ends up
in the PEM.
"""
from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from agent_mtls.errors import CertificateEncodingError, SigningError


@dataclass(frozen=True)
class CertificateFields:
    """Semantic view of a certificate used for comparison and display.

    Parameters
    ----------
    subject:
        RFC 4514 rendering of the subject name.
    issuer:
        RFC 4514 rendering of the issuer name.
    serial_number:
        Certificate serial number.
    not_before:
        Validity start (UTC).
    not_after:
        Validity end (UTC).
    extensions:
        The certificate's extensions in encoding order.
    """

    subject: str
    issuer: str
    serial_number: int
    not_before: datetime.datetime
    not_after: datetime.datetime
    extensions: tuple[x509.Extension, ...]


def truncate_to_seconds(moment: datetime.datetime) -> datetime.datetime:
    """Drop microseconds so the value survives an ASN.1 round trip."""
    return moment.replace(microsecond=0)


def common_name(name: x509.Name) -> Optional[str]:
    """Return the first commonName attribute of *name*, or None."""
    attrs = name.get_attributes_for_oid(NameOID.COMMON_NAME)
    return str(attrs[0].value) if attrs else None


def build_name(
    common_name: str,
    organization: str,
    organizational_unit: str,
    country: str = "",
    state: str = "",
    locality: str = "",
    email: str = "",
) -> x509.Name:
    """Build a distinguished name, omitting empty optional attributes."""
    attributes: list[x509.NameAttribute] = []
    if country:
        attributes.append(x509.NameAttribute(NameOID.COUNTRY_NAME, country))
    if state:
        attributes.append(x509.NameAttribute(NameOID.STATE_OR_PROVINCE_NAME, state))
    if locality:
        attributes.append(x509.NameAttribute(NameOID.LOCALITY_NAME, locality))
    attributes.append(x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization))
    attributes.append(
        x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, organizational_unit)
    )
    attributes.append(x509.NameAttribute(NameOID.COMMON_NAME, common_name))
    if email:
        attributes.append(x509.NameAttribute(NameOID.EMAIL_ADDRESS, email))
    return x509.Name(attributes)


# ------------------------------------------------------------------
# Builders
# ------------------------------------------------------------------


def build_root_certificate(
    key: RSAPrivateKey,
    subject: x509.Name,
    not_before: datetime.datetime,
    validity_days: int,
    serial_number: int,
) -> x509.Certificate:
    """Build and self-sign a root CA certificate.

    The root may only sign leaf certificates (path length 0) and CRLs.

    Raises
    ------
    SigningError
        If the builder rejects its inputs or signing fails.
    """
    not_before = truncate_to_seconds(not_before)
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(serial_number)
        .not_valid_before(not_before)
        .not_valid_after(not_before + datetime.timedelta(days=validity_days))
        .add_extension(
            x509.BasicConstraints(ca=True, path_length=0),
            critical=True,
        )
        .add_extension(
            x509.KeyUsage(
                digital_signature=False,
                key_encipherment=False,
                content_commitment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=True,
                crl_sign=True,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(key.public_key()),
            critical=False,
        )
    )
    return _sign(builder, key)


def build_leaf_certificate(
    public_key: RSAPublicKey,
    subject: x509.Name,
    dns_names: list[str],
    issuer_cert: x509.Certificate,
    issuer_key: RSAPrivateKey,
    not_before: datetime.datetime,
    validity_days: int,
    serial_number: int,
) -> x509.Certificate:
    """Build an agent certificate and sign it with the CA key.

    Parameters
    ----------
    public_key:
        The agent's public key.
    subject:
        The agent's distinguished name.
    dns_names:
        DNS entries for the subjectAltName extension.
    issuer_cert:
        The CA certificate; its subject becomes the issuer name.
    issuer_key:
        The CA private key.
    not_before:
        Validity start. ``not_after`` is ``not_before + validity_days``.
    validity_days:
        Validity period in days.
    serial_number:
        Serial number allocated by the CA.

    Raises
    ------
    SigningError
        If the builder rejects its inputs or signing fails.
    """
    not_before = truncate_to_seconds(not_before)
    try:
        san = x509.SubjectAlternativeName([x509.DNSName(name) for name in dns_names])
        builder = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(issuer_cert.subject)
            .public_key(public_key)
            .serial_number(serial_number)
            .not_valid_before(not_before)
            .not_valid_after(not_before + datetime.timedelta(days=validity_days))
            .add_extension(
                x509.BasicConstraints(ca=False, path_length=None),
                critical=True,
            )
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    key_encipherment=True,
                    content_commitment=False,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=False,
                    crl_sign=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(
                x509.ExtendedKeyUsage(
                    [ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH]
                ),
                critical=False,
            )
            .add_extension(san, critical=False)
            .add_extension(
                x509.SubjectKeyIdentifier.from_public_key(public_key),
                critical=False,
            )
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(
                    issuer_key.public_key()
                ),
                critical=False,
            )
        )
    except (ValueError, TypeError) as exc:
        raise SigningError(f"Invalid certificate parameters: {exc}") from exc
    return _sign(builder, issuer_key)


def _sign(builder: x509.CertificateBuilder, key: RSAPrivateKey) -> x509.Certificate:
    try:
        return builder.sign(key, hashes.SHA256())
    except (ValueError, TypeError) as exc:
        raise SigningError(f"Certificate signing failed: {exc}") from exc


# ------------------------------------------------------------------
# Wire format
# ------------------------------------------------------------------


def encode(cert: x509.Certificate) -> bytes:
    """Return the PEM encoding of *cert*."""
    return cert.public_bytes(serialization.Encoding.PEM)


def decode(data: bytes | str) -> x509.Certificate:
    """Parse a PEM certificate.

    Raises
    ------
    CertificateEncodingError
        If *data* is not a well-formed PEM certificate.
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    try:
        return x509.load_pem_x509_certificate(data)
    except ValueError as exc:
        raise CertificateEncodingError(f"Malformed certificate PEM: {exc}") from exc


def describe(cert: x509.Certificate) -> CertificateFields:
    """Return the semantic fields of *cert*."""
    return CertificateFields(
        subject=cert.subject.rfc4514_string(),
        issuer=cert.issuer.rfc4514_string(),
        serial_number=cert.serial_number,
        not_before=cert.not_valid_before_utc,
        not_after=cert.not_valid_after_utc,
        extensions=tuple(cert.extensions),
    )


def fingerprint(cert: x509.Certificate) -> str:
    """Return the colon-separated SHA-256 fingerprint of *cert*."""
    return cert.fingerprint(hashes.SHA256()).hex(":").upper()
