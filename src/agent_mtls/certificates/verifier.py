"""Certificate validation — trust anchor, signature, validity window, binding.

:class:`ValidationService` answers a single question: may this certificate
be accepted as proof that the caller is *agent_id*? The answer is a
boolean. Reasons for rejection are only written to the log and the audit
trail, so untrusted callers learn nothing about the trust decision.
"""
from __future__ import annotations

import datetime
import logging
from typing import Callable, Optional

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric import padding

from agent_mtls.audit import CertificateAuditLogger
from agent_mtls.certificates import codec
from agent_mtls.certificates.ca import CertificateAuthority
from agent_mtls.certificates.revocation import RevocationList
from agent_mtls.certificates.store import CertificateStore
from agent_mtls.errors import CertificateEncodingError, ValidationFailure

logger = logging.getLogger(__name__)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class ValidationService:
    """Verifies presented agent certificates against the CA and the store.

    Parameters
    ----------
    ca:
        The trust anchor.
    store:
        Current certificates. A presented certificate for an agent with a
        stored record must match that record byte for byte.
    revocations:
        Serials that must be rejected even though they verify.
    audit:
        Optional audit trail.
    clock:
        Returns the current UTC time.
    """

    def __init__(
        self,
        ca: CertificateAuthority,
        store: CertificateStore,
        revocations: Optional[RevocationList] = None,
        audit: Optional[CertificateAuditLogger] = None,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ) -> None:
        self._ca = ca
        self._store = store
        self._revocations = revocations
        self._audit = audit
        self._clock = clock

    def validate(self, certificate: bytes | str, agent_id: str) -> bool:
        """Return True if *certificate* is a current, CA-signed cert for *agent_id*.

        Checks run in order and stop at the first failure: decoding, issuer
        name, signature, validity window, subject binding, revocation, store
        match.
        """
        if isinstance(certificate, str):
            certificate = certificate.encode("utf-8")

        failure, serial = self._check(certificate, agent_id)
        if failure is not None:
            if self._audit is not None:
                self._audit.log_validation(agent_id, success=False, reason=failure.value)
            return False

        logger.info("Certificate validation successful for %r (serial=%s)", agent_id, serial)
        if self._audit is not None:
            self._audit.log_validation(agent_id, success=True)
        return True

    # ------------------------------------------------------------------
    # Internal checks
    # ------------------------------------------------------------------

    def _check(
        self, certificate: bytes, agent_id: str
    ) -> tuple[Optional[ValidationFailure], Optional[int]]:
        try:
            cert = codec.decode(certificate)
        except CertificateEncodingError as exc:
            return self._reject(ValidationFailure.MALFORMED, agent_id, error=str(exc)), None

        issuer_cn = codec.common_name(cert.issuer)
        ca_cn = self._ca.subject_common_name
        if issuer_cn != ca_cn:
            return self._reject(
                ValidationFailure.UNTRUSTED_ISSUER,
                agent_id,
                cert_issuer=issuer_cn,
                expected_issuer=ca_cn,
            ), None

        if not self._signature_valid(cert):
            return self._reject(ValidationFailure.BAD_SIGNATURE, agent_id), None

        now = self._clock()
        if now < cert.not_valid_before_utc:
            return self._reject(
                ValidationFailure.NOT_YET_VALID,
                agent_id,
                not_before=cert.not_valid_before_utc.isoformat(),
                current_time=now.isoformat(),
            ), None
        if now > cert.not_valid_after_utc:
            return self._reject(
                ValidationFailure.EXPIRED,
                agent_id,
                not_after=cert.not_valid_after_utc.isoformat(),
                current_time=now.isoformat(),
            ), None

        subject_cn = codec.common_name(cert.subject)
        if subject_cn != agent_id:
            return self._reject(
                ValidationFailure.SUBJECT_MISMATCH,
                agent_id,
                cert_subject=subject_cn,
            ), None

        if self._revocations is not None and self._revocations.is_revoked(cert.serial_number):
            return self._reject(
                ValidationFailure.REVOKED,
                agent_id,
                serial_number=cert.serial_number,
            ), None

        stored = self._store.get(agent_id)
        if stored is not None and stored.cert_pem != certificate:
            return self._reject(ValidationFailure.STORE_MISMATCH, agent_id), None

        return None, cert.serial_number

    def _signature_valid(self, cert: x509.Certificate) -> bool:
        hash_algorithm = cert.signature_hash_algorithm
        if hash_algorithm is None:
            return False
        try:
            self._ca.public_key.verify(
                cert.signature,
                cert.tbs_certificate_bytes,
                padding.PKCS1v15(),
                hash_algorithm,
            )
        except (InvalidSignature, ValueError, TypeError):
            return False
        return True

    @staticmethod
    def _reject(reason: ValidationFailure, agent_id: str, **context: object) -> ValidationFailure:
        logger.warning(
            "Certificate validation failed for %r: %s %s",
            agent_id,
            reason.value,
            context or "",
        )
        return reason
