"""Certificate Authority bootstrap, persistence and serial allocation.

The CA is created once per deployment. On startup it is loaded from
``<cert_path>/ca-key.pem`` and ``<cert_path>/ca-cert.pem``; when neither
file exists a new root is generated and written there. Any other state
(one file missing, unreadable or corrupt files, a key that does not match
the certificate) aborts startup with :class:`ConfigurationError` rather than
minting a replacement root, which would silently invalidate every
certificate issued so far.

Serial numbers come from a counter starting at 1, persisted to
``<cert_path>/ca-serial`` after every allocation.
"""
from __future__ import annotations

import datetime
import logging
import os
import threading
from pathlib import Path
from typing import Callable, Optional

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey

from agent_mtls.certificates import codec, keys
from agent_mtls.certificates.files import (
    PRIVATE_FILE_MODE,
    read_file,
    write_file,
)
from agent_mtls.certificates.revocation import REVOKED_SERIALS_FILE, RevocationList
from agent_mtls.certificates.store import AGENT_CERT_FILE
from agent_mtls.config import MTLSConfig
from agent_mtls.errors import (
    CertificateEncodingError,
    ConfigurationError,
    KeyGenerationError,
    PersistenceError,
    SigningError,
)

logger = logging.getLogger(__name__)

CA_KEY_FILE = "ca-key.pem"
CA_CERT_FILE = "ca-cert.pem"
CA_SERIAL_FILE = "ca-serial"


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class CertificateAuthority:
    """Root CA owning the signing key, root certificate and serial counter.

    Use :meth:`bootstrap` to obtain an instance backed by durable storage.

    Parameters
    ----------
    ca_cert:
        The self-signed root certificate.
    ca_key:
        The root's RSA private key.
    storage_dir:
        Directory where the serial counter is persisted. ``None`` keeps the
        counter in memory only.
    next_serial:
        Serial number the next issued certificate will carry.
    """

    def __init__(
        self,
        ca_cert: x509.Certificate,
        ca_key: RSAPrivateKey,
        storage_dir: Optional[Path] = None,
        next_serial: int = 1,
    ) -> None:
        if next_serial < 1:
            raise ValueError(f"next_serial must be positive, got {next_serial}")
        self._ca_cert = ca_cert
        self._ca_key = ca_key
        self._cert_pem = codec.encode(ca_cert)
        self._storage_dir = storage_dir
        self._next_serial = next_serial
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @classmethod
    def bootstrap(
        cls,
        config: MTLSConfig,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ) -> "CertificateAuthority":
        """Load the CA from ``config.cert_path`` or create it there.

        Raises
        ------
        ConfigurationError
            If the storage directory is unusable or holds a partial,
            unreadable or inconsistent CA.
        """
        root = Path(config.cert_path)
        _prepare_storage_dir(root)

        key_path = root / CA_KEY_FILE
        cert_path = root / CA_CERT_FILE
        key_exists = key_path.exists()
        cert_exists = cert_path.exists()

        if key_exists and cert_exists:
            ca = cls._load(root)
            logger.info(
                "Loaded existing Certificate Authority %r (next serial %d)",
                ca.subject_common_name,
                ca.next_serial,
            )
            return ca

        if key_exists or cert_exists:
            present = CA_KEY_FILE if key_exists else CA_CERT_FILE
            missing = CA_CERT_FILE if key_exists else CA_KEY_FILE
            raise ConfigurationError(
                f"Incomplete CA in {root}: {present} exists but {missing} is missing"
            )

        ca = cls._generate(config, root, clock())
        logger.info("Generated new Certificate Authority %r in %s", ca.subject_common_name, root)
        return ca

    @classmethod
    def _generate(
        cls,
        config: MTLSConfig,
        root: Path,
        now: datetime.datetime,
    ) -> "CertificateAuthority":
        try:
            ca_key = keys.generate_private_key(
                config.ca_key_size, min_key_size=keys.CA_MIN_KEY_SIZE
            )
            subject = codec.build_name(
                common_name=config.ca_common_name,
                organization=config.ca_organization,
                organizational_unit=config.ca_organizational_unit,
                country=config.ca_country,
                state=config.ca_state,
                locality=config.ca_locality,
            )
            ca_cert = codec.build_root_certificate(
                key=ca_key,
                subject=subject,
                not_before=now,
                validity_days=config.ca_validity_days,
                serial_number=x509.random_serial_number(),
            )
        except (KeyGenerationError, SigningError) as exc:
            logger.error("Failed to generate CA certificate: %s", exc)
            raise ConfigurationError(f"CA certificate generation failed: {exc}") from exc

        ca = cls(ca_cert=ca_cert, ca_key=ca_key, storage_dir=root, next_serial=1)
        try:
            write_file(root / CA_KEY_FILE, keys.private_key_to_pem(ca_key), PRIVATE_FILE_MODE)
            write_file(root / CA_CERT_FILE, ca.cert_pem)
            ca._persist_serial()
        except PersistenceError as exc:
            raise ConfigurationError(f"Could not persist new CA in {root}: {exc}") from exc
        return ca

    @classmethod
    def _load(cls, root: Path) -> "CertificateAuthority":
        try:
            key_pem = read_file(root / CA_KEY_FILE)
            cert_pem = read_file(root / CA_CERT_FILE)
            ca_key = keys.load_private_key(key_pem)
            ca_cert = codec.decode(cert_pem)
        except (PersistenceError, CertificateEncodingError) as exc:
            raise ConfigurationError(f"Unreadable CA in {root}: {exc}") from exc

        ca_public = ca_cert.public_key()
        if not isinstance(ca_public, RSAPublicKey):
            raise ConfigurationError("CA certificate does not hold an RSA public key")
        if ca_public.public_numbers() != ca_key.public_key().public_numbers():
            raise ConfigurationError(
                f"{CA_KEY_FILE} does not match the public key in {CA_CERT_FILE}"
            )
        try:
            constraints = ca_cert.extensions.get_extension_for_class(x509.BasicConstraints)
        except x509.ExtensionNotFound:
            constraints = None
        if constraints is None or not constraints.value.ca:
            raise ConfigurationError(f"{CA_CERT_FILE} is not a CA certificate")

        next_serial = _read_serial(root)
        if next_serial is None:
            next_serial = _recover_serial(root)
            logger.warning(
                "%s missing in %s; resuming serial numbers at %d",
                CA_SERIAL_FILE,
                root,
                next_serial,
            )
        ca = cls(ca_cert=ca_cert, ca_key=ca_key, storage_dir=root, next_serial=next_serial)
        if not (root / CA_SERIAL_FILE).exists():
            try:
                ca._persist_serial()
            except PersistenceError as exc:
                raise ConfigurationError(str(exc)) from exc
        return ca

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def certificate(self) -> x509.Certificate:
        return self._ca_cert

    @property
    def cert_pem(self) -> bytes:
        """PEM-encoded root certificate."""
        return self._cert_pem

    @property
    def public_key(self) -> RSAPublicKey:
        return self._ca_key.public_key()

    @property
    def subject_common_name(self) -> Optional[str]:
        return codec.common_name(self._ca_cert.subject)

    @property
    def next_serial(self) -> int:
        """Serial number the next issued certificate will carry."""
        with self._lock:
            return self._next_serial

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def allocate_serial(self) -> int:
        """Reserve and return the next serial number.

        The counter is incremented before persisting, so a persistence
        failure never causes a serial to be handed out twice.

        Raises
        ------
        PersistenceError
            If the new counter value could not be written.
        """
        with self._lock:
            serial = self._next_serial
            self._next_serial += 1
            self._persist_serial()
        return serial

    def sign_leaf(
        self,
        public_key: RSAPublicKey,
        subject: x509.Name,
        dns_names: list[str],
        not_before: datetime.datetime,
        validity_days: int,
        serial_number: int,
    ) -> x509.Certificate:
        """Sign an agent certificate with the root key.

        Raises
        ------
        SigningError
            If building or signing the certificate fails.
        """
        return codec.build_leaf_certificate(
            public_key=public_key,
            subject=subject,
            dns_names=dns_names,
            issuer_cert=self._ca_cert,
            issuer_key=self._ca_key,
            not_before=not_before,
            validity_days=validity_days,
            serial_number=serial_number,
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _persist_serial(self) -> None:
        if self._storage_dir is None:
            return
        write_file(
            self._storage_dir / CA_SERIAL_FILE,
            f"{self._next_serial}\n".encode("ascii"),
        )


def _prepare_storage_dir(root: Path) -> None:
    if root.exists() and not root.is_dir():
        raise ConfigurationError(f"Certificate path {root} is not a directory")
    try:
        root.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ConfigurationError(f"Cannot create certificate path {root}: {exc}") from exc
    if not os.access(root, os.R_OK | os.W_OK | os.X_OK):
        raise ConfigurationError(f"Certificate path {root} is not readable and writable")


def _read_serial(root: Path) -> Optional[int]:
    serial_path = root / CA_SERIAL_FILE
    if not serial_path.exists():
        return None
    try:
        value = int(read_file(serial_path).decode("ascii").strip())
    except (PersistenceError, UnicodeDecodeError, ValueError) as exc:
        raise ConfigurationError(f"Corrupt serial counter {serial_path}: {exc}") from exc
    if value < 1:
        raise ConfigurationError(f"Corrupt serial counter {serial_path}: {value}")
    return value


def _recover_serial(root: Path) -> int:
    """Return one past the highest serial among agent and revoked certificates."""
    revoked = RevocationList(root / REVOKED_SERIALS_FILE).revoked_serials()
    highest = max(revoked, default=0)
    for cert_file in root.glob(f"*/{AGENT_CERT_FILE}"):
        if cert_file.parent.name.startswith("."):
            continue
        try:
            serial = codec.decode(cert_file.read_bytes()).serial_number
        except (OSError, CertificateEncodingError) as exc:
            logger.warning("Skipping unreadable certificate %s: %s", cert_file, exc)
            continue
        highest = max(highest, serial)
    return highest + 1
