"""RSA key pair generation and PEM key serialization."""
from __future__ import annotations

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from agent_mtls.errors import CertificateEncodingError, KeyGenerationError

CA_MIN_KEY_SIZE = 3072
AGENT_MIN_KEY_SIZE = 2048


def generate_private_key(key_size: int, min_key_size: int = AGENT_MIN_KEY_SIZE) -> RSAPrivateKey:
    """Generate a new RSA private key.

    Parameters
    ----------
    key_size:
        Modulus size in bits.
    min_key_size:
        Smallest acceptable modulus. Use :data:`CA_MIN_KEY_SIZE` for
        authority keys.

    Raises
    ------
    KeyGenerationError
        If ``key_size`` is below ``min_key_size`` or the backend fails.
    """
    if key_size < min_key_size:
        raise KeyGenerationError(
            f"key_size must be at least {min_key_size} bits, got {key_size}"
        )
    try:
        return rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    except (ValueError, TypeError) as exc:
        raise KeyGenerationError(f"RSA key generation failed: {exc}") from exc


def private_key_to_pem(key: RSAPrivateKey) -> bytes:
    """Return the key as unencrypted PKCS#8 PEM."""
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def load_private_key(key_pem: bytes) -> RSAPrivateKey:
    """Parse an unencrypted PEM private key.

    Raises
    ------
    CertificateEncodingError
        If the PEM is malformed or does not hold an RSA key.
    """
    try:
        key = serialization.load_pem_private_key(key_pem, password=None)
    except (ValueError, TypeError) as exc:
        raise CertificateEncodingError(f"Malformed private key PEM: {exc}") from exc
    if not isinstance(key, RSAPrivateKey):
        raise CertificateEncodingError("Private key must be an RSA key")
    return key
