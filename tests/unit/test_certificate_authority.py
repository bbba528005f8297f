"""Tests for agent_mtls.certificates.ca — bootstrap, persistence and serials."""
from __future__ import annotations

import os
import shutil
import stat
from pathlib import Path

import pytest
from cryptography import x509

from agent_mtls.certificates import codec, keys
from agent_mtls.certificates.ca import (
    CA_CERT_FILE,
    CA_KEY_FILE,
    CA_SERIAL_FILE,
    CertificateAuthority,
)
from agent_mtls.config import MTLSConfig
from agent_mtls.errors import ConfigurationError


# ---------------------------------------------------------------------------
# Bootstrap on empty storage
# ---------------------------------------------------------------------------


class TestGenerate:
    def test_empty_storage_creates_ca_files(self, tmp_path: Path, caplog) -> None:
        root = tmp_path / "fresh"
        config = MTLSConfig(cert_path=root, ca_key_size=3072)
        with caplog.at_level("INFO"):
            ca = CertificateAuthority.bootstrap(config)

        assert (root / CA_KEY_FILE).exists()
        assert (root / CA_CERT_FILE).exists()
        assert (root / CA_SERIAL_FILE).read_text().strip() == "1"
        assert ca.next_serial == 1
        assert ca.subject_common_name == "Agent Gateway Root CA"
        assert "Generated new Certificate Authority" in caplog.text

        # Restart on the same storage reuses the root rather than regenerating it.
        reloaded = CertificateAuthority.bootstrap(config)
        assert reloaded.cert_pem == ca.cert_pem
        assert reloaded.next_serial == 1

        # Private key file is owner-only.
        mode = stat.S_IMODE(os.stat(root / CA_KEY_FILE).st_mode)
        assert mode == 0o600

        # Root characteristics.
        constraints = ca.certificate.extensions.get_extension_for_class(x509.BasicConstraints)
        assert constraints.value.ca is True
        assert constraints.value.path_length == 0
        assert ca.certificate.subject == ca.certificate.issuer

    def test_cert_path_that_is_a_file_fails(self, tmp_path: Path) -> None:
        not_a_dir = tmp_path / "file"
        not_a_dir.write_text("x")
        with pytest.raises(ConfigurationError, match="not a directory"):
            CertificateAuthority.bootstrap(MTLSConfig(cert_path=not_a_dir, ca_key_size=3072))


# ---------------------------------------------------------------------------
# Loading existing storage
# ---------------------------------------------------------------------------


class TestLoad:
    def test_loads_existing_ca(self, config: MTLSConfig, seed_ca_dir: Path, caplog) -> None:
        with caplog.at_level("INFO"):
            ca = CertificateAuthority.bootstrap(config)
        assert ca.cert_pem == (seed_ca_dir / CA_CERT_FILE).read_bytes()
        assert "Loaded existing Certificate Authority" in caplog.text

    def test_missing_serial_file_is_recreated(self, config: MTLSConfig, cert_dir: Path) -> None:
        assert not (cert_dir / CA_SERIAL_FILE).exists()
        ca = CertificateAuthority.bootstrap(config)
        assert ca.next_serial == 1
        assert (cert_dir / CA_SERIAL_FILE).read_text().strip() == "1"

    def test_serial_recovered_from_agent_certificates(
        self, config: MTLSConfig, cert_dir: Path
    ) -> None:
        ca = CertificateAuthority.bootstrap(config)
        agent_key = keys.generate_private_key(2048)
        cert = ca.sign_leaf(
            public_key=agent_key.public_key(),
            subject=codec.build_name("agent-x", "Org", "Unit"),
            dns_names=["agent-x"],
            not_before=ca.certificate.not_valid_before_utc,
            validity_days=1,
            serial_number=41,
        )
        (cert_dir / "agent-x").mkdir()
        (cert_dir / "agent-x" / "agent-cert.pem").write_bytes(codec.encode(cert))
        (cert_dir / CA_SERIAL_FILE).unlink()

        reloaded = CertificateAuthority.bootstrap(config)
        assert reloaded.next_serial == 42

    def test_persisted_serial_is_resumed(self, config: MTLSConfig, cert_dir: Path) -> None:
        (cert_dir / CA_SERIAL_FILE).write_text("17\n")
        ca = CertificateAuthority.bootstrap(config)
        assert ca.next_serial == 17


# ---------------------------------------------------------------------------
# Fail-fast on corrupt storage
# ---------------------------------------------------------------------------


class TestCorruptStorage:
    def test_missing_certificate_with_key_present(self, config: MTLSConfig, cert_dir: Path) -> None:
        (cert_dir / CA_CERT_FILE).unlink()
        with pytest.raises(ConfigurationError, match="Incomplete CA"):
            CertificateAuthority.bootstrap(config)
        assert not (cert_dir / CA_CERT_FILE).exists()

    def test_missing_key_with_certificate_present(self, config: MTLSConfig, cert_dir: Path) -> None:
        (cert_dir / CA_KEY_FILE).unlink()
        with pytest.raises(ConfigurationError, match="Incomplete CA"):
            CertificateAuthority.bootstrap(config)

    def test_corrupt_certificate(self, config: MTLSConfig, cert_dir: Path) -> None:
        (cert_dir / CA_CERT_FILE).write_bytes(b"garbage")
        with pytest.raises(ConfigurationError, match="Unreadable CA"):
            CertificateAuthority.bootstrap(config)
        assert (cert_dir / CA_CERT_FILE).read_bytes() == b"garbage"

    def test_corrupt_key(self, config: MTLSConfig, cert_dir: Path) -> None:
        (cert_dir / CA_KEY_FILE).write_bytes(b"garbage")
        with pytest.raises(ConfigurationError, match="Unreadable CA"):
            CertificateAuthority.bootstrap(config)

    def test_mismatched_key(self, config: MTLSConfig, cert_dir: Path) -> None:
        other = keys.generate_private_key(3072, min_key_size=keys.CA_MIN_KEY_SIZE)
        (cert_dir / CA_KEY_FILE).write_bytes(keys.private_key_to_pem(other))
        with pytest.raises(ConfigurationError, match="does not match"):
            CertificateAuthority.bootstrap(config)

    def test_corrupt_serial_file(self, config: MTLSConfig, cert_dir: Path) -> None:
        (cert_dir / CA_SERIAL_FILE).write_text("not-a-number")
        with pytest.raises(ConfigurationError, match="Corrupt serial counter"):
            CertificateAuthority.bootstrap(config)

    def test_zero_serial_is_corrupt(self, config: MTLSConfig, cert_dir: Path) -> None:
        (cert_dir / CA_SERIAL_FILE).write_text("0")
        with pytest.raises(ConfigurationError):
            CertificateAuthority.bootstrap(config)


# ---------------------------------------------------------------------------
# Serial allocation
# ---------------------------------------------------------------------------


class TestAllocateSerial:
    def test_post_increment(self, config: MTLSConfig) -> None:
        ca = CertificateAuthority.bootstrap(config)
        assert ca.allocate_serial() == 1
        assert ca.allocate_serial() == 2
        assert ca.next_serial == 3

    def test_counter_persisted_after_each_allocation(
        self, config: MTLSConfig, cert_dir: Path
    ) -> None:
        ca = CertificateAuthority.bootstrap(config)
        ca.allocate_serial()
        ca.allocate_serial()
        assert (cert_dir / CA_SERIAL_FILE).read_text().strip() == "3"
        assert CertificateAuthority.bootstrap(config).next_serial == 3

    def test_in_memory_ca_does_not_write(self, seed_ca_dir: Path, tmp_path: Path) -> None:
        ca_key = keys.load_private_key((seed_ca_dir / CA_KEY_FILE).read_bytes())
        ca_cert = codec.decode((seed_ca_dir / CA_CERT_FILE).read_bytes())
        ca = CertificateAuthority(ca_cert=ca_cert, ca_key=ca_key, next_serial=5)
        assert ca.allocate_serial() == 5
        assert ca.next_serial == 6

    def test_non_positive_start_rejected(self, seed_ca_dir: Path) -> None:
        ca_key = keys.load_private_key((seed_ca_dir / CA_KEY_FILE).read_bytes())
        ca_cert = codec.decode((seed_ca_dir / CA_CERT_FILE).read_bytes())
        with pytest.raises(ValueError):
            CertificateAuthority(ca_cert=ca_cert, ca_key=ca_key, next_serial=0)


def test_copied_storage_validates_same_root(config: MTLSConfig, cert_dir: Path, tmp_path: Path) -> None:
    copy = tmp_path / "copy"
    shutil.copytree(cert_dir, copy)
    first = CertificateAuthority.bootstrap(config)
    second = CertificateAuthority.bootstrap(config.model_copy(update={"cert_path": copy}))
    assert first.cert_pem == second.cert_pem
