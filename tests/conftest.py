"""Shared fixtures: a pre-generated CA, seeded storage and a controllable clock."""
from __future__ import annotations

import datetime
import shutil
from pathlib import Path

import pytest

from agent_mtls.certificates.ca import CA_CERT_FILE, CA_KEY_FILE, CertificateAuthority
from agent_mtls.config import MTLSConfig

START = datetime.datetime.now(datetime.timezone.utc).replace(microsecond=0)


class FakeClock:
    """Callable clock whose time only moves when told to."""

    def __init__(self, start: datetime.datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += datetime.timedelta(**kwargs)


@pytest.fixture(scope="session")
def seed_ca_dir(tmp_path_factory: pytest.TempPathFactory) -> Path:
    """A CA generated once per session (3072-bit keys are slow to make)."""
    root = tmp_path_factory.mktemp("seed-ca")
    config = MTLSConfig(cert_path=root, ca_key_size=3072)
    CertificateAuthority.bootstrap(config, clock=lambda: START - datetime.timedelta(days=1))
    return root


@pytest.fixture()
def cert_dir(tmp_path: Path, seed_ca_dir: Path) -> Path:
    """A fresh certificate directory holding a copy of the session CA."""
    target = tmp_path / "certs"
    target.mkdir()
    for name in (CA_KEY_FILE, CA_CERT_FILE):
        shutil.copy2(seed_ca_dir / name, target / name)
    return target


@pytest.fixture()
def config(cert_dir: Path) -> MTLSConfig:
    return MTLSConfig(
        cert_path=cert_dir,
        certificate_validity_days=30,
        ca_key_size=3072,
        worker_pool_size=2,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()
