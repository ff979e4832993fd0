"""Shared fixtures for the SDCVault test suite."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from sdcvault.core.config import LoggingConfig, PathConfig, SdcConfig, SecurityConfig
from sdcvault.core.crypto.kdf import KeyDerivationWorker
from sdcvault.core.sdc.service import SDCFormatService
from sdcvault.core.signature import ESignatureService, SignerInfo, SubjectInfo
from sdcvault.db import MemoryStore
from sdcvault.security import SecurityMonitor, TamperAwareAuditLog

FIXED_NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config(tmp_path):
    return SdcConfig(
        paths=PathConfig(data_dir=tmp_path / "data", log_dir=tmp_path / "logs"),
        security=SecurityConfig(kdf_iterations=10_000),
        logging=LoggingConfig(enable_console=False),
    )


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def audit(tmp_path):
    return TamperAwareAuditLog(tmp_path / "logs" / "audit.log")


@pytest.fixture
def monitor(audit):
    return SecurityMonitor(audit=audit)


@pytest.fixture
def kdf_worker():
    worker = KeyDerivationWorker(max_workers=2)
    yield worker
    worker.shutdown(wait=True)


@pytest.fixture
def sdc_service(store, config, audit, monitor, clock, kdf_worker):
    return SDCFormatService(
        store,
        config=config,
        audit=audit,
        monitor=monitor,
        clock=clock,
        kdf_worker=kdf_worker,
    )


@pytest.fixture
def signature_service(store, config, audit, clock):
    return ESignatureService(store, config=config, audit=audit, clock=clock)


# Key generation is slow; certificates are shared across the session.

@pytest.fixture(scope="session")
def cert_factory():
    return ESignatureService(MemoryStore(), config=SdcConfig(), clock=lambda: FIXED_NOW)


@pytest.fixture(scope="session")
def alice_cert(cert_factory):
    return cert_factory.generate_certificate(
        SubjectInfo(common_name="Alice", organization="Acme", email="alice@example.com")
    )


@pytest.fixture(scope="session")
def bob_cert(cert_factory):
    return cert_factory.generate_certificate(SubjectInfo(common_name="Bob"))


@pytest.fixture
def alice(alice_cert):
    return SignerInfo(
        name="Alice",
        email="alice@example.com",
        certificate=alice_cert.certificate,
        private_key=alice_cert.private_key,
    )
