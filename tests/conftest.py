"""
Shared test fixtures: an in-memory vault and a controllable clock.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from certrotation.keyvault import (
    CertificateInfo,
    NotFoundError,
    OperationStatus,
    RenewalPolicy,
    RotationOperation,
)
from certrotation.poller import PollPolicy, RotationOperationPoller


NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def make_cert(
    name: str,
    days: float,
    thumbprint: Optional[str] = None,
    enabled: bool = True,
    now: datetime = NOW,
) -> CertificateInfo:
    """Certificate expiring ``days`` (plus one hour) after ``now``."""
    return CertificateInfo(
        name=name,
        vault_name="kv-test",
        expires_on=now + timedelta(days=days, hours=1),
        thumbprint=thumbprint or f"{name}-v1",
        version="v1",
        enabled=enabled,
    )


class FakeClock:
    """Monotonic clock whose sleep advances time instantly."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeVault:
    """
    In-memory stand-in for KeyVaultClient.

    ``poll_scripts`` maps a certificate name to the statuses successive
    polls return; the last entry repeats. Unscripted names complete on
    the first poll.
    """

    def __init__(self, certificates: List[CertificateInfo], vault_name: str = "kv-test"):
        self.vault_name = vault_name
        self.certificates: Dict[str, CertificateInfo] = {c.name: c for c in certificates}
        self.poll_scripts: Dict[str, List[OperationStatus]] = {}
        self.submit_errors: Dict[str, Exception] = {}
        self.operation_errors: Dict[str, str] = {}
        self.submitted_policies: Dict[str, RenewalPolicy] = {}
        self.list_error: Optional[Exception] = None
        self.calls: List[tuple] = []

    @property
    def submissions(self) -> List[str]:
        return [call[1] for call in self.calls if call[0] == "submit"]

    def list_certificates(self) -> List[CertificateInfo]:
        self.calls.append(("list",))
        if self.list_error:
            raise self.list_error
        return list(self.certificates.values())

    def get_certificate(self, name: str) -> CertificateInfo:
        self.calls.append(("get", name))
        if name not in self.certificates:
            raise NotFoundError(name)
        return self.certificates[name]

    def get_renewal_policy(self, name: str) -> RenewalPolicy:
        self.calls.append(("policy", name))
        if name not in self.certificates:
            raise NotFoundError(name)
        return RenewalPolicy(subject=f"CN={name}")

    def submit_renewal(self, name: str, policy: RenewalPolicy) -> RotationOperation:
        self.calls.append(("submit", name))
        if name in self.submit_errors:
            raise self.submit_errors[name]
        self.submitted_policies[name] = policy
        return RotationOperation(certificate_name=name)

    def poll_operation(self, operation: RotationOperation) -> RotationOperation:
        name = operation.certificate_name
        self.calls.append(("poll", name))
        script = self.poll_scripts.get(name, [OperationStatus.COMPLETED])
        status = script.pop(0) if len(script) > 1 else script[0]

        operation.status = status
        if status is OperationStatus.FAILED:
            operation.error = self.operation_errors.get(name, "Issuer rejected the request")
        elif status is OperationStatus.COMPLETED:
            self.certificates[name] = CertificateInfo(
                name=name,
                vault_name=self.vault_name,
                expires_on=NOW + timedelta(days=365),
                thumbprint=f"{name}-v2",
                version="v2",
            )
        return operation


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def poll_policy():
    return PollPolicy(interval=5, max_wait=120)


@pytest.fixture
def make_poller(clock):
    def factory(vault):
        return RotationOperationPoller(vault, clock=clock, sleep=clock.sleep)
    return factory
