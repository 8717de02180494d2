"""Pytest configuration and shared fixtures."""

import ipaddress
import threading
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from certissuer.models.certificate_request import (
    CertificateRequest,
    CertificateRequestReason,
    CertificateRequestSpec,
    IssuerRef,
)
from certissuer.models.condition import CONDITION_APPROVED, CONDITION_DENIED, CONDITION_READY, ConditionStatus
from certissuer.models.issuer import GROUP, ClusterIssuer, Issuer, IssuerSpec
from certissuer.models.meta import ObjectMeta
from certissuer.models.secret import Secret
from certissuer.services.certificate_request_reconciler import CertificateRequestReconciler
from certissuer.services.condition_service import ConditionService
from certissuer.services.event_recorder import InMemoryEventRecorder
from certissuer.services.issuer_reconciler import ISSUER_READY_REASON
from certissuer.services.registry import default_registry
from certissuer.services.resource_client import InMemoryResourceClient
from certissuer.signer.authority import CertificateAuthority
from certissuer.signer.interfaces import HealthChecker, Signer

# Fixed point in time used by all clocks in the tests
NOW = datetime(2021, 1, 1, 1, 0, tzinfo=timezone.utc)

CLUSTER_RESOURCE_NAMESPACE = "kube-system"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


class FakeHealthChecker(HealthChecker):
    """Health checker that fails with ``error`` when set."""

    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.calls = 0

    def check(self) -> None:
        self.calls += 1
        if self.error is not None:
            raise self.error


class FakeSigner(Signer):
    """Signer returning fixed bytes, or failing with ``error`` when set.

    When ``release`` is set the signer blocks until the event is set.
    """

    def __init__(self, result: bytes = b"fake signed certificate", error: Optional[Exception] = None):
        self.result = result
        self.error = error
        self.release: Optional[threading.Event] = None
        self.templates = []

    def sign(self, template) -> bytes:
        self.templates.append(template)
        if self.release is not None:
            self.release.wait(timeout=5)
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def clock():
    """Create a fake clock fixed at NOW."""
    return FakeClock()


@pytest.fixture
def client():
    """Create an empty in-memory resource client."""
    return InMemoryResourceClient()


@pytest.fixture
def recorder(clock):
    """Create an in-memory event recorder."""
    return InMemoryEventRecorder(clock)


@pytest.fixture
def registry():
    """Create the registry serving Issuer and ClusterIssuer."""
    return default_registry()


@pytest.fixture(scope="session")
def ca_key():
    """Generate the test CA key (EC P-256)."""
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture(scope="session")
def ca_cert(ca_key):
    """Create a self-signed test CA valid from a day before NOW until 30 days after."""
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "Test Root CA")])
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(ca_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(NOW - timedelta(days=1))
        .not_valid_after(NOW + timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(ca_key, hashes.SHA256())
    )


@pytest.fixture
def authority(ca_cert, ca_key, clock):
    """Create a certificate authority with a 5 minute backdate."""
    return CertificateAuthority(ca_cert, ca_key, backdate=timedelta(minutes=5), now=clock)


@pytest.fixture(scope="session")
def csr_key():
    """Generate the key of the requesting workload."""
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture(scope="session")
def csr_pem(csr_key):
    """Create a PEM CSR for test.example.com with DNS and IP SANs."""
    csr = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "test.example.com")]))
        .add_extension(
            x509.SubjectAlternativeName(
                [
                    x509.DNSName("test.example.com"),
                    x509.IPAddress(ipaddress.ip_address("192.168.1.100")),
                ]
            ),
            critical=False,
        )
        .sign(csr_key, hashes.SHA256())
    )
    return csr.public_bytes(serialization.Encoding.PEM)


@pytest.fixture
def make_issuer(clock):
    """Factory for Issuer and ClusterIssuer objects."""

    def _make(
        name: str = "issuer1",
        namespace: str = "ns1",
        model=Issuer,
        ready: Optional[ConditionStatus] = None,
        secret_name: str = "issuer1-credentials",
    ):
        if model is ClusterIssuer:
            namespace = ""
        issuer = model(
            metadata=ObjectMeta(name=name, namespace=namespace),
            spec=IssuerSpec(url="https://signer.example.com", auth_secret_name=secret_name),
        )
        if ready is not None:
            ConditionService.set_condition(
                issuer.status.conditions, CONDITION_READY, ready, ISSUER_READY_REASON, "", now=clock()
            )
        return issuer

    return _make


@pytest.fixture
def make_secret():
    """Factory for credential Secrets."""

    def _make(name: str = "issuer1-credentials", namespace: str = "ns1"):
        return Secret(metadata=ObjectMeta(name=name, namespace=namespace), data={"token": b"s3cr3t"})

    return _make


@pytest.fixture
def make_certificate_request(clock, csr_pem):
    """Factory for CertificateRequests.

    By default the request is approved, references issuer1 in our group and
    already carries Ready=Unknown from a previous reconcile.
    """

    def _make(
        name: str = "cr1",
        namespace: str = "ns1",
        issuer_name: str = "issuer1",
        issuer_kind: str = "Issuer",
        group: str = GROUP,
        ready: Optional[ConditionStatus] = ConditionStatus.UNKNOWN,
        ready_reason: str = CertificateRequestReason.PENDING.value,
        approved: bool = True,
        denied: bool = False,
        request: Optional[bytes] = None,
        creation_timestamp: Optional[datetime] = None,
    ):
        cr = CertificateRequest(
            metadata=ObjectMeta(
                name=name,
                namespace=namespace,
                creation_timestamp=creation_timestamp or clock(),
            ),
            spec=CertificateRequestSpec(
                issuer_ref=IssuerRef(name=issuer_name, kind=issuer_kind, group=group),
                request=request if request is not None else csr_pem,
            ),
        )
        conditions = cr.status.conditions
        if ready is not None:
            ConditionService.set_condition(conditions, CONDITION_READY, ready, ready_reason, "", now=clock())
        if approved:
            ConditionService.set_condition(
                conditions, CONDITION_APPROVED, ConditionStatus.TRUE, "Approved", "approved in test", now=clock()
            )
        if denied:
            ConditionService.set_condition(
                conditions, CONDITION_DENIED, ConditionStatus.TRUE, "Denied", "denied in test", now=clock()
            )
        return cr

    return _make


@pytest.fixture
def fake_signer():
    """Create a fake signer."""
    return FakeSigner()


@pytest.fixture
def fake_health_checker():
    """Create a fake health checker."""
    return FakeHealthChecker()


@pytest.fixture
def cr_reconciler(client, registry, recorder, clock, fake_signer):
    """Create a CertificateRequest reconciler using the fake signer."""
    return CertificateRequestReconciler(
        client=client,
        registry=registry,
        signer_builder=lambda spec, data: fake_signer,
        recorder=recorder,
        cluster_resource_namespace=CLUSTER_RESOURCE_NAMESPACE,
        clock=clock,
    )


@pytest.fixture
def ready_issuer_setup(client, make_issuer, make_secret):
    """Store a Ready Issuer with its Secret in ns1."""
    issuer = make_issuer(ready=ConditionStatus.TRUE)
    secret = make_secret()
    client.add(issuer, secret)
    return issuer, secret
