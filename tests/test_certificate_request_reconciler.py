"""Tests for the CertificateRequest reconciler."""

import asyncio
import threading
from datetime import datetime, timedelta

import pytest

from certissuer.errors import (
    AggregateError,
    ConflictError,
    IssuerNotFoundError,
    IssuerNotReadyError,
    PermanentError,
    SecretNotFoundError,
    SignerBuilderError,
    SigningError,
)
from certissuer.models.certificate_request import CertificateRequest
from certissuer.models.condition import CONDITION_READY, ConditionStatus
from certissuer.models.event import EventType, ReconcileResult
from certissuer.models.issuer import ClusterIssuer
from certissuer.services.certificate_request_reconciler import CertificateRequestReconciler
from certissuer.services.condition_service import ConditionService

CLUSTER_RESOURCE_NAMESPACE = "kube-system"


async def get_stored(client, key) -> CertificateRequest:
    """Read the stored CertificateRequest."""
    return await client.get(CertificateRequest, key)


def ready_of(cr: CertificateRequest):
    """Ready condition of a request."""
    return ConditionService.get_condition(cr.status.conditions, CONDITION_READY)


@pytest.mark.unit
class TestCertificateRequestIgnored:
    """Test requests the reconciler leaves alone."""

    async def test_missing_request(self, client, recorder, cr_reconciler, make_certificate_request):
        """Test that a deleted request is ignored."""
        result = await cr_reconciler.reconcile(make_certificate_request().key)

        assert result == ReconcileResult()
        assert client.status_updates == 0
        assert recorder.events == []

    async def test_foreign_group(self, client, recorder, cr_reconciler, make_certificate_request):
        """Test that requests for another API group are not touched."""
        cr = make_certificate_request(group="cert-manager.io", ready=None)
        client.add(cr)

        await cr_reconciler.reconcile(cr.key)

        stored = await get_stored(client, cr.key)
        assert ready_of(stored) is None
        assert client.status_updates == 0
        assert recorder.events == []

    async def test_already_ready(
        self, client, recorder, cr_reconciler, make_certificate_request, ready_issuer_setup, fake_signer
    ):
        """Test that an issued request causes zero writes and zero events."""
        cr = make_certificate_request(ready=ConditionStatus.TRUE, ready_reason="Issued")
        client.add(cr)

        await cr_reconciler.reconcile(cr.key)

        assert client.status_updates == 0
        assert recorder.events == []
        assert fake_signer.templates == []

    async def test_terminal_failure(
        self, client, recorder, cr_reconciler, make_certificate_request, ready_issuer_setup, fake_signer, clock
    ):
        """Test that a request with a failure time is never retried."""
        cr = make_certificate_request(ready=ConditionStatus.FALSE, ready_reason="Failed")
        cr.status.failure_time = clock()
        client.add(cr)

        await cr_reconciler.reconcile(cr.key)

        assert client.status_updates == 0
        assert fake_signer.templates == []


@pytest.mark.unit
class TestCertificateRequestReconciler:
    """Test the signing state machine."""

    async def test_initialising(self, client, recorder, cr_reconciler, make_certificate_request, fake_signer):
        """Test that a new request gets Ready=Unknown before anything else happens."""
        cr = make_certificate_request(ready=None)
        client.add(cr)

        await cr_reconciler.reconcile(cr.key)

        ready = ready_of(await get_stored(client, cr.key))
        assert ready.status == ConditionStatus.UNKNOWN
        assert ready.message == "Initialising"
        assert fake_signer.templates == []
        assert recorder.messages() == ["Normal CertificateRequestReconciler Initialising"]

    async def test_signed(self, client, recorder, cr_reconciler, make_certificate_request, ready_issuer_setup):
        """Test that an approved request for a Ready issuer is signed."""
        cr = make_certificate_request()
        client.add(cr)

        result = await cr_reconciler.reconcile(cr.key)

        assert result == ReconcileResult()
        stored = await get_stored(client, cr.key)
        assert stored.status.certificate == b"fake signed certificate"
        ready = ready_of(stored)
        assert ready.status == ConditionStatus.TRUE
        assert ready.reason == "Issued"
        assert ready.message == "Signed"
        assert stored.status.failure_time is None
        assert recorder.messages() == ["Normal CertificateRequestReconciler Signed"]

    async def test_signer_receives_template(
        self, client, cr_reconciler, make_certificate_request, ready_issuer_setup, fake_signer
    ):
        """Test that the signer gets a template built from the CSR."""
        cr = make_certificate_request()
        cr.spec.duration = timedelta(hours=2)
        cr.spec.usages = ["clientAuth"]
        client.add(cr)

        await cr_reconciler.reconcile(cr.key)

        (template,) = fake_signer.templates
        assert template.duration == timedelta(hours=2)
        assert template.usages == ["clientAuth"]
        assert template.subject.rfc4514_string() == "CN=test.example.com"

    async def test_unknown_issuer_kind(self, client, cr_reconciler, make_certificate_request):
        """Test that an unknown issuer kind fails permanently."""
        cr = make_certificate_request(issuer_kind="ExternalIssuer")
        client.add(cr)

        result = await cr_reconciler.reconcile(cr.key)

        assert result == ReconcileResult()
        stored = await get_stored(client, cr.key)
        ready = ready_of(stored)
        assert ready.status == ConditionStatus.FALSE
        assert ready.reason == "Failed"
        assert "ExternalIssuer" in ready.message
        assert stored.status.failure_time is not None

    async def test_issuer_not_found(self, client, recorder, cr_reconciler, make_certificate_request):
        """Test that a missing issuer is a transient Pending error."""
        cr = make_certificate_request()
        client.add(cr)

        with pytest.raises(IssuerNotFoundError, match="error getting issuer"):
            await cr_reconciler.reconcile(cr.key)

        stored = await get_stored(client, cr.key)
        assert ready_of(stored).status == ConditionStatus.FALSE
        assert ready_of(stored).reason == "Pending"
        assert stored.status.failure_time is None
        assert recorder.events[0].message.startswith("Temporary error. Retrying: error getting issuer")

    async def test_issuer_not_ready(self, client, cr_reconciler, make_certificate_request, make_issuer, make_secret):
        """Test that an issuer without Ready=True blocks signing."""
        client.add(make_issuer(ready=ConditionStatus.FALSE), make_secret())
        cr = make_certificate_request()
        client.add(cr)

        with pytest.raises(IssuerNotReadyError, match="issuer is not ready"):
            await cr_reconciler.reconcile(cr.key)

        assert ready_of(await get_stored(client, cr.key)).reason == "Pending"

    async def test_not_approved_waits(
        self, client, recorder, cr_reconciler, make_certificate_request, ready_issuer_setup, fake_signer
    ):
        """Test that an unapproved request is left alone."""
        cr = make_certificate_request(approved=False)
        client.add(cr)

        result = await cr_reconciler.reconcile(cr.key)

        assert result == ReconcileResult()
        assert fake_signer.templates == []
        assert client.status_updates == 0
        assert recorder.events == []

    async def test_approval_not_required(
        self, client, registry, recorder, clock, make_certificate_request, ready_issuer_setup, fake_signer
    ):
        """Test that approval gating can be switched off."""
        reconciler = CertificateRequestReconciler(
            client=client,
            registry=registry,
            signer_builder=lambda spec, data: fake_signer,
            recorder=recorder,
            require_approved_condition=False,
            clock=clock,
        )
        cr = make_certificate_request(approved=False)
        client.add(cr)

        await reconciler.reconcile(cr.key)

        assert ready_of(await get_stored(client, cr.key)).status == ConditionStatus.TRUE

    async def test_denied(
        self, client, recorder, cr_reconciler, make_certificate_request, ready_issuer_setup, fake_signer, clock
    ):
        """Test that a denied request fails permanently without invoking the signer."""
        cr = make_certificate_request(approved=False, denied=True)
        client.add(cr)

        result = await cr_reconciler.reconcile(cr.key)

        assert result == ReconcileResult()
        stored = await get_stored(client, cr.key)
        ready = ready_of(stored)
        assert ready.status == ConditionStatus.FALSE
        assert ready.reason == "Denied"
        assert stored.status.failure_time == clock()
        assert fake_signer.templates == []
        assert len(recorder.events) == 1
        assert recorder.events[0].type == EventType.WARNING

    async def test_denied_wins_over_approved(
        self, client, cr_reconciler, make_certificate_request, ready_issuer_setup, fake_signer
    ):
        """Test that Denied is checked before Approved."""
        cr = make_certificate_request(approved=True, denied=True)
        client.add(cr)

        await cr_reconciler.reconcile(cr.key)

        assert ready_of(await get_stored(client, cr.key)).reason == "Denied"
        assert fake_signer.templates == []

    async def test_missing_secret(self, client, cr_reconciler, make_certificate_request, make_issuer):
        """Test that a missing issuer Secret is a transient Pending error."""
        client.add(make_issuer(ready=ConditionStatus.TRUE))
        cr = make_certificate_request()
        client.add(cr)

        with pytest.raises(SecretNotFoundError):
            await cr_reconciler.reconcile(cr.key)

        assert ready_of(await get_stored(client, cr.key)).reason == "Pending"

    async def test_invalid_csr(self, client, cr_reconciler, make_certificate_request, ready_issuer_setup):
        """Test that an unparseable CSR fails permanently."""
        cr = make_certificate_request(request=b"garbage")
        client.add(cr)

        await cr_reconciler.reconcile(cr.key)

        stored = await get_stored(client, cr.key)
        assert ready_of(stored).reason == "Failed"
        assert stored.status.failure_time is not None

    async def test_signer_builder_error(
        self, client, registry, recorder, clock, make_certificate_request, ready_issuer_setup
    ):
        """Test that a signer builder failure is Pending with exactly one Warning event."""

        def broken_builder(spec, data):
            raise RuntimeError("simulated signer builder error")

        reconciler = CertificateRequestReconciler(
            client=client, registry=registry, signer_builder=broken_builder, recorder=recorder, clock=clock
        )
        cr = make_certificate_request()
        client.add(cr)

        with pytest.raises(SignerBuilderError, match="failed to build the signer: simulated signer builder error"):
            await reconciler.reconcile(cr.key)

        ready = ready_of(await get_stored(client, cr.key))
        assert ready.status == ConditionStatus.FALSE
        assert ready.reason == "Pending"
        assert recorder.messages() == [
            "Warning CertificateRequestReconciler Temporary error. Retrying: "
            "failed to build the signer: simulated signer builder error"
        ]

    async def test_signing_error(
        self, client, cr_reconciler, make_certificate_request, ready_issuer_setup, fake_signer
    ):
        """Test that a signing failure is transient."""
        fake_signer.error = TimeoutError("backend timeout")
        cr = make_certificate_request()
        client.add(cr)

        with pytest.raises(SigningError, match="failed to sign: backend timeout"):
            await cr_reconciler.reconcile(cr.key)

        stored = await get_stored(client, cr.key)
        assert ready_of(stored).reason == "Pending"
        assert stored.status.certificate is None

    async def test_signer_permanent_error(
        self, client, cr_reconciler, make_certificate_request, ready_issuer_setup, fake_signer
    ):
        """Test that a signer can stop retries with a permanent error."""
        fake_signer.error = PermanentError("certificate request rejected by backend")
        cr = make_certificate_request()
        client.add(cr)

        result = await cr_reconciler.reconcile(cr.key)

        assert result == ReconcileResult()
        stored = await get_stored(client, cr.key)
        assert ready_of(stored).reason == "Failed"
        assert ready_of(stored).message == "certificate request rejected by backend"
        assert stored.status.failure_time is not None

    async def test_max_retry_duration_exceeded(
        self, client, cr_reconciler, make_certificate_request, ready_issuer_setup, fake_signer, clock
    ):
        """Test that signing failures past the retry window fail permanently."""
        fake_signer.error = TimeoutError("backend timeout")
        cr = make_certificate_request(creation_timestamp=clock() - timedelta(minutes=2))
        client.add(cr)

        result = await cr_reconciler.reconcile(cr.key)

        assert result == ReconcileResult()
        stored = await get_stored(client, cr.key)
        ready = ready_of(stored)
        assert ready.reason == "Failed"
        assert "failed to sign: backend timeout" in ready.message
        assert stored.status.failure_time == clock()

    async def test_naive_creation_timestamp_within_window(
        self, client, cr_reconciler, make_certificate_request, ready_issuer_setup, fake_signer
    ):
        """Test that a timestamp without timezone is read as UTC and still retried."""
        fake_signer.error = TimeoutError("backend timeout")
        cr = make_certificate_request(creation_timestamp=datetime(2021, 1, 1, 0, 59, 30))
        client.add(cr)

        with pytest.raises(SigningError, match="failed to sign: backend timeout"):
            await cr_reconciler.reconcile(cr.key)

        assert ready_of(await get_stored(client, cr.key)).reason == "Pending"

    async def test_naive_creation_timestamp_past_window(
        self, client, cr_reconciler, make_certificate_request, ready_issuer_setup, fake_signer, clock
    ):
        """Test that an old timestamp without timezone still ends retries."""
        fake_signer.error = TimeoutError("backend timeout")
        cr = make_certificate_request(creation_timestamp=datetime(2021, 1, 1, 0, 30))
        client.add(cr)

        await cr_reconciler.reconcile(cr.key)

        stored = await get_stored(client, cr.key)
        assert ready_of(stored).reason == "Failed"
        assert stored.status.failure_time == clock()
        assert stored.metadata.creation_timestamp.tzinfo is not None

    async def test_retry_window_not_applied_before_signing(
        self, client, cr_reconciler, make_certificate_request, make_issuer, make_secret, clock
    ):
        """Test that an old request waiting for its issuer keeps retrying."""
        client.add(make_issuer(ready=ConditionStatus.FALSE), make_secret())
        cr = make_certificate_request(creation_timestamp=clock() - timedelta(hours=1))
        client.add(cr)

        with pytest.raises(IssuerNotReadyError):
            await cr_reconciler.reconcile(cr.key)

        assert (await get_stored(client, cr.key)).status.failure_time is None

    async def test_cluster_issuer(
        self, client, cr_reconciler, make_certificate_request, make_issuer, make_secret
    ):
        """Test signing through a ClusterIssuer with its Secret in the cluster resource namespace."""
        client.add(
            make_issuer(name="cluster1", model=ClusterIssuer, ready=ConditionStatus.TRUE),
            make_secret(namespace=CLUSTER_RESOURCE_NAMESPACE),
        )
        cr = make_certificate_request(issuer_name="cluster1", issuer_kind="ClusterIssuer")
        client.add(cr)

        await cr_reconciler.reconcile(cr.key)

        assert ready_of(await get_stored(client, cr.key)).status == ConditionStatus.TRUE


@pytest.mark.integration
class TestCertificateRequestCommit:
    """Test how status is persisted on the different exit paths."""

    async def test_cancellation_writes_nothing(
        self, client, recorder, cr_reconciler, make_certificate_request, ready_issuer_setup, fake_signer
    ):
        """Test that a reconcile cancelled while signing leaves the store unchanged."""
        fake_signer.release = threading.Event()
        cr = make_certificate_request()
        client.add(cr)
        before = await get_stored(client, cr.key)

        try:
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(cr_reconciler.reconcile(cr.key), timeout=0.1)
        finally:
            fake_signer.release.set()

        after = await get_stored(client, cr.key)
        assert after == before
        assert client.status_updates == 0
        assert recorder.events == []

    async def test_status_write_failure(
        self, client, cr_reconciler, make_certificate_request, ready_issuer_setup, fake_signer, monkeypatch
    ):
        """Test that a failed status write is reported together with the reconcile error."""
        fake_signer.error = TimeoutError("backend timeout")
        cr = make_certificate_request()
        client.add(cr)

        async def failing_update(obj):
            raise ConflictError("the object has been modified")

        monkeypatch.setattr(client, "update_status", failing_update)

        with pytest.raises(AggregateError) as exc_info:
            await cr_reconciler.reconcile(cr.key)

        assert exc_info.value.contains(SigningError)
        assert exc_info.value.contains(ConflictError)

    async def test_unchanged_pending_not_rewritten(
        self, client, recorder, cr_reconciler, make_certificate_request, ready_issuer_setup, fake_signer
    ):
        """Test that repeating the same transient failure writes status only once."""
        fake_signer.error = TimeoutError("backend timeout")
        cr = make_certificate_request()
        client.add(cr)

        for _ in range(3):
            with pytest.raises(SigningError):
                await cr_reconciler.reconcile(cr.key)

        assert client.status_updates == 1
        assert len(recorder.events) == 1

    async def test_retry_after_transient_error_succeeds(
        self, client, recorder, cr_reconciler, make_certificate_request, ready_issuer_setup, fake_signer
    ):
        """Test that a request recovers once the signer works again."""
        fake_signer.error = TimeoutError("backend timeout")
        cr = make_certificate_request()
        client.add(cr)

        with pytest.raises(SigningError):
            await cr_reconciler.reconcile(cr.key)
        fake_signer.error = None
        await cr_reconciler.reconcile(cr.key)

        stored = await get_stored(client, cr.key)
        assert ready_of(stored).status == ConditionStatus.TRUE
        assert [e.type for e in recorder.events] == [EventType.WARNING, EventType.NORMAL]
