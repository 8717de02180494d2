"""Reconciler that signs CertificateRequests referencing our issuers."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Type

from certissuer.errors import (
    IssuerNotFoundError,
    IssuerNotReadyError,
    MaxRetryDurationExceededError,
    PermanentError,
    RequestDeniedError,
    ResourceNotFoundError,
    SecretNotFoundError,
    SignerBuilderError,
    SigningError,
    failure_reason,
)
from certissuer.models.certificate_request import CertificateRequest, CertificateRequestReason
from certissuer.models.condition import (
    CONDITION_APPROVED,
    CONDITION_DENIED,
    CONDITION_READY,
    Condition,
    ConditionStatus,
)
from certissuer.models.event import ReconcileResult
from certissuer.models.issuer import IssuerBase, IssuerScope
from certissuer.models.meta import NamespacedName
from certissuer.models.secret import Secret
from certissuer.services.condition_service import ConditionService
from certissuer.services.event_recorder import EventRecorder
from certissuer.services.registry import IssuerRegistry, resolver_for_scope
from certissuer.services.resource_client import ResourceClient
from certissuer.services.status_commit import StatusCommit
from certissuer.signer.interfaces import SignerBuilder
from certissuer.signer.template import CertificateTemplate

logger = logging.getLogger("certissuer")

EVENT_REASON = "CertificateRequestReconciler"
DEFAULT_MAX_RETRY_DURATION = timedelta(minutes=1)


class CertificateRequestReconciler:
    """Drives CertificateRequests for our API group to Issued, Denied or Failed."""

    def __init__(
        self,
        client: ResourceClient,
        registry: IssuerRegistry,
        signer_builder: SignerBuilder,
        recorder: EventRecorder,
        cluster_resource_namespace: str = "",
        require_approved_condition: bool = True,
        max_retry_duration: timedelta = DEFAULT_MAX_RETRY_DURATION,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize CertificateRequest reconciler.

        Args:
            client: Resource client
            registry: Issuer kind registry (its group selects the requests we handle)
            signer_builder: Builds a signer from issuer spec and Secret data
            recorder: Event recorder
            cluster_resource_namespace: Namespace holding Secrets of cluster-scoped issuers
            require_approved_condition: Only sign requests with Approved=True
            max_retry_duration: Signing failures are no longer retried once the request is this old
            clock: Clock function returning an aware datetime
        """
        self.client = client
        self.registry = registry
        self.signer_builder = signer_builder
        self.recorder = recorder
        self.cluster_resource_namespace = cluster_resource_namespace
        self.require_approved_condition = require_approved_condition
        self.max_retry_duration = max_retry_duration
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def _set_ready(
        self,
        conditions: list[Condition],
        status: ConditionStatus,
        reason: str,
        message: str,
    ) -> None:
        ConditionService.set_condition(conditions, CONDITION_READY, status, reason, message, now=self.clock())

    async def reconcile(self, key: NamespacedName) -> ReconcileResult:
        """
        Reconcile one CertificateRequest.

        Args:
            key: Namespace and name of the request

        Returns:
            Empty reconcile result

        Raises:
            IssuerNotFoundError: If the referenced issuer does not exist (yet)
            IssuerNotReadyError: If the referenced issuer is not Ready
            SecretNotFoundError: If the issuer's credentials Secret is missing
            SignerBuilderError: If the signer cannot be built
            SigningError: If signing failed
            AggregateError: If writing the status failed as well
        """
        try:
            cr = await self.client.get(CertificateRequest, key)
        except ResourceNotFoundError:
            logger.debug(f'CertificateRequest "{key}" not found, ignoring')
            return ReconcileResult()

        if cr.spec.issuer_ref.group != self.registry.group:
            logger.debug(f'CertificateRequest "{key}" references group {cr.spec.issuer_ref.group!r}, ignoring')
            return ReconcileResult()

        conditions = cr.status.conditions
        if ConditionService.is_ready(conditions):
            logger.debug(f'CertificateRequest "{key}" is already Ready, ignoring')
            return ReconcileResult()
        if cr.status.failure_time is not None:
            logger.debug(f'CertificateRequest "{key}" failed permanently at {cr.status.failure_time}, ignoring')
            return ReconcileResult()

        def on_error(error: Exception, permanent: bool) -> None:
            if permanent:
                if cr.status.failure_time is None:
                    cr.status.failure_time = self.clock()
                reason = failure_reason(error)
            else:
                reason = CertificateRequestReason.PENDING.value
            self._set_ready(conditions, ConditionStatus.FALSE, reason, str(error))

        async with StatusCommit(self.client, self.recorder, cr, conditions, on_error, EVENT_REASON):
            if ConditionService.get_condition(conditions, CONDITION_READY) is None:
                self._set_ready(
                    conditions, ConditionStatus.UNKNOWN, CertificateRequestReason.PENDING.value, "Initialising"
                )
                return ReconcileResult()

            model = self.registry.lookup(cr.spec.issuer_ref.kind)
            issuer = await self._get_issuer(cr, model)

            if self.require_approved_condition:
                if ConditionService.has_condition(conditions, CONDITION_DENIED, ConditionStatus.TRUE):
                    raise RequestDeniedError("The CertificateRequest was denied by an approval controller")
                if not ConditionService.has_condition(conditions, CONDITION_APPROVED, ConditionStatus.TRUE):
                    logger.info(f'CertificateRequest "{key}" has not been approved yet, ignoring')
                    return ReconcileResult()

            secret = await self._get_secret(issuer, model)
            template = CertificateTemplate.from_csr(
                cr.spec.request,
                duration=cr.spec.duration,
                usages=cr.spec.usages,
                is_ca=cr.spec.is_ca,
            )

            cr.status.certificate = await self._sign(cr, issuer, secret, template)
            self._set_ready(conditions, ConditionStatus.TRUE, CertificateRequestReason.ISSUED.value, "Signed")
            logger.info(f'Signed CertificateRequest "{key}"')

        return ReconcileResult()

    async def _get_issuer(self, cr: CertificateRequest, model: Type[IssuerBase]) -> IssuerBase:
        """Fetch the referenced issuer and check that it is Ready."""
        namespace = cr.metadata.namespace if model.scope == IssuerScope.NAMESPACED else ""
        issuer_key = NamespacedName(namespace=namespace, name=cr.spec.issuer_ref.name)
        try:
            issuer = await self.client.get(model, issuer_key)
        except ResourceNotFoundError as e:
            raise IssuerNotFoundError(f"error getting issuer: {e}") from e

        if not ConditionService.is_ready(issuer.status.conditions):
            raise IssuerNotReadyError(f'issuer is not ready: {model.kind} "{issuer_key}"')
        return issuer

    async def _get_secret(self, issuer: IssuerBase, model: Type[IssuerBase]) -> Secret:
        """Fetch the issuer's credentials Secret."""
        resolve = resolver_for_scope(model.scope, self.cluster_resource_namespace)
        secret_key = NamespacedName(namespace=resolve(issuer), name=issuer.spec.auth_secret_name)
        try:
            return await self.client.get(Secret, secret_key)
        except ResourceNotFoundError as e:
            raise SecretNotFoundError(
                f"failed to get Secret containing Issuer credentials, secret name: {secret_key}, reason: {e}"
            ) from e

    async def _sign(
        self,
        cr: CertificateRequest,
        issuer: IssuerBase,
        secret: Secret,
        template: CertificateTemplate,
    ) -> bytes:
        """Build the signer and sign, giving up once the retry window has passed."""
        try:
            try:
                signer = await asyncio.to_thread(self.signer_builder, issuer.spec, secret.data)
            except PermanentError:
                raise
            except Exception as e:
                raise SignerBuilderError(f"failed to build the signer: {e}") from e

            try:
                return await asyncio.to_thread(signer.sign, template)
            except PermanentError:
                raise
            except Exception as e:
                raise SigningError(f"failed to sign: {e}") from e
        except (SignerBuilderError, SigningError) as e:
            if self._retry_window_exceeded(cr):
                raise MaxRetryDurationExceededError(
                    f"{e} (giving up after max retry duration {self.max_retry_duration})"
                ) from e
            raise

    def _retry_window_exceeded(self, cr: CertificateRequest) -> bool:
        created = cr.metadata.creation_timestamp
        return created is not None and self.clock() - created >= self.max_retry_duration
