"""Health reconciler for Issuer and ClusterIssuer resources."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from certissuer.errors import (
    HealthCheckError,
    HealthCheckerBuilderError,
    PermanentError,
    ResourceNotFoundError,
    SecretNotFoundError,
)
from certissuer.models.condition import CONDITION_READY, Condition, ConditionStatus
from certissuer.models.event import ReconcileResult
from certissuer.models.issuer import IssuerBase
from certissuer.models.meta import NamespacedName
from certissuer.models.secret import Secret
from certissuer.services.condition_service import ConditionService
from certissuer.services.event_recorder import EventRecorder
from certissuer.services.registry import IssuerRegistry, NamespaceResolver
from certissuer.services.resource_client import ResourceClient
from certissuer.services.status_commit import StatusCommit
from certissuer.signer.interfaces import HealthCheckerBuilder

logger = logging.getLogger("certissuer")

ISSUER_READY_REASON = "certissuer.IssuerReconciler.Reconcile"
EVENT_REASON = "IssuerReconciler"
DEFAULT_HEALTH_CHECK_INTERVAL = timedelta(minutes=1)


class IssuerReconciler:
    """Keeps the Ready condition of one issuer kind in line with its backend health.

    A healthy issuer is re-checked every ``health_check_interval``.
    """

    def __init__(
        self,
        kind: str,
        client: ResourceClient,
        registry: IssuerRegistry,
        health_checker_builder: HealthCheckerBuilder,
        secret_namespace: NamespaceResolver,
        recorder: EventRecorder,
        health_check_interval: timedelta = DEFAULT_HEALTH_CHECK_INTERVAL,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize issuer reconciler.

        Args:
            kind: Issuer kind reconciled by this instance ("Issuer" or "ClusterIssuer")
            client: Resource client
            registry: Issuer kind registry
            health_checker_builder: Builds a health checker from issuer spec and Secret data
            secret_namespace: Resolves the namespace of the issuer's credentials Secret
            recorder: Event recorder
            health_check_interval: Delay before a healthy issuer is checked again
            clock: Clock function returning an aware datetime
        """
        self.kind = kind
        self.client = client
        self.registry = registry
        self.health_checker_builder = health_checker_builder
        self.secret_namespace = secret_namespace
        self.recorder = recorder
        self.health_check_interval = health_check_interval
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def _set_ready(self, conditions: list[Condition], status: ConditionStatus, message: str) -> None:
        ConditionService.set_condition(
            conditions, CONDITION_READY, status, ISSUER_READY_REASON, message, now=self.clock()
        )

    async def reconcile(self, key: NamespacedName) -> ReconcileResult:
        """
        Reconcile one issuer.

        Args:
            key: Namespace and name of the issuer (empty namespace for cluster-scoped kinds)

        Returns:
            Reconcile result, asking for a re-check when the issuer is healthy

        Raises:
            SecretNotFoundError: If the credentials Secret is missing
            HealthCheckerBuilderError: If the health checker cannot be built
            HealthCheckError: If the health check fails
            AggregateError: If writing the status failed as well
        """
        if self.kind not in self.registry:
            logger.error(f"Issuer kind {self.kind} is not registered for group {self.registry.group}, not retrying")
            return ReconcileResult()

        model = self.registry.lookup(self.kind)
        try:
            issuer = await self.client.get(model, key)
        except ResourceNotFoundError:
            logger.debug(f'{self.kind} "{key}" not found, ignoring')
            return ReconcileResult()

        conditions = issuer.status.conditions

        def on_error(error: Exception, permanent: bool) -> None:
            self._set_ready(conditions, ConditionStatus.FALSE, str(error))

        async with StatusCommit(self.client, self.recorder, issuer, conditions, on_error, EVENT_REASON):
            if ConditionService.get_condition(conditions, CONDITION_READY) is None:
                self._set_ready(conditions, ConditionStatus.UNKNOWN, "First seen")
                return ReconcileResult()

            await self._check(issuer)

            self._set_ready(conditions, ConditionStatus.TRUE, "Success")
            return ReconcileResult(requeue_after=self.health_check_interval)

        # A permanent error was recorded; do not retry
        return ReconcileResult()

    async def _check(self, issuer: IssuerBase) -> None:
        """Fetch the credentials Secret, build the health checker and run it."""
        secret_key = NamespacedName(namespace=self.secret_namespace(issuer), name=issuer.spec.auth_secret_name)
        try:
            secret = await self.client.get(Secret, secret_key)
        except ResourceNotFoundError as e:
            raise SecretNotFoundError(
                f"failed to get Secret containing Issuer credentials, secret name: {secret_key}, reason: {e}"
            ) from e

        try:
            checker = await asyncio.to_thread(self.health_checker_builder, issuer.spec, secret.data)
        except PermanentError:
            raise
        except Exception as e:
            raise HealthCheckerBuilderError(f"failed to build the healthchecker: {e}") from e

        try:
            await asyncio.to_thread(checker.check)
        except PermanentError:
            raise
        except Exception as e:
            raise HealthCheckError(f"healthcheck failed: {e}") from e
