"""Scoped persistence of the Ready condition."""

import logging
from typing import Callable, Optional

from certissuer.errors import AggregateError, is_permanent
from certissuer.models.condition import CONDITION_READY, Condition, ConditionStatus
from certissuer.models.event import EventType
from certissuer.models.meta import Resource
from certissuer.services.condition_service import ConditionService
from certissuer.services.event_recorder import EventRecorder
from certissuer.services.resource_client import ResourceClient

logger = logging.getLogger("certissuer")

# Records a reconcile error in the resource status: on_error(error, permanent)
ErrorHandler = Callable[[Exception, bool], None]


class StatusCommit:
    """Persist status changes when a reconcile block exits.

    Usage::

        async with StatusCommit(client, recorder, obj, obj.status.conditions, on_error, "IssuerReconciler"):
            ...  # mutate obj.status, or raise

    On exit the Ready condition is compared with its value on entry. If its
    status or reason changed the status is written through the client and one
    event is recorded. Exceptions are handed to ``on_error`` first; permanent
    errors are then suppressed and transient ones propagate. Cancellation
    (``asyncio.CancelledError`` and other non-``Exception`` exits) writes nothing.
    """

    def __init__(
        self,
        client: ResourceClient,
        recorder: EventRecorder,
        obj: Resource,
        conditions: list[Condition],
        on_error: ErrorHandler,
        event_reason: str,
    ):
        self.client = client
        self.recorder = recorder
        self.obj = obj
        self.conditions = conditions
        self.on_error = on_error
        self.event_reason = event_reason
        self._initial: Optional[tuple[ConditionStatus, str]] = None

    def _ready_state(self) -> Optional[tuple[ConditionStatus, str]]:
        ready = ConditionService.get_condition(self.conditions, CONDITION_READY)
        if ready is None:
            return None
        return ready.status, ready.reason

    async def __aenter__(self) -> "StatusCommit":
        self._initial = self._ready_state()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc is not None and not isinstance(exc, Exception):
            logger.debug(f'Reconcile of {self.obj.kind} "{self.obj.key}" interrupted, status not written')
            return False

        permanent = False
        if exc is not None:
            permanent = is_permanent(exc)
            self.on_error(exc, permanent)
            if permanent:
                logger.warning(f'{self.obj.kind} "{self.obj.key}" failed permanently: {exc}')
            else:
                logger.info(f'{self.obj.kind} "{self.obj.key}" will be retried: {exc}')

        if self._ready_state() == self._initial:
            return permanent

        try:
            await self.client.update_status(self.obj)
        except Exception as update_err:
            logger.error(f'Failed to update status of {self.obj.kind} "{self.obj.key}": {update_err}')
            raise AggregateError([exc, update_err]) from update_err

        ready = ConditionService.get_condition(self.conditions, CONDITION_READY)
        if exc is not None or ready.status == ConditionStatus.FALSE:
            event_type = EventType.WARNING
        else:
            event_type = EventType.NORMAL

        if exc is not None and not permanent:
            message = f"Temporary error. Retrying: {exc}"
        else:
            message = ready.message
        self.recorder.event(self.obj, event_type, self.event_reason, message)

        return permanent
