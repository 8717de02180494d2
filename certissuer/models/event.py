"""Event and reconcile result models."""

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from .meta import NamespacedName


class EventType(str, Enum):
    """Event severity."""

    NORMAL = "Normal"
    WARNING = "Warning"


class Event(BaseModel):
    """An event recorded against a reconciled resource."""

    type: EventType
    reason: str
    message: str
    involved_kind: str
    involved_key: NamespacedName
    timestamp: Optional[datetime] = None

    def __str__(self) -> str:
        return f"{self.type.value} {self.reason} {self.message}"


class ReconcileResult(BaseModel):
    """Outcome of a successful reconcile.

    ``requeue_after`` asks the dispatcher to reconcile again after the given
    delay; ``None`` means only re-run on the next change.
    """

    requeue_after: Optional[timedelta] = None
