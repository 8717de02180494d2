"""Status condition models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class ConditionStatus(str, Enum):
    """Tri-state condition status."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


# Condition types
CONDITION_READY = "Ready"
CONDITION_APPROVED = "Approved"
CONDITION_DENIED = "Denied"


class Condition(BaseModel):
    """A single status condition.

    ``last_transition_time`` only moves when ``status`` changes value.
    """

    type: str
    status: ConditionStatus
    reason: str = ""
    message: str = ""
    last_transition_time: Optional[datetime] = None
