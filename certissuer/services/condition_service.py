"""Status condition operations shared by all reconcilers."""

import logging
from datetime import datetime, timezone
from typing import Optional

from certissuer.models.condition import CONDITION_READY, Condition, ConditionStatus

logger = logging.getLogger("certissuer")


class ConditionService:
    """Idempotent get/set over a list of status conditions."""

    @staticmethod
    def get_condition(conditions: list[Condition], condition_type: str) -> Optional[Condition]:
        """
        Find a condition by type.

        Args:
            conditions: Status conditions of a resource
            condition_type: Condition type, e.g. "Ready"

        Returns:
            The stored condition, or None if absent
        """
        for condition in conditions:
            if condition.type == condition_type:
                return condition
        return None

    @staticmethod
    def set_condition(
        conditions: list[Condition],
        condition_type: str,
        status: ConditionStatus,
        reason: str,
        message: str,
        now: Optional[datetime] = None,
    ) -> Condition:
        """
        Add or update a condition in place.

        The transition time is stamped when the condition is added and when its
        status changes value. Reason and message are always overwritten, so
        repeated calls with an unchanged status leave the transition time alone.

        Args:
            conditions: Status conditions of a resource (mutated)
            condition_type: Condition type
            status: New status
            reason: Machine-readable reason
            message: Human-readable message
            now: Transition time to stamp (defaults to current UTC time)

        Returns:
            The stored condition
        """
        if now is None:
            now = datetime.now(timezone.utc)

        condition = ConditionService.get_condition(conditions, condition_type)
        if condition is None:
            condition = Condition(type=condition_type, status=status, last_transition_time=now)
            conditions.append(condition)
        elif condition.status != status:
            logger.debug(f"Condition {condition_type} transitioned {condition.status.value} -> {status.value}")
            condition.status = status
            condition.last_transition_time = now

        condition.reason = reason
        condition.message = message
        return condition

    @staticmethod
    def has_condition(conditions: list[Condition], condition_type: str, status: ConditionStatus) -> bool:
        """Return True if a condition of the given type has the given status."""
        condition = ConditionService.get_condition(conditions, condition_type)
        return condition is not None and condition.status == status

    @staticmethod
    def is_ready(conditions: list[Condition]) -> bool:
        """Return True if the Ready condition is present and True."""
        return ConditionService.has_condition(conditions, CONDITION_READY, ConditionStatus.TRUE)
