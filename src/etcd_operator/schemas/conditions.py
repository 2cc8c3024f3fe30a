"""Helpers for the status condition list."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import List, Optional

from etcd_operator.schemas.cluster import Condition


def utcnow() -> datetime:
    return datetime.now(UTC).replace(microsecond=0)


def get_condition(conditions: List[Condition], condition_type: str) -> Optional[Condition]:
    for condition in conditions:
        if condition.type == condition_type:
            return condition
    return None


def set_condition(
    conditions: List[Condition],
    condition_type: str,
    status: bool,
    reason: str,
    message: str = "",
    now: Optional[datetime] = None,
) -> None:
    """Record a condition.

    A condition of the same type whose status and reason are unchanged only
    has its timestamp refreshed; otherwise it is replaced. Conditions are
    never removed.
    """
    now = now or utcnow()
    value = "True" if status else "False"
    for index, existing in enumerate(conditions):
        if existing.type != condition_type:
            continue
        if existing.status == value and existing.reason == reason:
            existing.last_transition_time = now
        else:
            conditions[index] = Condition(
                type=condition_type,
                status=value,
                reason=reason,
                message=message,
                last_transition_time=now,
            )
        return
    conditions.append(
        Condition(
            type=condition_type,
            status=value,
            reason=reason,
            message=message,
            last_transition_time=now,
        )
    )


def is_condition_true(conditions: List[Condition], condition_type: str) -> bool:
    condition = get_condition(conditions, condition_type)
    return condition is not None and condition.status == "True"
