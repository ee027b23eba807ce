"""Utilities for managing Kubernetes conditions."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from ..constants import (
    COND_NOT_READY,
    COND_READY,
    REASON_FAILED,
    REASON_SUCCEEDED,
)

READY_MESSAGE = "Reconcilation Succeded"


def _now() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def new_condition(
    condition_type: str,
    status: str,
    reason: str,
    message: str,
    observed_generation: int | None = None,
) -> dict[str, Any]:
    """Build a single condition.

    Args:
        condition_type: Type of condition ("Ready" or "NotReady")
        status: Status of condition ("True", "False", "Unknown")
        reason: Reason for the condition
        message: Human-readable message
        observed_generation: Generation of the resource the condition was computed for

    Returns:
        Condition dictionary stamped with the current time
    """
    condition = {
        "type": condition_type,
        "status": status,
        "reason": reason,
        "message": message,
        "lastTransitionTime": _now(),
    }

    if observed_generation is not None:
        condition["observedGeneration"] = observed_generation

    return condition


def new_ready_condition(
    message: str = READY_MESSAGE,
    reason: str = REASON_SUCCEEDED,
    observed_generation: int | None = None,
) -> dict[str, Any]:
    """Build a Ready condition."""
    return new_condition(COND_READY, "True", reason, message, observed_generation)


def new_not_ready_condition(
    message: str,
    reason: str = REASON_FAILED,
    observed_generation: int | None = None,
) -> dict[str, Any]:
    """Build a NotReady condition."""
    return new_condition(COND_NOT_READY, "False", reason, message, observed_generation)


def is_ready(condition: dict[str, Any] | None) -> bool:
    return bool(condition) and condition.get("type") == COND_READY and condition.get("status") == "True"


def transition_condition(
    previous: dict[str, Any] | None,
    condition: dict[str, Any],
) -> dict[str, Any]:
    """Carry the previous transition time over when nothing observable changed.

    Args:
        previous: Condition currently recorded in status
        condition: Newly computed condition

    Returns:
        The condition to record
    """
    if not previous:
        return condition

    if previous.get("type") == condition["type"] and previous.get("status") == condition["status"]:
        return {**condition, "lastTransitionTime": previous.get("lastTransitionTime", condition["lastTransitionTime"])}

    return condition
