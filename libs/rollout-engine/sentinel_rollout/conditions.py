"""Helpers for status condition lists."""

from datetime import datetime, timezone
from typing import Any, Optional

from .models import Condition

# Condition types shared by revisions, phase objects and deployments.
AVAILABLE = "Available"
PAUSED = "Paused"
ARCHIVED = "Archived"
# Set once, after a revision became Available for the first time.
SUCCEEDED = "Succeeded"
PROGRESSING = "Progressing"

TRUE = "True"
FALSE = "False"


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def find_condition(
    conditions: list[dict[str, Any]], condition_type: str
) -> Optional[dict[str, Any]]:
    """Return the condition with the given type, or None."""
    for condition in conditions:
        if condition.get("type") == condition_type:
            return condition
    return None


def is_condition_true(conditions: list[dict[str, Any]], condition_type: str) -> bool:
    condition = find_condition(conditions, condition_type)
    return condition is not None and condition.get("status") == TRUE


def is_condition_true_at(
    conditions: list[dict[str, Any]], condition_type: str, generation: int
) -> bool:
    """True if the condition is set to True and was observed at ``generation``."""
    condition = find_condition(conditions, condition_type)
    return (
        condition is not None
        and condition.get("status") == TRUE
        and int(condition.get("observedGeneration") or 0) == generation
    )


def set_condition(
    conditions: list[dict[str, Any]],
    condition_type: str,
    status: str,
    reason: str,
    message: str,
    observed_generation: int = 0,
) -> None:
    """
    Add or update a condition in place.

    lastTransitionTime only moves when the status flips.
    """
    existing = find_condition(conditions, condition_type)
    if existing is None:
        condition = Condition(
            type=condition_type,
            status=status,
            reason=reason,
            message=message,
            observed_generation=observed_generation,
            last_transition_time=_now(),
        )
        conditions.append(condition.to_dict())
        return

    if existing.get("status") != status:
        existing["status"] = status
        existing["lastTransitionTime"] = _now()
    existing["reason"] = reason
    existing["message"] = message
    existing["observedGeneration"] = observed_generation


def remove_condition(conditions: list[dict[str, Any]], condition_type: str) -> None:
    conditions[:] = [c for c in conditions if c.get("type") != condition_type]
