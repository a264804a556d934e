"""Reconcile results and reconciler chaining."""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Protocol, Sequence


@dataclass(frozen=True)
class Result:
    """
    Outcome of a reconcile pass.

    ``requeue_after`` schedules the next pass after a delay, ``requeue``
    without a delay asks for an immediate (rate limited) retry.
    """

    requeue: bool = False
    requeue_after: Optional[float] = None

    def is_zero(self) -> bool:
        return not self.requeue and not self.requeue_after


@dataclass(frozen=True)
class Request:
    """Identifies the object a reconcile pass is about."""

    group: str
    kind: str
    namespace: str
    name: str

    def __str__(self) -> str:
        if not self.namespace:
            return f"{self.kind}/{self.name}"
        return f"{self.kind}/{self.namespace}/{self.name}"


class SubReconciler(Protocol):
    """One step of a controller's reconcile chain."""

    async def reconcile(self, obj: Any) -> Result: ...


async def run_chain(
    steps: Sequence[SubReconciler | Callable[[Any], Awaitable[Result]]], obj: Any
) -> Result:
    """
    Run reconcile steps in order.

    The chain stops at the first step asking for a requeue and returns its
    result.

    Args:
        steps: Sub-reconcilers or coroutine functions taking the object
        obj: Object being reconciled

    Returns:
        First non-empty result, or an empty result
    """
    for step in steps:
        if hasattr(step, "reconcile"):
            result = await step.reconcile(obj)
        else:
            result = await step(obj)
        if not result.is_zero():
            return result
    return Result()
