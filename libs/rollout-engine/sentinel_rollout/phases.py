"""Reconciliation and teardown of a single phase."""

import logging

from .adapters import PausingOwner
from .applier import ObjectApplier
from .document import Document
from .errors import NotFoundError
from .models import ObjectPhase
from .probing import Probe
from .store.base import ClusterStore

logger = logging.getLogger(__name__)


def describe(obj: Document) -> str:
    """Human readable identity used in probe failure messages."""
    kind = " ".join(part for part in (obj.gvk.group, obj.kind) if part)
    return f"{kind} {obj.namespace}/{obj.name}"


class PhaseReconciler:
    """Applies the members of a phase and probes them."""

    def __init__(self, applier: ObjectApplier):
        self.applier = applier

    async def reconcile(
        self, owner: PausingOwner, phase: ObjectPhase, probe: Probe
    ) -> list[str]:
        """
        Apply every member of the phase in declared order.

        Args:
            owner: Revision or phase object owning the members
            phase: Phase to reconcile
            probe: Readiness probe evaluated on every member

        Returns:
            One message per member failing its probe, empty if the phase is ready

        Raises:
            MalformedObjectError: If a member object spec does not parse
            StoreError: If applying a member fails
        """
        failed = []
        for phase_object in phase.objects:
            obj = Document.from_spec(phase_object.object)
            obj = await self.applier.apply(owner, obj)

            success, message = probe.probe(obj)
            if not success:
                failed.append(f"{describe(obj)}: {message}")
        return failed


async def teardown_phase(
    store: ClusterStore, owner: PausingOwner, phase: ObjectPhase
) -> bool:
    """
    Delete every member of a phase that is not paused.

    Args:
        store: Cluster store
        owner: Revision or phase object owning the members
        phase: Phase to tear down

    Returns:
        True once every non-paused member is confirmed gone
    """
    to_cleanup = 0
    cleaned = 0
    for phase_object in phase.objects:
        obj = Document.from_spec(phase_object.object)
        if not obj.namespace:
            obj.namespace = owner.doc.namespace

        if owner.is_object_paused(obj):
            continue
        to_cleanup += 1

        try:
            await store.delete(obj)
        except NotFoundError:
            cleaned += 1
            continue
        logger.info(f"Deleted {obj.kind} {obj.key} of phase {phase.name}")

    return cleaned == to_cleanup
