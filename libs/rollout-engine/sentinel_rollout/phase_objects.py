"""Controller for delegated phase objects (ObjectSetPhase)."""

import logging
from typing import Optional

from . import conditions as cond
from .adapters import CACHE_FINALIZER, NAMESPACED, PhaseObjectAdapter, RevisionKinds
from .applier import ObjectApplier
from .config import Settings, get_settings
from .document import ObjectKey
from .errors import MalformedObjectError, NotFoundError, TemplateError
from .finalizers import ensure_finalizer, handle_deletion
from .phases import PhaseReconciler, teardown_phase
from .probing import parse_probes
from .reconcile import Result
from .store.base import ClusterStore
from .watcher import WatchMultiplexer

logger = logging.getLogger(__name__)


class RevisionPhaseController:
    """Reconciles the phase objects of one class on behalf of their revision."""

    def __init__(
        self,
        store: ClusterStore,
        watcher: WatchMultiplexer,
        kinds: RevisionKinds = NAMESPACED,
        settings: Optional[Settings] = None,
        phase_class: Optional[str] = None,
    ):
        """
        Initialize the controller.

        Args:
            store: Cluster store
            watcher: Watch multiplexer shared by all controllers
            kinds: Namespaced or cluster scoped kinds
            settings: Engine settings
            phase_class: Class served by this controller, defaults to the configured one
        """
        self.store = store
        self.watcher = watcher
        self.kinds = kinds
        self.settings = settings or get_settings()
        self.phase_class = phase_class or self.settings.phase_class
        self.phase_reconciler = PhaseReconciler(ObjectApplier(store, watcher))

    async def reconcile(self, key: ObjectKey) -> Result:
        try:
            doc = await self.store.get(self.kinds.phase, key.namespace, key.name)
        except NotFoundError:
            return Result()

        phase_object = PhaseObjectAdapter(doc)
        if phase_object.phase_class != self.phase_class:
            return Result()

        if doc.deletion_timestamp:
            if not await teardown_phase(self.store, phase_object, phase_object.phase):
                return Result(requeue_after=self.settings.teardown_requeue_seconds)
            await handle_deletion(self.store, doc, self.watcher, CACHE_FINALIZER)
            return Result()

        await ensure_finalizer(self.store, doc, CACHE_FINALIZER)

        try:
            phase = phase_object.phase
            probe = parse_probes(phase_object.readiness_probes)
            failed = await self.phase_reconciler.reconcile(phase_object, phase, probe)
        except (MalformedObjectError, TemplateError) as e:
            phase_object.set_condition(cond.AVAILABLE, cond.FALSE, "InvalidObject", str(e))
            await self.store.update_status(doc)
            raise

        if failed:
            phase_object.set_condition(
                cond.AVAILABLE,
                cond.FALSE,
                "ProbeFailure",
                f'Phase "{phase.name}" failed: {", ".join(failed)}',
            )
        else:
            phase_object.set_condition(
                cond.AVAILABLE,
                cond.TRUE,
                "Available",
                "Object is available and passes all probes.",
            )

        phase_object.set_status_paused_for(phase_object.spec_paused_for)
        await self.store.update_status(doc)
        return Result()
