"""Revision (ObjectSet) controller."""

import logging
from typing import Optional

from . import conditions as cond
from .adapters import (
    CACHE_FINALIZER,
    NAMESPACED,
    REASON_MISSING_DEPENDENCY,
    PhaseObjectAdapter,
    RevisionAdapter,
    RevisionKinds,
    paused_for_dicts,
)
from .applier import ObjectApplier
from .config import Settings, get_settings
from .document import Document, GroupVersionKind, ObjectKey
from .errors import MalformedObjectError, NotFoundError, TemplateError
from .finalizers import ensure_finalizer, handle_deletion
from .models import ObjectPhase
from .ownership import set_controller_reference
from .phases import PhaseReconciler, teardown_phase
from .probing import parse_probes
from .reconcile import Result, run_chain
from .store.base import ClusterStore
from .watcher import WatchMultiplexer

logger = logging.getLogger(__name__)

NO_STATUS_REPORTED = "no status reported"


def phase_object_name(revision: Document, phase: ObjectPhase) -> str:
    return f"{revision.name}-{phase.name}"


class TeardownHandler:
    """Tears the phases of a revision down in reverse order."""

    def __init__(self, store: ClusterStore, kinds: RevisionKinds):
        self.store = store
        self.kinds = kinds

    async def teardown(self, revision: RevisionAdapter) -> bool:
        """
        Tear down the next phase that still has members.

        A phase is only started once every later phase is gone.

        Returns:
            True when every phase is torn down
        """
        for phase in reversed(revision.phases):
            if phase.class_:
                done = await self._teardown_delegated(revision, phase)
            else:
                done = await teardown_phase(self.store, revision, phase)
            if not done:
                logger.debug(f"Waiting for teardown of phase {phase.name} of {revision.doc.key}")
                return False
        return True

    async def _teardown_delegated(self, revision: RevisionAdapter, phase: ObjectPhase) -> bool:
        rev = revision.doc
        try:
            existing = await self.store.get(
                self.kinds.phase, rev.namespace, phase_object_name(rev, phase)
            )
        except NotFoundError:
            return True

        phase_object = PhaseObjectAdapter(existing)
        wanted = paused_for_dicts(revision.spec_paused_for)
        if paused_for_dicts(phase_object.status_paused_for) != wanted:
            # paused objects have to be acknowledged before deletion
            if paused_for_dicts(phase_object.spec_paused_for) != wanted:
                phase_object.set_spec_paused_for(revision.spec_paused_for)
                await self.store.update(existing)
            return False

        try:
            await self.store.delete(existing)
        except NotFoundError:
            return True
        logger.info(f"Deleted {existing.kind} {existing.key}")
        return False


class DelegatedPauseHandler:
    """
    Hands pausedFor and the paused lifecycle down to existing phase objects.

    A revision may only acknowledge its pausedFor list once every phase
    object it already created has acknowledged the same list.
    """

    def __init__(self, store: ClusterStore, kinds: RevisionKinds):
        self.store = store
        self.kinds = kinds

    async def propagate(self, revision: RevisionAdapter) -> bool:
        """
        Update every existing phase object of the revision.

        Returns:
            True if all existing phase objects acknowledged the revision's pausedFor
        """
        rev = revision.doc
        wanted = paused_for_dicts(revision.spec_paused_for)
        acknowledged = True
        for phase in revision.phases:
            if not phase.class_:
                continue
            try:
                existing = await self.store.get(
                    self.kinds.phase, rev.namespace, phase_object_name(rev, phase)
                )
            except NotFoundError:
                continue

            phase_object = PhaseObjectAdapter(existing)
            if (
                paused_for_dicts(phase_object.spec_paused_for) != wanted
                or phase_object.is_paused() != revision.is_paused()
            ):
                phase_object.set_spec_paused_for(revision.spec_paused_for)
                phase_object.set_paused(revision.is_paused())
                await self.store.update(existing)
                logger.info(f"Updated paused objects of {existing.kind} {existing.key}")

            if paused_for_dicts(phase_object.status_paused_for) != wanted:
                acknowledged = False
        return acknowledged


class ArchivedReconciler:
    """Tears down archived revisions."""

    def __init__(
        self, teardown: TeardownHandler, watcher: WatchMultiplexer, settings: Settings
    ):
        self.teardown = teardown
        self.watcher = watcher
        self.settings = settings

    async def reconcile(self, revision: RevisionAdapter) -> Result:
        if not revision.is_archived():
            return Result()

        done = await self.teardown.teardown(revision)
        revision.remove_condition(cond.PAUSED)
        revision.remove_condition(cond.AVAILABLE)
        if not done:
            revision.set_condition(
                cond.ARCHIVED, cond.FALSE, "TearingDown", "ObjectSet is tearing down."
            )
            return Result(requeue_after=self.settings.teardown_requeue_seconds)

        if not cond.is_condition_true(revision.conditions, cond.ARCHIVED):
            logger.info(f"Archived {revision.doc.kind} {revision.doc.key}")
        revision.set_condition(cond.ARCHIVED, cond.TRUE, "Archived", "ObjectSet is archived.")
        self.watcher.free(revision.doc)
        return Result()


class DependencyReconciler:
    """Holds revisions back until every API they depend on is served."""

    def __init__(self, store: ClusterStore, settings: Settings):
        self.store = store
        self.settings = settings

    async def reconcile(self, revision: RevisionAdapter) -> Result:
        if revision.is_archived():
            return Result()

        missing = []
        for dependency in revision.dependencies:
            api = dependency.kubernetes_api
            if api is None:
                continue
            gvk = GroupVersionKind(api.group, api.version, api.kind)
            if not await self.store.has_api(gvk):
                missing.append(str(gvk))

        if not missing:
            return Result()

        revision.set_condition(
            cond.AVAILABLE,
            cond.FALSE,
            REASON_MISSING_DEPENDENCY,
            f"Missing objects in kubernetes API: {', '.join(missing)}",
        )
        return Result(requeue_after=self.settings.dependency_requeue_seconds)


class PauseReconciler:
    """Reports the Paused lifecycle state as a condition."""

    async def reconcile(self, revision: RevisionAdapter) -> Result:
        if revision.is_paused():
            revision.set_condition(
                cond.PAUSED, cond.TRUE, "Paused", "Lifecycle state set to paused."
            )
        else:
            revision.remove_condition(cond.PAUSED)
        return Result()


class PhaseWalker:
    """
    Walks the phases of a revision in order.

    Stops at the first phase with failing probes. Phases declaring a class
    are delegated to phase objects reconciled by another controller.
    """

    def __init__(
        self,
        store: ClusterStore,
        kinds: RevisionKinds,
        phase_reconciler: PhaseReconciler,
    ):
        self.store = store
        self.kinds = kinds
        self.phase_reconciler = phase_reconciler

    async def reconcile(self, revision: RevisionAdapter) -> Result:
        if revision.is_archived():
            return Result()

        probe = parse_probes(revision.readiness_probes)
        for phase in revision.phases:
            if phase.class_:
                failed = await self._reconcile_delegated(revision, phase)
            else:
                failed = await self.phase_reconciler.reconcile(revision, phase, probe)

            if failed:
                revision.set_condition(
                    cond.AVAILABLE,
                    cond.FALSE,
                    "ProbeFailure",
                    f'Phase "{phase.name}" failed: {", ".join(failed)}',
                )
                return Result()

        if not cond.is_condition_true(revision.conditions, cond.SUCCEEDED):
            logger.info(f"{revision.doc.kind} {revision.doc.key} is available for the first time")
            revision.set_condition(
                cond.SUCCEEDED,
                cond.TRUE,
                "AvailableOnce",
                "Object was available once and passed all probes.",
            )

        revision.remove_condition(cond.ARCHIVED)
        revision.set_condition(
            cond.AVAILABLE, cond.TRUE, "Available", "Object is available and passes all probes."
        )
        return Result()

    def _desired_phase_object(self, revision: RevisionAdapter, phase: ObjectPhase) -> Document:
        rev = revision.doc
        doc = Document(
            {
                "apiVersion": self.kinds.phase.api_version,
                "kind": self.kinds.phase.kind,
                "metadata": {"name": phase_object_name(rev, phase)},
                "spec": {},
            }
        )
        doc.namespace = rev.namespace
        doc.annotations = rev.annotations
        doc.labels = rev.labels

        phase_object = PhaseObjectAdapter(doc)
        phase_object.set_phase(phase)
        phase_object.set_readiness_probes(revision.readiness_probes)
        phase_object.set_spec_paused_for(revision.spec_paused_for)
        phase_object.set_paused(revision.is_paused())
        set_controller_reference(rev, doc)
        return doc

    async def _reconcile_delegated(
        self, revision: RevisionAdapter, phase: ObjectPhase
    ) -> list[str]:
        desired = self._desired_phase_object(revision, phase)
        try:
            existing = await self.store.get(self.kinds.phase, desired.namespace, desired.name)
        except NotFoundError:
            await self.store.create(desired)
            logger.info(f"Created {desired.kind} {desired.key}")
            return [NO_STATUS_REPORTED]

        phase_object = PhaseObjectAdapter(existing)
        available = cond.find_condition(phase_object.conditions, cond.AVAILABLE)
        if available is None or int(available.get("observedGeneration") or 0) != existing.generation:
            return [NO_STATUS_REPORTED]
        if available.get("status") == cond.TRUE:
            return []
        return [available.get("message", "")]


class RevisionController:
    """
    Reconciles revisions of one scope.

    The chain is: archival teardown, dependency gate, pause condition,
    phase walk. Status is published after every pass.
    """

    def __init__(
        self,
        store: ClusterStore,
        watcher: WatchMultiplexer,
        kinds: RevisionKinds = NAMESPACED,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize the controller.

        Args:
            store: Cluster store
            watcher: Watch multiplexer shared by all controllers
            kinds: Namespaced or cluster scoped kinds
            settings: Engine settings
        """
        self.store = store
        self.watcher = watcher
        self.kinds = kinds
        self.settings = settings or get_settings()

        phase_reconciler = PhaseReconciler(ObjectApplier(store, watcher))
        self.teardown_handler = TeardownHandler(store, kinds)
        self.pause_handler = DelegatedPauseHandler(store, kinds)
        self.reconcilers = [
            ArchivedReconciler(self.teardown_handler, watcher, self.settings),
            DependencyReconciler(store, self.settings),
            PauseReconciler(),
            PhaseWalker(store, kinds, phase_reconciler),
        ]

    async def reconcile(self, key: ObjectKey) -> Result:
        """
        Reconcile one revision.

        Args:
            key: Namespace and name of the revision

        Returns:
            When to reconcile again

        Raises:
            StoreError: If a store call fails
            MalformedObjectError: If a member object spec does not parse
            TemplateError: If the revision spec is invalid
        """
        try:
            doc = await self.store.get(self.kinds.revision, key.namespace, key.name)
        except NotFoundError:
            return Result()

        revision = RevisionAdapter(doc)
        if doc.deletion_timestamp:
            return await self._handle_deletion(revision)

        await ensure_finalizer(self.store, doc, CACHE_FINALIZER)

        try:
            acknowledged = await self.pause_handler.propagate(revision)
            result = await run_chain(self.reconcilers, revision)
        except (MalformedObjectError, TemplateError) as e:
            revision.set_condition(cond.AVAILABLE, cond.FALSE, "InvalidObject", str(e))
            revision.update_phase()
            await self.store.update_status(doc)
            raise

        if acknowledged:
            # acknowledge the paused objects this pass honored
            revision.set_status_paused_for(revision.spec_paused_for)
        revision.update_phase()
        await self.store.update_status(doc)
        return result

    async def _handle_deletion(self, revision: RevisionAdapter) -> Result:
        if not await self.teardown_handler.teardown(revision):
            return Result(requeue_after=self.settings.teardown_requeue_seconds)

        await handle_deletion(self.store, revision.doc, self.watcher, CACHE_FINALIZER)
        return Result()
