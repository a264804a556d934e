"""Deployment (ObjectDeployment) rollout controller."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import cmp_to_key
from typing import Optional

from . import conditions as cond
from .adapters import (
    HASH_ANNOTATION,
    NAMESPACED,
    REVISION_ANNOTATION,
    DeploymentAdapter,
    RevisionAdapter,
    RevisionKinds,
    paused_for_dicts,
    paused_objects_from_phases,
)
from .config import Settings, get_settings
from .document import Document, ObjectKey
from .equality import deep_derivative
from .errors import AlreadyExistsError, MalformedObjectError, NotFoundError, TemplateError
from .hashing import compute_hash
from .ownership import is_controlled_by, set_controller_reference
from .reconcile import Result, run_chain
from .store.base import ClusterStore

logger = logging.getLogger(__name__)


def _parse_time(value: str) -> datetime:
    if not value:
        return datetime.min.replace(tzinfo=timezone.utc)
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _compare_revisions(a: RevisionAdapter, b: RevisionAdapter) -> int:
    ordinal_a, ordinal_b = a.revision_ordinal, b.revision_ordinal
    if ordinal_a is None or ordinal_b is None:
        # creation time only orders pairs where an ordinal is missing
        time_a = _parse_time(a.doc.creation_timestamp)
        time_b = _parse_time(b.doc.creation_timestamp)
        return (time_a > time_b) - (time_a < time_b)
    return (ordinal_a > ordinal_b) - (ordinal_a < ordinal_b)


def sort_by_revision(revisions: list[RevisionAdapter]) -> list[RevisionAdapter]:
    """Sort revisions oldest first."""
    return sorted(revisions, key=cmp_to_key(_compare_revisions))


def _is_archived(revision: RevisionAdapter) -> bool:
    return revision.is_archived() or revision.is_archived_status()


@dataclass
class RolloutState:
    """Revisions of a deployment, split by whether they match its template."""

    deployment: DeploymentAdapter
    current: Optional[RevisionAdapter] = None
    outdated: list[RevisionAdapter] = field(default_factory=list)


class HashReconciler:
    """Computes the template hash of a deployment."""

    async def reconcile(self, deployment: DeploymentAdapter) -> Result:
        deployment.template_hash = compute_hash(
            deployment.template, deployment.collision_count
        )
        return Result()


class NewRevisionReconciler:
    """Creates the revision for the current template, resolving hash collisions."""

    def __init__(self, store: ClusterStore, kinds: RevisionKinds):
        self.store = store
        self.kinds = kinds

    async def reconcile(self, state: RolloutState) -> Result:
        if state.current is not None:
            return Result()

        deployment = state.deployment
        ordinals = [r.revision_ordinal for r in state.outdated if r.revision_ordinal is not None]
        latest = max(ordinals, default=0)

        new = self.new_revision(deployment, latest + 1)
        try:
            await self.store.create(new)
        except AlreadyExistsError:
            return await self._handle_conflict(state, new)

        logger.info(
            f"Created revision {new.key} (#{latest + 1}) for {deployment.doc.kind} {deployment.doc.key}"
        )
        state.current = RevisionAdapter(new)
        return Result()

    def new_revision(self, deployment: DeploymentAdapter, ordinal: int) -> Document:
        """Build the revision object for the deployment's current template."""
        dep = deployment.doc
        template = deployment.template
        template_hash = deployment.template_hash

        doc = Document(
            {
                "apiVersion": self.kinds.revision.api_version,
                "kind": self.kinds.revision.kind,
                "metadata": {"name": f"{dep.name}-{template_hash}"},
                "spec": {},
            }
        )
        doc.namespace = dep.namespace
        annotations = dep.annotations
        annotations[HASH_ANNOTATION] = template_hash
        annotations[REVISION_ANNOTATION] = str(ordinal)
        doc.annotations = annotations
        doc.labels = template.metadata.labels

        RevisionAdapter(doc).set_template_spec(template.spec)
        set_controller_reference(dep, doc)
        return doc

    async def _handle_conflict(self, state: RolloutState, new: Document) -> Result:
        deployment = state.deployment
        try:
            conflicting = RevisionAdapter(
                await self.store.get(self.kinds.revision, new.namespace, new.name)
            )
        except NotFoundError:
            # deleted in the meantime, try again
            return Result(requeue=True)

        same_phases = [p.to_dict() for p in conflicting.phases] == [
            p.to_dict() for p in deployment.template.spec.phases
        ]
        if (
            is_controlled_by(deployment.doc, conflicting.doc)
            and same_phases
            and not _is_archived(conflicting)
        ):
            # Created by an earlier pass that listed outdated state.
            logger.debug(f"Revision {new.key} already exists, using it as current")
            state.current = conflicting
            return Result()

        collision_count = (deployment.collision_count or 0) + 1
        deployment.collision_count = collision_count
        logger.info(
            f"Hash collision on revision {new.key}, "
            f"raising collision count of {deployment.doc.key} to {collision_count}"
        )
        return Result(requeue=True)


class DeprecationReconciler:
    """Reports availability and retires outdated revisions."""

    def __init__(self, store: ClusterStore, settings: Settings):
        self.store = store
        self.settings = settings

    async def reconcile(self, state: RolloutState) -> Result:
        deployment = state.deployment
        available = False
        cleanup: list[RevisionAdapter] = []

        if state.current is not None and state.current.is_available():
            # everything older is replaced
            available = True
            cleanup = list(state.outdated)
            deployment.set_condition(
                cond.PROGRESSING, cond.FALSE, "Idle", "Update concluded."
            )
        else:
            for revision in state.outdated:
                if revision.is_available():
                    available = True
                    continue
                cleanup.append(revision)
            deployment.set_condition(
                cond.PROGRESSING, cond.TRUE, "Progressing", "Progressing to a new ObjectSet."
            )

        if not available:
            deployment.set_condition(
                cond.AVAILABLE, cond.FALSE, "ObjectSetUnready", "Latest ObjectSet is not available."
            )
            return Result()

        await self._retire(deployment, cleanup)
        deployment.set_condition(
            cond.AVAILABLE, cond.TRUE, "Available", "At least one revision ObjectSet is Available."
        )
        return Result()

    async def _retire(self, deployment: DeploymentAdapter, cleanup: list[RevisionAdapter]) -> None:
        """Delete the oldest revisions over the history limit, archive the rest."""
        limit = deployment.revision_history_limit
        if limit is None:
            limit = self.settings.default_revision_history_limit

        to_delete = len(cleanup) - limit
        deleted = 0
        for revision in cleanup:
            doc = revision.doc
            if deleted < to_delete:
                deleted += 1
                try:
                    await self.store.delete(doc)
                except NotFoundError:
                    continue
                logger.info(f"Deleted outdated revision {doc.key}")
                continue

            if revision.is_archived():
                continue
            revision.set_archived()
            await self.store.update(doc)
            logger.info(f"Archived outdated revision {doc.key}")


class EnsurePauseReconciler:
    """
    Pauses shared objects on outdated revisions before anything else happens.

    Outdated revisions get every object of the current template listed as
    paused, and the rollout waits until each of them acknowledged that in
    its status. Only then are the current revision and the outdated ones
    handled, so two revisions never reconcile the same object.
    """

    def __init__(
        self,
        store: ClusterStore,
        kinds: RevisionKinds,
        reconcilers: list,
    ):
        self.store = store
        self.kinds = kinds
        self.reconcilers = reconcilers

    async def list_revisions(self, deployment: DeploymentAdapter) -> list[RevisionAdapter]:
        docs = await self.store.list(
            self.kinds.revision,
            namespace=deployment.doc.namespace,
            selector=deployment.selector,
        )
        return sort_by_revision([RevisionAdapter(doc) for doc in docs])

    async def reconcile(self, deployment: DeploymentAdapter) -> Result:
        paused_objects = paused_objects_from_phases(deployment.template.spec.phases)
        paused = paused_for_dicts(paused_objects)

        state = RolloutState(deployment)
        for revision in await self.list_revisions(deployment):
            if not revision.template_hash:
                logger.debug(f"Ignoring revision {revision.doc.key} without hash annotation")
                continue
            if revision.template_hash == deployment.template_hash and not _is_archived(revision):
                state.current = revision
                continue

            state.outdated.append(revision)
            if revision.is_archived_status():
                continue

            if paused_for_dicts(revision.spec_paused_for) != paused:
                revision.set_spec_paused_for(paused_objects)
                await self.store.update(revision.doc)
                logger.info(f"Pausing template objects on outdated revision {revision.doc.key}")

            if not deep_derivative(paused, paused_for_dicts(revision.status_paused_for)):
                logger.warning(
                    f"Waiting for outdated revision {revision.doc.key} to acknowledge paused objects"
                )
                return Result()

        for reconciler in self.reconcilers:
            result = await reconciler.reconcile(state)
            if not result.is_zero():
                return result
        return Result()


class DeploymentController:
    """Rolls deployments of one scope out into revisions."""

    def __init__(
        self,
        store: ClusterStore,
        kinds: RevisionKinds = NAMESPACED,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize the controller.

        Args:
            store: Cluster store
            kinds: Namespaced or cluster scoped kinds
            settings: Engine settings
        """
        self.store = store
        self.kinds = kinds
        self.settings = settings or get_settings()
        self.reconcilers = [
            HashReconciler(),
            EnsurePauseReconciler(
                store,
                kinds,
                [
                    NewRevisionReconciler(store, kinds),
                    DeprecationReconciler(store, self.settings),
                ],
            ),
        ]

    async def reconcile(self, key: ObjectKey) -> Result:
        """
        Reconcile one deployment.

        Args:
            key: Namespace and name of the deployment

        Returns:
            When to reconcile again

        Raises:
            StoreError: If a store call fails
            MalformedObjectError: If a template member object does not parse
            TemplateError: If the deployment spec is invalid
        """
        try:
            doc = await self.store.get(self.kinds.deployment, key.namespace, key.name)
        except NotFoundError:
            return Result()

        deployment = DeploymentAdapter(doc)
        try:
            result = await run_chain(self.reconcilers, deployment)
        except (MalformedObjectError, TemplateError) as e:
            deployment.set_condition(cond.PROGRESSING, cond.FALSE, "InvalidTemplate", str(e))
            deployment.update_phase()
            await self.store.update_status(doc)
            raise

        deployment.update_phase()
        await self.store.update_status(doc)
        return result
