"""Controller manager: watches, work queue and reconcile workers."""

import asyncio
import logging
from typing import Optional, Protocol, Sequence

from .adapters import CLUSTER, NAMESPACED, RevisionKinds, kinds_for
from .config import Settings, get_settings
from .deployments import DeploymentController
from .document import Document, GroupKind, GroupVersionKind, ObjectKey
from .errors import StoreError
from .ownership import controller_of
from .phase_objects import RevisionPhaseController
from .reconcile import Request, Result
from .revisions import RevisionController
from .store.base import ClusterStore, WatchEvent
from .watcher import OwnerRef, WatchMultiplexer
from .workqueue import WorkQueue

logger = logging.getLogger(__name__)


class Controller(Protocol):
    async def reconcile(self, key: ObjectKey) -> Result: ...


class ControllerManager:
    """
    Runs the deployment, revision and phase object controllers.

    Primary kinds are watched directly. Events on member objects arrive
    through the watch multiplexer and are mapped to their owner. Every
    request goes through one de-duplicating work queue served by
    ``max_concurrent_reconciles`` workers.
    """

    def __init__(
        self,
        store: ClusterStore,
        settings: Optional[Settings] = None,
        scopes: Sequence[RevisionKinds] = (NAMESPACED, CLUSTER),
    ):
        """
        Initialize the manager.

        Args:
            store: Cluster store shared by all controllers
            settings: Engine settings
            scopes: Scopes to serve
        """
        self.store = store
        self.settings = settings or get_settings()
        self.scopes = tuple(scopes)
        self.queue: WorkQueue[Request] = WorkQueue(
            base_delay=self.settings.requeue_base_delay_seconds,
            max_delay=self.settings.requeue_max_delay_seconds,
        )
        self.watcher = WatchMultiplexer(store, self._on_member_event, self.settings)

        self.controllers: dict[GroupKind, Controller] = {}
        self.primary_kinds: list[GroupVersionKind] = []
        for kinds in self.scopes:
            self._register(
                kinds.deployment, DeploymentController(store, kinds, self.settings)
            )
            self._register(
                kinds.revision, RevisionController(store, self.watcher, kinds, self.settings)
            )
            self._register(
                kinds.phase,
                RevisionPhaseController(store, self.watcher, kinds, self.settings),
            )

        self._running = False
        self._tasks: list[asyncio.Task] = []

    def _register(self, gvk: GroupVersionKind, controller: Controller) -> None:
        self.controllers[gvk.group_kind] = controller
        self.primary_kinds.append(gvk)

    @property
    def running(self) -> bool:
        return self._running

    def enqueue(self, gvk: GroupVersionKind, key: ObjectKey) -> None:
        """Queue a reconcile of the given object."""
        self.queue.add(Request(gvk.group, gvk.kind, key.namespace, key.name))

    def _enqueue_owner(self, obj: Document) -> None:
        ref = controller_of(obj)
        if ref is None:
            return
        gvk = GroupVersionKind.from_api_version(ref.get("apiVersion", ""), ref.get("kind", ""))
        owner_kinds = kinds_for(gvk.group_kind)
        if owner_kinds is None or owner_kinds not in self.scopes:
            return
        # cluster scoped owners live outside of namespaces
        namespace = "" if owner_kinds.cluster_scoped else obj.namespace
        self.enqueue(gvk, ObjectKey(namespace, ref.get("name", "")))

    def _on_member_event(self, owner: OwnerRef, event: WatchEvent) -> None:
        logger.debug(
            f"{event.type.value} {event.object.kind} {event.object.key} triggers {owner.kind} {owner.name}"
        )
        self.queue.add(Request(owner.group, owner.kind, owner.namespace, owner.name))

    def _on_primary_event(self, event: WatchEvent) -> None:
        obj = event.object
        self.enqueue(obj.gvk, obj.key)
        self._enqueue_owner(obj)

    async def resync(self) -> None:
        """Queue every object of the primary kinds."""
        for gvk in self.primary_kinds:
            try:
                docs = await self.store.list(gvk)
            except StoreError as e:
                logger.warning(f"Failed to list {gvk.kind} for resync: {e}")
                continue
            for doc in docs:
                self.enqueue(gvk, doc.key)

    async def _watch_primary(self, gvk: GroupVersionKind) -> None:
        while self._running:
            try:
                async for event in self.store.watch(gvk):
                    self._on_primary_event(event)
                logger.warning(f"Watch for {gvk.kind} ended, restarting...")
            except StoreError as e:
                logger.warning(f"Watch for {gvk.kind} failed: {e}, restarting...")
            await asyncio.sleep(self.settings.watch_restart_delay_seconds)

    async def _periodic_resync(self) -> None:
        while self._running:
            await asyncio.sleep(self.settings.resync_interval_seconds)
            logger.debug("Running periodic resync")
            await self.resync()

    async def reconcile(self, request: Request) -> Result:
        """Run the controller responsible for ``request``."""
        controller = self.controllers.get(GroupKind(request.group, request.kind))
        if controller is None:
            logger.warning(f"No controller registered for {request.kind}.{request.group}")
            return Result()
        return await controller.reconcile(ObjectKey(request.namespace, request.name))

    async def _worker(self, index: int) -> None:
        logger.debug(f"Worker {index} started")
        while True:
            request = await self.queue.get()
            if request is None:
                break
            try:
                result = await self.reconcile(request)
            except asyncio.CancelledError:
                self.queue.done(request)
                raise
            except Exception as e:
                delay = self.queue.rate_limited_add(request)
                logger.error(
                    f"Error reconciling {request}: {e}, retrying in {delay:.1f}s",
                    exc_info=True,
                )
            else:
                if result.requeue_after:
                    self.queue.forget(request)
                    self.queue.add_after(request, result.requeue_after)
                elif result.requeue:
                    self.queue.rate_limited_add(request)
                else:
                    self.queue.forget(request)
            self.queue.done(request)
        logger.debug(f"Worker {index} stopped")

    async def start(self) -> None:
        """Start watches and workers."""
        if self._running:
            logger.warning("Controller manager already running")
            return

        self._running = True
        logging.getLogger(__package__).setLevel(self.settings.log_level.upper())
        logger.info(
            f"Starting {self.settings.service_name} for "
            f"{', '.join(str(kinds) for kinds in self.scopes)} scope(s) "
            f"with {self.settings.max_concurrent_reconciles} workers"
        )

        loop = asyncio.get_running_loop()
        for gvk in self.primary_kinds:
            self._tasks.append(loop.create_task(self._watch_primary(gvk), name=f"watch {gvk.kind}"))
        for index in range(self.settings.max_concurrent_reconciles):
            self._tasks.append(loop.create_task(self._worker(index), name=f"worker {index}"))
        self._tasks.append(loop.create_task(self._periodic_resync(), name="resync"))

        await self.resync()

    async def stop(self) -> None:
        """Stop workers and watches and release every member watch."""
        logger.info("Stopping controller manager")
        self._running = False
        self.queue.shutdown()

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        await self.watcher.shutdown()
        await self.store.aclose()

    async def __aenter__(self) -> "ControllerManager":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.stop()
