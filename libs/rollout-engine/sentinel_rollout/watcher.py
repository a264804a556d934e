"""Reference counted watches shared by the owners of member objects."""

import asyncio
import logging
import threading
from typing import Callable, NamedTuple, Optional

from .config import Settings, get_settings
from .document import Document, GroupVersionKind
from .errors import StoreError
from .store.base import ClusterStore, WatchEvent

logger = logging.getLogger(__name__)


class OwnerRef(NamedTuple):
    """Identifies an owner registered with the multiplexer."""

    uid: str
    group: str
    kind: str
    name: str
    namespace: str

    @classmethod
    def from_document(cls, owner: Document) -> "OwnerRef":
        return cls(owner.uid, owner.gvk.group, owner.kind, owner.name, owner.namespace)


class WatchKey(NamedTuple):
    """A watched resource type within a namespace ("" for all namespaces)."""

    gvk: GroupVersionKind
    namespace: str

    def __str__(self) -> str:
        return f"{self.gvk.kind}.{self.gvk.group or 'core'} in {self.namespace or '*'}"


EventHandler = Callable[[OwnerRef, WatchEvent], None]


class WatchMultiplexer:
    """
    Shares one watch per (kind, namespace) between all interested owners.

    Owners register interest in the kinds of their member objects with
    ``watch`` and drop all of it with ``free``. A watch runs on its own
    task while at least one owner is registered for its key. Change events
    are handed to the event handler once for every registered owner that
    the changed object references in its ownerReferences.

    All bookkeeping happens under a single lock that is never held across
    store calls.
    """

    def __init__(
        self,
        store: ClusterStore,
        handler: Optional[EventHandler] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize the multiplexer.

        Args:
            store: Cluster store to open watches on
            handler: Receives (owner, event) for every attributed change
            settings: Engine settings
        """
        self.store = store
        self.settings = settings or get_settings()
        self._handler = handler
        self._lock = threading.Lock()
        self._tasks: dict[WatchKey, asyncio.Task] = {}
        self._owners: dict[WatchKey, set[OwnerRef]] = {}
        self._stopping: set[asyncio.Task] = set()
        self._closed = False

    @property
    def subscription_count(self) -> int:
        """Number of live watches."""
        with self._lock:
            return len(self._tasks)

    def owners_for(self, key: WatchKey) -> list[OwnerRef]:
        """Owners registered for the given key."""
        with self._lock:
            return list(self._owners.get(key, ()))

    def watch(self, owner: Document, obj: Document) -> None:
        """
        Register ``owner``'s interest in the kind of ``obj``.

        The watch is scoped to the owner's namespace, so cluster scoped owners
        watch across all namespaces.

        Raises:
            RuntimeError: If the multiplexer was shut down
        """
        key = WatchKey(obj.gvk, owner.namespace)
        ref = OwnerRef.from_document(owner)

        with self._lock:
            if self._closed:
                raise RuntimeError("watch multiplexer is shut down")
            self._owners.setdefault(key, set()).add(ref)
            if key in self._tasks:
                reused = True
            else:
                reused = False
                self._tasks[key] = asyncio.get_running_loop().create_task(
                    self._run(key), name=f"watch {key}"
                )

        if reused:
            logger.debug(f"Reusing existing watcher for {key}")
        else:
            logger.info(f"Adding new watcher for {key}")

    def free(self, owner: Document) -> None:
        """Drop every registration of ``owner``, stopping watches nobody needs anymore."""
        ref = OwnerRef.from_document(owner)
        released = []

        with self._lock:
            for key, owners in list(self._owners.items()):
                if ref not in owners:
                    continue
                owners.discard(ref)
                if owners:
                    continue
                del self._owners[key]
                task = self._tasks.pop(key, None)
                if task is not None:
                    task.cancel()
                    self._stopping.add(task)
                    task.add_done_callback(self._stopping.discard)
                released.append(key)

        for key in released:
            logger.info(f"Releasing watcher for {key}")

    async def shutdown(self) -> None:
        """Stop all watches and refuse new registrations."""
        with self._lock:
            self._closed = True
            tasks = list(self._tasks.values()) + list(self._stopping)
            self._tasks.clear()
            self._owners.clear()

        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Watch multiplexer shut down")

    async def _run(self, key: WatchKey) -> None:
        while True:
            try:
                async for event in self.store.watch(key.gvk, key.namespace):
                    self._dispatch(key, event)
                logger.warning(f"Watch for {key} ended, restarting...")
            except StoreError as e:
                logger.warning(f"Watch for {key} failed: {e}, restarting...")
            await asyncio.sleep(self.settings.watch_restart_delay_seconds)

    def _dispatch(self, key: WatchKey, event: WatchEvent) -> None:
        with self._lock:
            owners = list(self._owners.get(key, ()))

        handler = self._handler
        if handler is None:
            return

        referenced = {ref.get("uid") for ref in event.object.owner_references}
        for owner in owners:
            if owner.uid not in referenced:
                continue
            try:
                handler(owner, event)
            except Exception as e:
                logger.error(f"Error in watch event handler: {e}", exc_info=True)
