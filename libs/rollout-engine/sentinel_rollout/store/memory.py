"""In-memory cluster store."""

import asyncio
import copy
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Iterable, NamedTuple, Optional
from uuid import uuid4

from ..document import Document, GroupVersionKind
from ..equality import merge_patch
from ..errors import AlreadyExistsError, ConflictError, NotFoundError
from ..models import LabelSelector
from .base import ClusterStore, WatchEvent, WatchEventType

logger = logging.getLogger(__name__)

_SERVER_MANAGED_METADATA = (
    "uid",
    "generation",
    "creationTimestamp",
    "deletionTimestamp",
)


class StoreAction(NamedTuple):
    """A write received by the in-memory store."""

    verb: str
    group: str
    kind: str
    namespace: str
    name: str


def _content(obj: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in obj.items() if k not in ("metadata", "status")}


class InMemoryStore(ClusterStore):
    """
    Cluster store backed by a dict.

    Implements the server-side behavior the engine relies on: resource
    versions and optimistic concurrency, generation tracking, finalizers,
    label selectors, merge patches and watch streams. Every write is
    recorded in ``actions``.
    """

    def __init__(self, available_apis: Optional[Iterable[GroupVersionKind]] = None):
        """
        Initialize the store.

        Args:
            available_apis: APIs reported by has_api; None serves every API
        """
        self._objects: dict[tuple[str, str, str, str], dict[str, Any]] = {}
        self._watchers: dict[tuple[str, str, str], list[asyncio.Queue]] = {}
        self._resource_version = 0
        self._last_timestamp: Optional[datetime] = None
        self._available_apis = set(available_apis) if available_apis is not None else None
        self.actions: list[StoreAction] = []

    # Test helpers

    def register_api(self, gvk: GroupVersionKind) -> None:
        if self._available_apis is not None:
            self._available_apis.add(gvk)

    @property
    def active_watches(self) -> int:
        """Number of open watch streams."""
        return sum(len(queues) for queues in self._watchers.values())

    def writes_for(self, kind: str) -> list[StoreAction]:
        return [action for action in self.actions if action.kind == kind]

    def clear_actions(self) -> None:
        self.actions.clear()

    # Internals

    @staticmethod
    def _key(gvk: GroupVersionKind, namespace: str, name: str) -> tuple[str, str, str, str]:
        return (gvk.group, gvk.kind, namespace or "", name)

    def _next_resource_version(self) -> str:
        self._resource_version += 1
        return str(self._resource_version)

    def _timestamp(self) -> str:
        now = datetime.now(timezone.utc)
        if self._last_timestamp is not None and now <= self._last_timestamp:
            now = self._last_timestamp + timedelta(microseconds=1)
        self._last_timestamp = now
        return now.strftime("%Y-%m-%dT%H:%M:%S.%fZ")

    def _stored(self, obj: Document) -> dict[str, Any]:
        stored = self._objects.get(self._key(obj.gvk, obj.namespace, obj.name))
        if stored is None:
            raise NotFoundError(f'{obj.kind} "{obj.key}" not found')
        return stored

    @staticmethod
    def _check_version(resource_version: Optional[str], stored: dict[str, Any]) -> None:
        if resource_version and resource_version != stored["metadata"]["resourceVersion"]:
            raise ConflictError(
                f'{stored["kind"]} "{stored["metadata"]["name"]}" has been modified, '
                f"resourceVersion {resource_version} is outdated"
            )

    def _record(self, verb: str, obj: dict[str, Any]) -> None:
        doc = Document(obj)
        self.actions.append(
            StoreAction(verb, doc.gvk.group, doc.kind, doc.namespace, doc.name)
        )

    def _publish(self, event_type: WatchEventType, obj: dict[str, Any]) -> None:
        doc = Document(obj)
        for namespace in {doc.namespace, ""}:
            for queue in self._watchers.get((doc.gvk.group, doc.kind, namespace), []):
                queue.put_nowait(WatchEvent(event_type, Document(copy.deepcopy(obj))))

    def _commit(self, stored: dict[str, Any], new: dict[str, Any]) -> dict[str, Any]:
        """Store an updated object, handling generation and finalizers."""
        metadata = new.setdefault("metadata", {})
        for field in _SERVER_MANAGED_METADATA:
            if field in stored["metadata"]:
                metadata[field] = stored["metadata"][field]
            else:
                metadata.pop(field, None)
        if _content(stored) != _content(new):
            metadata["generation"] = int(stored["metadata"].get("generation", 1)) + 1
        metadata["resourceVersion"] = self._next_resource_version()

        key = self._key(Document(new).gvk, Document(new).namespace, metadata["name"])
        if metadata.get("deletionTimestamp") and not metadata.get("finalizers"):
            del self._objects[key]
            self._publish(WatchEventType.DELETED, new)
        else:
            self._objects[key] = new
            self._publish(WatchEventType.MODIFIED, new)
        return new

    # ClusterStore

    async def get(self, gvk: GroupVersionKind, namespace: str, name: str) -> Document:
        await asyncio.sleep(0)
        stored = self._objects.get(self._key(gvk, namespace, name))
        if stored is None:
            raise NotFoundError(f'{gvk.kind} "{namespace}/{name}" not found')
        return Document(copy.deepcopy(stored))

    async def list(
        self,
        gvk: GroupVersionKind,
        namespace: Optional[str] = None,
        selector: Optional[LabelSelector] = None,
    ) -> list[Document]:
        await asyncio.sleep(0)
        items = []
        for (group, kind, obj_namespace, _), stored in sorted(self._objects.items()):
            if (group, kind) != (gvk.group, gvk.kind):
                continue
            if namespace is not None and obj_namespace != namespace:
                continue
            doc = Document(copy.deepcopy(stored))
            if selector is not None and not selector.matches(doc.labels):
                continue
            items.append(doc)
        return items

    async def create(self, obj: Document) -> Document:
        await asyncio.sleep(0)
        key = self._key(obj.gvk, obj.namespace, obj.name)
        if key in self._objects:
            raise AlreadyExistsError(f'{obj.kind} "{obj.key}" already exists')

        new = copy.deepcopy(obj.object)
        metadata = new.setdefault("metadata", {})
        metadata["uid"] = str(uuid4())
        metadata["generation"] = 1
        metadata["creationTimestamp"] = self._timestamp()
        metadata["resourceVersion"] = self._next_resource_version()
        metadata.pop("deletionTimestamp", None)

        self._objects[key] = new
        self._record("create", new)
        self._publish(WatchEventType.ADDED, new)
        obj.object = copy.deepcopy(new)
        return obj

    async def update(self, obj: Document) -> Document:
        await asyncio.sleep(0)
        stored = self._stored(obj)
        self._check_version(obj.resource_version, stored)

        new = copy.deepcopy(obj.object)
        if "status" in stored:
            new["status"] = copy.deepcopy(stored["status"])
        else:
            new.pop("status", None)

        self._record("update", new)
        obj.object = copy.deepcopy(self._commit(stored, new))
        return obj

    async def update_status(self, obj: Document) -> Document:
        await asyncio.sleep(0)
        stored = self._stored(obj)
        self._check_version(obj.resource_version, stored)

        new = copy.deepcopy(stored)
        new["status"] = copy.deepcopy(obj.object.get("status", {}))
        new["metadata"]["resourceVersion"] = self._next_resource_version()
        self._objects[self._key(obj.gvk, obj.namespace, obj.name)] = new

        self._record("update_status", new)
        self._publish(WatchEventType.MODIFIED, new)
        obj.object = copy.deepcopy(new)
        return obj

    async def patch(self, obj: Document, patch: dict[str, Any]) -> Document:
        await asyncio.sleep(0)
        stored = self._stored(obj)
        patch = copy.deepcopy(patch)
        patch.pop("status", None)
        self._check_version(patch.get("metadata", {}).get("resourceVersion"), stored)

        new = merge_patch(copy.deepcopy(stored), patch)
        self._record("patch", new)
        obj.object = copy.deepcopy(self._commit(stored, new))
        return obj

    async def delete(self, obj: Document) -> None:
        await asyncio.sleep(0)
        stored = self._stored(obj)
        self._record("delete", stored)
        key = self._key(obj.gvk, obj.namespace, obj.name)

        if stored["metadata"].get("finalizers"):
            if not stored["metadata"].get("deletionTimestamp"):
                stored["metadata"]["deletionTimestamp"] = self._timestamp()
                stored["metadata"]["resourceVersion"] = self._next_resource_version()
                self._publish(WatchEventType.MODIFIED, stored)
            return

        del self._objects[key]
        self._publish(WatchEventType.DELETED, stored)

    async def watch(
        self, gvk: GroupVersionKind, namespace: str = ""
    ) -> AsyncIterator[WatchEvent]:
        key = (gvk.group, gvk.kind, namespace or "")
        queue: asyncio.Queue = asyncio.Queue()
        self._watchers.setdefault(key, []).append(queue)
        logger.debug(f"Opened watch on {gvk.kind} in namespace {namespace or '*'}")
        try:
            while True:
                yield await queue.get()
        finally:
            self._watchers[key].remove(queue)
            if not self._watchers[key]:
                del self._watchers[key]

    async def has_api(self, gvk: GroupVersionKind) -> bool:
        await asyncio.sleep(0)
        if self._available_apis is None:
            return True
        return gvk in self._available_apis
