"""Cluster store backed by the Kubernetes dynamic client."""

import asyncio
import json
import logging
import threading
from typing import Any, AsyncIterator, Callable, Optional

from kubernetes import watch
from kubernetes.client.exceptions import ApiException
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import ResourceNotFoundError
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..document import Document, GroupVersionKind
from ..errors import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    StoreError,
)
from ..models import LabelSelector
from .base import ClusterStore, WatchEvent, WatchEventType
from .cluster import ClusterConnection

logger = logging.getLogger(__name__)

MERGE_PATCH = "application/merge-patch+json"


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, ApiException) and (
        exc.status == 429 or (exc.status is not None and exc.status >= 500)
    )


def _reason(exc: ApiException) -> str:
    if not exc.body:
        return ""
    try:
        body = json.loads(exc.body)
    except (TypeError, ValueError):
        return ""
    return body.get("reason", "") if isinstance(body, dict) else ""


def map_api_exception(exc: ApiException, what: str) -> StoreError:
    """
    Translate an ApiException into the store error hierarchy.

    Args:
        exc: Exception raised by the Kubernetes client
        what: Description of the object the call was about

    Returns:
        Matching StoreError
    """
    if exc.status == 404:
        return NotFoundError(f"{what} not found")
    if exc.status == 409:
        if _reason(exc) == "AlreadyExists":
            return AlreadyExistsError(f"{what} already exists")
        return ConflictError(f"{what} has been modified: {exc.reason}")
    return StoreError(f"{what}: {exc.status} {exc.reason}", status=exc.status)


class KubernetesStore(ClusterStore):
    """Implements the cluster store on top of a live API server."""

    def __init__(
        self,
        client: DynamicClient | ClusterConnection,
        watch_timeout_seconds: int = 60,
    ):
        """
        Initialize the store.

        Args:
            client: Dynamic client, or a cluster connection providing one
            watch_timeout_seconds: Server side timeout of a single watch call
        """
        if isinstance(client, ClusterConnection):
            client = client.dynamic
        self.client = client
        self.watch_timeout_seconds = watch_timeout_seconds
        self._pumps: dict[asyncio.Task, Callable[[], None]] = {}

    @retry(
        retry=retry_if_exception(_is_retryable),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _call(self, fn: Callable[..., Any], **kwargs: Any) -> Any:
        return fn(**kwargs)

    async def _run(self, what: str, fn: Callable[..., Any], **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(self._call, fn, **kwargs)
        except ApiException as e:
            raise map_api_exception(e, what) from e

    async def _resource(self, gvk: GroupVersionKind) -> Any:
        try:
            return await asyncio.to_thread(
                self.client.resources.get, api_version=gvk.api_version, kind=gvk.kind
            )
        except ResourceNotFoundError as e:
            raise StoreError(f"API {gvk} is not served by the cluster") from e

    @staticmethod
    def _namespace(namespace: str) -> Optional[str]:
        return namespace or None

    @staticmethod
    def _to_document(result: Any, gvk: GroupVersionKind) -> Document:
        raw = result.to_dict() if hasattr(result, "to_dict") else dict(result)
        doc = Document(raw)
        if not doc.kind:
            doc.gvk = gvk
        return doc

    async def get(self, gvk: GroupVersionKind, namespace: str, name: str) -> Document:
        resource = await self._resource(gvk)
        result = await self._run(
            f'{gvk.kind} "{namespace}/{name}"',
            resource.get,
            name=name,
            namespace=self._namespace(namespace),
        )
        return self._to_document(result, gvk)

    async def list(
        self,
        gvk: GroupVersionKind,
        namespace: Optional[str] = None,
        selector: Optional[LabelSelector] = None,
    ) -> list[Document]:
        resource = await self._resource(gvk)
        kwargs: dict[str, Any] = {"namespace": self._namespace(namespace or "")}
        if selector is not None:
            kwargs["label_selector"] = str(selector)
        result = await self._run(f"{gvk.kind} list", resource.get, **kwargs)
        raw = result.to_dict() if hasattr(result, "to_dict") else dict(result)
        return [self._to_document(item, gvk) for item in raw.get("items") or []]

    async def create(self, obj: Document) -> Document:
        resource = await self._resource(obj.gvk)
        result = await self._run(
            f'{obj.kind} "{obj.key}"',
            resource.create,
            body=obj.object,
            namespace=self._namespace(obj.namespace),
        )
        obj.object = self._to_document(result, obj.gvk).object
        return obj

    async def update(self, obj: Document) -> Document:
        resource = await self._resource(obj.gvk)
        result = await self._run(
            f'{obj.kind} "{obj.key}"',
            resource.replace,
            body=obj.object,
            name=obj.name,
            namespace=self._namespace(obj.namespace),
        )
        obj.object = self._to_document(result, obj.gvk).object
        return obj

    async def update_status(self, obj: Document) -> Document:
        resource = await self._resource(obj.gvk)
        result = await self._run(
            f'{obj.kind} "{obj.key}" status',
            resource.subresources["status"].replace,
            body=obj.object,
            name=obj.name,
            namespace=self._namespace(obj.namespace),
        )
        obj.object = self._to_document(result, obj.gvk).object
        return obj

    async def patch(self, obj: Document, patch: dict[str, Any]) -> Document:
        resource = await self._resource(obj.gvk)
        result = await self._run(
            f'{obj.kind} "{obj.key}"',
            resource.patch,
            body=patch,
            name=obj.name,
            namespace=self._namespace(obj.namespace),
            content_type=MERGE_PATCH,
        )
        obj.object = self._to_document(result, obj.gvk).object
        return obj

    async def delete(self, obj: Document) -> None:
        resource = await self._resource(obj.gvk)
        await self._run(
            f'{obj.kind} "{obj.key}"',
            resource.delete,
            name=obj.name,
            namespace=self._namespace(obj.namespace),
        )

    async def watch(
        self, gvk: GroupVersionKind, namespace: str = ""
    ) -> AsyncIterator[WatchEvent]:
        resource = await self._resource(gvk)
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        stopped = threading.Event()
        watcher = watch.Watch()

        def stop() -> None:
            stopped.set()
            watcher.stop()

        def pump() -> None:
            resource_version = None
            while not stopped.is_set():
                try:
                    for event in resource.watch(
                        namespace=self._namespace(namespace),
                        resource_version=resource_version,
                        timeout=self.watch_timeout_seconds,
                        watcher=watcher,
                    ):
                        if stopped.is_set():
                            return
                        raw = event["raw_object"]
                        resource_version = (raw.get("metadata") or {}).get(
                            "resourceVersion", resource_version
                        )
                        loop.call_soon_threadsafe(
                            queue.put_nowait, (event["type"], raw)
                        )
                except ApiException as e:
                    if e.status == 410:
                        logger.warning(f"Watch on {gvk.kind} expired, restarting...")
                        resource_version = None
                        continue
                    loop.call_soon_threadsafe(queue.put_nowait, ("ERROR", e))
                    return
                except Exception as e:
                    loop.call_soon_threadsafe(queue.put_nowait, ("ERROR", e))
                    return

        task = asyncio.create_task(asyncio.to_thread(pump))
        self._pumps[task] = stop
        task.add_done_callback(lambda t: self._pumps.pop(t, None))
        logger.debug(f"Opened watch on {gvk.kind} in namespace {namespace or '*'}")

        try:
            while True:
                event_type, payload = await queue.get()
                if event_type == "ERROR":
                    if isinstance(payload, ApiException):
                        raise map_api_exception(payload, f"{gvk.kind} watch") from payload
                    raise StoreError(f"{gvk.kind} watch failed: {payload}") from payload
                if event_type not in WatchEventType.__members__:
                    logger.debug(f"Ignoring {event_type} event on {gvk.kind} watch")
                    continue
                yield WatchEvent(WatchEventType(event_type), self._to_document(payload, gvk))
        finally:
            stop()

    @property
    def open_watches(self) -> int:
        """Number of watch threads still running."""
        return len(self._pumps)

    async def aclose(self, timeout: float = 5) -> None:
        """
        Stop every open watch and wait for its thread to finish.

        A thread blocked on the API server returns at the latest when its
        server side watch timeout expires.

        Args:
            timeout: Seconds to wait for the watch threads
        """
        pumps = dict(self._pumps)
        if not pumps:
            return
        for stop in pumps.values():
            stop()
        _, pending = await asyncio.wait(list(pumps), timeout=timeout)
        if pending:
            logger.warning(f"{len(pending)} watch thread(s) still waiting on the API server")

    async def has_api(self, gvk: GroupVersionKind) -> bool:
        try:
            await asyncio.to_thread(
                self.client.resources.get, api_version=gvk.api_version, kind=gvk.kind
            )
        except ResourceNotFoundError:
            return False
        return True
