"""Cluster store interface consumed by the rollout engine."""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, AsyncIterator, NamedTuple, Optional

from ..document import Document, GroupVersionKind
from ..models import LabelSelector


class WatchEventType(str, Enum):
    """Watch event type."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


class WatchEvent(NamedTuple):
    """A change to a watched object."""

    type: WatchEventType
    object: Document


class ClusterStore(ABC):
    """
    Transactional object store with optimistic concurrency.

    Objects are identified by group, kind, namespace and name. Mutating calls
    refresh the passed document in place with the stored state, including
    the new resourceVersion, and return it.
    """

    @abstractmethod
    async def get(self, gvk: GroupVersionKind, namespace: str, name: str) -> Document:
        """
        Get an object.

        Raises:
            NotFoundError: If the object does not exist
            StoreError: On any other failure
        """

    @abstractmethod
    async def list(
        self,
        gvk: GroupVersionKind,
        namespace: Optional[str] = None,
        selector: Optional[LabelSelector] = None,
    ) -> list[Document]:
        """
        List objects.

        Args:
            gvk: Object type
            namespace: Namespace to list in, None for all namespaces
            selector: Optional label selector

        Returns:
            Matching objects
        """

    @abstractmethod
    async def create(self, obj: Document) -> Document:
        """
        Create an object.

        Raises:
            AlreadyExistsError: If an object with the same identity exists
        """

    @abstractmethod
    async def update(self, obj: Document) -> Document:
        """
        Replace an object, ignoring its status.

        Raises:
            NotFoundError: If the object does not exist
            ConflictError: If the resourceVersion is outdated
        """

    @abstractmethod
    async def update_status(self, obj: Document) -> Document:
        """
        Replace the status of an object.

        Raises:
            NotFoundError: If the object does not exist
            ConflictError: If the resourceVersion is outdated
        """

    @abstractmethod
    async def patch(self, obj: Document, patch: dict[str, Any]) -> Document:
        """
        Apply a JSON merge patch to an object.

        A patch carrying metadata.resourceVersion is rejected with a
        ConflictError when the object changed in the meantime.
        """

    @abstractmethod
    async def delete(self, obj: Document) -> None:
        """
        Delete an object.

        Raises:
            NotFoundError: If the object does not exist
        """

    @abstractmethod
    def watch(
        self, gvk: GroupVersionKind, namespace: str = ""
    ) -> AsyncIterator[WatchEvent]:
        """
        Stream changes to objects of one type.

        Args:
            gvk: Object type
            namespace: Namespace to watch, empty for all namespaces

        Returns:
            Async iterator of watch events
        """

    @abstractmethod
    async def has_api(self, gvk: GroupVersionKind) -> bool:
        """Check whether the cluster serves the given API."""

    async def aclose(self) -> None:
        """Release resources held by open watches."""
