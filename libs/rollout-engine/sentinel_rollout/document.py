"""Typed views over untyped resource documents."""

import copy
from typing import Any, NamedTuple, Optional

from .errors import MalformedObjectError


class GroupKind(NamedTuple):
    """API group and kind of a resource."""

    group: str
    kind: str

    def __str__(self) -> str:
        if not self.group:
            return self.kind
        return f"{self.kind}.{self.group}"


class GroupVersionKind(NamedTuple):
    """Fully qualified resource type."""

    group: str
    version: str
    kind: str

    @classmethod
    def from_api_version(cls, api_version: str, kind: str) -> "GroupVersionKind":
        """
        Build a GroupVersionKind from an apiVersion string.

        Args:
            api_version: "group/version" or just "version" for the core group
            kind: Resource kind

        Returns:
            GroupVersionKind
        """
        if "/" in api_version:
            group, version = api_version.split("/", 1)
        else:
            group, version = "", api_version
        return cls(group, version, kind)

    @property
    def api_version(self) -> str:
        if not self.group:
            return self.version
        return f"{self.group}/{self.version}"

    @property
    def group_kind(self) -> GroupKind:
        return GroupKind(self.group, self.kind)

    def __str__(self) -> str:
        return f"{self.api_version}, Kind={self.kind}"


class ObjectKey(NamedTuple):
    """Namespace and name of an object."""

    namespace: str
    name: str

    def __str__(self) -> str:
        if not self.namespace:
            return self.name
        return f"{self.namespace}/{self.name}"


def split_path(path: str) -> list[str]:
    """Split a dotted field path like ".status.replicas" into its segments."""
    return [segment for segment in path.strip(".").split(".") if segment]


class Document:
    """
    A resource document with accessors for well-known fields.

    Wraps a plain dict so member objects can be of any kind without a
    static schema. Mutations go straight to the wrapped dict.
    """

    __slots__ = ("object",)

    def __init__(self, obj: Optional[dict[str, Any]] = None):
        self.object: dict[str, Any] = obj if obj is not None else {}

    @classmethod
    def from_spec(cls, raw: Any) -> "Document":
        """
        Parse a member object spec into a document.

        Args:
            raw: Embedded object as found in a phase

        Returns:
            Document holding a deep copy of the spec

        Raises:
            MalformedObjectError: If the spec is not a resource document
        """
        if not isinstance(raw, dict):
            raise MalformedObjectError(
                f"object must be a mapping, got {type(raw).__name__}"
            )
        missing = [
            field
            for field, value in (
                ("apiVersion", raw.get("apiVersion")),
                ("kind", raw.get("kind")),
                ("metadata.name", (raw.get("metadata") or {}).get("name")),
            )
            if not isinstance(value, str) or not value
        ]
        if missing:
            raise MalformedObjectError(
                f"object is missing required fields: {', '.join(missing)}"
            )
        if not isinstance(raw["metadata"], dict):
            raise MalformedObjectError("object metadata must be a mapping")
        return cls(copy.deepcopy(raw))

    def deep_copy(self) -> "Document":
        return Document(copy.deepcopy(self.object))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Document):
            return NotImplemented
        return self.object == other.object

    def __repr__(self) -> str:
        return f"Document({self.gvk.kind} {self.key})"

    # Type information

    @property
    def api_version(self) -> str:
        return self.object.get("apiVersion", "")

    @property
    def kind(self) -> str:
        return self.object.get("kind", "")

    @property
    def gvk(self) -> GroupVersionKind:
        return GroupVersionKind.from_api_version(self.api_version, self.kind)

    @gvk.setter
    def gvk(self, gvk: GroupVersionKind) -> None:
        self.object["apiVersion"] = gvk.api_version
        self.object["kind"] = gvk.kind

    # Metadata

    @property
    def metadata(self) -> dict[str, Any]:
        return self.object.setdefault("metadata", {})

    @property
    def name(self) -> str:
        return self.object.get("metadata", {}).get("name", "")

    @name.setter
    def name(self, name: str) -> None:
        self.metadata["name"] = name

    @property
    def namespace(self) -> str:
        return self.object.get("metadata", {}).get("namespace") or ""

    @namespace.setter
    def namespace(self, namespace: str) -> None:
        if namespace:
            self.metadata["namespace"] = namespace
        else:
            self.metadata.pop("namespace", None)

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.namespace, self.name)

    @property
    def labels(self) -> dict[str, str]:
        return dict(self.object.get("metadata", {}).get("labels") or {})

    @labels.setter
    def labels(self, labels: dict[str, str]) -> None:
        self.metadata["labels"] = dict(labels)

    @property
    def annotations(self) -> dict[str, str]:
        return dict(self.object.get("metadata", {}).get("annotations") or {})

    @annotations.setter
    def annotations(self, annotations: dict[str, str]) -> None:
        self.metadata["annotations"] = dict(annotations)

    @property
    def owner_references(self) -> list[dict[str, Any]]:
        return copy.deepcopy(self.object.get("metadata", {}).get("ownerReferences") or [])

    @owner_references.setter
    def owner_references(self, refs: list[dict[str, Any]]) -> None:
        if refs:
            self.metadata["ownerReferences"] = copy.deepcopy(refs)
        else:
            self.metadata.pop("ownerReferences", None)

    @property
    def finalizers(self) -> list[str]:
        return list(self.object.get("metadata", {}).get("finalizers") or [])

    @finalizers.setter
    def finalizers(self, finalizers: list[str]) -> None:
        if finalizers:
            self.metadata["finalizers"] = list(finalizers)
        else:
            self.metadata.pop("finalizers", None)

    @property
    def uid(self) -> str:
        return self.object.get("metadata", {}).get("uid", "")

    @property
    def generation(self) -> int:
        return int(self.object.get("metadata", {}).get("generation") or 0)

    @property
    def resource_version(self) -> str:
        return self.object.get("metadata", {}).get("resourceVersion", "")

    @property
    def creation_timestamp(self) -> str:
        return self.object.get("metadata", {}).get("creationTimestamp") or ""

    @property
    def deletion_timestamp(self) -> Optional[str]:
        return self.object.get("metadata", {}).get("deletionTimestamp")

    # Spec and status

    @property
    def spec(self) -> dict[str, Any]:
        return self.object.setdefault("spec", {})

    @property
    def status(self) -> dict[str, Any]:
        return self.object.setdefault("status", {})

    @property
    def conditions(self) -> list[dict[str, Any]]:
        """Status conditions, as a mutable list stored in the document."""
        return self.status.setdefault("conditions", [])

    def get_nested(self, *path: str) -> tuple[Any, bool]:
        """
        Look up a nested field.

        Args:
            path: Field names from the document root

        Returns:
            Tuple of (value, found)
        """
        current: Any = self.object
        for segment in path:
            if not isinstance(current, dict) or segment not in current:
                return None, False
            current = current[segment]
        return current, True

    def set_nested(self, value: Any, *path: str) -> None:
        """Set a nested field, creating intermediate mappings."""
        current = self.object
        for segment in path[:-1]:
            current = current.setdefault(segment, {})
        current[path[-1]] = value


def owner_reference(owner: Document, controller: bool = True) -> dict[str, Any]:
    """Build an ownerReference entry pointing at the given owner."""
    return {
        "apiVersion": owner.api_version,
        "kind": owner.kind,
        "name": owner.name,
        "uid": owner.uid,
        "controller": controller,
        "blockOwnerDeletion": True,
    }
