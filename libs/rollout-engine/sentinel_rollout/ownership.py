"""Owner reference handling for member objects."""

from typing import Any

from .document import Document, owner_reference


def _matches(ref: dict[str, Any], owner: Document) -> bool:
    if ref.get("uid"):
        return ref["uid"] == owner.uid
    return (
        ref.get("apiVersion") == owner.api_version
        and ref.get("kind") == owner.kind
        and ref.get("name") == owner.name
    )


def is_controlled_by(owner: Document, obj: Document) -> bool:
    """True if ``owner`` is the controlling owner of ``obj``."""
    return any(
        _matches(ref, owner) and ref.get("controller") for ref in obj.owner_references
    )


def controller_of(obj: Document) -> dict[str, Any] | None:
    for ref in obj.owner_references:
        if ref.get("controller"):
            return ref
    return None


def release_controller(obj: Document) -> None:
    """Drop the controller flag from every owner reference of ``obj``."""
    refs = obj.owner_references
    for ref in refs:
        ref["controller"] = False
    obj.owner_references = refs


def set_controller_reference(owner: Document, obj: Document) -> None:
    """
    Make ``owner`` the controlling owner of ``obj``.

    Existing references to other owners are kept, but lose their
    controller flag: an object has at most one controller.
    """
    refs = [ref for ref in obj.owner_references if not _matches(ref, owner)]
    for ref in refs:
        ref["controller"] = False
    refs.append(owner_reference(owner, controller=True))
    obj.owner_references = refs
