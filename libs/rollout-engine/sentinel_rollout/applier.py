"""Applies member objects of a phase to the cluster."""

import copy
import logging
from typing import Optional

from .adapters import OBJECT_SET_LABEL, PausingOwner, member_label_value
from .document import Document
from .equality import deep_derivative
from .errors import NotFoundError
from .ownership import is_controlled_by, release_controller, set_controller_reference
from .store.base import ClusterStore
from .watcher import WatchMultiplexer

logger = logging.getLogger(__name__)


def _managed_fields(obj: Document) -> dict:
    return {k: v for k, v in obj.object.items() if k != "status"}


class ObjectApplier:
    """
    Drives a single member object towards its desired state.

    Only fields set in the desired object are managed: everything else on
    the live object is left alone. The applier never deletes.
    """

    def __init__(self, store: ClusterStore, watcher: WatchMultiplexer):
        self.store = store
        self.watcher = watcher

    async def apply(self, owner: PausingOwner, obj: Document) -> Document:
        """
        Apply a member object on behalf of its owner.

        Args:
            owner: Revision or phase object the member belongs to
            obj: Desired member object, updated in place

        Returns:
            The member object as it exists in the cluster, for probing

        Raises:
            StoreError: If a store call fails
        """
        owner_doc = owner.doc

        labels = obj.labels
        labels[OBJECT_SET_LABEL] = member_label_value(owner_doc)
        obj.labels = labels

        if not obj.namespace:
            obj.namespace = owner_doc.namespace

        set_controller_reference(owner_doc, obj)
        self.watcher.watch(owner_doc, obj)

        current: Optional[Document]
        try:
            current = await self.store.get(obj.gvk, obj.namespace, obj.name)
        except NotFoundError:
            current = None

        if owner.is_object_paused(obj):
            # Report live state only.
            if current is not None:
                obj.object = current.object
            logger.debug(f"{obj.kind} {obj.key} is paused, skipping")
            return obj

        if current is None:
            await self.store.create(obj)
            logger.info(f"Created {obj.kind} {obj.key}")
            return obj

        if not is_controlled_by(owner_doc, current):
            await self._take_ownership(owner_doc, current)

        if not deep_derivative(_managed_fields(obj), current.object):
            logger.info(f"Patching spec of {obj.kind} {obj.key}")
            await self.store.patch(current, copy.deepcopy(_managed_fields(obj)))

        obj.object = current.object
        return obj

    async def _take_ownership(self, owner: Document, current: Document) -> None:
        """
        Transfer control of ``current`` to ``owner``.

        Only ownerReferences are patched. The patch carries the observed
        resourceVersion, so of two owners racing for the object only one wins.
        """
        updated = current.deep_copy()
        release_controller(updated)
        set_controller_reference(owner, updated)

        logger.info(f"Patching ownership of {current.kind} {current.key} to {owner.kind} {owner.key}")
        await self.store.patch(
            current,
            {
                "metadata": {
                    "ownerReferences": updated.owner_references,
                    "resourceVersion": current.resource_version,
                }
            },
        )
