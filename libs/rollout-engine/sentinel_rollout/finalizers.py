"""Finalizer bookkeeping shared by the revision and phase object controllers."""

import logging

from .document import Document
from .store.base import ClusterStore
from .watcher import WatchMultiplexer

logger = logging.getLogger(__name__)


async def ensure_finalizer(store: ClusterStore, obj: Document, finalizer: str) -> None:
    """Add ``finalizer`` to ``obj`` if it is missing."""
    finalizers = obj.finalizers
    if finalizer in finalizers:
        return
    obj.finalizers = finalizers + [finalizer]
    await store.update(obj)


async def handle_deletion(
    store: ClusterStore, obj: Document, watcher: WatchMultiplexer, finalizer: str
) -> None:
    """Remove ``finalizer`` and release the watches of a torn down object."""
    finalizers = obj.finalizers
    if finalizer in finalizers:
        obj.finalizers = [f for f in finalizers if f != finalizer]
        await store.update(obj)
        logger.info(f"Removed finalizer from {obj.kind} {obj.key}")

    watcher.free(obj)
