"""Tests for the in-memory cluster store."""

import asyncio
from contextlib import aclosing

import pytest

from sentinel_rollout import AlreadyExistsError, ConflictError, Document, NotFoundError
from sentinel_rollout.models import LabelSelector
from sentinel_rollout.store import InMemoryStore, StoreAction, WatchEventType

from factories import CONFIGMAP, configmap


def cm(name="cfg", **data) -> Document:
    return Document(configmap(name, namespace="default", **data))


class TestInMemoryStore:
    """Test the server side behaviors the engine relies on."""

    @pytest.mark.asyncio
    async def test_create_sets_server_fields(self, store):
        """Test that create fills uid, generation and resourceVersion."""
        obj = await store.create(cm())

        assert obj.uid
        assert obj.generation == 1
        assert obj.resource_version
        assert obj.creation_timestamp
        assert store.actions == [StoreAction("create", "", "ConfigMap", "default", "cfg")]

    @pytest.mark.asyncio
    async def test_create_twice_fails(self, store):
        """Test that identities are unique."""
        await store.create(cm())

        with pytest.raises(AlreadyExistsError):
            await store.create(cm())

    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        """Test that missing objects raise NotFoundError."""
        with pytest.raises(NotFoundError):
            await store.get(CONFIGMAP, "default", "nope")

    @pytest.mark.asyncio
    async def test_generation_tracks_content(self, store):
        """Test that only content changes bump the generation."""
        obj = await store.create(cm())

        obj.labels = {"a": "b"}
        await store.update(obj)
        assert obj.generation == 1

        obj.object["data"] = {"key": "changed"}
        await store.update(obj)
        assert obj.generation == 2

    @pytest.mark.asyncio
    async def test_update_ignores_status(self, store):
        """Test that update keeps the stored status and update_status writes it."""
        obj = await store.create(cm())

        obj.status["ready"] = True
        await store.update(obj)
        assert "ready" not in obj.status

        obj.status["ready"] = True
        await store.update_status(obj)
        assert (await store.get(CONFIGMAP, "default", "cfg")).status == {"ready": True}

    @pytest.mark.asyncio
    async def test_stale_resource_version_conflicts(self, store):
        """Test optimistic concurrency."""
        obj = await store.create(cm())
        stale = obj.deep_copy()

        obj.labels = {"a": "b"}
        await store.update(obj)

        stale.labels = {"c": "d"}
        with pytest.raises(ConflictError):
            await store.update(stale)

    @pytest.mark.asyncio
    async def test_patch_merges(self, store):
        """Test merge patches and their resourceVersion precondition."""
        obj = await store.create(cm(a="1", b="2"))
        version = obj.resource_version

        await store.patch(obj, {"data": {"a": "3", "b": None}})
        assert obj.object["data"] == {"a": "3"}
        assert obj.generation == 2

        with pytest.raises(ConflictError):
            await store.patch(obj, {"metadata": {"resourceVersion": version}})

    @pytest.mark.asyncio
    async def test_finalizers_delay_deletion(self, store):
        """Test that finalizers keep an object until they are removed."""
        obj = cm()
        obj.finalizers = ["example.io/cleanup"]
        await store.create(obj)

        await store.delete(obj)
        live = await store.get(CONFIGMAP, "default", "cfg")
        assert live.deletion_timestamp

        live.finalizers = []
        await store.update(live)

        with pytest.raises(NotFoundError):
            await store.get(CONFIGMAP, "default", "cfg")

    @pytest.mark.asyncio
    async def test_list_with_selector(self, store):
        """Test namespace and label filtering."""
        for name, labels in (("a", {"app": "demo"}), ("b", {"app": "other"})):
            obj = cm(name)
            obj.labels = labels
            await store.create(obj)
        other = Document(configmap("c", namespace="kube-system"))
        other.labels = {"app": "demo"}
        await store.create(other)

        selector = LabelSelector(match_labels={"app": "demo"})

        assert [d.name for d in await store.list(CONFIGMAP, namespace="default", selector=selector)] == ["a"]
        assert [d.name for d in await store.list(CONFIGMAP, selector=selector)] == ["a", "c"]

    @pytest.mark.asyncio
    async def test_watch_events(self, store):
        """Test that watches see changes in their namespace."""
        events = []

        async def consume():
            async with aclosing(store.watch(CONFIGMAP, "default")) as stream:
                async for event in stream:
                    events.append(event)
                    if len(events) == 3:
                        return

        task = asyncio.create_task(consume())
        await asyncio.sleep(0.01)
        assert store.active_watches == 1

        obj = await store.create(cm())
        obj.object["data"] = {"key": "v2"}
        await store.update(obj)
        await store.delete(obj)
        await asyncio.wait_for(task, timeout=1)

        assert [e.type for e in events] == [
            WatchEventType.ADDED,
            WatchEventType.MODIFIED,
            WatchEventType.DELETED,
        ]
        assert store.active_watches == 0

    @pytest.mark.asyncio
    async def test_has_api(self):
        """Test discovery restrictions."""
        store = InMemoryStore(available_apis=[])
        assert await store.has_api(CONFIGMAP) is False

        store.register_api(CONFIGMAP)
        assert await store.has_api(CONFIGMAP) is True
        assert await InMemoryStore().has_api(CONFIGMAP) is True
