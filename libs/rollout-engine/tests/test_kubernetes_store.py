"""Tests for the Kubernetes backed cluster store."""

import json
import threading
from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client.exceptions import ApiException
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import ResourceNotFoundError

from sentinel_rollout import (
    AlreadyExistsError,
    ConflictError,
    Document,
    KubernetesStore,
    NotFoundError,
    StoreError,
)
from sentinel_rollout.models import LabelSelector
from sentinel_rollout.store.base import WatchEventType
from sentinel_rollout.store.kubernetes import MERGE_PATCH, _is_retryable, map_api_exception

from factories import CONFIGMAP, configmap


def api_exception(status: int, reason: str = "", body_reason: str = "") -> ApiException:
    exc = ApiException(status=status, reason=reason)
    if body_reason:
        exc.body = json.dumps({"kind": "Status", "reason": body_reason})
    return exc


@pytest.fixture
def resource():
    """Mock dynamic resource for ConfigMaps."""
    return MagicMock()


@pytest.fixture
def mock_dynamic_client(resource):
    """Mock dynamic client resolving every kind to ``resource``."""
    client = MagicMock(spec=DynamicClient)
    client.resources = MagicMock()
    client.resources.get.return_value = resource
    return client


@pytest.fixture
def k8s_store(mock_dynamic_client):
    return KubernetesStore(mock_dynamic_client)


class TestErrorMapping:
    """Test ApiException translation."""

    def test_not_found(self):
        """Test that 404 maps to NotFoundError."""
        assert isinstance(map_api_exception(api_exception(404), "cm"), NotFoundError)

    def test_already_exists(self):
        """Test that 409 with reason AlreadyExists maps to AlreadyExistsError."""
        error = map_api_exception(api_exception(409, "Conflict", "AlreadyExists"), "cm")

        assert isinstance(error, AlreadyExistsError)

    def test_conflict(self):
        """Test that other 409s are optimistic concurrency conflicts."""
        error = map_api_exception(api_exception(409, "Conflict", "Conflict"), "cm")

        assert isinstance(error, ConflictError)

    def test_other_status(self):
        """Test that everything else keeps its status code."""
        error = map_api_exception(api_exception(403, "Forbidden"), "cm")

        assert type(error) is StoreError
        assert error.status == 403

    def test_retryable(self):
        """Test which responses are retried."""
        assert _is_retryable(api_exception(429))
        assert _is_retryable(api_exception(503))
        assert not _is_retryable(api_exception(404))
        assert not _is_retryable(ValueError("nope"))


class TestKubernetesStore:
    """Test store calls against a mocked dynamic client."""

    @pytest.mark.asyncio
    async def test_get(self, k8s_store, mock_dynamic_client, resource):
        """Test get resolves the resource and wraps the result."""
        resource.get.return_value = {**configmap("cfg", namespace="default"), "metadata": {"name": "cfg", "namespace": "default", "uid": "u1"}}

        doc = await k8s_store.get(CONFIGMAP, "default", "cfg")

        mock_dynamic_client.resources.get.assert_called_with(api_version="v1", kind="ConfigMap")
        resource.get.assert_called_once_with(name="cfg", namespace="default")
        assert doc.uid == "u1"

    @pytest.mark.asyncio
    async def test_get_not_found(self, k8s_store, resource):
        """Test that a 404 surfaces as NotFoundError."""
        resource.get.side_effect = api_exception(404, "Not Found")

        with pytest.raises(NotFoundError):
            await k8s_store.get(CONFIGMAP, "default", "cfg")

    @pytest.mark.asyncio
    async def test_list_passes_selector(self, k8s_store, resource):
        """Test that label selectors are rendered for the API server."""
        resource.get.return_value = {"items": [{"metadata": {"name": "a"}}, {"metadata": {"name": "b"}}]}

        docs = await k8s_store.list(CONFIGMAP, namespace="default", selector=LabelSelector(match_labels={"app": "demo"}))

        resource.get.assert_called_once_with(namespace="default", label_selector="app=demo")
        assert [d.name for d in docs] == ["a", "b"]
        assert all(d.kind == "ConfigMap" for d in docs)

    @pytest.mark.asyncio
    async def test_create_refreshes_document(self, k8s_store, resource):
        """Test that the stored state is written back into the document."""
        obj = Document(configmap("cfg", namespace="default"))
        resource.create.return_value = {**obj.object, "metadata": {"name": "cfg", "namespace": "default", "resourceVersion": "7"}}

        await k8s_store.create(obj)

        resource.create.assert_called_once()
        assert obj.resource_version == "7"

    @pytest.mark.asyncio
    async def test_create_conflict(self, k8s_store, resource):
        """Test that an existing object raises AlreadyExistsError."""
        resource.create.side_effect = api_exception(409, "Conflict", "AlreadyExists")

        with pytest.raises(AlreadyExistsError):
            await k8s_store.create(Document(configmap("cfg", namespace="default")))

    @pytest.mark.asyncio
    async def test_patch_uses_merge_patch(self, k8s_store, resource):
        """Test that patches are sent as JSON merge patches."""
        obj = Document(configmap("cfg", namespace="default"))
        resource.patch.return_value = obj.object

        await k8s_store.patch(obj, {"data": {"key": "v2"}})

        resource.patch.assert_called_once_with(
            body={"data": {"key": "v2"}},
            name="cfg",
            namespace="default",
            content_type=MERGE_PATCH,
        )

    @pytest.mark.asyncio
    async def test_update_status_uses_subresource(self, k8s_store, resource):
        """Test that status is written through the status subresource."""
        status = MagicMock()
        status.replace.return_value = {"metadata": {"name": "cfg"}}
        resource.subresources = {"status": status}

        await k8s_store.update_status(Document(configmap("cfg", namespace="default")))

        status.replace.assert_called_once()
        resource.replace.assert_not_called()

    @pytest.mark.asyncio
    async def test_cluster_scoped_calls_have_no_namespace(self, k8s_store, resource):
        """Test that an empty namespace is sent as None."""
        resource.delete.return_value = None

        await k8s_store.delete(Document({"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": "team"}}))

        resource.delete.assert_called_once_with(name="team", namespace=None)

    @pytest.mark.asyncio
    async def test_has_api(self, k8s_store, mock_dynamic_client):
        """Test discovery lookups."""
        assert await k8s_store.has_api(CONFIGMAP) is True

        mock_dynamic_client.resources.get.side_effect = ResourceNotFoundError("gone")
        assert await k8s_store.has_api(CONFIGMAP) is False

    @pytest.mark.asyncio
    async def test_unknown_api_is_store_error(self, k8s_store, mock_dynamic_client):
        """Test that calls against an unserved API fail as store errors."""
        mock_dynamic_client.resources.get.side_effect = ResourceNotFoundError("gone")

        with pytest.raises(StoreError):
            await k8s_store.get(CONFIGMAP, "default", "cfg")

    @pytest.mark.asyncio
    async def test_aclose_stops_watch_threads(self, k8s_store, resource):
        """Test that closing the store releases watch threads blocked on the server."""
        released = threading.Event()

        def stream(**kwargs):
            yield {"type": "ADDED", "raw_object": {"metadata": {"name": "cfg", "resourceVersion": "1"}}}
            released.wait(5)

        resource.watch.side_effect = stream

        with patch("sentinel_rollout.store.kubernetes.watch") as mock_watch:
            mock_watch.Watch.return_value.stop.side_effect = released.set
            events = k8s_store.watch(CONFIGMAP, "default")

            event = await anext(events)
            assert event.type == WatchEventType.ADDED
            assert event.object.name == "cfg"
            assert k8s_store.open_watches == 1

            await k8s_store.aclose()

            assert released.is_set()
            assert k8s_store.open_watches == 0
            assert resource.watch.call_args.kwargs["watcher"] is mock_watch.Watch.return_value
            await events.aclose()
