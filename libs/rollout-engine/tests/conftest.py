"""Pytest configuration and fixtures for rollout engine tests."""

import pytest
import pytest_asyncio

from factories import revision
from sentinel_rollout import InMemoryStore, Settings, WatchMultiplexer


@pytest.fixture
def settings():
    """Settings isolated from the environment."""
    return Settings(
        _env_file=None,
        teardown_requeue_seconds=5,
        dependency_requeue_seconds=30,
        default_revision_history_limit=5,
        phase_class="default",
        watch_restart_delay_seconds=0.01,
    )


@pytest.fixture
def store():
    """Empty in-memory cluster store."""
    return InMemoryStore()


@pytest_asyncio.fixture
async def watcher(store, settings):
    """Watch multiplexer, shut down after the test."""
    multiplexer = WatchMultiplexer(store, settings=settings)
    yield multiplexer
    await multiplexer.shutdown()


@pytest_asyncio.fixture
async def owner(store):
    """A stored revision usable as owner of member objects."""
    return await store.create(revision("owner", []))
