"""Shared pytest fixtures and configuration."""

import os
import pytest
from freezegun import freeze_time

# Set test environment variables
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("LLM_PROVIDER", "anthropic")
os.environ.setdefault("LLM_MODEL", "claude-sonnet-4-20250514")
os.environ.setdefault("LEAD_CANDIDATE_LIMIT", "3")
os.environ.setdefault("VIEWING_TOKEN_TTL_DAYS", "7")
os.environ.setdefault("PUBLIC_URL", "homebridge.test")
os.environ.setdefault("LOG_MASK_SENSITIVE", "true")

from src.models.user import Actor
from src.services.app import HomeBridge
from src.services.blob_store import InMemoryBlobStore
from src.services.memory_storage import InMemoryStorage
from src.services.notifications import NotificationBroadcaster
from tests.utils.factories import make_admin, make_agent, make_buyer, make_seller
from tests.utils.helpers import FakeRenderer, RecordingConnection, seed


@pytest.fixture
def storage():
    """Fresh in-memory storage."""
    return InMemoryStorage()


@pytest.fixture
def renderer():
    return FakeRenderer()


@pytest.fixture
def blob_store():
    return InMemoryBlobStore()


@pytest.fixture
def broadcaster():
    return NotificationBroadcaster(stale_seconds=60)


@pytest.fixture
def app(storage, renderer, blob_store, broadcaster):
    """HomeBridge wired to in-memory storage and a fake renderer."""
    return HomeBridge.create(
        storage=storage,
        renderer=renderer,
        blob_store=blob_store,
        broadcaster=broadcaster,
    )


@pytest.fixture
def buyer(storage):
    return seed(storage, make_buyer())


@pytest.fixture
def seller(storage):
    return seed(storage, make_seller())


@pytest.fixture
def agent(storage):
    return seed(storage, make_agent(state="CA"))


@pytest.fixture
def admin(storage):
    return seed(storage, make_admin())


@pytest.fixture
def buyer_actor(buyer):
    return Actor.of(buyer)


@pytest.fixture
def agent_actor(agent):
    return Actor.of(agent)


@pytest.fixture
def seller_actor(seller):
    return Actor.of(seller)


@pytest.fixture
def admin_actor(admin):
    return Actor.of(admin)


@pytest.fixture
def connection():
    return RecordingConnection()


@pytest.fixture
def freeze_time_fixture():
    """Fixture for freezing time in tests."""
    with freeze_time("2024-12-09 12:00:00", real_asyncio=True) as frozen_time:
        yield frozen_time
