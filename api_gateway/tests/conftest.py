"""
Shared fixtures for API gateway tests.

Services are built onto app.state with the scripted provider and an
in-memory store; the lifespan (and its background loops) is not started.
"""

import json

import pytest
from fastapi.testclient import TestClient

from api_gateway.dependencies import get_current_user
from api_gateway.main import app, init_services
from modules.job_store.memory import InMemoryCompositeJobStore
from modules.status_reconciler.signatures import compute_signature
from shared.config import settings

USER_ID = "00000000-0000-0000-0000-000000000001"
OTHER_USER_ID = "00000000-0000-0000-0000-000000000002"

THREE_PART_SCRIPT = (
    "This is honestly the best pizza place in town! "
    "I ordered the margherita last Friday and it arrived hot and fresh. "
    "The crust was perfectly crispy and the sauce tasted homemade. "
    "Try it for yourself today."
)


@pytest.fixture
def services(fake_provider):
    """app.state populated with fresh services."""
    init_services(app.state, provider=fake_provider, store=InMemoryCompositeJobStore())
    return app.state


@pytest.fixture
def current_user():
    """User returned by the overridden auth dependency; tests may reassign user_id."""
    return {"user_id": USER_ID}


@pytest.fixture
def client(services, current_user):
    """Test client authenticated as current_user."""
    async def _mock_get_current_user():
        return current_user

    app.dependency_overrides[get_current_user] = _mock_get_current_user
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def sign():
    """Factory: JSON-encode a payload and sign it with the configured webhook secret."""

    def _sign(payload):
        body = json.dumps(payload).encode("utf-8")
        return body, compute_signature(body, settings.webhook_secret)

    return _sign
