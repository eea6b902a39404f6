"""
Root pytest configuration.

Provides environment defaults so shared.config.settings loads without a .env
file, and an in-memory video provider shared by module and API tests.
"""

import itertools
import os

os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("JOB_STORE_BACKEND", "memory")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret-with-at-least-32-characters")
os.environ.setdefault("WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("VIDEO_PROVIDER", "fal")
os.environ.setdefault("FAL_API_KEY", "test-fal-key")

import pytest  # noqa: E402

from modules.video_provider.base import (  # noqa: E402
    ProviderResult,
    ProviderState,
    ProviderStatus,
    VideoProvider,
    map_state,
    require_field,
)
from modules.video_provider.fal_client import FAL_STATE_TABLE, FalStatus, extract_result  # noqa: E402


class FakeVideoProvider(VideoProvider):
    """
    Scripted provider speaking the fal vocabulary.

    Tests set the status returned for a handle with set_status(); submit()
    hands out req-1, req-2, ... unless submit_error is set.
    """

    name = "fal"

    def __init__(self):
        self.statuses = {}
        self.results = {}
        self.submitted = []
        self.submit_error = None
        self.poll_error = None
        self.poll_calls = 0
        self._handles = itertools.count(1)

    def set_status(self, handle, state, raw_state=None, queue_position=None, error=None, result=None):
        self.statuses[handle] = ProviderStatus(
            handle=handle,
            state=state,
            raw_state=raw_state or state.value,
            queue_position=queue_position,
            error=error,
            result=result,
        )

    async def submit(self, request):
        if self.submit_error is not None:
            raise self.submit_error
        handle = f"req-{next(self._handles)}"
        self.submitted.append((handle, request))
        return handle

    async def poll_status(self, handle):
        self.poll_calls += 1
        if self.poll_error is not None:
            raise self.poll_error
        return self.statuses.get(handle) or ProviderStatus(
            handle=handle, state=ProviderState.QUEUED, raw_state=FalStatus.IN_QUEUE.value
        )

    async def fetch_result(self, handle):
        return self.results.get(handle) or ProviderResult()

    def parse_webhook(self, payload):
        handle = require_field(payload, "request_id")
        raw = require_field(payload, "status")
        state = map_state(self.name, FalStatus, FAL_STATE_TABLE, raw, handle)
        body = payload.get("payload")
        result = extract_result(body) if state == ProviderState.SUCCEEDED and isinstance(body, dict) else None
        return ProviderStatus(
            handle=handle,
            state=state,
            raw_state=raw,
            queue_position=payload.get("queue_position"),
            error=payload.get("error"),
            result=result,
        )


@pytest.fixture
def fake_provider():
    """Scripted in-memory video provider."""
    return FakeVideoProvider()
