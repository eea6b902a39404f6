"""
Shared fixtures for status reconciler tests.
"""

from unittest.mock import AsyncMock

import pytest

from modules.job_queue.queue import JobQueue
from modules.job_store.memory import InMemoryCompositeJobStore
from modules.pipeline_coordinator.coordinator import CompositeRequest, PipelineCoordinator
from modules.status_reconciler.reconciler import StatusReconciler
from shared.models.composite import ClipStatus

WEBHOOK_SECRET = "reconciler-test-secret"

THREE_PART_SCRIPT = (
    "This is honestly the best pizza place in town! "
    "I ordered the margherita last Friday and it arrived hot and fresh. "
    "The crust was perfectly crispy and the sauce tasted homemade. "
    "Try it for yourself today."
)


@pytest.fixture
def webhook_secret():
    return WEBHOOK_SECRET


@pytest.fixture
def queue():
    return JobQueue(default_max_retries=3)


@pytest.fixture
def store():
    return InMemoryCompositeJobStore()


@pytest.fixture
def stitch_hook():
    return AsyncMock()


@pytest.fixture
def coordinator(store, stitch_hook):
    return PipelineCoordinator(store, fail_on_clip_failure=False, stitch_hook=stitch_hook)


@pytest.fixture
def reconciler(queue, store, fake_provider, coordinator):
    return StatusReconciler(queue, store, fake_provider, coordinator, webhook_secret=WEBHOOK_SECRET)


@pytest.fixture
def processing_job(queue):
    """Factory: a job bound to `handle` and in processing."""

    async def _make(handle="req-1", **kwargs):
        job = await queue.create(owner_id="user-1", **kwargs)
        return await queue.start_processing(job.id, handle)

    return _make


@pytest.fixture
def generating_composite(store, coordinator):
    """Factory: a three-clip composite with every clip bound to req-clip-N."""

    async def _make():
        composite = await coordinator.create_composite(CompositeRequest(
            owner_id="user-1",
            source_text=THREE_PART_SCRIPT,
            actor_id="actor-1",
        ))
        await coordinator.mark_generating(composite.id)
        for clip in composite.clips:
            await store.update_clip(
                clip.id,
                [ClipStatus.PENDING],
                {"status": ClipStatus.GENERATING_VIDEO, "provider_handle": f"req-clip-{clip.clip_index}"},
            )
        return await store.get(composite.id)

    return _make
