"""
Tests for the resubmission dispatcher.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from api_gateway.services.submission_service import MISSING_PROMPT_ERROR, SubmissionService
from api_gateway.worker import ResubmissionDispatcher
from modules.job_queue.queue import JobQueue
from modules.job_store.memory import InMemoryCompositeJobStore
from modules.pipeline_coordinator.coordinator import CompositeRequest, PipelineCoordinator
from shared.errors import GenerationError
from shared.models.composite import ClipStatus
from shared.models.job import JobPriority, JobStatus

SCRIPT = (
    "This is honestly the best pizza place in town! "
    "I ordered the margherita last Friday and it arrived hot and fresh. "
    "The crust was perfectly crispy and the sauce tasted homemade. "
    "Try it for yourself today."
)


@pytest.fixture
def queue():
    return JobQueue(default_max_retries=3)


@pytest.fixture
def store():
    return InMemoryCompositeJobStore()


@pytest.fixture
def coordinator(store):
    return PipelineCoordinator(store, fail_on_clip_failure=False)


@pytest.fixture
def submission(queue, store, fake_provider, coordinator):
    return SubmissionService(queue, store, fake_provider, coordinator, status_cache=AsyncMock())


@pytest.fixture
def dispatcher(submission, queue, store):
    return ResubmissionDispatcher(submission, queue, store, interval_seconds=0.01, batch_size=10)


@pytest.mark.asyncio
async def test_dispatch_submits_pending_jobs_by_priority(dispatcher, queue, fake_provider):
    low = await queue.create(owner_id="user-1", priority=JobPriority.LOW, metadata={"prompt": "low"})
    urgent = await queue.create(owner_id="user-1", priority=JobPriority.URGENT, metadata={"prompt": "urgent"})

    attempted = await dispatcher.dispatch_once()

    assert attempted == 2
    assert [request.prompt for _, request in fake_provider.submitted] == ["urgent", "low"]
    assert (await queue.get(low.id)).status == JobStatus.PROCESSING
    assert (await queue.get(urgent.id)).status == JobStatus.PROCESSING


@pytest.mark.asyncio
async def test_dispatch_respects_batch_size(submission, queue, store, fake_provider):
    dispatcher = ResubmissionDispatcher(submission, queue, store, batch_size=1)
    for i in range(3):
        await queue.create(owner_id="user-1", metadata={"prompt": f"job {i}"})

    await dispatcher.dispatch_once()

    assert len(fake_provider.submitted) == 1
    assert len(await queue.list_pending()) == 2


@pytest.mark.asyncio
async def test_dispatch_fails_job_without_prompt(dispatcher, queue, fake_provider):
    """Test that a job without a prompt fails terminally and does not stop the batch."""
    broken = await queue.create(owner_id="user-1", metadata={})
    ok = await queue.create(owner_id="user-1", metadata={"prompt": "fine"})

    attempted = await dispatcher.dispatch_once()

    assert attempted == 2
    failed = await queue.get(broken.id)
    assert failed.status == JobStatus.FAILED
    assert failed.error == MISSING_PROMPT_ERROR
    assert (await queue.get(ok.id)).status == JobStatus.PROCESSING


@pytest.mark.asyncio
async def test_dispatch_resubmits_retried_clips(dispatcher, submission, coordinator, store, fake_provider):
    fake_provider.submit_error = GenerationError("invalid prompt")
    composite = await submission.create_composite(CompositeRequest(
        owner_id="user-1", source_text=SCRIPT, actor_id="actor-1"
    ))
    fake_provider.submit_error = None
    await coordinator.retry_clip(composite.id, 2)

    attempted = await dispatcher.dispatch_once()

    assert attempted == 1
    clip = (await store.get(composite.id)).clip(2)
    assert clip.status == ClipStatus.GENERATING_VIDEO
    assert clip.provider_handle == "req-1"


@pytest.mark.asyncio
async def test_dispatch_skips_clips_of_pending_composites(dispatcher, coordinator, fake_provider):
    await coordinator.create_composite(CompositeRequest(
        owner_id="user-1", source_text=SCRIPT, actor_id="actor-1"
    ))

    assert await dispatcher.dispatch_once() == 0
    assert fake_provider.submitted == []


@pytest.mark.asyncio
async def test_start_and_stop(dispatcher, queue, fake_provider):
    await queue.create(owner_id="user-1", metadata={"prompt": "background"})

    dispatcher.start()
    await asyncio.sleep(0.05)
    await dispatcher.stop()

    assert len(fake_provider.submitted) == 1
    assert dispatcher._task is None
