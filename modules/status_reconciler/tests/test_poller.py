"""
Tests for the background status poller.
"""

import asyncio

import pytest

from modules.status_reconciler.poller import StatusPoller
from modules.video_provider.base import ProviderResult, ProviderState
from shared.errors import RetryableError
from shared.models.composite import ClipStatus, CompositeStatus
from shared.models.job import JobStatus


@pytest.mark.asyncio
async def test_poll_once_covers_jobs_and_clips(
    reconciler, queue, store, fake_provider, processing_job, generating_composite
):
    job = await processing_job("req-1")
    composite = await generating_composite()
    fake_provider.set_status(
        "req-1",
        ProviderState.SUCCEEDED,
        raw_state="COMPLETED",
        result=ProviderResult(video_url="https://cdn.fal.media/job.mp4"),
    )
    fake_provider.set_status("req-clip-1", ProviderState.RUNNING, raw_state="IN_PROGRESS")

    poller = StatusPoller(reconciler, queue, store, interval_seconds=60, batch_size=50)
    polled = await poller.poll_once()

    assert polled == 4
    assert (await queue.get(job.id)).status == JobStatus.COMPLETED
    clip = (await store.get(composite.id)).clip(1)
    assert clip.status == ClipStatus.GENERATING_VIDEO


@pytest.mark.asyncio
async def test_poll_once_respects_batch_size(reconciler, queue, store, fake_provider, processing_job):
    for i in range(3):
        await processing_job(f"req-{i}")

    poller = StatusPoller(reconciler, queue, store, interval_seconds=60, batch_size=2)

    assert await poller.poll_once() == 2
    assert fake_provider.poll_calls == 2


@pytest.mark.asyncio
async def test_start_and_stop(reconciler, queue, store, fake_provider, processing_job):
    await processing_job("req-1")
    poller = StatusPoller(reconciler, queue, store, interval_seconds=0.01)

    poller.start()
    await asyncio.sleep(0.05)
    await poller.stop()

    assert fake_provider.poll_calls >= 1
    calls = fake_provider.poll_calls
    await asyncio.sleep(0.03)
    assert fake_provider.poll_calls == calls


def _fail_stitching_once(store, monkeypatch):
    original = store.transition
    failed = []

    async def flaky_transition(composite_id, expected, new_status, fields=None):
        if new_status == CompositeStatus.STITCHING and not failed:
            failed.append(composite_id)
            raise RetryableError("Database temporarily unavailable")
        return await original(composite_id, expected, new_status, fields)

    monkeypatch.setattr(store, "transition", flaky_transition)
    return failed


@pytest.mark.asyncio
async def test_sweep_recovers_composite_after_failed_stitching_transition(
    reconciler, queue, store, fake_provider, generating_composite, stitch_hook, monkeypatch
):
    """Test that a composite whose stitching move failed is moved on the next sweep."""
    composite = await generating_composite()
    for clip in composite.clips:
        handle = clip.provider_handle
        fake_provider.set_status(handle, ProviderState.SUCCEEDED, raw_state="COMPLETED")
        fake_provider.results[handle] = ProviderResult(video_url=f"https://cdn.fal.media/{handle}.mp4")
    failed = _fail_stitching_once(store, monkeypatch)

    await reconciler.poll_clip(composite.clips[0].id)
    await reconciler.poll_clip(composite.clips[1].id)
    with pytest.raises(RetryableError):
        await reconciler.poll_clip(composite.clips[2].id)

    stuck = await store.get(composite.id)
    assert failed == [composite.id]
    assert stuck.status == CompositeStatus.GENERATING_CLIPS
    assert stuck.current_clip == stuck.total_clips == 3

    poller = StatusPoller(reconciler, queue, store, interval_seconds=60)
    await poller.poll_once()

    assert (await store.get(composite.id)).status == CompositeStatus.STITCHING
    stitch_hook.assert_awaited_once()


@pytest.mark.asyncio
async def test_sweep_leaves_incomplete_composites(reconciler, queue, store, generating_composite):
    composite = await generating_composite()

    poller = StatusPoller(reconciler, queue, store, interval_seconds=60)

    assert await poller.sweep_completed_composites() == 0
    assert (await store.get(composite.id)).status == CompositeStatus.GENERATING_CLIPS
