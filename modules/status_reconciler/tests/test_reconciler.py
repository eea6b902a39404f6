"""
Tests for the status reconciler: poll and webhook channels.
"""

import json
from unittest.mock import AsyncMock

import pytest

from modules.pipeline_coordinator.coordinator import PipelineCoordinator
from modules.status_reconciler.mapping import NO_VIDEO_URL_ERROR
from modules.status_reconciler.reconciler import StatusReconciler
from modules.status_reconciler.signatures import compute_signature
from modules.video_provider.base import ProviderResult, ProviderState
from shared.errors import (
    JobNotFoundError,
    RetryableError,
    UnknownProviderStateError,
    ValidationError,
    WebhookSignatureError,
)
from shared.models.composite import ClipStatus, CompositeStatus
from shared.models.job import JobStatus


def _signed(payload, secret):
    body = json.dumps(payload).encode("utf-8")
    return body, f"sha256={compute_signature(body, secret)}"


# ----------------------------------------------------------------------
# Polling
# ----------------------------------------------------------------------

@pytest.mark.asyncio
async def test_poll_queued_with_position(reconciler, fake_provider, processing_job):
    job = await processing_job("req-1")
    fake_provider.set_status("req-1", ProviderState.QUEUED, raw_state="IN_QUEUE", queue_position=3)

    updated = await reconciler.poll_job(job.id)

    assert updated.status == JobStatus.PROCESSING
    assert updated.progress == 19


@pytest.mark.asyncio
async def test_poll_running_then_completed(reconciler, fake_provider, processing_job):
    job = await processing_job("req-1", metadata={"duration": "5"})

    fake_provider.set_status("req-1", ProviderState.RUNNING, raw_state="IN_PROGRESS")
    assert (await reconciler.poll_job(job.id)).progress == 50

    fake_provider.set_status("req-1", ProviderState.SUCCEEDED, raw_state="COMPLETED")
    fake_provider.results["req-1"] = ProviderResult(video_url="https://cdn.fal.media/out.mp4")
    done = await reconciler.poll_job(job.id)

    assert done.status == JobStatus.COMPLETED
    assert done.progress == 100
    assert done.result.url == "https://cdn.fal.media/out.mp4"
    assert done.result.duration == 5.0


@pytest.mark.asyncio
async def test_progress_never_moves_backwards(reconciler, fake_provider, processing_job):
    job = await processing_job("req-1")
    fake_provider.set_status("req-1", ProviderState.RUNNING, raw_state="IN_PROGRESS")
    await reconciler.poll_job(job.id)

    fake_provider.set_status("req-1", ProviderState.QUEUED, raw_state="IN_QUEUE", queue_position=3)
    updated = await reconciler.poll_job(job.id)

    assert updated.progress == 50


@pytest.mark.asyncio
async def test_success_without_video_url_is_retryable_failure(reconciler, fake_provider, processing_job):
    job = await processing_job("req-1")
    fake_provider.set_status("req-1", ProviderState.SUCCEEDED, raw_state="COMPLETED")

    updated = await reconciler.poll_job(job.id)

    assert updated.status == JobStatus.PENDING
    assert updated.retry_count == 1
    assert updated.error == NO_VIDEO_URL_ERROR
    assert updated.provider_handle is None


@pytest.mark.asyncio
async def test_retryable_provider_error_requeues(reconciler, fake_provider, processing_job):
    job = await processing_job("req-1")
    fake_provider.set_status("req-1", ProviderState.ERRORED, raw_state="FAILED", error="Rate limit exceeded")

    updated = await reconciler.poll_job(job.id)

    assert updated.status == JobStatus.PENDING
    assert updated.retry_count == 1


@pytest.mark.asyncio
async def test_terminal_provider_error_fails_job(reconciler, fake_provider, processing_job):
    job = await processing_job("req-1")
    fake_provider.set_status("req-1", ProviderState.ERRORED, raw_state="FAILED", error="NSFW content detected")

    updated = await reconciler.poll_job(job.id)

    assert updated.status == JobStatus.FAILED
    assert updated.retry_count == 0
    assert updated.error == "NSFW content detected"


@pytest.mark.asyncio
async def test_poll_errors_are_swallowed(reconciler, fake_provider, processing_job):
    job = await processing_job("req-1")
    fake_provider.poll_error = RetryableError("fal network error")

    updated = await reconciler.poll_job(job.id)

    assert updated.status == JobStatus.PROCESSING
    assert updated.progress == 5


@pytest.mark.asyncio
async def test_poll_skips_pending_jobs(reconciler, fake_provider, queue):
    job = await queue.create(owner_id="user-1")

    updated = await reconciler.poll_job(job.id)

    assert updated.status == JobStatus.PENDING
    assert fake_provider.poll_calls == 0


@pytest.mark.asyncio
async def test_poll_unknown_job(reconciler):
    with pytest.raises(JobNotFoundError):
        await reconciler.poll_job("job_missing")


@pytest.mark.asyncio
async def test_stale_running_after_completion_is_ignored(reconciler, fake_provider, processing_job, queue):
    job = await processing_job("req-1")
    fake_provider.set_status(
        "req-1",
        ProviderState.SUCCEEDED,
        raw_state="COMPLETED",
        result=ProviderResult(video_url="https://cdn.fal.media/out.mp4"),
    )
    await reconciler.poll_job(job.id)
    completed = await queue.get(job.id)

    fake_provider.set_status("req-1", ProviderState.RUNNING, raw_state="IN_PROGRESS")
    status = fake_provider.statuses["req-1"]
    after = await reconciler.apply_job_status(job.id, status)

    assert after.model_dump() == completed.model_dump()


# ----------------------------------------------------------------------
# Webhooks
# ----------------------------------------------------------------------

@pytest.mark.asyncio
async def test_webhook_completes_job(reconciler, processing_job, webhook_secret):
    job = await processing_job("req-1")
    body, signature = _signed({
        "request_id": "req-1",
        "status": "OK",
        "payload": {"video": {"url": "https://cdn.fal.media/out.mp4"}},
    }, webhook_secret)

    outcome = await reconciler.handle_webhook("fal", body, signature)

    assert outcome.matched is True
    assert outcome.kind == "job"
    assert outcome.record_id == job.id
    assert outcome.status == "completed"
    assert outcome.progress == 100
    assert outcome.video_url == "https://cdn.fal.media/out.mp4"


@pytest.mark.asyncio
async def test_duplicate_terminal_webhook_is_noop(reconciler, processing_job, queue, webhook_secret):
    job = await processing_job("req-1")
    body, signature = _signed({
        "request_id": "req-1",
        "status": "OK",
        "payload": {"video": {"url": "https://cdn.fal.media/out.mp4"}},
    }, webhook_secret)

    await reconciler.handle_webhook("fal", body, signature)
    first = await queue.get(job.id)
    await reconciler.handle_webhook("fal", body, signature)
    second = await queue.get(job.id)

    assert first.model_dump() == second.model_dump()


@pytest.mark.asyncio
async def test_webhook_with_bad_signature_changes_nothing(reconciler, processing_job, queue):
    job = await processing_job("req-1")
    before = await queue.get(job.id)
    body = json.dumps({"request_id": "req-1", "status": "ERROR", "error": "boom"}).encode("utf-8")

    with pytest.raises(WebhookSignatureError):
        await reconciler.handle_webhook("fal", body, "sha256=" + "0" * 64)
    with pytest.raises(WebhookSignatureError):
        await reconciler.handle_webhook("fal", body, None)

    assert (await queue.get(job.id)).model_dump() == before.model_dump()


@pytest.mark.asyncio
async def test_webhook_rejected_without_secret(queue, store, fake_provider, coordinator, processing_job):
    reconciler = StatusReconciler(queue, store, fake_provider, coordinator, webhook_secret="")
    await processing_job("req-1")
    body, signature = _signed({"request_id": "req-1", "status": "ERROR"}, "anything")

    with pytest.raises(WebhookSignatureError):
        await reconciler.handle_webhook("fal", body, signature)


@pytest.mark.asyncio
async def test_webhook_malformed_body(reconciler, webhook_secret):
    body = b"not json"
    signature = compute_signature(body, webhook_secret)

    with pytest.raises(ValidationError):
        await reconciler.handle_webhook("fal", body, signature)

    body, signature = _signed({"status": "OK"}, webhook_secret)
    with pytest.raises(ValidationError):
        await reconciler.handle_webhook("fal", body, signature)


@pytest.mark.asyncio
async def test_webhook_unknown_status_raises(reconciler, processing_job, webhook_secret):
    await processing_job("req-1")
    body, signature = _signed({"request_id": "req-1", "status": "PAUSED"}, webhook_secret)

    with pytest.raises(UnknownProviderStateError):
        await reconciler.handle_webhook("fal", body, signature)


@pytest.mark.asyncio
async def test_webhook_for_unknown_handle(reconciler, webhook_secret):
    body, signature = _signed({"request_id": "req-unknown", "status": "IN_PROGRESS"}, webhook_secret)

    outcome = await reconciler.handle_webhook("fal", body, signature)

    assert outcome.matched is False
    assert outcome.provider_handle == "req-unknown"


@pytest.mark.asyncio
async def test_webhook_for_other_provider_rejected(reconciler, webhook_secret):
    body, signature = _signed({"id": "pred-1", "status": "succeeded"}, webhook_secret)

    with pytest.raises(ValidationError):
        await reconciler.handle_webhook("replicate", body, signature)


# ----------------------------------------------------------------------
# Composite clips
# ----------------------------------------------------------------------

@pytest.mark.asyncio
async def test_clip_webhooks_out_of_order_stitch_once(
    reconciler, generating_composite, store, stitch_hook, webhook_secret
):
    composite = await generating_composite()

    for index in (2, 1, 3):
        body, signature = _signed({
            "request_id": f"req-clip-{index}",
            "status": "OK",
            "payload": {"video": {"url": f"https://cdn.fal.media/clip{index}.mp4"}},
        }, webhook_secret)
        outcome = await reconciler.handle_webhook("fal", body, signature)
        assert outcome.kind == "clip"
        assert outcome.clip_index == index
        assert outcome.status == "completed"

    stored = await store.get(composite.id)
    assert stored.current_clip == 3
    assert stored.status == CompositeStatus.STITCHING
    stitch_hook.assert_awaited_once()

    # Redelivery of the last webhook changes nothing
    await reconciler.handle_webhook("fal", body, signature)
    stitch_hook.assert_awaited_once()


@pytest.mark.asyncio
async def test_clip_failure_recorded_without_cascade(reconciler, generating_composite, store, fake_provider):
    composite = await generating_composite()
    fake_provider.set_status("req-clip-1", ProviderState.ERRORED, raw_state="FAILED", error="model crashed")

    clip = await reconciler.poll_clip(composite.clips[0].id)

    assert clip.status == ClipStatus.FAILED
    assert clip.error_message == "model crashed"
    assert (await store.get(composite.id)).status == CompositeStatus.GENERATING_CLIPS


@pytest.mark.asyncio
async def test_poll_composite_applies_each_clip(reconciler, generating_composite, store, fake_provider, stitch_hook):
    composite = await generating_composite()
    for clip in composite.clips:
        handle = clip.provider_handle
        fake_provider.set_status(handle, ProviderState.SUCCEEDED, raw_state="COMPLETED")
        fake_provider.results[handle] = ProviderResult(video_url=f"https://cdn.fal.media/{handle}.mp4")

    updated = await reconciler.poll_composite(composite.id)

    assert updated.status == CompositeStatus.STITCHING
    assert all(c.status == ClipStatus.COMPLETED for c in updated.clips)
    stitch_hook.assert_awaited_once()


@pytest.mark.asyncio
async def test_redelivered_clip_webhook_retries_stitching(
    reconciler, generating_composite, store, stitch_hook, webhook_secret, monkeypatch
):
    """Test that a repeat completion report re-evaluates a composite stuck after a failed stitching move."""
    composite = await generating_composite()
    original = store.transition
    attempts = []

    async def flaky_transition(composite_id, expected, new_status, fields=None):
        if new_status == CompositeStatus.STITCHING and not attempts:
            attempts.append(new_status)
            raise RetryableError("Database temporarily unavailable")
        return await original(composite_id, expected, new_status, fields)

    monkeypatch.setattr(store, "transition", flaky_transition)

    deliveries = [
        _signed({
            "request_id": f"req-clip-{index}",
            "status": "OK",
            "payload": {"video": {"url": f"https://cdn.fal.media/clip{index}.mp4"}},
        }, webhook_secret)
        for index in (1, 2, 3)
    ]
    for body, signature in deliveries[:2]:
        await reconciler.handle_webhook("fal", body, signature)

    body, signature = deliveries[2]
    with pytest.raises(RetryableError):
        await reconciler.handle_webhook("fal", body, signature)
    assert (await store.get(composite.id)).status == CompositeStatus.GENERATING_CLIPS

    await reconciler.handle_webhook("fal", body, signature)

    assert (await store.get(composite.id)).status == CompositeStatus.STITCHING
    stitch_hook.assert_awaited_once()


@pytest.mark.asyncio
async def test_clip_terminal_transitions_notify_composite_change(
    queue, store, fake_provider, coordinator, generating_composite
):
    changed = AsyncMock()
    reconciler = StatusReconciler(
        queue, store, fake_provider, coordinator, webhook_secret="secret", on_composite_changed=changed
    )
    composite = await generating_composite()
    fake_provider.set_status("req-clip-1", ProviderState.RUNNING, raw_state="IN_PROGRESS")
    fake_provider.set_status("req-clip-2", ProviderState.ERRORED, raw_state="FAILED", error="model crashed")
    fake_provider.set_status(
        "req-clip-3",
        ProviderState.SUCCEEDED,
        raw_state="COMPLETED",
        result=ProviderResult(video_url="https://cdn.fal.media/clip3.mp4"),
    )

    await reconciler.poll_clip(composite.clips[0].id)
    changed.assert_not_awaited()

    await reconciler.poll_clip(composite.clips[1].id)
    await reconciler.poll_clip(composite.clips[2].id)

    assert changed.await_count == 2
    changed.assert_awaited_with(composite.id)


@pytest.mark.asyncio
async def test_cascading_clip_failure_notifies_after_composite_fails(
    queue, store, fake_provider, generating_composite
):
    cascading = PipelineCoordinator(store, fail_on_clip_failure=True)
    seen = []

    async def record_status(composite_id):
        seen.append((await store.get(composite_id)).status)

    reconciler = StatusReconciler(
        queue, store, fake_provider, cascading, webhook_secret="secret", on_composite_changed=record_status
    )
    composite = await generating_composite()
    fake_provider.set_status("req-clip-1", ProviderState.ERRORED, raw_state="FAILED", error="model crashed")

    await reconciler.poll_clip(composite.clips[0].id)

    assert seen == [CompositeStatus.FAILED]
