"""
Composite endpoints.

Multi-clip testimonial submission, status, streaming and lifecycle actions.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Path, Request, status
from pydantic import BaseModel, Field
from shared.config import settings
from shared.errors import JobNotFoundError
from shared.logging import get_logger
from shared.models.composite import CompositeJob
from shared.models.job import JobPriority
from modules.job_store.base import CompositeJobStore
from modules.pipeline_coordinator.coordinator import CompositeRequest, PipelineCoordinator
from modules.progress_broadcaster.broadcaster import ProgressBroadcaster
from api_gateway.dependencies import (
    get_broadcaster,
    get_coordinator,
    get_current_user,
    get_job_store,
    get_status_cache,
    get_submission_service,
    verify_composite_ownership,
)
from api_gateway.services.event_stream import event_stream_response
from api_gateway.services.status_cache import StatusCache
from api_gateway.services.submission_service import SubmissionService

logger = get_logger(__name__)

router = APIRouter()


class CompositeSubmitRequest(BaseModel):
    """Request body for a multi-clip testimonial."""

    review_id: Optional[str] = None
    source_text: str = Field(..., min_length=1)
    actor_id: str = Field(..., min_length=1)
    voice_id: Optional[str] = None
    target_duration: int = Field(default_factory=lambda: settings.default_target_duration_seconds, gt=0, le=120)
    aspect_ratio: str = "9:16"
    priority: JobPriority = JobPriority.NORMAL


class StitchCompleteRequest(BaseModel):
    final_video_url: str = Field(..., min_length=1)
    thumbnail_url: Optional[str] = None
    actual_duration: Optional[float] = None


class CompositeFailRequest(BaseModel):
    error: str = Field(..., min_length=1)


def _composite_summary(composite: CompositeJob) -> dict:
    return {
        "composite_id": composite.id,
        "status": composite.status.value,
        "current_clip": composite.current_clip,
        "total_clips": composite.total_clips,
        "final_video_url": composite.final_video_url,
        "error": composite.error_message,
    }


async def _owned_composite(store: CompositeJobStore, composite_id: str, current_user: dict) -> CompositeJob:
    composite = await store.get(composite_id)
    if composite is None:
        raise JobNotFoundError(composite_id, kind="Composite")
    return verify_composite_ownership(composite, current_user)


@router.post("/composites", status_code=status.HTTP_201_CREATED)
async def submit_composite(
    request: CompositeSubmitRequest,
    current_user: dict = Depends(get_current_user),
    submission: SubmissionService = Depends(get_submission_service),
):
    """
    Split the script into clips, create the composite and submit every clip.

    Clips are submitted straight away, so composites are not prioritised;
    `priority` is validated and recorded in the submission log only.

    Returns:
        composite_id, status, total_clips and estimated_time in seconds
    """
    composite = await submission.create_composite(CompositeRequest(
        owner_id=current_user["user_id"],
        source_text=request.source_text,
        actor_id=request.actor_id,
        voice_id=request.voice_id,
        source_reference=request.review_id,
        target_duration=request.target_duration,
        aspect_ratio=request.aspect_ratio,
    ))
    logger.info(
        "Composite submitted",
        extra={
            "job_id": composite.id,
            "user_id": current_user["user_id"],
            "total_clips": composite.total_clips,
            "priority": request.priority.value,
        }
    )
    return {
        "composite_id": composite.id,
        "status": composite.status.value,
        "total_clips": composite.total_clips,
        "estimated_time": composite.total_clips * settings.seconds_per_clip_estimate,
    }


@router.get("/composites")
async def list_composites(
    current_user: dict = Depends(get_current_user),
    store: CompositeJobStore = Depends(get_job_store),
):
    """List the current user's composites."""
    composites = await store.list_by_owner(current_user["user_id"])
    return {"composites": [_composite_summary(c) for c in composites], "total": len(composites)}


@router.get("/composites/{composite_id}")
async def get_composite_status(
    composite_id: str = Path(...),
    current_user: dict = Depends(get_current_user),
    store: CompositeJobStore = Depends(get_job_store),
    broadcaster: ProgressBroadcaster = Depends(get_broadcaster),
    cache: StatusCache = Depends(get_status_cache),
):
    """
    Get composite status.

    Served from the status cache when a fresh entry for this user exists;
    otherwise polls in-flight clips once and caches the result.
    """
    cached = await cache.get(composite_id)
    if cached and cached["owner_id"] == current_user["user_id"]:
        logger.debug("Composite status retrieved from cache", extra={"job_id": composite_id})
        return cached["snapshot"].model_dump(mode="json", exclude_none=True)

    composite = await _owned_composite(store, composite_id, current_user)
    snapshot = await broadcaster.snapshot("composite", composite_id)
    await cache.set(composite_id, composite.owner_id, snapshot)
    return snapshot.model_dump(mode="json", exclude_none=True)


@router.get("/composites/{composite_id}/stream")
async def stream_composite_status(
    request: Request,
    composite_id: str = Path(...),
    current_user: dict = Depends(get_current_user),
    store: CompositeJobStore = Depends(get_job_store),
    broadcaster: ProgressBroadcaster = Depends(get_broadcaster),
):
    """Stream composite progress as server-sent events."""
    composite = await store.get(composite_id)
    if composite is not None:
        verify_composite_ownership(composite, current_user)
    return event_stream_response(broadcaster, "composite", composite_id, request)


@router.post("/composites/{composite_id}/stitch-complete")
async def complete_stitching(
    request: StitchCompleteRequest,
    composite_id: str = Path(...),
    current_user: dict = Depends(get_current_user),
    store: CompositeJobStore = Depends(get_job_store),
    coordinator: PipelineCoordinator = Depends(get_coordinator),
    cache: StatusCache = Depends(get_status_cache),
):
    """Record the stitched final video of a composite."""
    await _owned_composite(store, composite_id, current_user)
    composite = await coordinator.complete_stitching(
        composite_id,
        request.final_video_url,
        thumbnail_url=request.thumbnail_url,
        actual_duration=request.actual_duration,
    )
    await cache.invalidate(composite_id)
    return _composite_summary(composite)


@router.post("/composites/{composite_id}/fail")
async def fail_composite(
    request: CompositeFailRequest,
    composite_id: str = Path(...),
    current_user: dict = Depends(get_current_user),
    store: CompositeJobStore = Depends(get_job_store),
    coordinator: PipelineCoordinator = Depends(get_coordinator),
    cache: StatusCache = Depends(get_status_cache),
):
    """Fail a composite that has not finished."""
    await _owned_composite(store, composite_id, current_user)
    composite = await coordinator.fail_composite(composite_id, request.error)
    await cache.invalidate(composite_id)
    return _composite_summary(composite)


@router.post("/composites/{composite_id}/clips/{clip_index}/retry")
async def retry_clip(
    composite_id: str = Path(...),
    clip_index: int = Path(..., ge=1),
    current_user: dict = Depends(get_current_user),
    store: CompositeJobStore = Depends(get_job_store),
    coordinator: PipelineCoordinator = Depends(get_coordinator),
    submission: SubmissionService = Depends(get_submission_service),
    cache: StatusCache = Depends(get_status_cache),
):
    """Reset a failed clip and submit it again."""
    await _owned_composite(store, composite_id, current_user)
    clip = await coordinator.retry_clip(composite_id, clip_index)
    composite = await store.get(composite_id)
    if composite is None:
        raise JobNotFoundError(composite_id, kind="Composite")
    clip = await submission.submit_clip(composite, clip)
    await cache.invalidate(composite_id)
    return {
        "composite_id": composite_id,
        "clip_index": clip.clip_index,
        "status": clip.status.value,
        "retry_count": clip.retry_count,
        "provider_handle": clip.provider_handle,
    }


@router.delete("/composites/{composite_id}")
async def delete_composite(
    composite_id: str = Path(...),
    current_user: dict = Depends(get_current_user),
    store: CompositeJobStore = Depends(get_job_store),
    cache: StatusCache = Depends(get_status_cache),
):
    """Delete a composite and its clips."""
    await _owned_composite(store, composite_id, current_user)
    await store.delete(composite_id)
    await cache.invalidate(composite_id)
    logger.info("Composite deleted", extra={"job_id": composite_id})
    return {"composite_id": composite_id, "deleted": True}
