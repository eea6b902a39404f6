"""
Job endpoints.

Single-stage job submission, status, streaming, listing and operator
actions.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Path, Request, status
from pydantic import BaseModel, Field
from shared.errors import JobNotFoundError
from shared.logging import get_logger
from shared.models.job import Job, JobPriority
from modules.job_queue.queue import JobQueue
from modules.progress_broadcaster.broadcaster import ProgressBroadcaster
from api_gateway.dependencies import (
    get_broadcaster,
    get_current_user,
    get_job_queue,
    get_submission_service,
    verify_job_ownership,
)
from api_gateway.services.event_stream import event_stream_response
from api_gateway.services.submission_service import SubmissionService

logger = get_logger(__name__)

router = APIRouter()


class JobSubmitRequest(BaseModel):
    """Request body for a testimonial video job."""

    review_text: str = Field(..., min_length=1)
    reviewer_name: str = Field(..., min_length=1)
    business_name: str = Field(..., min_length=1)
    style: str = "professional"
    prompt: Optional[str] = None
    aspect_ratio: str = "9:16"
    duration: str = "5"
    priority: JobPriority = JobPriority.NORMAL
    review_id: Optional[str] = None


class PriorityUpdateRequest(BaseModel):
    priority: JobPriority


def _job_summary(job: Job) -> dict:
    return {
        "job_id": job.id,
        "status": job.status.value,
        "priority": job.priority.value,
        "progress": job.progress,
        "provider_handle": job.provider_handle,
        "video_url": job.result.url if job.result else None,
        "error": job.error,
        "retry_count": job.retry_count,
        "created_at": job.created_at.isoformat(),
        "updated_at": job.updated_at.isoformat(),
    }


async def _owned_job(queue: JobQueue, job_id: str, current_user: dict) -> Job:
    job = await queue.get(job_id)
    if job is None:
        raise JobNotFoundError(job_id)
    return verify_job_ownership(job, current_user)


@router.post("/jobs", status_code=status.HTTP_201_CREATED)
async def submit_job(
    request: JobSubmitRequest,
    current_user: dict = Depends(get_current_user),
    submission: SubmissionService = Depends(get_submission_service),
):
    """
    Queue a testimonial job and submit it to the video provider.

    The response carries the job id even when the submission failed; the
    failure is visible through the job status.
    """
    job = await submission.create_job(
        owner_id=current_user["user_id"],
        review_text=request.review_text,
        reviewer_name=request.reviewer_name,
        business_name=request.business_name,
        style=request.style,
        prompt=request.prompt,
        aspect_ratio=request.aspect_ratio,
        duration=request.duration,
        priority=request.priority,
        review_id=request.review_id,
    )
    logger.info(
        "Job submitted",
        extra={"job_id": job.id, "user_id": current_user["user_id"], "status": job.status.value}
    )
    return {
        "job_id": job.id,
        "status": job.status.value,
        "provider_handle": job.provider_handle,
    }


@router.get("/jobs")
async def list_jobs(
    current_user: dict = Depends(get_current_user),
    queue: JobQueue = Depends(get_job_queue),
):
    """List the current user's jobs, newest first."""
    jobs = await queue.list_by_owner(current_user["user_id"])
    return {"jobs": [_job_summary(job) for job in jobs], "total": len(jobs)}


@router.get("/queue/stats")
async def queue_stats(
    current_user: dict = Depends(get_current_user),
    queue: JobQueue = Depends(get_job_queue),
):
    """Counts of queued jobs by status and priority."""
    stats = await queue.stats()
    return stats.model_dump()


@router.get("/jobs/{job_id}")
async def get_job_status(
    job_id: str = Path(...),
    current_user: dict = Depends(get_current_user),
    queue: JobQueue = Depends(get_job_queue),
    broadcaster: ProgressBroadcaster = Depends(get_broadcaster),
):
    """
    Get job status (polling fallback, streaming preferred).

    Polls the provider once before answering so a client polling this
    endpoint sees progress even without webhooks.
    """
    await _owned_job(queue, job_id, current_user)
    snapshot = await broadcaster.snapshot("job", job_id)
    return snapshot.model_dump(mode="json", exclude_none=True)


@router.get("/jobs/{job_id}/stream")
async def stream_job_status(
    request: Request,
    job_id: str = Path(...),
    current_user: dict = Depends(get_current_user),
    queue: JobQueue = Depends(get_job_queue),
    broadcaster: ProgressBroadcaster = Depends(get_broadcaster),
):
    """
    Stream job progress as server-sent events.

    An unknown job yields a single error event rather than a 404 so
    EventSource clients can show it.
    """
    job = await queue.get(job_id)
    if job is not None:
        verify_job_ownership(job, current_user)
    return event_stream_response(broadcaster, "job", job_id, request)


@router.delete("/jobs/{job_id}")
async def cancel_job(
    job_id: str = Path(...),
    current_user: dict = Depends(get_current_user),
    queue: JobQueue = Depends(get_job_queue),
):
    """Cancel a job. Cancelling a finished job is a no-op."""
    await _owned_job(queue, job_id, current_user)
    job = await queue.cancel(job_id)
    return {"job_id": job.id, "status": job.status.value, "error": job.error}


@router.post("/jobs/{job_id}/retry")
async def retry_job(
    job_id: str = Path(...),
    current_user: dict = Depends(get_current_user),
    queue: JobQueue = Depends(get_job_queue),
    submission: SubmissionService = Depends(get_submission_service),
):
    """Re-queue a failed job and resubmit it."""
    await _owned_job(queue, job_id, current_user)
    await queue.retry(job_id)
    job = await submission.submit_job(job_id)
    logger.info("Job retried", extra={"job_id": job_id, "retry_count": job.retry_count})
    return _job_summary(job)


@router.patch("/jobs/{job_id}/priority")
async def update_job_priority(
    request: PriorityUpdateRequest,
    job_id: str = Path(...),
    current_user: dict = Depends(get_current_user),
    queue: JobQueue = Depends(get_job_queue),
):
    """Change the priority of a queued or running job."""
    await _owned_job(queue, job_id, current_user)
    job = await queue.set_priority(job_id, request.priority)
    return {"job_id": job.id, "priority": job.priority.value}
