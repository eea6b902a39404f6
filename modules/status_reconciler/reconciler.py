"""
Status reconciler.

Merges provider status from active polling and inbound webhooks into one
monotonic timeline per job or clip. Both channels go through the same apply
path; terminal records reject further writes, so duplicate or late
notifications are no-ops.
"""

import json
from typing import Awaitable, Callable, Optional, Union

from pydantic import BaseModel

from shared.config import settings
from shared.errors import (
    GenerationError,
    InvalidTransitionError,
    JobNotFoundError,
    PipelineError,
    RetryableError,
    ValidationError,
)
from shared.logging import get_logger, job_context
from shared.models.composite import ClipRecord, ClipStatus, CompositeJob, IN_FLIGHT_CLIP_STATUSES
from shared.models.job import Job, JobResult, JobStatus
from modules.job_queue.queue import JobQueue
from modules.job_store.base import CompositeJobStore
from modules.pipeline_coordinator.coordinator import PipelineCoordinator
from modules.status_reconciler.mapping import (
    DEFAULT_FAILURE_ERROR,
    NO_VIDEO_URL_ERROR,
    is_retryable_error,
    progress_for,
)
from modules.status_reconciler.signatures import verify_signature
from modules.video_provider.base import ProviderResult, ProviderState, ProviderStatus, VideoProvider

logger = get_logger("status_reconciler")

_CLIP_OPEN_STATUSES = (ClipStatus.PENDING, ClipStatus.GENERATING_AUDIO, ClipStatus.GENERATING_VIDEO)

CompositeChangeHook = Callable[[str], Awaitable[None]]


class WebhookOutcome(BaseModel):
    """Result of applying one inbound webhook."""

    matched: bool
    provider_handle: str
    kind: Optional[str] = None  # "job" or "clip"
    record_id: Optional[str] = None
    clip_index: Optional[int] = None
    status: Optional[str] = None
    progress: Optional[int] = None
    video_url: Optional[str] = None


def _result_duration(result: ProviderResult, job: Job) -> Optional[float]:
    if result.duration is not None:
        return result.duration
    requested = job.metadata.get("duration")
    try:
        return float(requested) if requested is not None else None
    except (TypeError, ValueError):
        return None


class StatusReconciler:
    """Applies provider status reports to the job queue and the composite store."""

    def __init__(
        self,
        queue: JobQueue,
        store: CompositeJobStore,
        provider: VideoProvider,
        coordinator: PipelineCoordinator,
        webhook_secret: Optional[str] = None,
        on_composite_changed: Optional[CompositeChangeHook] = None,
    ):
        self.queue = queue
        self.store = store
        self.provider = provider
        self.coordinator = coordinator
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.webhook_secret
        self.on_composite_changed = on_composite_changed

    async def _composite_changed(self, composite_id: str) -> None:
        if self.on_composite_changed:
            await self.on_composite_changed(composite_id)

    async def _resolve_result(self, status: ProviderStatus) -> Optional[ProviderResult]:
        """Use the result carried by the notification, else fetch it."""
        if status.result and status.result.video_url:
            return status.result
        try:
            return await self.provider.fetch_result(status.handle)
        except RetryableError as e:
            logger.warning(
                "Result fetch failed, will retry on next poll",
                exc_info=e,
                extra={"provider_handle": status.handle}
            )
            raise
        except GenerationError as e:
            logger.warning("Provider reported no result", exc_info=e, extra={"provider_handle": status.handle})
            return None

    # ------------------------------------------------------------------
    # Single-stage jobs
    # ------------------------------------------------------------------

    async def apply_job_status(self, job_id: str, status: ProviderStatus) -> Job:
        """
        Apply a provider status report to a queued job.

        Args:
            job_id: Job ID
            status: Report from a poll or a webhook

        Returns:
            Job snapshot after the update

        Raises:
            JobNotFoundError: If the job does not exist
        """
        with job_context(job_id):
            job = await self.queue.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)

            if job.is_terminal:
                if status.state in (ProviderState.QUEUED, ProviderState.RUNNING):
                    logger.info(
                        "Stale provider status ignored for terminal job",
                        extra={"job_id": job_id, "status": job.status.value, "raw_state": status.raw_state}
                    )
                else:
                    logger.debug(
                        "Duplicate terminal notification ignored",
                        extra={"job_id": job_id, "status": job.status.value, "raw_state": status.raw_state}
                    )
                return job

            if job.status != JobStatus.PROCESSING or job.provider_handle != status.handle:
                logger.warning(
                    "Provider status for unbound handle ignored",
                    extra={
                        "job_id": job_id,
                        "status": job.status.value,
                        "bound_handle": job.provider_handle,
                        "provider_handle": status.handle,
                    }
                )
                return job

            try:
                if status.state in (ProviderState.QUEUED, ProviderState.RUNNING):
                    return await self.queue.update_progress(
                        job_id, progress_for(status.state, status.queue_position)
                    )

                if status.state == ProviderState.SUCCEEDED:
                    try:
                        result = await self._resolve_result(status)
                    except RetryableError:
                        return job
                    if result is None or not result.video_url:
                        return await self.queue.fail(job_id, NO_VIDEO_URL_ERROR)
                    return await self.queue.complete(
                        job_id,
                        JobResult(
                            url=result.video_url,
                            duration=_result_duration(result, job),
                            content_type=result.content_type,
                            width=result.width,
                            height=result.height,
                            thumbnail_url=result.thumbnail_url,
                        ),
                    )

                # ProviderState.ERRORED
                message = status.error or DEFAULT_FAILURE_ERROR
                return await self.queue.fail(job_id, message, terminal=not is_retryable_error(message))
            except InvalidTransitionError as e:
                # Job moved (cancelled, completed by the other channel) between read and write
                logger.info(
                    "Provider status lost race with concurrent transition",
                    extra={"job_id": job_id, "raw_state": status.raw_state, "reason": str(e)}
                )
                return await self.queue.get(job_id) or job

    async def poll_job(self, job_id: str) -> Job:
        """
        Poll the provider for a processing job and apply the result.

        Provider errors are logged and swallowed; the next poll retries.

        Raises:
            JobNotFoundError: If the job does not exist
        """
        job = await self.queue.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status != JobStatus.PROCESSING or not job.provider_handle:
            return job

        try:
            status = await self.provider.poll_status(job.provider_handle)
        except PipelineError as e:
            logger.warning(
                "Provider poll failed",
                exc_info=e,
                extra={"job_id": job_id, "provider_handle": job.provider_handle}
            )
            return job
        return await self.apply_job_status(job_id, status)

    # ------------------------------------------------------------------
    # Composite clips
    # ------------------------------------------------------------------

    async def apply_clip_status(self, clip: ClipRecord, status: ProviderStatus) -> ClipRecord:
        """
        Apply a provider status report to a composite clip.

        A completed clip asks the coordinator to re-evaluate its composite;
        a failed clip hands the failure to the coordinator's policy. A repeat
        report for a completed clip re-evaluates the composite again, so a
        stitching transition that failed earlier is retried.
        """
        composite_id = clip.composite_id
        with job_context(composite_id):
            if clip.status in (ClipStatus.COMPLETED, ClipStatus.FAILED):
                logger.debug(
                    "Notification for finished clip ignored",
                    extra={"clip_index": clip.clip_index, "status": clip.status.value, "raw_state": status.raw_state}
                )
                if clip.status == ClipStatus.COMPLETED:
                    await self.coordinator.on_clip_completed(composite_id)
                return clip
            if clip.provider_handle != status.handle:
                logger.warning(
                    "Provider status for unbound clip handle ignored",
                    extra={"clip_index": clip.clip_index, "provider_handle": status.handle}
                )
                return clip

            if status.state in (ProviderState.QUEUED, ProviderState.RUNNING):
                updated = await self.store.update_clip(
                    clip.id,
                    [ClipStatus.PENDING, ClipStatus.GENERATING_AUDIO],
                    {"status": ClipStatus.GENERATING_VIDEO},
                )
                return updated or await self.store.get_clip(clip.id) or clip

            if status.state == ProviderState.SUCCEEDED:
                try:
                    result = await self._resolve_result(status)
                except RetryableError:
                    return clip
                if result is not None and result.video_url:
                    updated = await self.store.update_clip(
                        clip.id,
                        _CLIP_OPEN_STATUSES,
                        {
                            "status": ClipStatus.COMPLETED,
                            "video_url": result.video_url,
                            "duration": result.duration,
                            "error_message": None,
                        },
                    )
                    if updated is None:
                        return await self.store.get_clip(clip.id) or clip
                    logger.info(
                        "Clip completed",
                        extra={"clip_index": clip.clip_index, "video_url": result.video_url}
                    )
                    await self._composite_changed(composite_id)
                    await self.coordinator.on_clip_completed(composite_id)
                    return updated
                message = NO_VIDEO_URL_ERROR
            else:
                # ProviderState.ERRORED
                message = status.error or DEFAULT_FAILURE_ERROR

            updated = await self.store.update_clip(
                clip.id,
                _CLIP_OPEN_STATUSES,
                {"status": ClipStatus.FAILED, "error_message": message},
            )
            if updated is None:
                return await self.store.get_clip(clip.id) or clip
            logger.error("Clip failed", extra={"clip_index": clip.clip_index, "error": message})
            await self.coordinator.on_clip_failed(composite_id, updated)
            await self._composite_changed(composite_id)
            return updated

    async def poll_clip(self, clip_id: str) -> ClipRecord:
        """
        Poll the provider for an in-flight clip and apply the result.

        Raises:
            JobNotFoundError: If the clip does not exist
        """
        clip = await self.store.get_clip(clip_id)
        if clip is None:
            raise JobNotFoundError(clip_id, kind="Clip")
        if clip.status not in IN_FLIGHT_CLIP_STATUSES or not clip.provider_handle:
            return clip

        try:
            status = await self.provider.poll_status(clip.provider_handle)
        except PipelineError as e:
            logger.warning(
                "Provider poll failed",
                exc_info=e,
                extra={"job_id": clip.composite_id, "clip_index": clip.clip_index}
            )
            return clip
        return await self.apply_clip_status(clip, status)

    async def poll_composite(self, composite_id: str) -> CompositeJob:
        """
        Poll every in-flight clip of a composite.

        Raises:
            JobNotFoundError: If the composite does not exist
        """
        composite = await self.store.get(composite_id)
        if composite is None:
            raise JobNotFoundError(composite_id, kind="Composite")
        for clip in composite.clips:
            if clip.status in IN_FLIGHT_CLIP_STATUSES and clip.provider_handle:
                await self.poll_clip(clip.id)
        return await self.store.get(composite_id) or composite

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    async def handle_webhook(
        self,
        provider_name: str,
        raw_body: Union[bytes, str],
        signature: Optional[str],
    ) -> WebhookOutcome:
        """
        Verify, parse and apply an inbound provider webhook.

        Args:
            provider_name: Provider the webhook claims to come from
            raw_body: Request body exactly as received
            signature: Value of the signature header

        Returns:
            WebhookOutcome; matched is False when no job or clip owns the handle

        Raises:
            WebhookSignatureError: If the signature is missing or invalid
            ValidationError: If the body is not JSON or lacks required fields
        """
        body = raw_body.encode("utf-8") if isinstance(raw_body, str) else raw_body
        verify_signature(body, signature, self.webhook_secret)

        if provider_name != self.provider.name:
            raise ValidationError(f"Webhook provider is not configured: {provider_name}")

        try:
            payload = json.loads(body)
        except (ValueError, UnicodeDecodeError) as e:
            raise ValidationError("Invalid JSON payload") from e
        if not isinstance(payload, dict):
            raise ValidationError("Webhook payload must be a JSON object")

        status = self.provider.parse_webhook(payload)
        logger.info(
            "Webhook received",
            extra={"provider": provider_name, "provider_handle": status.handle, "raw_state": status.raw_state}
        )

        job = await self.queue.find_by_provider_handle(status.handle)
        if job is not None:
            updated = await self.apply_job_status(job.id, status)
            return WebhookOutcome(
                matched=True,
                provider_handle=status.handle,
                kind="job",
                record_id=updated.id,
                status=updated.status.value,
                progress=updated.progress,
                video_url=updated.result.url if updated.result else None,
            )

        clip = await self.store.find_clip_by_handle(status.handle)
        if clip is not None:
            updated_clip = await self.apply_clip_status(clip, status)
            return WebhookOutcome(
                matched=True,
                provider_handle=status.handle,
                kind="clip",
                record_id=updated_clip.composite_id,
                clip_index=updated_clip.clip_index,
                status=updated_clip.status.value,
                video_url=updated_clip.video_url,
            )

        logger.warning(
            "Webhook for unknown provider handle",
            extra={"provider": provider_name, "provider_handle": status.handle}
        )
        return WebhookOutcome(matched=False, provider_handle=status.handle)
