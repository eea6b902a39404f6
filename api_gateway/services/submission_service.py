"""
Submission service.

Builds generation prompts and submits single-stage jobs and composite clips
to the video provider. Submission never waits for the generation itself;
completion arrives later through the status reconciler.
"""

import asyncio
from typing import Any, Dict, Optional, Set

from shared.config import settings
from shared.errors import InvalidTransitionError, JobNotFoundError, PipelineError, RetryableError
from shared.logging import get_logger, job_context
from shared.models.composite import ClipRecord, ClipStatus, CompositeJob
from shared.models.job import Job, JobPriority, JobStatus
from modules.job_queue.queue import JobQueue
from modules.job_store.base import CompositeJobStore
from modules.pipeline_coordinator.coordinator import CompositeRequest, PipelineCoordinator
from modules.video_provider.base import GenerationRequest, VideoProvider
from api_gateway.services.status_cache import StatusCache

logger = get_logger(__name__)

MISSING_PROMPT_ERROR = "Job has no generation prompt"

STYLE_DESCRIPTIONS = {
    "professional": "professional, corporate setting, business attire",
    "casual": "casual, relaxed setting, everyday clothing",
    "friendly": "warm, welcoming, approachable demeanor",
    "energetic": "high energy, enthusiastic, dynamic movements",
    "calm": "serene, peaceful, gentle expressions",
    "bold": "confident, strong presence, direct eye contact",
    "warm": "cozy, inviting, natural warmth",
    "corporate": "business professional, office environment",
}


def build_testimonial_prompt(business_name: str, style: str) -> str:
    """Prompt for a single testimonial clip about `business_name`."""
    style_desc = STYLE_DESCRIPTIONS.get(style, STYLE_DESCRIPTIONS["professional"])
    return (
        f"A person giving a genuine video testimonial review. They are {style_desc}. "
        f"The person is speaking directly to camera, expressing satisfaction about {business_name}. "
        "They appear authentic and trustworthy, like a real customer sharing their experience. "
        "UGC style, selfie video, natural lighting, vertical phone recording."
    )


def build_clip_prompt(clip: ClipRecord, composite: CompositeJob) -> str:
    """Prompt for one clip of a composite, spoken by the composite's actor."""
    return (
        f"Actor {composite.actor_id} speaking directly to camera in a {clip.clip_type.value} "
        f"segment of a customer testimonial, saying: \"{clip.script_content}\". "
        "UGC style, natural lighting, consistent framing."
    )


def clip_duration(clip: ClipRecord) -> str:
    """Provider duration option covering the clip's estimated length."""
    return "10" if clip.estimated_duration > 5 else "5"


class SubmissionService:
    """Submits queued jobs and composite clips to the provider."""

    def __init__(
        self,
        queue: JobQueue,
        store: CompositeJobStore,
        provider: VideoProvider,
        coordinator: PipelineCoordinator,
        status_cache: Optional[StatusCache] = None,
        webhook_base_url: Optional[str] = None,
        max_concurrent: Optional[int] = None,
    ):
        self.queue = queue
        self.store = store
        self.provider = provider
        self.coordinator = coordinator
        self.status_cache = status_cache or StatusCache()
        self.webhook_base_url = (webhook_base_url or settings.webhook_base_url or "").rstrip("/") or None
        self._semaphore = asyncio.Semaphore(max_concurrent or settings.max_concurrent_submissions)
        # Records with a provider submission in flight; guards against double submission
        self._inflight: Set[str] = set()

    @property
    def webhook_url(self) -> Optional[str]:
        if not self.webhook_base_url:
            return None
        return f"{self.webhook_base_url}/api/v1/webhooks/{self.provider.name}"

    async def _submit(self, request: GenerationRequest) -> str:
        async with self._semaphore:
            return await self.provider.submit(request)

    # ------------------------------------------------------------------
    # Single-stage jobs
    # ------------------------------------------------------------------

    async def create_job(
        self,
        owner_id: str,
        review_text: str,
        reviewer_name: str,
        business_name: str,
        style: str,
        prompt: Optional[str] = None,
        aspect_ratio: str = "9:16",
        duration: str = "5",
        priority: JobPriority = JobPriority.NORMAL,
        review_id: Optional[str] = None,
    ) -> Job:
        """
        Queue a testimonial job and submit it right away.

        Returns:
            Job snapshot after the submission attempt
        """
        metadata: Dict[str, Any] = {
            "review_text": review_text,
            "reviewer_name": reviewer_name,
            "business_name": business_name,
            "style": style,
            "aspect_ratio": aspect_ratio,
            "duration": duration,
            "prompt": prompt or build_testimonial_prompt(business_name, style),
        }
        job = await self.queue.create(
            owner_id=owner_id,
            correlation_id=review_id,
            priority=priority,
            metadata=metadata,
        )
        return await self.submit_job(job.id)

    async def submit_job(self, job_id: str) -> Job:
        """
        Submit a pending job and bind the returned provider handle.

        Retryable submission failures count against the job's retry budget
        and leave it pending for the dispatcher; other failures fail it.

        Raises:
            JobNotFoundError: If the job does not exist
        """
        if job_id in self._inflight:
            job = await self.queue.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            return job

        self._inflight.add(job_id)
        try:
            with job_context(job_id):
                job = await self.queue.get(job_id)
                if job is None:
                    raise JobNotFoundError(job_id)
                if job.status != JobStatus.PENDING:
                    return job

                prompt = job.metadata.get("prompt")
                if not prompt:
                    logger.error("Job has no prompt", extra={"job_id": job_id})
                    return await self.queue.fail(job_id, MISSING_PROMPT_ERROR, terminal=True)

                request = GenerationRequest(
                    prompt=prompt,
                    aspect_ratio=job.metadata.get("aspect_ratio", "9:16"),
                    duration=job.metadata.get("duration", "5"),
                    webhook_url=self.webhook_url,
                )
                try:
                    handle = await self._submit(request)
                except RetryableError as e:
                    logger.warning("Job submission failed, will retry", exc_info=e, extra={"job_id": job_id})
                    return await self.queue.fail(job_id, str(e))
                except PipelineError as e:
                    logger.error("Job submission rejected", exc_info=e, extra={"job_id": job_id})
                    return await self.queue.fail(job_id, str(e), terminal=True)

                try:
                    return await self.queue.start_processing(job_id, handle)
                except InvalidTransitionError as e:
                    # Cancelled while the submission was in flight
                    logger.warning(
                        "Job changed during submission",
                        extra={"job_id": job_id, "provider_handle": handle, "reason": str(e)}
                    )
                    return await self.queue.get(job_id) or job
        finally:
            self._inflight.discard(job_id)

    # ------------------------------------------------------------------
    # Composites
    # ------------------------------------------------------------------

    async def create_composite(self, request: CompositeRequest) -> CompositeJob:
        """
        Create a composite, move it to generating_clips and submit every clip.

        The composite enters generating_clips before any clip is submitted so
        a clip finishing early is never missed by the stitching check.
        """
        composite = await self.coordinator.create_composite(request)
        composite = await self.coordinator.mark_generating(composite.id)
        await asyncio.gather(*(self.submit_clip(composite, clip) for clip in composite.clips))
        return await self.store.get(composite.id) or composite

    async def submit_clip(self, composite: CompositeJob, clip: ClipRecord) -> ClipRecord:
        """
        Submit one pending clip and record its provider handle.

        A failed submission marks the clip failed and hands it to the
        coordinator's clip failure policy.
        """
        if clip.id in self._inflight:
            return clip

        self._inflight.add(clip.id)
        try:
            with job_context(composite.id):
                request = GenerationRequest(
                    prompt=build_clip_prompt(clip, composite),
                    aspect_ratio=composite.aspect_ratio,
                    duration=clip_duration(clip),
                    webhook_url=self.webhook_url,
                )
                try:
                    handle = await self._submit(request)
                except PipelineError as e:
                    logger.error(
                        "Clip submission failed",
                        exc_info=e,
                        extra={"job_id": composite.id, "clip_index": clip.clip_index}
                    )
                    failed = await self.store.update_clip(
                        clip.id,
                        [ClipStatus.PENDING],
                        {"status": ClipStatus.FAILED, "error_message": f"Submission failed: {str(e)}"},
                    )
                    if failed is None:
                        return await self.store.get_clip(clip.id) or clip
                    await self.coordinator.on_clip_failed(composite.id, failed)
                    await self.status_cache.invalidate(composite.id)
                    return failed

                updated = await self.store.update_clip(
                    clip.id,
                    [ClipStatus.PENDING],
                    {"status": ClipStatus.GENERATING_VIDEO, "provider_handle": handle},
                )
                if updated is None:
                    logger.warning(
                        "Clip changed during submission",
                        extra={"job_id": composite.id, "clip_index": clip.clip_index, "provider_handle": handle}
                    )
                    return await self.store.get_clip(clip.id) or clip

                logger.info(
                    "Clip submitted",
                    extra={"job_id": composite.id, "clip_index": clip.clip_index, "provider_handle": handle}
                )
                return updated
        finally:
            self._inflight.discard(clip.id)

    async def on_stitching_ready(self, composite: CompositeJob) -> None:
        """Stitch hook: every clip is done and the composite awaits its stitched output."""
        logger.info(
            "Composite ready for stitching",
            extra={
                "job_id": composite.id,
                "total_clips": composite.total_clips,
                "clip_urls": [clip.video_url for clip in sorted(composite.clips, key=lambda c: c.clip_index)],
            }
        )
        await self.status_cache.invalidate(composite.id)
