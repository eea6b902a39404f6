"""
Pipeline coordinator.

Owns the composite lifecycle: splits a script into clip records, moves the
composite into stitching exactly once when every clip has completed, and
applies the clip failure policy. It never submits or polls clips itself.
"""

from typing import Awaitable, Callable, Optional
from pydantic import BaseModel, Field

from shared.config import settings
from shared.errors import InvalidTransitionError, JobNotFoundError, ValidationError
from shared.logging import get_logger
from shared.models.composite import (
    ClipRecord,
    ClipStatus,
    CompositeJob,
    CompositeStatus,
)
from shared.models.job import utcnow
from modules.job_store.base import CompositeJobStore
from modules.pipeline_coordinator.segmenter import (
    SegmentationResult,
    segment_script,
    simple_segment_script,
    validate_segmentation,
)

logger = get_logger("pipeline_coordinator")

VALID_VOICES = ("alloy", "echo", "fable", "onyx", "nova", "shimmer")
DEFAULT_VOICE = "nova"
MAX_CLIP_RETRIES = 3

StitchHook = Callable[[CompositeJob], Awaitable[None]]
ActorValidator = Callable[[str], Awaitable[bool]]


class CompositeRequest(BaseModel):
    """Input for a new composite job."""

    owner_id: str
    source_text: str
    actor_id: str
    voice_id: Optional[str] = None
    source_reference: Optional[str] = None
    target_duration: int = Field(default=30, gt=0, le=120)
    aspect_ratio: str = "9:16"


class PipelineCoordinator:
    """Composite job lifecycle on top of a CompositeJobStore."""

    def __init__(
        self,
        store: CompositeJobStore,
        fail_on_clip_failure: Optional[bool] = None,
        max_clip_duration: Optional[float] = None,
        max_clip_retries: int = MAX_CLIP_RETRIES,
        stitch_hook: Optional[StitchHook] = None,
        actor_validator: Optional[ActorValidator] = None,
    ):
        self.store = store
        self.fail_on_clip_failure = (
            settings.composite_fail_on_clip_failure if fail_on_clip_failure is None else fail_on_clip_failure
        )
        self.max_clip_duration = max_clip_duration or settings.max_clip_duration_seconds
        self.max_clip_retries = max_clip_retries
        self.stitch_hook = stitch_hook
        self.actor_validator = actor_validator

    async def _require(self, composite_id: str) -> CompositeJob:
        composite = await self.store.get(composite_id)
        if composite is None:
            raise JobNotFoundError(composite_id, kind="Composite")
        return composite

    def _segment(self, request: CompositeRequest) -> SegmentationResult:
        result = segment_script(
            request.source_text,
            target_total_duration=request.target_duration,
            max_clip_duration=self.max_clip_duration,
        )
        errors = validate_segmentation(
            result, max_clip_duration=self.max_clip_duration, script=request.source_text
        )
        if not errors:
            return result

        logger.warning(
            "Segmentation invalid, falling back to simple split",
            extra={"errors": "; ".join(errors)}
        )
        fallback = simple_segment_script(request.source_text)
        blocking = [
            error for error in validate_segmentation(fallback, script=request.source_text)
            if error.startswith(("Empty content", "No segments", "Segments cover")) or "exceeds" in error
        ]
        if blocking:
            raise ValidationError(f"Script cannot be segmented: {'; '.join(blocking)}")
        return fallback

    async def create_composite(self, request: CompositeRequest) -> CompositeJob:
        """
        Create a pending composite with one pending clip per script segment.

        Args:
            request: Composite request

        Returns:
            The stored composite

        Raises:
            ValidationError: If the script is empty or cannot be segmented
                without dropping text, or the actor/voice is invalid
        """
        if not request.source_text or not request.source_text.strip():
            raise ValidationError("Source script is required")
        if not request.actor_id:
            raise ValidationError("actor_id is required")
        if self.actor_validator and not await self.actor_validator(request.actor_id):
            raise ValidationError(f"Unknown actor: {request.actor_id}")
        voice_id = request.voice_id or DEFAULT_VOICE
        if voice_id not in VALID_VOICES:
            raise ValidationError(f"Invalid voice: {voice_id}. Must be one of {', '.join(VALID_VOICES)}")

        segmentation = self._segment(request)
        composite = CompositeJob(
            owner_id=request.owner_id,
            source_reference=request.source_reference,
            actor_id=request.actor_id,
            voice_id=voice_id,
            full_script=request.source_text.strip(),
            aspect_ratio=request.aspect_ratio,
            target_duration=request.target_duration,
            total_clips=segmentation.clip_count,
        )
        composite.clips = [
            ClipRecord(
                composite_id=composite.id,
                clip_index=segment.order + 1,
                clip_type=segment.clip_type,
                script_content=segment.content,
                estimated_duration=round(segment.estimated_duration, 2),
            )
            for segment in segmentation.segments
        ]

        stored = await self.store.create(composite)
        logger.info(
            "Composite created",
            extra={
                "job_id": stored.id,
                "total_clips": stored.total_clips,
                "estimated_duration": round(segmentation.total_duration, 1),
            }
        )
        return stored

    async def mark_generating(self, composite_id: str) -> CompositeJob:
        """Move a pending composite to generating_clips. Repeat calls are no-ops."""
        updated = await self.store.transition(
            composite_id, [CompositeStatus.PENDING], CompositeStatus.GENERATING_CLIPS
        )
        if updated:
            return updated
        composite = await self._require(composite_id)
        if composite.status != CompositeStatus.GENERATING_CLIPS:
            raise InvalidTransitionError(
                f"Cannot start clip generation from {composite.status.value}", job_id=composite_id
            )
        return composite

    async def on_clip_completed(self, composite_id: str) -> bool:
        """
        Re-evaluate a composite after one of its clips completed.

        Moves generating_clips -> stitching when every clip is completed. The
        move is a compare-and-set, so among concurrent callers exactly one
        wins and only the winner runs the stitch hook.

        Returns:
            True if this call performed the transition
        """
        composite = await self._require(composite_id)
        if composite.status != CompositeStatus.GENERATING_CLIPS:
            return False
        if composite.current_clip < composite.total_clips:
            logger.debug(
                "Composite still generating clips",
                extra={"job_id": composite_id, "current_clip": composite.current_clip, "total_clips": composite.total_clips}
            )
            return False

        won = await self.store.transition(
            composite_id, [CompositeStatus.GENERATING_CLIPS], CompositeStatus.STITCHING
        )
        if won is None:
            return False

        logger.info("All clips completed, composite stitching", extra={"job_id": composite_id})
        if self.stitch_hook:
            await self.stitch_hook(won)
        return True

    async def on_clip_failed(self, composite_id: str, clip: ClipRecord) -> CompositeJob:
        """
        Apply the clip failure policy.

        By default a failed clip blocks the composite until an operator
        retries the clip or fails the composite. With cascading enabled the
        composite fails immediately.
        """
        if self.fail_on_clip_failure:
            return await self.fail_composite(
                composite_id, f"Clip {clip.clip_index} failed: {clip.error_message or 'unknown error'}"
            )
        logger.warning(
            "Clip failed, composite blocked pending operator action",
            extra={"job_id": composite_id, "clip_index": clip.clip_index, "error": clip.error_message}
        )
        return await self._require(composite_id)

    async def complete_stitching(
        self,
        composite_id: str,
        final_video_url: str,
        thumbnail_url: Optional[str] = None,
        actual_duration: Optional[float] = None,
    ) -> CompositeJob:
        """
        Record the stitched output. Only valid from stitching; repeating the
        call on a completed composite is a no-op.
        """
        if not final_video_url:
            raise ValidationError("final_video_url is required", job_id=composite_id)
        updated = await self.store.transition(
            composite_id,
            [CompositeStatus.STITCHING],
            CompositeStatus.COMPLETED,
            {
                "final_video_url": final_video_url,
                "thumbnail_url": thumbnail_url,
                "actual_duration": actual_duration,
                "error_message": None,
                "completed_at": utcnow(),
            },
        )
        if updated:
            logger.info("Composite completed", extra={"job_id": composite_id, "video_url": final_video_url})
            return updated

        composite = await self._require(composite_id)
        if composite.status == CompositeStatus.COMPLETED:
            return composite
        raise InvalidTransitionError(
            f"Cannot complete composite in status {composite.status.value}", job_id=composite_id
        )

    async def fail_composite(self, composite_id: str, error: str) -> CompositeJob:
        """Fail a non-terminal composite. Failing a failed composite is a no-op."""
        updated = await self.store.transition(
            composite_id,
            [CompositeStatus.PENDING, CompositeStatus.GENERATING_CLIPS, CompositeStatus.STITCHING],
            CompositeStatus.FAILED,
            {"error_message": error, "completed_at": utcnow()},
        )
        if updated:
            logger.error("Composite failed", extra={"job_id": composite_id, "error": error})
            return updated

        composite = await self._require(composite_id)
        if composite.status == CompositeStatus.FAILED:
            return composite
        raise InvalidTransitionError(
            f"Cannot fail composite in status {composite.status.value}", job_id=composite_id
        )

    async def retry_clip(self, composite_id: str, clip_index: int) -> ClipRecord:
        """
        Reset a failed clip to pending so it can be resubmitted.

        Raises:
            JobNotFoundError: If the composite or clip does not exist
            InvalidTransitionError: If the composite is not generating clips,
                the clip is not failed, or its retry budget is exhausted
        """
        composite = await self._require(composite_id)
        if composite.status != CompositeStatus.GENERATING_CLIPS:
            raise InvalidTransitionError(
                f"Cannot retry clips of composite in status {composite.status.value}", job_id=composite_id
            )
        clip = composite.clip(clip_index)
        if clip is None:
            raise JobNotFoundError(f"{composite_id}#{clip_index}", kind="Clip")
        if clip.status != ClipStatus.FAILED:
            raise InvalidTransitionError(
                f"Only failed clips can be retried (status {clip.status.value})", job_id=composite_id
            )
        if clip.retry_count >= self.max_clip_retries:
            raise InvalidTransitionError(
                f"Clip retry budget exhausted ({clip.retry_count}/{self.max_clip_retries})", job_id=composite_id
            )

        updated = await self.store.update_clip(
            clip.id,
            [ClipStatus.FAILED],
            {
                "status": ClipStatus.PENDING,
                "retry_count": clip.retry_count + 1,
                "error_message": None,
                "provider_handle": None,
                "video_url": None,
            },
        )
        if updated is None:
            raise InvalidTransitionError("Clip changed while retrying", job_id=composite_id)
        logger.info(
            "Clip reset for retry",
            extra={"job_id": composite_id, "clip_index": clip_index, "retry_count": updated.retry_count}
        )
        return updated
