"""
Stage derivation for client progress views.

A job's overall progress is split into bands; each band is presented to the
client as a named stage with its own 0-100 progress.
"""

from typing import Optional, Tuple

from pydantic import BaseModel, model_validator

from shared.config import settings
from shared.models.composite import CompositeJob, CompositeStatus
from shared.models.job import JobStatus

STITCHING_PROGRESS = 90
CLIP_GENERATION_SHARE = 80

_CLIENT_STATUS = {
    JobStatus.PENDING: "queued",
    JobStatus.PROCESSING: "generating",
    JobStatus.COMPLETED: "complete",
    JobStatus.FAILED: "error",
}

_COMPOSITE_CLIENT_STATUS = {
    CompositeStatus.PENDING: "queued",
    CompositeStatus.GENERATING_CLIPS: "generating",
    CompositeStatus.STITCHING: "generating",
    CompositeStatus.COMPLETED: "complete",
    CompositeStatus.FAILED: "error",
}


class StageBands(BaseModel):
    """Upper bounds of the script, audio and video bands."""

    script: int = 25
    audio: int = 50
    video: int = 85

    @model_validator(mode="after")
    def check_order(self) -> "StageBands":
        if not 0 < self.script < self.audio < self.video < 100:
            raise ValueError(
                f"Stage bands must increase within 0-100: {self.script}/{self.audio}/{self.video}"
            )
        return self

    @classmethod
    def from_settings(cls) -> "StageBands":
        script, audio, video = settings.progress_bands
        return cls(script=script, audio=audio, video=video)

    def band(self, progress: int) -> Tuple[str, int, int]:
        """Stage name and [low, high) bounds containing `progress`."""
        if progress < self.script:
            return "script", 0, self.script
        if progress < self.audio:
            return "audio", self.script, self.audio
        if progress < self.video:
            return "video", self.audio, self.video
        return "processing", self.video, 100


def client_status(status: JobStatus) -> str:
    return _CLIENT_STATUS[status]


def composite_client_status(status: CompositeStatus) -> str:
    return _COMPOSITE_CLIENT_STATUS[status]


def stage_for(status: JobStatus, progress: int, bands: Optional[StageBands] = None) -> str:
    """
    Client-facing stage for a job.

    Pending jobs show "script", terminal jobs "complete" or "error", and
    processing jobs the band their progress falls in.
    """
    if status == JobStatus.PENDING:
        return "script"
    if status == JobStatus.COMPLETED:
        return "complete"
    if status == JobStatus.FAILED:
        return "error"
    name, _, _ = (bands or StageBands()).band(progress)
    return name


def stage_progress(progress: int, bands: Optional[StageBands] = None) -> int:
    """Progress renormalized to 0-100 within its band."""
    progress = max(0, min(100, progress))
    if progress >= 100:
        return 100
    _, low, high = (bands or StageBands()).band(progress)
    return max(0, min(100, round((progress - low) / (high - low) * 100)))


def composite_progress(composite: CompositeJob) -> int:
    """
    Overall progress of a composite.

    Clip generation covers 0-80, stitching sits at 90 and completion at 100.
    A failed composite keeps the value its clips had reached.
    """
    if composite.status == CompositeStatus.COMPLETED:
        return 100
    if composite.status == CompositeStatus.STITCHING:
        return STITCHING_PROGRESS
    if composite.status == CompositeStatus.PENDING or composite.total_clips <= 0:
        return 0
    return round(composite.current_clip / composite.total_clips * CLIP_GENERATION_SHARE)


def composite_stage(composite: CompositeJob) -> str:
    """Client-facing stage for a composite."""
    if composite.status == CompositeStatus.PENDING:
        return "script"
    if composite.status == CompositeStatus.GENERATING_CLIPS:
        return "video"
    if composite.status == CompositeStatus.STITCHING:
        return "processing"
    if composite.status == CompositeStatus.COMPLETED:
        return "complete"
    return "error"


def composite_stage_progress(composite: CompositeJob) -> int:
    """Progress within the current composite stage."""
    if composite.status == CompositeStatus.COMPLETED:
        return 100
    if composite.status == CompositeStatus.GENERATING_CLIPS and composite.total_clips > 0:
        return round(composite.current_clip / composite.total_clips * 100)
    return 0
