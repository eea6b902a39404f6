"""
Composite job models.

A composite job is a durable multi-clip pipeline: the script is split into
ordered clips, each clip is generated independently, and the clips are
stitched into one final video.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field, computed_field, field_serializer

from shared.models.job import utcnow


class CompositeStatus(str, Enum):
    """Lifecycle status of a composite job."""

    PENDING = "pending"
    GENERATING_CLIPS = "generating_clips"
    STITCHING = "stitching"
    COMPLETED = "completed"
    FAILED = "failed"


class ClipStatus(str, Enum):
    """Lifecycle status of one clip of a composite job."""

    PENDING = "pending"
    GENERATING_AUDIO = "generating_audio"
    GENERATING_VIDEO = "generating_video"
    COMPLETED = "completed"
    FAILED = "failed"


class ClipType(str, Enum):
    """Narrative role of a clip."""

    HOOK = "hook"
    TESTIMONIAL = "testimonial"
    CTA = "cta"


TERMINAL_COMPOSITE_STATUSES = frozenset({CompositeStatus.COMPLETED, CompositeStatus.FAILED})
IN_FLIGHT_CLIP_STATUSES = frozenset({ClipStatus.GENERATING_AUDIO, ClipStatus.GENERATING_VIDEO})


def _new_id() -> str:
    return str(uuid.uuid4())


class ClipRecord(BaseModel):
    """One clip sub-job of a composite."""

    id: str = Field(default_factory=_new_id)
    composite_id: str
    clip_index: int = Field(ge=1, description="1-based position in the final video")
    clip_type: ClipType
    script_content: str
    estimated_duration: float = 0.0
    status: ClipStatus = ClipStatus.PENDING
    provider_handle: Optional[str] = None
    video_url: Optional[str] = None
    audio_url: Optional[str] = None
    duration: Optional[float] = None
    error_message: Optional[str] = None
    retry_count: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_serializer("created_at", "updated_at")
    def serialize_datetime(self, value: Optional[datetime]) -> Optional[str]:
        """Serialize datetime to ISO format string."""
        return value.isoformat() if value else None


class CompositeJob(BaseModel):
    """Durable multi-clip generation job."""

    id: str = Field(default_factory=_new_id)
    owner_id: str
    source_reference: Optional[str] = Field(default=None, description="Review the composite was created for")
    actor_id: str
    voice_id: str
    full_script: str
    aspect_ratio: str = "9:16"
    target_duration: int = 30
    status: CompositeStatus = CompositeStatus.PENDING
    total_clips: int = Field(ge=0)
    clips: List[ClipRecord] = Field(default_factory=list)
    final_video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    actual_duration: Optional[float] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @computed_field
    @property
    def current_clip(self) -> int:
        """Number of completed clips. Derived, never stored."""
        return sum(1 for clip in self.clips if clip.status == ClipStatus.COMPLETED)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_COMPOSITE_STATUSES

    def clip(self, clip_index: int) -> Optional[ClipRecord]:
        """Look up a clip by its 1-based index."""
        for clip in self.clips:
            if clip.clip_index == clip_index:
                return clip
        return None

    @field_serializer("created_at", "updated_at", "completed_at")
    def serialize_datetime(self, value: Optional[datetime]) -> Optional[str]:
        """Serialize datetime to ISO format string."""
        return value.isoformat() if value else None
