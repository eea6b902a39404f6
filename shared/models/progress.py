"""
Progress snapshot model.

The payload pushed to clients by both the polling endpoint and the stream.
"""

from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field


class ProgressSnapshot(BaseModel):
    """Point-in-time view of a job or composite as seen by a client."""

    job_id: str
    kind: Literal["job", "composite"] = "job"
    status: Literal["queued", "generating", "complete", "error"]
    stage: Literal["script", "audio", "video", "processing", "complete", "error"]
    stage_progress: int = Field(default=0, ge=0, le=100)
    overall_progress: int = Field(default=0, ge=0, le=100)
    estimated_time_remaining: int = Field(default=0, ge=0, description="Seconds")
    video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    error: Optional[str] = None
    retry_count: Optional[int] = None
    current_clip: Optional[int] = None
    total_clips: Optional[int] = None
    clips: Optional[List[Dict[str, Any]]] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in ("complete", "error")
