"""
Single-stage job models.

Defines Job and its status, priority and result types for the ephemeral queue.
"""

import secrets
import string
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field, field_serializer

_BASE36 = string.digits + string.ascii_lowercase


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def _to_base36(value: int) -> str:
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits)) or "0"


def generate_job_id() -> str:
    """Opaque job id: job_<base36 millis>_<random suffix>."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"job_{_to_base36(int(time.time() * 1000))}_{suffix}"


class JobStatus(str, Enum):
    """Lifecycle status of a single-stage job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobPriority(str, Enum):
    """Scheduling priority; higher weight is served first."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def weight(self) -> int:
        return PRIORITY_WEIGHTS[self]


PRIORITY_WEIGHTS = {
    JobPriority.LOW: 1,
    JobPriority.NORMAL: 2,
    JobPriority.HIGH: 3,
    JobPriority.URGENT: 4,
}


class JobResult(BaseModel):
    """Media produced by a completed job."""

    url: str
    duration: Optional[float] = None
    content_type: str = "video/mp4"
    width: Optional[int] = None
    height: Optional[int] = None
    thumbnail_url: Optional[str] = None


class Job(BaseModel):
    """Single-stage generation job held by the ephemeral queue."""

    id: str = Field(default_factory=generate_job_id)
    owner_id: str
    correlation_id: Optional[str] = Field(default=None, description="Review the job was created for")
    status: JobStatus = JobStatus.PENDING
    priority: JobPriority = JobPriority.NORMAL
    progress: int = Field(default=0, ge=0, le=100, description="Progress percentage 0-100")
    provider_handle: Optional[str] = None
    result: Optional[JobResult] = None
    error: Optional[str] = None
    retry_count: int = Field(default=0, ge=0)
    max_retries: int = Field(default=3, ge=0)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        """Completed jobs and failed jobs with no retry budget left accept no writes."""
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)

    @field_serializer("created_at", "updated_at", "started_at", "completed_at")
    def serialize_datetime(self, value: Optional[datetime]) -> Optional[str]:
        """Serialize datetime to ISO format string."""
        return value.isoformat() if value else None


class QueueStats(BaseModel):
    """Counts of jobs held by the queue."""

    total: int = 0
    by_status: Dict[str, int] = Field(default_factory=dict)
    by_priority: Dict[str, int] = Field(default_factory=dict)
