"""
Data models for the generation job orchestrator.

This module exports all Pydantic models used across orchestrator modules.
"""

from .job import Job, JobStatus, JobPriority, JobResult, QueueStats, PRIORITY_WEIGHTS
from .composite import (
    CompositeJob,
    CompositeStatus,
    ClipRecord,
    ClipStatus,
    ClipType,
)
from .progress import ProgressSnapshot

__all__ = [
    # Job models
    "Job",
    "JobStatus",
    "JobPriority",
    "JobResult",
    "QueueStats",
    "PRIORITY_WEIGHTS",
    # Composite models
    "CompositeJob",
    "CompositeStatus",
    "ClipRecord",
    "ClipStatus",
    "ClipType",
    # Progress models
    "ProgressSnapshot",
]
