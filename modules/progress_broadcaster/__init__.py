"""
Progress Broadcaster module.

Derives client-facing progress snapshots (stage, stage progress, estimated
time remaining) and streams them while a job or composite is in flight.
"""

from modules.progress_broadcaster.broadcaster import (
    NOT_FOUND_ERROR,
    TIMEOUT_ERROR,
    ProgressBroadcaster,
)
from modules.progress_broadcaster.stages import StageBands, stage_for, stage_progress
from modules.progress_broadcaster.time_estimator import estimate_composite_remaining, estimate_remaining

__all__ = [
    "NOT_FOUND_ERROR",
    "TIMEOUT_ERROR",
    "ProgressBroadcaster",
    "StageBands",
    "estimate_composite_remaining",
    "estimate_remaining",
    "stage_for",
    "stage_progress",
]
