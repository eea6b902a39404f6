"""
Time estimation service.

Calculates estimated remaining time for jobs and composites from elapsed
time and progress.
"""

from datetime import datetime
from typing import Optional

from shared.config import settings
from shared.models.composite import ClipStatus, CompositeJob, CompositeStatus
from shared.models.job import utcnow


def estimate_remaining(
    progress: int,
    started_at: Optional[datetime],
    now: Optional[datetime] = None,
    default_seconds: Optional[int] = None,
    max_seconds: Optional[int] = None,
) -> int:
    """
    Estimate remaining seconds for a single job.

    Extrapolates linearly from elapsed time: at p% done after t seconds the
    whole run takes t / p * 100 seconds.

    Args:
        progress: Current progress percentage (0-100)
        started_at: When processing started (None if not started)
        now: Reference time (defaults to current UTC time)
        default_seconds: Estimate used before any progress is known
        max_seconds: Upper bound of the estimate

    Returns:
        Estimated remaining time in seconds
    """
    default_seconds = settings.default_remaining_estimate_seconds if default_seconds is None else default_seconds
    max_seconds = settings.max_remaining_estimate_seconds if max_seconds is None else max_seconds

    if progress >= 100:
        return 0
    if started_at is None or progress <= 0:
        return default_seconds

    elapsed = ((now or utcnow()) - started_at).total_seconds()
    if elapsed <= 0:
        return default_seconds
    remaining = elapsed / progress * 100 - elapsed
    return int(max(0, min(max_seconds, remaining)))


def estimate_composite_remaining(
    composite: CompositeJob,
    seconds_per_clip: Optional[int] = None,
    stitch_seconds: Optional[int] = None,
) -> int:
    """
    Estimate remaining seconds for a composite.

    Each clip not yet completed counts seconds_per_clip, plus a fixed
    allowance for stitching.
    """
    seconds_per_clip = settings.seconds_per_clip_estimate if seconds_per_clip is None else seconds_per_clip
    stitch_seconds = settings.stitch_estimate_seconds if stitch_seconds is None else stitch_seconds

    if composite.status in (CompositeStatus.COMPLETED, CompositeStatus.FAILED):
        return 0
    if composite.status == CompositeStatus.STITCHING:
        return stitch_seconds

    remaining_clips = sum(1 for clip in composite.clips if clip.status != ClipStatus.COMPLETED)
    if not composite.clips:
        remaining_clips = composite.total_clips
    return remaining_clips * seconds_per_clip + stitch_seconds
