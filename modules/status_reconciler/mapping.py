"""
Provider state to local progress mapping.
"""

from typing import Optional

from modules.video_provider.base import ProviderState

QUEUED_BASE_PROGRESS = 25
QUEUED_MIN_PROGRESS = 5
QUEUED_DEFAULT_PROGRESS = 10
RUNNING_PROGRESS = 50
COMPLETE_PROGRESS = 100

NO_VIDEO_URL_ERROR = "Video generation completed but no video URL returned"
DEFAULT_FAILURE_ERROR = "Video generation failed"

# Provider error text that indicates a transient failure
RETRYABLE_ERROR_PATTERNS = (
    "rate limit",
    "timeout",
    "network error",
    "429",
    "502",
    "503",
    "temporarily unavailable",
)


def progress_for(state: ProviderState, queue_position: Optional[int] = None) -> Optional[int]:
    """
    Local progress implied by a provider state.

    Queued jobs move toward 25 as they approach the head of the provider
    queue (two points per position, never below 5).

    Returns:
        Progress percentage, or None for ERRORED
    """
    if state == ProviderState.QUEUED:
        if queue_position is None:
            return QUEUED_DEFAULT_PROGRESS
        return max(QUEUED_MIN_PROGRESS, QUEUED_BASE_PROGRESS - queue_position * 2)
    if state == ProviderState.RUNNING:
        return RUNNING_PROGRESS
    if state == ProviderState.SUCCEEDED:
        return COMPLETE_PROGRESS
    return None


def is_retryable_error(message: Optional[str]) -> bool:
    """Whether a provider error message describes a transient failure."""
    if not message:
        return False
    lowered = message.lower()
    return any(pattern in lowered for pattern in RETRYABLE_ERROR_PATTERNS)
