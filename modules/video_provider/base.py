"""
Remote video provider boundary.

Each provider adapter translates its own closed status vocabulary into
ProviderState through an explicit table. An unknown raw status raises
UnknownProviderStateError instead of being guessed.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Type
from pydantic import BaseModel, Field

from shared.errors import UnknownProviderStateError, ValidationError


class ProviderState(str, Enum):
    """Provider-neutral generation state."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    ERRORED = "errored"


class GenerationRequest(BaseModel):
    """Input for one video generation."""

    prompt: str
    negative_prompt: Optional[str] = None
    aspect_ratio: str = "9:16"
    duration: str = "5"
    image_url: Optional[str] = None
    webhook_url: Optional[str] = None


class ProviderResult(BaseModel):
    """Output of a finished generation."""

    video_url: Optional[str] = None
    duration: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None
    content_type: str = "video/mp4"
    thumbnail_url: Optional[str] = None


class ProviderStatus(BaseModel):
    """Status report for one provider handle, from a poll or a webhook."""

    handle: str
    state: ProviderState
    raw_state: str
    queue_position: Optional[int] = None
    error: Optional[str] = None
    result: Optional[ProviderResult] = None
    logs: Dict[str, Any] = Field(default_factory=dict)


def map_state(
    provider: str,
    raw_enum: Type[Enum],
    table: Mapping[Enum, ProviderState],
    raw_state: Optional[str],
    handle: Optional[str] = None,
) -> ProviderState:
    """
    Translate a raw provider status string through an explicit table.

    Raises:
        UnknownProviderStateError: If the string is not part of the vocabulary
    """
    try:
        member = raw_enum(raw_state)
    except ValueError as e:
        raise UnknownProviderStateError(provider, str(raw_state), job_id=handle) from e
    return table[member]


def require_field(payload: Mapping[str, Any], key: str) -> Any:
    """Fetch a mandatory webhook field or raise ValidationError."""
    value = payload.get(key)
    if value in (None, ""):
        raise ValidationError(f"Missing required field: {key}")
    return value


class VideoProvider(ABC):
    """Remote asynchronous video generation service."""

    name: str = "provider"

    @abstractmethod
    async def submit(self, request: GenerationRequest) -> str:
        """
        Submit a generation request without waiting for it to finish.

        Returns:
            Provider handle used by later polls and webhooks
        """

    @abstractmethod
    async def poll_status(self, handle: str) -> ProviderStatus:
        """Fetch the current status of a handle."""

    @abstractmethod
    async def fetch_result(self, handle: str) -> ProviderResult:
        """Fetch the output of a finished handle."""

    @abstractmethod
    def parse_webhook(self, payload: Mapping[str, Any]) -> ProviderStatus:
        """
        Parse a decoded webhook body.

        Raises:
            ValidationError: If the request id or status is missing
            UnknownProviderStateError: If the status is not recognised
        """

    async def close(self) -> None:
        """Release network resources."""
