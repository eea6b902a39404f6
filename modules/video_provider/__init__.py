"""
Video provider adapters.

fal.ai queue (httpx) and Replicate predictions (replicate SDK) behind one
VideoProvider interface.
"""

from typing import Optional

from shared.config import settings
from shared.errors import ConfigError
from modules.video_provider.base import (
    GenerationRequest,
    ProviderResult,
    ProviderState,
    ProviderStatus,
    VideoProvider,
)


def create_video_provider(name: Optional[str] = None) -> VideoProvider:
    """
    Build the configured provider adapter.

    Args:
        name: "fal" or "replicate" (defaults to VIDEO_PROVIDER)
    """
    name = name or settings.video_provider
    if name == "fal":
        from modules.video_provider.fal_client import FalVideoProvider
        return FalVideoProvider()
    if name == "replicate":
        from modules.video_provider.replicate_client import ReplicateVideoProvider
        return ReplicateVideoProvider()
    raise ConfigError(f"Unknown video provider: {name}")


__all__ = [
    "GenerationRequest",
    "ProviderResult",
    "ProviderState",
    "ProviderStatus",
    "VideoProvider",
    "create_video_provider",
]
