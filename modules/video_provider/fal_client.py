"""
fal.ai queue API integration.

Submits text-to-video requests to the fal queue and reads their status and
results over HTTP. Webhook bodies use the same request ids.
"""

from email.utils import parsedate_to_datetime
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional

import httpx

from shared.config import settings
from shared.errors import (
    ConfigError,
    GenerationError,
    ProviderTimeoutError,
    RateLimitError,
    RetryableError,
)
from shared.logging import get_logger
from shared.retry import retry_with_backoff
from modules.video_provider.base import (
    GenerationRequest,
    ProviderResult,
    ProviderState,
    ProviderStatus,
    VideoProvider,
    map_state,
    require_field,
)

logger = get_logger("video_provider.fal")


class FalStatus(str, Enum):
    """Status strings returned by the fal queue and its webhooks."""

    IN_QUEUE = "IN_QUEUE"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    OK = "OK"  # webhook success
    ERROR = "ERROR"  # webhook failure


FAL_STATE_TABLE = {
    FalStatus.IN_QUEUE: ProviderState.QUEUED,
    FalStatus.IN_PROGRESS: ProviderState.RUNNING,
    FalStatus.COMPLETED: ProviderState.SUCCEEDED,
    FalStatus.OK: ProviderState.SUCCEEDED,
    FalStatus.FAILED: ProviderState.ERRORED,
    FalStatus.ERROR: ProviderState.ERRORED,
}

# Requested aspect ratio -> closest ratio the model supports
ASPECT_RATIO_CONFIG: Dict[str, Dict[str, Any]] = {
    "16:9": {"width": 1920, "height": 1080, "fal_ratio": "16:9"},
    "9:16": {"width": 1080, "height": 1920, "fal_ratio": "9:16"},
    "1:1": {"width": 1080, "height": 1080, "fal_ratio": "1:1"},
    "4:3": {"width": 1440, "height": 1080, "fal_ratio": "16:9"},
    "3:4": {"width": 1080, "height": 1440, "fal_ratio": "9:16"},
    "21:9": {"width": 2560, "height": 1080, "fal_ratio": "16:9"},
}

DURATION_OPTIONS = ("5", "10")


def parse_retry_after_header(headers: Mapping[str, str]) -> Optional[float]:
    """
    Parse Retry-After header from API response.

    Args:
        headers: Response headers

    Returns:
        Seconds to wait, or None if not present
    """
    retry_after = headers.get("Retry-After") or headers.get("retry-after")
    if not retry_after:
        return None
    try:
        return float(retry_after)
    except ValueError:
        try:
            retry_date = parsedate_to_datetime(retry_after)
        except (TypeError, ValueError):
            return None
        return max(0.0, (retry_date - datetime.now(timezone.utc)).total_seconds())


def extract_result(output: Mapping[str, Any]) -> ProviderResult:
    """Pull the video out of a fal result or webhook payload."""
    video = output.get("video") or {}
    if isinstance(video, str):
        video = {"url": video}
    thumbnail = output.get("thumbnail")
    return ProviderResult(
        video_url=video.get("url"),
        duration=video.get("duration"),
        width=video.get("width"),
        height=video.get("height"),
        content_type=video.get("content_type") or "video/mp4",
        thumbnail_url=thumbnail.get("url") if isinstance(thumbnail, Mapping) else None,
    )


class FalVideoProvider(VideoProvider):
    """fal.ai queue client."""

    name = "fal"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key or settings.fal_api_key
        if not self.api_key:
            raise ConfigError("FAL_API_KEY is required for the fal provider")
        self.model = model or settings.fal_model
        self.base_url = (base_url or settings.fal_queue_url).rstrip("/")
        # Status and result URLs are addressed by the owner/app prefix only
        self.app_id = "/".join(self.model.split("/")[:2])
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout or settings.provider_timeout_seconds),
            headers={"Authorization": f"Key {self.api_key}"},
        )

    @retry_with_backoff(max_attempts=3, base_delay=1)
    async def _request(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        """
        Send one HTTP request and classify failures.

        Raises:
            ProviderTimeoutError: On connect/read timeout
            RateLimitError: On HTTP 429
            RetryableError: On 5xx or transport errors
            GenerationError: On any other 4xx
        """
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(f"fal request timed out: {method} {url}") from e
        except httpx.TransportError as e:
            raise RetryableError(f"fal network error: {str(e)}") from e

        if response.status_code == 429:
            raise RateLimitError(
                "fal rate limit exceeded",
                retry_after=parse_retry_after_header(response.headers),
            )
        if response.status_code >= 500:
            raise RetryableError(f"fal service error {response.status_code}: {response.text[:200]}")
        if response.status_code >= 400:
            raise GenerationError(f"fal request rejected {response.status_code}: {response.text[:200]}")
        return response.json()

    async def submit(self, request: GenerationRequest) -> str:
        aspect = ASPECT_RATIO_CONFIG.get(request.aspect_ratio, ASPECT_RATIO_CONFIG["9:16"])
        duration = request.duration if request.duration in DURATION_OPTIONS else "5"
        payload: Dict[str, Any] = {
            "prompt": request.prompt,
            "duration": duration,
            "aspect_ratio": aspect["fal_ratio"],
        }
        if request.negative_prompt:
            payload["negative_prompt"] = request.negative_prompt
        if request.image_url:
            payload["image_url"] = request.image_url

        params = {"fal_webhook": request.webhook_url} if request.webhook_url else None
        data = await self._request("POST", f"{self.base_url}/{self.model}", json=payload, params=params)
        handle = data.get("request_id")
        if not handle:
            raise RetryableError("fal submission returned no request_id")

        logger.info(
            "Submitted fal generation",
            extra={"provider_handle": handle, "model": self.model, "aspect_ratio": aspect["fal_ratio"]}
        )
        return handle

    async def poll_status(self, handle: str) -> ProviderStatus:
        data = await self._request(
            "GET", f"{self.base_url}/{self.app_id}/requests/{handle}/status", params={"logs": 1}
        )
        raw = data.get("status")
        state = map_state(self.name, FalStatus, FAL_STATE_TABLE, raw, handle)
        error = data.get("error")
        if state == ProviderState.SUCCEEDED and error:
            # Completed requests can carry the model error instead of an output
            state = ProviderState.ERRORED
        return ProviderStatus(
            handle=handle,
            state=state,
            raw_state=raw,
            queue_position=data.get("queue_position"),
            error=str(error) if error else None,
        )

    async def fetch_result(self, handle: str) -> ProviderResult:
        data = await self._request("GET", f"{self.base_url}/{self.app_id}/requests/{handle}")
        return extract_result(data.get("response") or data)

    def parse_webhook(self, payload: Mapping[str, Any]) -> ProviderStatus:
        handle = require_field(payload, "request_id")
        raw = require_field(payload, "status")
        state = map_state(self.name, FalStatus, FAL_STATE_TABLE, raw, handle)

        result = None
        body = payload.get("payload")
        if state == ProviderState.SUCCEEDED and isinstance(body, Mapping):
            result = extract_result(body)

        error = payload.get("error")
        if state == ProviderState.ERRORED and not error and isinstance(body, Mapping):
            detail = body.get("detail")
            error = str(detail) if detail else None

        return ProviderStatus(
            handle=handle,
            state=state,
            raw_state=raw,
            queue_position=payload.get("queue_position"),
            error=str(error) if error else None,
            result=result,
        )

    async def close(self) -> None:
        await self._client.aclose()
