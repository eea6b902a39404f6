"""
Replicate API integration.

Creates predictions without waiting on them; status comes back through
polling predictions.get or through Replicate's webhook callbacks.
"""

import asyncio
from enum import Enum
from typing import Any, Callable, Mapping, Optional

import replicate
from replicate.exceptions import ModelError, ReplicateError

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

logger = get_logger("video_provider.replicate")


class ReplicateStatus(str, Enum):
    """Prediction status strings reported by Replicate."""

    STARTING = "starting"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"


REPLICATE_STATE_TABLE = {
    ReplicateStatus.STARTING: ProviderState.QUEUED,
    ReplicateStatus.PROCESSING: ProviderState.RUNNING,
    ReplicateStatus.SUCCEEDED: ProviderState.SUCCEEDED,
    ReplicateStatus.FAILED: ProviderState.ERRORED,
    ReplicateStatus.CANCELED: ProviderState.ERRORED,
}


def classify_replicate_error(error: Exception) -> Exception:
    """
    Map a Replicate SDK exception onto the orchestrator error taxonomy.

    Returns:
        RetryableError subclass for transient failures, GenerationError otherwise
    """
    error_str = str(error).lower()
    status = getattr(error, "status", None)
    if status == 429 or "rate limit" in error_str or "429" in error_str:
        return RateLimitError(f"Rate limit error: {str(error)}")
    if "timeout" in error_str or "timed out" in error_str:
        return ProviderTimeoutError(f"Timeout error: {str(error)}")
    if (status and status >= 500) or "network" in error_str or "connection" in error_str:
        return RetryableError(f"Replicate unavailable: {str(error)}")
    if "internal error" in error_str or "try again later" in error_str:
        return RetryableError(f"Internal error (transient, retryable): {str(error)}")
    return GenerationError(f"Replicate error: {str(error)}")


def _output_url(output: Any) -> Optional[str]:
    """Replicate video models return a URL string or a list of URLs."""
    if isinstance(output, str):
        return output
    if isinstance(output, (list, tuple)) and output:
        return str(output[-1])
    if isinstance(output, Mapping):
        return output.get("video") or output.get("url")
    return None


def _prediction_field(prediction: Any, key: str) -> Any:
    if isinstance(prediction, Mapping):
        return prediction.get(key)
    return getattr(prediction, key, None)


class ReplicateVideoProvider(VideoProvider):
    """Replicate predictions client."""

    name = "replicate"

    def __init__(
        self,
        api_token: Optional[str] = None,
        model: Optional[str] = None,
        client: Optional[replicate.Client] = None,
    ):
        api_token = api_token or settings.replicate_api_token
        if client is None and not api_token:
            raise ConfigError("REPLICATE_API_TOKEN is required for the replicate provider")
        self.model = model or settings.replicate_model
        self.timeout = settings.provider_timeout_seconds
        self.client = client or replicate.Client(api_token=api_token)

    @retry_with_backoff(max_attempts=3, base_delay=1)
    async def _call(self, func: Callable[[], Any]) -> Any:
        """Run a blocking SDK call in the executor with a timeout."""
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(loop.run_in_executor(None, func), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise ProviderTimeoutError(f"Replicate call timed out after {self.timeout}s") from e
        except (ModelError, ReplicateError) as e:
            raise classify_replicate_error(e) from e

    def _status(self, prediction: Any) -> ProviderStatus:
        handle = _prediction_field(prediction, "id")
        raw = _prediction_field(prediction, "status")
        state = map_state(self.name, ReplicateStatus, REPLICATE_STATE_TABLE, raw, handle)
        error = _prediction_field(prediction, "error")
        if raw == ReplicateStatus.CANCELED.value and not error:
            error = "Prediction canceled"
        result = None
        if state == ProviderState.SUCCEEDED:
            result = ProviderResult(video_url=_output_url(_prediction_field(prediction, "output")))
        return ProviderStatus(
            handle=handle,
            state=state,
            raw_state=raw,
            error=str(error) if error else None,
            result=result,
        )

    async def submit(self, request: GenerationRequest) -> str:
        model_input = {
            "prompt": request.prompt,
            "duration": int(request.duration),
            "aspect_ratio": request.aspect_ratio,
        }
        if request.negative_prompt:
            model_input["negative_prompt"] = request.negative_prompt
        if request.image_url:
            model_input["start_image"] = request.image_url

        kwargs = {"model": self.model, "input": model_input}
        if request.webhook_url:
            kwargs["webhook"] = request.webhook_url
            kwargs["webhook_events_filter"] = ["start", "completed"]

        prediction = await self._call(lambda: self.client.predictions.create(**kwargs))
        logger.info(
            "Submitted Replicate prediction",
            extra={"provider_handle": prediction.id, "model": self.model}
        )
        return prediction.id

    async def poll_status(self, handle: str) -> ProviderStatus:
        prediction = await self._call(lambda: self.client.predictions.get(handle))
        return self._status(prediction)

    async def fetch_result(self, handle: str) -> ProviderResult:
        status = await self.poll_status(handle)
        if status.state != ProviderState.SUCCEEDED:
            raise GenerationError(f"Prediction {handle} has no result (status {status.raw_state})")
        return status.result

    def parse_webhook(self, payload: Mapping[str, Any]) -> ProviderStatus:
        require_field(payload, "id")
        require_field(payload, "status")
        return self._status(payload)
