"""
Error hierarchy.

All orchestrator errors derive from PipelineError so API handlers can map
them onto HTTP responses in one place.
"""

from typing import Optional


class PipelineError(Exception):
    """Base exception for all orchestrator errors."""
    
    def __init__(self, message: str, job_id: Optional[str] = None, code: Optional[str] = None):
        """
        Initialize pipeline error.
        
        Args:
            message: Human-readable error message
            job_id: Optional job or composite ID the error relates to
            code: Optional machine-readable error code
        """
        super().__init__(message)
        self.message = message
        self.job_id = job_id
        self.code = code
    
    def __str__(self) -> str:
        return self.message


class ConfigError(PipelineError):
    """Configuration is missing or malformed."""
    pass


class ValidationError(PipelineError):
    """Caller supplied invalid input. Rejected synchronously, never retried."""
    pass


class RetryableError(PipelineError):
    """Transient failure (network, 5xx, timeout). Safe to retry."""
    pass


class RateLimitError(RetryableError):
    """Remote provider throttled the request."""
    
    def __init__(
        self,
        message: str,
        job_id: Optional[str] = None,
        code: Optional[str] = None,
        retry_after: Optional[float] = None
    ):
        super().__init__(message, job_id=job_id, code=code)
        self.retry_after = retry_after


class ProviderTimeoutError(RetryableError):
    """Remote provider did not answer within the configured timeout."""
    pass


class GenerationError(PipelineError):
    """Remote provider reported a terminal failure for the request."""
    pass


class WebhookSignatureError(PipelineError):
    """Inbound webhook failed signature verification."""
    pass


class UnknownProviderStateError(PipelineError):
    """Provider reported a status string outside its known vocabulary."""
    
    def __init__(self, provider: str, raw_state: str, job_id: Optional[str] = None):
        super().__init__(
            f"Unknown {provider} status: {raw_state!r}",
            job_id=job_id,
            code="UNKNOWN_PROVIDER_STATE"
        )
        self.provider = provider
        self.raw_state = raw_state


class ConsistencyError(PipelineError):
    """Operation conflicts with the current record state."""
    pass


class JobNotFoundError(ConsistencyError):
    """Referenced job, composite or clip does not exist."""
    
    def __init__(self, job_id: str, kind: str = "Job"):
        super().__init__(f"{kind} not found: {job_id}", job_id=job_id, code="NOT_FOUND")


class InvalidTransitionError(ConsistencyError):
    """Requested status transition is not allowed from the current status."""
    pass
