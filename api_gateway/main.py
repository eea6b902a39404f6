"""
FastAPI application.

Wires the queue, store, provider and orchestration services onto app.state,
runs the background loops for the lifetime of the app and maps
PipelineError subclasses onto HTTP responses.
"""

import uuid
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shared.config import settings
from shared.errors import (
    GenerationError,
    InvalidTransitionError,
    JobNotFoundError,
    PipelineError,
    RateLimitError,
    RetryableError,
    ValidationError,
    WebhookSignatureError,
)
from shared.logging import get_logger, set_request_id
from shared.redis_client import RedisClient
from modules.job_queue.queue import JobQueue
from modules.job_store import create_job_store
from modules.job_store.base import CompositeJobStore
from modules.pipeline_coordinator.coordinator import PipelineCoordinator
from modules.progress_broadcaster.broadcaster import ProgressBroadcaster
from modules.status_reconciler.poller import StatusPoller
from modules.status_reconciler.reconciler import StatusReconciler
from modules.video_provider import create_video_provider
from modules.video_provider.base import VideoProvider
from api_gateway.routes import composites, jobs, webhooks
from api_gateway.services.status_cache import StatusCache
from api_gateway.services.submission_service import SubmissionService
from api_gateway.worker import ResubmissionDispatcher

logger = get_logger(__name__)

API_PREFIX = "/api/v1"


def init_services(
    state: Any,
    provider: Optional[VideoProvider] = None,
    store: Optional[CompositeJobStore] = None,
    redis_client: Optional[RedisClient] = None,
) -> None:
    """
    Build every service and attach it to `state` (normally app.state).

    Args:
        state: Object receiving the services as attributes
        provider: Video provider (defaults to VIDEO_PROVIDER)
        store: Composite store (defaults to JOB_STORE_BACKEND)
        redis_client: Status cache backend (defaults to REDIS_URL when set)
    """
    if redis_client is None and settings.redis_url:
        redis_client = RedisClient()

    state.job_queue = JobQueue()
    state.job_store = store or create_job_store()
    state.video_provider = provider or create_video_provider()
    state.status_cache = StatusCache(redis_client)
    state.coordinator = PipelineCoordinator(state.job_store)
    state.submission = SubmissionService(
        state.job_queue,
        state.job_store,
        state.video_provider,
        state.coordinator,
        status_cache=state.status_cache,
    )
    state.coordinator.stitch_hook = state.submission.on_stitching_ready
    state.reconciler = StatusReconciler(
        state.job_queue,
        state.job_store,
        state.video_provider,
        state.coordinator,
        on_composite_changed=state.status_cache.invalidate,
    )
    state.broadcaster = ProgressBroadcaster(state.job_queue, state.job_store, state.reconciler)
    state.poller = StatusPoller(state.reconciler, state.job_queue, state.job_store)
    state.dispatcher = ResubmissionDispatcher(state.submission, state.job_queue, state.job_store)

    logger.info(
        "Services initialized",
        extra={
            "video_provider": state.video_provider.name,
            "job_store": type(state.job_store).__name__,
            "status_cache": redis_client is not None,
        }
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management"""
    # Startup
    init_services(app.state)
    app.state.job_queue.start_eviction()
    app.state.poller.start()
    app.state.dispatcher.start()
    logger.info("API gateway started", extra={"environment": settings.environment})

    yield

    # Shutdown
    await app.state.dispatcher.stop()
    await app.state.poller.stop()
    await app.state.job_queue.stop_eviction()
    await app.state.video_provider.close()
    await app.state.status_cache.close()
    logger.info("API gateway stopped")


def _error_response(status_code: int, exc: PipelineError, headers: Optional[dict] = None) -> JSONResponse:
    content = {"error": exc.message, "code": exc.code}
    if exc.job_id:
        content["job_id"] = exc.job_id
    return JSONResponse(status_code=status_code, content=content, headers=headers)


async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return _error_response(status.HTTP_400_BAD_REQUEST, exc)


async def webhook_signature_error_handler(request: Request, exc: WebhookSignatureError) -> JSONResponse:
    logger.warning("Webhook rejected", extra={"path": request.url.path, "reason": exc.message})
    return _error_response(status.HTTP_401_UNAUTHORIZED, exc)


async def not_found_error_handler(request: Request, exc: JobNotFoundError) -> JSONResponse:
    return _error_response(status.HTTP_404_NOT_FOUND, exc)


async def invalid_transition_error_handler(request: Request, exc: InvalidTransitionError) -> JSONResponse:
    return _error_response(status.HTTP_409_CONFLICT, exc)


async def retryable_error_handler(request: Request, exc: RetryableError) -> JSONResponse:
    headers = None
    if isinstance(exc, RateLimitError) and exc.retry_after:
        headers = {"Retry-After": str(int(exc.retry_after))}
    return _error_response(status.HTTP_503_SERVICE_UNAVAILABLE, exc, headers=headers)


async def generation_error_handler(request: Request, exc: GenerationError) -> JSONResponse:
    return _error_response(status.HTTP_502_BAD_GATEWAY, exc)


async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    logger.error("Unhandled pipeline error", exc_info=exc, extra={"path": request.url.path})
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, exc)


def create_app() -> FastAPI:
    """Build the FastAPI application."""
    app = FastAPI(
        title="ReviewReel Orchestrator API",
        description="Review-to-video job orchestration",
        version="1.0.0",
        openapi_url=f"{API_PREFIX}/openapi.json",
        lifespan=lifespan
    )

    # Exception handlers; Starlette resolves the most specific class first
    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(WebhookSignatureError, webhook_signature_error_handler)
    app.add_exception_handler(JobNotFoundError, not_found_error_handler)
    app.add_exception_handler(InvalidTransitionError, invalid_transition_error_handler)
    app.add_exception_handler(RetryableError, retryable_error_handler)
    app.add_exception_handler(GenerationError, generation_error_handler)
    app.add_exception_handler(PipelineError, pipeline_error_handler)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        set_request_id(request_id)
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    # Include API routers
    app.include_router(jobs.router, prefix=API_PREFIX, tags=["jobs"])
    app.include_router(composites.router, prefix=API_PREFIX, tags=["composites"])
    app.include_router(webhooks.router, prefix=API_PREFIX, tags=["webhooks"])

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "environment": settings.environment}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
