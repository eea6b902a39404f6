"""
FastAPI dependencies.

Authentication, ownership checks and access to the services held on
app.state.
"""

from typing import Optional
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from shared.config import settings
from shared.logging import get_logger
from shared.models.composite import CompositeJob
from shared.models.job import Job
from modules.job_queue.queue import JobQueue
from modules.job_store.base import CompositeJobStore
from modules.pipeline_coordinator.coordinator import PipelineCoordinator
from modules.progress_broadcaster.broadcaster import ProgressBroadcaster
from modules.status_reconciler.reconciler import StatusReconciler
from api_gateway.services.status_cache import StatusCache
from api_gateway.services.submission_service import SubmissionService

logger = get_logger(__name__)

# HTTP Bearer token scheme
security = HTTPBearer(auto_error=False)  # Don't auto-raise on missing token

LOCAL_USER_ID = "00000000-0000-0000-0000-000000000000"


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    token: Optional[str] = None
) -> dict:
    """
    Validate JWT token and return current user.

    Supports both Bearer token (header) and query parameter authentication.

    Args:
        credentials: HTTP Bearer token credentials (from header)
        token: Optional token from query parameter (for SSE)

    Returns:
        Dictionary with user_id

    Raises:
        HTTPException: If token is invalid or missing
    """
    if settings.auth_disabled:
        return {"user_id": LOCAL_USER_ID}

    # Get token from header or query parameter
    if credentials:
        token = credentials.credentials
    elif not token:
        logger.warning("No token provided in header or query parameter")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication token",
            headers={"WWW-Authenticate": "Bearer"}
        )

    if not settings.supabase_jwt_secret:
        logger.error("SUPABASE_JWT_SECRET is not configured")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication is not configured",
            headers={"WWW-Authenticate": "Bearer"}
        )

    try:
        payload = jwt.decode(
            token,
            settings.supabase_jwt_secret,
            algorithms=["HS256"],
            options={"verify_aud": False}  # Supabase tokens don't include audience claim
        )
    except JWTError as e:
        logger.error(
            "JWT validation failed",
            extra={"error_type": type(e).__name__, "token_length": len(token)},
            exc_info=e
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid or expired token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"}
        )

    user_id = payload.get("sub")  # Supabase uses "sub" for user_id
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing user_id",
            headers={"WWW-Authenticate": "Bearer"}
        )

    user_data = {"user_id": user_id}
    if payload.get("email"):
        user_data["email"] = payload["email"]
    return user_data


def get_job_queue(request: Request) -> JobQueue:
    return request.app.state.job_queue


def get_job_store(request: Request) -> CompositeJobStore:
    return request.app.state.job_store


def get_coordinator(request: Request) -> PipelineCoordinator:
    return request.app.state.coordinator


def get_reconciler(request: Request) -> StatusReconciler:
    return request.app.state.reconciler


def get_broadcaster(request: Request) -> ProgressBroadcaster:
    return request.app.state.broadcaster


def get_submission_service(request: Request) -> SubmissionService:
    return request.app.state.submission


def get_status_cache(request: Request) -> StatusCache:
    return request.app.state.status_cache


def _check_owner(kind: str, record_id: str, owner_id: str, current_user: dict) -> None:
    if owner_id != current_user["user_id"]:
        logger.warning(
            f"{kind} ownership verification failed",
            extra={"job_id": record_id, "owner_id": owner_id, "current_user_id": current_user["user_id"]}
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"{kind} does not belong to user"
        )


def verify_job_ownership(job: Job, current_user: dict) -> Job:
    """
    Verify that the job belongs to the current user.

    Raises:
        HTTPException: 403 if the job belongs to another user
    """
    _check_owner("Job", job.id, job.owner_id, current_user)
    return job


def verify_composite_ownership(composite: CompositeJob, current_user: dict) -> CompositeJob:
    """
    Verify that the composite belongs to the current user.

    Raises:
        HTTPException: 403 if the composite belongs to another user
    """
    _check_owner("Composite", composite.id, composite.owner_id, current_user)
    return composite
