"""
Provider webhook endpoints.

Signed status callbacks from the video provider.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Path, Query, Request
from shared.logging import get_logger
from modules.status_reconciler.reconciler import StatusReconciler
from api_gateway.dependencies import get_reconciler

logger = get_logger(__name__)

router = APIRouter()

SIGNATURE_HEADERS = ("X-Webhook-Signature", "X-Fal-Signature")


def _signature(request: Request) -> Optional[str]:
    for header in SIGNATURE_HEADERS:
        value = request.headers.get(header)
        if value:
            return value
    return None


@router.post("/webhooks/{provider}")
async def receive_webhook(
    request: Request,
    provider: str = Path(..., description="Provider name (fal or replicate)"),
    reconciler: StatusReconciler = Depends(get_reconciler),
):
    """
    Apply a provider status callback.

    The signature is checked against the raw body before anything else;
    a webhook for a handle no job owns is acknowledged with matched=false.
    """
    raw_body = await request.body()
    outcome = await reconciler.handle_webhook(provider, raw_body, _signature(request))
    return {"success": True, **outcome.model_dump(exclude_none=True)}


@router.get("/webhooks/{provider}")
async def verify_webhook(
    provider: str = Path(...),
    challenge: Optional[str] = Query(None),
):
    """Endpoint verification: echo the challenge when one is sent."""
    if challenge is not None:
        logger.info("Webhook verification challenge", extra={"provider": provider})
        return {"challenge": challenge}
    return {"status": "ok", "provider": provider}
