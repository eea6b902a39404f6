"""
Webhook signature verification (HMAC-SHA256 over the raw request body).
"""

import hashlib
import hmac
from typing import Optional

from shared.errors import WebhookSignatureError

SIGNATURE_PREFIX = "sha256="


def compute_signature(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 digest of `body`."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: Optional[str], secret: Optional[str]) -> None:
    """
    Verify a webhook signature.

    The signature is a hex digest, optionally prefixed with "sha256=".
    Webhooks are rejected outright when no secret is configured.

    Raises:
        WebhookSignatureError: If the secret or signature is missing, or the
            signature does not match
    """
    if not secret:
        raise WebhookSignatureError("Webhook secret is not configured", code="WEBHOOK_SECRET_MISSING")
    if not signature:
        raise WebhookSignatureError("Missing webhook signature", code="SIGNATURE_MISSING")

    provided = signature.strip()
    if provided.startswith(SIGNATURE_PREFIX):
        provided = provided[len(SIGNATURE_PREFIX):]

    expected = compute_signature(body, secret)
    if not hmac.compare_digest(provided.lower().encode("utf-8"), expected.encode("utf-8")):
        raise WebhookSignatureError("Invalid webhook signature", code="SIGNATURE_INVALID")
