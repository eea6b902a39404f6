"""
Tests for provider state mapping and webhook signatures.
"""

import pytest

from modules.status_reconciler.mapping import is_retryable_error, progress_for
from modules.status_reconciler.signatures import compute_signature, verify_signature
from modules.video_provider.base import ProviderState
from shared.errors import WebhookSignatureError


@pytest.mark.parametrize("position,expected", [(0, 25), (3, 19), (10, 5), (50, 5)])
def test_queued_progress_tracks_position(position, expected):
    assert progress_for(ProviderState.QUEUED, position) == expected


def test_progress_for_other_states():
    assert progress_for(ProviderState.QUEUED) == 10
    assert progress_for(ProviderState.RUNNING) == 50
    assert progress_for(ProviderState.SUCCEEDED) == 100
    assert progress_for(ProviderState.ERRORED) is None


@pytest.mark.parametrize("message", [
    "Rate limit exceeded",
    "Request timeout",
    "Network error contacting model",
    "HTTP 429",
    "502 Bad Gateway",
    "upstream returned 503",
    "Service temporarily unavailable",
])
def test_retryable_errors(message):
    assert is_retryable_error(message)


@pytest.mark.parametrize("message", ["NSFW content detected", "Invalid prompt", "", None])
def test_terminal_errors(message):
    assert not is_retryable_error(message)


def test_verify_signature_accepts_prefixed_and_bare():
    body = b'{"request_id": "req-1"}'
    digest = compute_signature(body, "secret")

    verify_signature(body, digest, "secret")
    verify_signature(body, f"sha256={digest}", "secret")
    verify_signature(body, digest.upper(), "secret")


def test_verify_signature_rejects():
    body = b'{"request_id": "req-1"}'
    digest = compute_signature(body, "secret")

    with pytest.raises(WebhookSignatureError):
        verify_signature(body, digest, "other-secret")
    with pytest.raises(WebhookSignatureError):
        verify_signature(body + b" ", digest, "secret")
    with pytest.raises(WebhookSignatureError):
        verify_signature(body, None, "secret")
    with pytest.raises(WebhookSignatureError):
        verify_signature(body, digest, None)
    with pytest.raises(WebhookSignatureError):
        verify_signature(body, "not-hex-é", "secret")
