"""
Status Reconciler module.

Merges poll and webhook updates from the video provider into one monotonic
timeline per job and per composite clip.
"""

from modules.status_reconciler.mapping import is_retryable_error, progress_for
from modules.status_reconciler.poller import StatusPoller
from modules.status_reconciler.reconciler import StatusReconciler, WebhookOutcome
from modules.status_reconciler.signatures import compute_signature, verify_signature

__all__ = [
    "StatusPoller",
    "StatusReconciler",
    "WebhookOutcome",
    "compute_signature",
    "is_retryable_error",
    "progress_for",
    "verify_signature",
]
