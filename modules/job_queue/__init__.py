"""
Ephemeral Job Queue module.

In-process registry of single-stage jobs: priority ordering, retry
bookkeeping, provider-handle lookup and time-based eviction.
"""

from modules.job_queue.queue import JobQueue, CANCELLED_ERROR

__all__ = ["JobQueue", "CANCELLED_ERROR"]
