"""
Shared fixtures for job queue tests.
"""

from datetime import datetime, timedelta, timezone

import pytest

from modules.job_queue.queue import JobQueue


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    """Clock frozen at a fixed instant."""
    return FakeClock(datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def queue(clock):
    """Queue with default retention and a retry budget of 3."""
    return JobQueue(
        default_max_retries=3,
        completed_retention_seconds=3600,
        failed_retention_seconds=86400,
        eviction_interval_seconds=300,
        clock=clock,
    )
