"""
Shared fixtures for pipeline coordinator tests.
"""

import pytest

from modules.job_store.memory import InMemoryCompositeJobStore

THREE_PART_SCRIPT = (
    "This is honestly the best pizza place in town! "
    "I ordered the margherita last Friday and it arrived hot and fresh. "
    "The crust was perfectly crispy and the sauce tasted homemade. "
    "Try it for yourself today."
)


@pytest.fixture
def script():
    """Script that segments into exactly hook, testimonial and CTA."""
    return THREE_PART_SCRIPT


@pytest.fixture
def store():
    return InMemoryCompositeJobStore()
