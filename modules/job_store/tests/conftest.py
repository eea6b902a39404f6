"""
Shared fixtures for job store tests.
"""

import pytest

from shared.models.composite import ClipRecord, ClipType, CompositeJob


@pytest.fixture
def make_composite():
    """Factory for a composite with `n` pending clips."""
    def _make(n: int = 3, owner_id: str = "user-1") -> CompositeJob:
        composite = CompositeJob(
            owner_id=owner_id,
            source_reference="review-1",
            actor_id="actor-1",
            voice_id="nova",
            full_script="Great service! I loved it. Book now.",
            total_clips=n,
        )
        types = [ClipType.HOOK] + [ClipType.TESTIMONIAL] * max(0, n - 2) + [ClipType.CTA]
        composite.clips = [
            ClipRecord(
                composite_id=composite.id,
                clip_index=i + 1,
                clip_type=types[i] if i < len(types) else ClipType.TESTIMONIAL,
                script_content=f"segment {i + 1}",
                estimated_duration=5.0,
            )
            for i in range(n)
        ]
        return composite
    return _make
