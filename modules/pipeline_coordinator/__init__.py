"""
Pipeline Coordinator module.

Decomposes composite jobs into ordered clips and triggers stitching once
every clip has completed.
"""

from modules.pipeline_coordinator.coordinator import (
    CompositeRequest,
    PipelineCoordinator,
    VALID_VOICES,
)
from modules.pipeline_coordinator.segmenter import (
    segment_script,
    simple_segment_script,
    validate_segmentation,
)

__all__ = [
    "CompositeRequest",
    "PipelineCoordinator",
    "VALID_VOICES",
    "segment_script",
    "simple_segment_script",
    "validate_segmentation",
]
