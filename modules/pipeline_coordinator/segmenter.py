"""
Script segmenter.

Splits a testimonial script into hook, testimonial and call-to-action
segments sized for individual clips. Durations are estimated from a fixed
speaking rate.
"""

import re
from typing import List, Optional, Tuple
from pydantic import BaseModel, Field

from shared.logging import get_logger
from shared.models.composite import ClipType

logger = get_logger("pipeline_coordinator.segmenter")

# Speaking rate in words per second
WORDS_PER_SECOND = 2.5

# Target durations per segment type in seconds
SEGMENT_TARGETS = {
    ClipType.HOOK: {"min": 4, "max": 7, "ideal": 5},
    ClipType.TESTIMONIAL: {"min": 8, "max": 25, "ideal": 15},
    ClipType.CTA: {"min": 4, "max": 7, "ideal": 5},
}

# TTS input limit per segment
MAX_CHARS_PER_SEGMENT = 800
MIN_SEGMENT_SECONDS = 2
MAX_TESTIMONIAL_SPLITS = 10
HOOK_MAX_CHARS = 150
CTA_MIN_CHARS = 20
CTA_MAX_CHARS = 150
CHARS_PER_WORD = 5

_HOOK_PATTERNS = [
    re.compile(r"^(.+?[!?])\s+"),  # First sentence ending with ! or ?
    re.compile(r"^(.+?\.)\s+"),  # First sentence
]
_CTA_PATTERNS = [
    re.compile(
        r"(.+?)([^.!?]*(?:try|check|visit|get|start|sign up|download|click|learn more|find out)[^.!?]*[.!?])\s*$",
        re.IGNORECASE,
    ),
    re.compile(r"(.+?)([^.!?]*(?:today|now|for yourself)[^.!?]*[.!?])\s*$", re.IGNORECASE),
]
_SENTENCE_END = re.compile(r"[.!?]+\s*")


class ScriptSegment(BaseModel):
    """One clip's worth of script."""

    clip_type: ClipType
    content: str
    estimated_duration: float
    order: int = Field(ge=0)


class SegmentationResult(BaseModel):
    """Ordered segments for a whole script."""

    segments: List[ScriptSegment]
    total_duration: float

    @property
    def clip_count(self) -> int:
        return len(self.segments)


def estimate_duration(text: str) -> float:
    """Estimate speaking duration of `text` in seconds."""
    return len(text.split()) / WORDS_PER_SECOND


def words_for_duration(seconds: float) -> int:
    """Number of words spoken in `seconds` (half rounds up)."""
    return int(seconds * WORDS_PER_SECOND + 0.5)


def _clean(script: str) -> str:
    return re.sub(r"\s+", " ", script.strip())


def _split_at_natural_boundary(text: str, target: int, tolerance: float) -> Tuple[str, str]:
    """Cut at the sentence end closest to `target` within `tolerance` characters."""
    closest = target
    min_distance = tolerance
    for match in _SENTENCE_END.finditer(text):
        distance = abs(match.end() - target)
        if distance < min_distance:
            min_distance = distance
            closest = match.end()
    return text[:closest].strip(), text[closest:].strip()


def _extract_hook(script: str) -> Tuple[str, str]:
    for pattern in _HOOK_PATTERNS:
        match = pattern.match(script)
        if match and len(match.group(1)) < HOOK_MAX_CHARS:
            return match.group(1).strip(), script[match.end():].strip()

    words = script.split()
    count = words_for_duration(SEGMENT_TARGETS[ClipType.HOOK]["ideal"])
    return " ".join(words[:count]), " ".join(words[count:])


def _extract_cta(script: str) -> Tuple[str, str]:
    for pattern in _CTA_PATTERNS:
        match = pattern.match(script)
        if match and CTA_MIN_CHARS < len(match.group(2)) < CTA_MAX_CHARS:
            return match.group(2).strip(), match.group(1).strip()

    words = script.split()
    count = min(len(words), words_for_duration(SEGMENT_TARGETS[ClipType.CTA]["ideal"]))
    split = len(words) - count
    return " ".join(words[split:]), " ".join(words[:split])


def _split_long_text(text: str, max_duration: float, clip_type: ClipType) -> List[ScriptSegment]:
    """Break text longer than one clip into clip-sized pieces at sentence ends."""
    segments: List[ScriptSegment] = []
    remaining = text
    target_chars = words_for_duration(max_duration) * CHARS_PER_WORD

    while remaining:
        if len(remaining) <= target_chars * 1.2:
            segments.append(ScriptSegment(
                clip_type=clip_type,
                content=remaining,
                estimated_duration=estimate_duration(remaining),
                order=len(segments),
            ))
            break

        before, after = _split_at_natural_boundary(remaining, target_chars, target_chars * 0.2)
        if not before:
            # No usable boundary, cut on word count instead
            words = remaining.split()
            count = words_for_duration(max_duration)
            segments.append(ScriptSegment(
                clip_type=clip_type,
                content=" ".join(words[:count]),
                estimated_duration=max_duration,
                order=len(segments),
            ))
            remaining = " ".join(words[count:])
        else:
            segments.append(ScriptSegment(
                clip_type=clip_type,
                content=before,
                estimated_duration=estimate_duration(before),
                order=len(segments),
            ))
            remaining = after

        if len(segments) > MAX_TESTIMONIAL_SPLITS:
            logger.warning(
                "Script segmentation exceeded segment limit, truncating",
                extra={"limit": MAX_TESTIMONIAL_SPLITS}
            )
            break

    return segments


def segment_script(
    full_script: str,
    target_total_duration: float = 30,
    max_clip_duration: float = 10,
) -> SegmentationResult:
    """
    Segment a script into hook, one or more testimonial parts, and a CTA.

    Args:
        full_script: Complete testimonial script
        target_total_duration: Desired video length in seconds
        max_clip_duration: Longest allowed testimonial clip in seconds

    Returns:
        SegmentationResult with segments in playback order
    """
    script = _clean(full_script)
    logger.info(
        "Segmenting script",
        extra={"script_length": len(script), "target_total": target_total_duration}
    )

    hook, after_hook = _extract_hook(script)
    cta, testimonial = _extract_cta(after_hook)

    segments = [ScriptSegment(
        clip_type=ClipType.HOOK, content=hook, estimated_duration=estimate_duration(hook), order=0
    )]

    testimonial_duration = estimate_duration(testimonial)
    if testimonial_duration > max_clip_duration:
        segments.extend(_split_long_text(testimonial, max_clip_duration, ClipType.TESTIMONIAL))
    else:
        segments.append(ScriptSegment(
            clip_type=ClipType.TESTIMONIAL,
            content=testimonial,
            estimated_duration=testimonial_duration,
            order=1,
        ))

    segments.append(ScriptSegment(
        clip_type=ClipType.CTA, content=cta, estimated_duration=estimate_duration(cta), order=0
    ))
    for index, segment in enumerate(segments):
        segment.order = index

    result = SegmentationResult(
        segments=segments,
        total_duration=sum(s.estimated_duration for s in segments),
    )
    logger.info(
        "Script segmented",
        extra={"clip_count": result.clip_count, "total_duration": round(result.total_duration, 1)}
    )
    return result


def simple_segment_script(full_script: str) -> SegmentationResult:
    """Fixed 20/60/20 word split into exactly hook, testimonial and CTA."""
    script = _clean(full_script)
    total = estimate_duration(script)
    words = script.split()

    hook_words = words_for_duration(total * 0.2)
    cta_words = min(words_for_duration(total * 0.2), max(0, len(words) - hook_words))
    cta_start = len(words) - cta_words

    parts = [
        (ClipType.HOOK, " ".join(words[:hook_words]), total * 0.2),
        (ClipType.TESTIMONIAL, " ".join(words[hook_words:cta_start]), total * 0.6),
        (ClipType.CTA, " ".join(words[cta_start:]), total * 0.2),
    ]
    return SegmentationResult(
        segments=[
            ScriptSegment(clip_type=clip_type, content=content, estimated_duration=duration, order=i)
            for i, (clip_type, content, duration) in enumerate(parts)
        ],
        total_duration=total,
    )


def validate_segmentation(
    result: SegmentationResult,
    expected_clips: Optional[int] = None,
    max_clip_duration: Optional[float] = None,
    script: Optional[str] = None,
) -> List[str]:
    """
    Check a segmentation for usable clips.

    When `script` is given, the segments must also cover every word of it.

    Returns:
        List of problems; empty when the segmentation is valid
    """
    errors: List[str] = []
    if not result.segments:
        errors.append("No segments generated")

    for segment in result.segments:
        name = segment.clip_type.value
        if not segment.content:
            errors.append(f"Empty content in {name} segment")
        if len(segment.content) > MAX_CHARS_PER_SEGMENT:
            errors.append(f"{name} segment exceeds {MAX_CHARS_PER_SEGMENT} characters")
        if segment.estimated_duration < MIN_SEGMENT_SECONDS:
            errors.append(f"{name} segment too short (< {MIN_SEGMENT_SECONDS} seconds)")
        if max_clip_duration and segment.estimated_duration > max_clip_duration * 1.5:
            errors.append(f"{name} segment too long ({segment.estimated_duration:.1f}s)")

    types = {segment.clip_type for segment in result.segments}
    for required in (ClipType.HOOK, ClipType.TESTIMONIAL, ClipType.CTA):
        if result.segments and required not in types:
            errors.append(f"Missing {required.value} segment")

    if expected_clips is not None and result.clip_count != expected_clips:
        errors.append(f"Expected {expected_clips} clips, got {result.clip_count}")

    if script is not None:
        script_words = len(_clean(script).split())
        covered = sum(len(segment.content.split()) for segment in result.segments)
        if covered < script_words:
            errors.append(f"Segments cover {covered} of {script_words} script words")

    return errors
