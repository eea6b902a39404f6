"""
In-process composite job store.

Used for local development and tests. Compare-and-set runs under a
per-composite lock, mirroring the conditional updates of the Supabase store.
"""

from typing import Any, Dict, Iterable, List, Optional

from shared.errors import ValidationError
from shared.logging import get_logger
from shared.models.composite import ClipRecord, ClipStatus, CompositeJob, CompositeStatus
from shared.models.job import utcnow
from shared.locks import KeyedLocks
from modules.job_store.base import CompositeJobStore

logger = get_logger("job_store.memory")


class InMemoryCompositeJobStore(CompositeJobStore):
    """Composite store backed by dictionaries."""

    def __init__(self):
        self._composites: Dict[str, CompositeJob] = {}
        self._clip_owner: Dict[str, str] = {}  # clip_id -> composite_id
        self._handle_index: Dict[str, str] = {}  # provider_handle -> clip_id
        self._locks = KeyedLocks()

    def _find_clip(self, composite: CompositeJob, clip_id: str) -> Optional[ClipRecord]:
        for clip in composite.clips:
            if clip.id == clip_id:
                return clip
        return None

    async def create(self, composite: CompositeJob) -> CompositeJob:
        if composite.id in self._composites:
            raise ValidationError(f"Composite already exists: {composite.id}", job_id=composite.id)
        stored = composite.model_copy(deep=True)
        stored.clips.sort(key=lambda c: c.clip_index)
        async with self._locks.acquire(stored.id):
            self._composites[stored.id] = stored
            for clip in stored.clips:
                self._clip_owner[clip.id] = stored.id
                if clip.provider_handle:
                    self._handle_index[clip.provider_handle] = clip.id
        return stored.model_copy(deep=True)

    async def get(self, composite_id: str) -> Optional[CompositeJob]:
        composite = self._composites.get(composite_id)
        return composite.model_copy(deep=True) if composite else None

    async def list_by_owner(self, owner_id: str, limit: int = 50) -> List[CompositeJob]:
        owned = [c for c in self._composites.values() if c.owner_id == owner_id]
        owned.sort(key=lambda c: c.created_at, reverse=True)
        return [c.model_copy(deep=True) for c in owned[:limit]]

    async def list_by_status(
        self, statuses: Iterable[CompositeStatus], limit: int = 50
    ) -> List[CompositeJob]:
        wanted = set(statuses)
        matching = [c for c in self._composites.values() if c.status in wanted]
        matching.sort(key=lambda c: c.created_at)
        return [c.model_copy(deep=True) for c in matching[:limit]]

    async def transition(
        self,
        composite_id: str,
        expected: Iterable[CompositeStatus],
        new_status: CompositeStatus,
        fields: Optional[Dict[str, Any]] = None,
    ) -> Optional[CompositeJob]:
        expected = set(expected)
        async with self._locks.acquire(composite_id):
            composite = self._composites.get(composite_id)
            if composite is None or composite.status not in expected:
                return None
            for key, value in (fields or {}).items():
                setattr(composite, key, value)
            composite.status = new_status
            composite.updated_at = utcnow()
            return composite.model_copy(deep=True)

    async def update_clip(
        self,
        clip_id: str,
        expected: Iterable[ClipStatus],
        fields: Dict[str, Any],
    ) -> Optional[ClipRecord]:
        expected = set(expected)
        composite_id = self._clip_owner.get(clip_id)
        if composite_id is None:
            return None
        async with self._locks.acquire(composite_id):
            composite = self._composites.get(composite_id)
            clip = self._find_clip(composite, clip_id) if composite else None
            if clip is None or clip.status not in expected:
                return None
            old_handle = clip.provider_handle
            for key, value in fields.items():
                setattr(clip, key, value)
            now = utcnow()
            clip.updated_at = now
            composite.updated_at = now
            if clip.provider_handle != old_handle:
                if old_handle and self._handle_index.get(old_handle) == clip.id:
                    del self._handle_index[old_handle]
                if clip.provider_handle:
                    self._handle_index[clip.provider_handle] = clip.id
            return clip.model_copy(deep=True)

    async def get_clip(self, clip_id: str) -> Optional[ClipRecord]:
        composite_id = self._clip_owner.get(clip_id)
        composite = self._composites.get(composite_id) if composite_id else None
        clip = self._find_clip(composite, clip_id) if composite else None
        return clip.model_copy(deep=True) if clip else None

    async def find_clip_by_handle(self, provider_handle: str) -> Optional[ClipRecord]:
        clip_id = self._handle_index.get(provider_handle)
        return await self.get_clip(clip_id) if clip_id else None

    async def list_clips_by_status(
        self, statuses: Iterable[ClipStatus], limit: int = 50
    ) -> List[ClipRecord]:
        wanted = set(statuses)
        clips = [
            clip
            for composite in self._composites.values()
            for clip in composite.clips
            if clip.status in wanted
        ]
        clips.sort(key=lambda c: c.created_at)
        return [c.model_copy(deep=True) for c in clips[:limit]]

    async def delete(self, composite_id: str) -> bool:
        async with self._locks.acquire(composite_id):
            composite = self._composites.pop(composite_id, None)
            if composite is None:
                return False
            for clip in composite.clips:
                self._clip_owner.pop(clip.id, None)
                if clip.provider_handle and self._handle_index.get(clip.provider_handle) == clip.id:
                    del self._handle_index[clip.provider_handle]
            logger.info("Composite deleted", extra={"job_id": composite_id})
            return True
