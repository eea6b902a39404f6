"""
Supabase-backed composite job store.

Composites live in the composite_jobs table and clips in composite_clips.
Compare-and-set is a conditional UPDATE filtered on the current status; the
transition won iff the update returned a row.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from shared.config import settings
from shared.database import DatabaseClient
from shared.logging import get_logger
from shared.models.composite import ClipRecord, ClipStatus, CompositeJob, CompositeStatus
from shared.models.job import utcnow
from modules.job_store.base import CompositeJobStore

logger = get_logger("job_store.supabase")


def _to_db(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Convert enums and datetimes in an update payload to JSON-safe values."""
    payload = {}
    for key, value in fields.items():
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, datetime):
            value = value.isoformat()
        payload[key] = value
    return payload


def _status_values(statuses: Iterable[Enum]) -> List[str]:
    return [status.value for status in statuses]


class SupabaseCompositeJobStore(CompositeJobStore):
    """Composite store persisted in Supabase Postgres."""

    def __init__(
        self,
        db_client: Optional[DatabaseClient] = None,
        jobs_table: Optional[str] = None,
        clips_table: Optional[str] = None,
    ):
        self.db = db_client or DatabaseClient()
        self.jobs_table = jobs_table or settings.composite_jobs_table
        self.clips_table = clips_table or settings.composite_clips_table

    async def _load_clips(self, composite_id: str) -> List[ClipRecord]:
        result = await (
            self.db.table(self.clips_table)
            .select("*")
            .eq("composite_id", composite_id)
            .order("clip_index")
            .execute()
        )
        return [ClipRecord(**row) for row in (result.data or [])]

    async def _hydrate(self, row: Dict[str, Any]) -> CompositeJob:
        clips = await self._load_clips(row["id"])
        return CompositeJob(**{**row, "clips": clips})

    async def create(self, composite: CompositeJob) -> CompositeJob:
        row = composite.model_dump(mode="json", exclude={"clips", "current_clip"})
        await self.db.table(self.jobs_table).insert(row).execute()
        if composite.clips:
            clip_rows = [clip.model_dump(mode="json") for clip in composite.clips]
            await self.db.table(self.clips_table).insert(clip_rows).execute()
        logger.info(
            "Composite persisted",
            extra={"job_id": composite.id, "total_clips": composite.total_clips}
        )
        return composite.model_copy(deep=True)

    async def get(self, composite_id: str) -> Optional[CompositeJob]:
        result = await (
            self.db.table(self.jobs_table).select("*").eq("id", composite_id).limit(1).execute()
        )
        if not result.data:
            return None
        return await self._hydrate(result.data[0])

    async def list_by_owner(self, owner_id: str, limit: int = 50) -> List[CompositeJob]:
        result = await (
            self.db.table(self.jobs_table)
            .select("*")
            .eq("owner_id", owner_id)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return [await self._hydrate(row) for row in (result.data or [])]

    async def list_by_status(
        self, statuses: Iterable[CompositeStatus], limit: int = 50
    ) -> List[CompositeJob]:
        result = await (
            self.db.table(self.jobs_table)
            .select("*")
            .in_("status", _status_values(statuses))
            .order("created_at")
            .limit(limit)
            .execute()
        )
        return [await self._hydrate(row) for row in (result.data or [])]

    async def transition(
        self,
        composite_id: str,
        expected: Iterable[CompositeStatus],
        new_status: CompositeStatus,
        fields: Optional[Dict[str, Any]] = None,
    ) -> Optional[CompositeJob]:
        payload = _to_db({**(fields or {}), "status": new_status, "updated_at": utcnow()})
        result = await (
            self.db.table(self.jobs_table)
            .update(payload)
            .eq("id", composite_id)
            .in_("status", _status_values(expected))
            .execute()
        )
        if not result.data:
            return None
        return await self._hydrate(result.data[0])

    async def update_clip(
        self,
        clip_id: str,
        expected: Iterable[ClipStatus],
        fields: Dict[str, Any],
    ) -> Optional[ClipRecord]:
        now = utcnow()
        payload = _to_db({**fields, "updated_at": now})
        result = await (
            self.db.table(self.clips_table)
            .update(payload)
            .eq("id", clip_id)
            .in_("status", _status_values(expected))
            .execute()
        )
        if not result.data:
            return None
        clip = ClipRecord(**result.data[0])
        await (
            self.db.table(self.jobs_table)
            .update({"updated_at": now.isoformat()})
            .eq("id", clip.composite_id)
            .execute()
        )
        return clip

    async def get_clip(self, clip_id: str) -> Optional[ClipRecord]:
        result = await (
            self.db.table(self.clips_table).select("*").eq("id", clip_id).limit(1).execute()
        )
        return ClipRecord(**result.data[0]) if result.data else None

    async def find_clip_by_handle(self, provider_handle: str) -> Optional[ClipRecord]:
        result = await (
            self.db.table(self.clips_table)
            .select("*")
            .eq("provider_handle", provider_handle)
            .limit(1)
            .execute()
        )
        return ClipRecord(**result.data[0]) if result.data else None

    async def list_clips_by_status(
        self, statuses: Iterable[ClipStatus], limit: int = 50
    ) -> List[ClipRecord]:
        result = await (
            self.db.table(self.clips_table)
            .select("*")
            .in_("status", _status_values(statuses))
            .order("created_at")
            .limit(limit)
            .execute()
        )
        return [ClipRecord(**row) for row in (result.data or [])]

    async def delete(self, composite_id: str) -> bool:
        await self.db.table(self.clips_table).delete().eq("composite_id", composite_id).execute()
        result = await self.db.table(self.jobs_table).delete().eq("id", composite_id).execute()
        deleted = bool(result.data)
        if deleted:
            logger.info("Composite deleted", extra={"job_id": composite_id})
        return deleted
