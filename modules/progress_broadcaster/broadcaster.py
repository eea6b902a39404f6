"""
Progress broadcaster.

Builds client progress snapshots for jobs and composites and streams them on
a fixed tick. The stream only reads records; provider polls it triggers run
as background tasks through the reconciler.
"""

import asyncio
from typing import AsyncIterator, Awaitable, Callable, Optional, Set

from shared.config import settings
from shared.errors import JobNotFoundError, PipelineError
from shared.logging import get_logger
from shared.models.composite import CompositeJob
from shared.models.job import Job
from shared.models.progress import ProgressSnapshot
from modules.job_queue.queue import JobQueue
from modules.job_store.base import CompositeJobStore
from modules.progress_broadcaster.stages import (
    StageBands,
    client_status,
    composite_client_status,
    composite_progress,
    composite_stage,
    composite_stage_progress,
    stage_for,
    stage_progress,
)
from modules.progress_broadcaster.time_estimator import estimate_composite_remaining, estimate_remaining
from modules.status_reconciler.reconciler import StatusReconciler

logger = get_logger("progress_broadcaster")

NOT_FOUND_ERROR = "Job not found"
TIMEOUT_ERROR = "Polling timeout - job still in progress"

DisconnectCheck = Callable[[], Awaitable[bool]]


class ProgressBroadcaster:
    """Snapshot and stream progress for jobs and composites."""

    def __init__(
        self,
        queue: JobQueue,
        store: CompositeJobStore,
        reconciler: StatusReconciler,
        bands: Optional[StageBands] = None,
        tick_seconds: Optional[float] = None,
        poll_every: Optional[int] = None,
        max_duration_seconds: Optional[float] = None,
    ):
        self.queue = queue
        self.store = store
        self.reconciler = reconciler
        self.bands = bands or StageBands.from_settings()
        self.tick_seconds = settings.stream_tick_seconds if tick_seconds is None else tick_seconds
        self.poll_every = poll_every or settings.stream_poll_every
        self.max_duration = (
            settings.stream_max_duration_seconds if max_duration_seconds is None else max_duration_seconds
        )
        self._background: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Snapshot building
    # ------------------------------------------------------------------

    def job_snapshot(self, job: Job) -> ProgressSnapshot:
        return ProgressSnapshot(
            job_id=job.id,
            kind="job",
            status=client_status(job.status),
            stage=stage_for(job.status, job.progress, self.bands),
            stage_progress=stage_progress(job.progress, self.bands),
            overall_progress=job.progress,
            estimated_time_remaining=0 if job.is_terminal else estimate_remaining(job.progress, job.started_at),
            video_url=job.result.url if job.result else None,
            thumbnail_url=job.result.thumbnail_url if job.result else None,
            error=job.error,
            retry_count=job.retry_count,
        )

    def composite_snapshot(self, composite: CompositeJob) -> ProgressSnapshot:
        clips = [
            {
                "clip_index": clip.clip_index,
                "clip_type": clip.clip_type.value,
                "status": clip.status.value,
                "video_url": clip.video_url,
                "error": clip.error_message,
                "retry_count": clip.retry_count,
            }
            for clip in composite.clips
        ]
        return ProgressSnapshot(
            job_id=composite.id,
            kind="composite",
            status=composite_client_status(composite.status),
            stage=composite_stage(composite),
            stage_progress=composite_stage_progress(composite),
            overall_progress=composite_progress(composite),
            estimated_time_remaining=estimate_composite_remaining(composite),
            video_url=composite.final_video_url,
            thumbnail_url=composite.thumbnail_url,
            error=composite.error_message,
            current_clip=composite.current_clip,
            total_clips=composite.total_clips,
            clips=clips,
        )

    @staticmethod
    def error_snapshot(kind: str, record_id: str, error: str) -> ProgressSnapshot:
        return ProgressSnapshot(job_id=record_id, kind=kind, status="error", stage="error", error=error)

    # ------------------------------------------------------------------
    # Reads and polls
    # ------------------------------------------------------------------

    async def read(self, kind: str, record_id: str) -> Optional[ProgressSnapshot]:
        """Current snapshot without contacting the provider, or None if unknown."""
        if kind == "job":
            job = await self.queue.get(record_id)
            return self.job_snapshot(job) if job else None
        if kind == "composite":
            composite = await self.store.get(record_id)
            return self.composite_snapshot(composite) if composite else None
        raise ValueError(f"Unknown progress kind: {kind}")

    async def _poll(self, kind: str, record_id: str) -> None:
        try:
            if kind == "job":
                await self.reconciler.poll_job(record_id)
            else:
                await self.reconciler.poll_composite(record_id)
        except PipelineError as e:
            logger.warning("Stream poll failed", exc_info=e, extra={"job_id": record_id, "kind": kind})

    def _poll_in_background(self, kind: str, record_id: str) -> asyncio.Task:
        task = asyncio.create_task(self._poll(kind, record_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def snapshot(self, kind: str, record_id: str, sync: bool = True) -> ProgressSnapshot:
        """
        Snapshot for the polling endpoint.

        Args:
            kind: "job" or "composite"
            record_id: Job or composite ID
            sync: Poll the provider once before reading

        Raises:
            JobNotFoundError: If the record does not exist
        """
        if sync:
            await self._poll(kind, record_id)
        snapshot = await self.read(kind, record_id)
        if snapshot is None:
            raise JobNotFoundError(record_id, kind=kind.capitalize())
        return snapshot

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def stream(
        self,
        kind: str,
        record_id: str,
        is_disconnected: Optional[DisconnectCheck] = None,
    ) -> AsyncIterator[ProgressSnapshot]:
        """
        Yield a snapshot every tick until the record is terminal.

        Every poll_every-th tick a provider poll is started in the background
        unless one is still running; the loop never waits on it. The stream
        ends after a terminal snapshot, when the client disconnects, or after
        max_duration with a final timeout error snapshot. An unknown record
        yields a single "Job not found" error snapshot.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.max_duration
        poll_task: Optional[asyncio.Task] = None
        tick = 0
        last: Optional[ProgressSnapshot] = None

        logger.info("Progress stream opened", extra={"job_id": record_id, "kind": kind})
        try:
            while True:
                if is_disconnected is not None and await is_disconnected():
                    logger.info("Client disconnected from progress stream", extra={"job_id": record_id})
                    return

                snapshot = await self.read(kind, record_id)
                if snapshot is None:
                    yield self.error_snapshot(kind, record_id, NOT_FOUND_ERROR)
                    return

                last = snapshot
                yield snapshot
                if snapshot.is_terminal:
                    return

                if loop.time() >= deadline:
                    logger.warning("Progress stream timed out", extra={"job_id": record_id, "kind": kind})
                    yield last.model_copy(update={"status": "error", "stage": "error", "error": TIMEOUT_ERROR})
                    return

                tick += 1
                if tick % self.poll_every == 0 and (poll_task is None or poll_task.done()):
                    poll_task = self._poll_in_background(kind, record_id)

                await asyncio.sleep(self.tick_seconds)
        finally:
            logger.debug(
                "Progress stream closed",
                extra={"job_id": record_id, "ticks": tick, "last_status": last.status if last else None}
            )
