"""
Background status poller.

Fallback for lost webhooks: periodically polls every processing job and
every in-flight clip through the reconciler, then re-checks generating
composites whose clips have all completed.
"""

import asyncio
from typing import Optional

from shared.config import settings
from shared.errors import PipelineError
from shared.logging import get_logger
from shared.models.composite import IN_FLIGHT_CLIP_STATUSES, CompositeStatus
from shared.models.job import JobStatus
from modules.job_queue.queue import JobQueue
from modules.job_store.base import CompositeJobStore
from modules.status_reconciler.reconciler import StatusReconciler

logger = get_logger("status_reconciler.poller")


class StatusPoller:
    """Periodic poll of in-flight work, run as a cancellable task."""

    def __init__(
        self,
        reconciler: StatusReconciler,
        queue: JobQueue,
        store: CompositeJobStore,
        interval_seconds: Optional[float] = None,
        batch_size: Optional[int] = None,
    ):
        self.reconciler = reconciler
        self.queue = queue
        self.store = store
        self.interval = interval_seconds or settings.poll_interval_seconds
        self.batch_size = batch_size or settings.poll_batch_size
        self._task: Optional[asyncio.Task] = None

    async def poll_once(self) -> int:
        """
        Poll one batch of processing jobs and in-flight clips.

        Returns:
            Number of records polled
        """
        polled = 0
        jobs = (await self.queue.list_by_status(JobStatus.PROCESSING))[: self.batch_size]
        for job in jobs:
            try:
                await self.reconciler.poll_job(job.id)
                polled += 1
            except PipelineError as e:
                logger.warning("Job poll failed", exc_info=e, extra={"job_id": job.id})

        clips = await self.store.list_clips_by_status(IN_FLIGHT_CLIP_STATUSES, limit=self.batch_size)
        for clip in clips:
            try:
                await self.reconciler.poll_clip(clip.id)
                polled += 1
            except PipelineError as e:
                logger.warning(
                    "Clip poll failed",
                    exc_info=e,
                    extra={"job_id": clip.composite_id, "clip_index": clip.clip_index}
                )

        await self.sweep_completed_composites()

        if polled:
            logger.debug("Status poll sweep finished", extra={"polled": polled})
        return polled

    async def sweep_completed_composites(self) -> int:
        """
        Re-evaluate generating composites whose clips have all completed.

        Catches composites whose stitching transition failed after the last
        clip completed; no later clip report would trigger it again.

        Returns:
            Number of composites moved to stitching
        """
        moved = 0
        composites = await self.store.list_by_status([CompositeStatus.GENERATING_CLIPS], limit=self.batch_size)
        for composite in composites:
            if composite.current_clip < composite.total_clips:
                continue
            try:
                if await self.reconciler.coordinator.on_clip_completed(composite.id):
                    moved += 1
            except PipelineError as e:
                logger.warning("Stitching re-evaluation failed", exc_info=e, extra={"job_id": composite.id})
        if moved:
            logger.info("Recovered composites ready for stitching", extra={"count": moved})
        return moved

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.poll_once()
            except Exception as e:
                logger.error("Status poll sweep failed", exc_info=e)

    def start(self) -> None:
        """Start polling on the running loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop())
            logger.info("Status poller started", extra={"interval_seconds": self.interval})

    async def stop(self) -> None:
        """Cancel the polling task."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
