"""
Resubmission dispatcher.

Background loop that submits pending work: queued jobs waiting for a retry
(highest priority first) and clips reset by an operator retry.
"""

import asyncio
from typing import Optional

from shared.config import settings
from shared.errors import PipelineError
from shared.logging import get_logger
from shared.models.composite import ClipStatus, CompositeStatus
from modules.job_queue.queue import JobQueue
from modules.job_store.base import CompositeJobStore
from api_gateway.services.submission_service import SubmissionService

logger = get_logger(__name__)


class ResubmissionDispatcher:
    """Periodically hands pending jobs and clips to the submission service."""

    def __init__(
        self,
        submission: SubmissionService,
        queue: JobQueue,
        store: CompositeJobStore,
        interval_seconds: Optional[float] = None,
        batch_size: Optional[int] = None,
    ):
        self.submission = submission
        self.queue = queue
        self.store = store
        self.interval = interval_seconds or settings.dispatch_interval_seconds
        self.batch_size = batch_size or settings.poll_batch_size
        self._task: Optional[asyncio.Task] = None

    async def dispatch_once(self) -> int:
        """
        Submit one batch of pending jobs and pending clips.

        Returns:
            Number of submissions attempted
        """
        attempted = 0
        pending = (await self.queue.list_pending())[: self.batch_size]
        results = await asyncio.gather(
            *(self.submission.submit_job(job.id) for job in pending),
            return_exceptions=True,
        )
        for job, result in zip(pending, results):
            attempted += 1
            if isinstance(result, Exception):
                logger.error("Job resubmission failed", exc_info=result, extra={"job_id": job.id})

        clips = await self.store.list_clips_by_status([ClipStatus.PENDING], limit=self.batch_size)
        for clip in clips:
            composite = await self.store.get(clip.composite_id)
            # Clips of a composite still being created are submitted by its creator
            if composite is None or composite.status != CompositeStatus.GENERATING_CLIPS:
                continue
            try:
                await self.submission.submit_clip(composite, clip)
                attempted += 1
            except PipelineError as e:
                logger.error(
                    "Clip resubmission failed",
                    exc_info=e,
                    extra={"job_id": clip.composite_id, "clip_index": clip.clip_index}
                )

        if attempted:
            logger.info("Dispatched pending work", extra={"attempted": attempted})
        return attempted

    async def _loop(self) -> None:
        logger.info("Resubmission dispatcher started", extra={"interval_seconds": self.interval})
        while True:
            try:
                await self.dispatch_once()
            except asyncio.CancelledError:
                logger.info("Resubmission dispatcher cancelled")
                raise
            except Exception as e:
                logger.error("Error in dispatcher loop", exc_info=e)
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        """Start dispatching on the running loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        """Cancel the dispatch task."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
