"""
Ephemeral job queue.

In-process registry of single-stage generation jobs with priority ordering,
retry bookkeeping, a provider-handle reverse index and time-based eviction.
State is volatile: a restart loses every job held here.
"""

import asyncio
import copy
import itertools
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from shared.config import settings
from shared.errors import InvalidTransitionError, JobNotFoundError, ValidationError
from shared.logging import get_logger
from shared.models.job import (
    Job,
    JobPriority,
    JobResult,
    JobStatus,
    QueueStats,
    utcnow,
)
from shared.locks import KeyedLocks

logger = get_logger("job_queue")

CANCELLED_ERROR = "Job cancelled by user"
PROCESSING_START_PROGRESS = 5


class JobQueue:
    """
    Owned registry of single-stage jobs.

    Every mutation of a job runs under that job's lock, and the reverse index
    from provider handle to job id is only touched under the same lock.
    Reads return deep copies so callers never observe a half-applied write.
    """

    def __init__(
        self,
        default_max_retries: Optional[int] = None,
        completed_retention_seconds: Optional[int] = None,
        failed_retention_seconds: Optional[int] = None,
        eviction_interval_seconds: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.default_max_retries = (
            settings.default_max_retries if default_max_retries is None else default_max_retries
        )
        if completed_retention_seconds is None:
            completed_retention_seconds = settings.completed_retention_seconds
        if failed_retention_seconds is None:
            failed_retention_seconds = settings.failed_retention_seconds
        self.completed_retention = timedelta(seconds=completed_retention_seconds)
        self.failed_retention = timedelta(seconds=failed_retention_seconds)
        self.eviction_interval = eviction_interval_seconds or settings.eviction_interval_seconds
        self._clock = clock
        self._jobs: Dict[str, Job] = {}
        self._sequence: Dict[str, int] = {}
        self._counter = itertools.count()
        self._handle_index: Dict[str, str] = {}
        self._locks = KeyedLocks()
        self._eviction_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def _touch(self, job: Job) -> None:
        job.updated_at = self._clock()

    def _release_handle(self, job: Job) -> None:
        if job.provider_handle and self._handle_index.get(job.provider_handle) == job.id:
            del self._handle_index[job.provider_handle]
        job.provider_handle = None

    @staticmethod
    def _snapshot(job: Job) -> Job:
        return job.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Creation and reads
    # ------------------------------------------------------------------

    async def create(
        self,
        owner_id: str,
        correlation_id: Optional[str] = None,
        priority: JobPriority = JobPriority.NORMAL,
        metadata: Optional[Dict[str, Any]] = None,
        max_retries: Optional[int] = None,
    ) -> Job:
        """
        Register a new pending job.

        Args:
            owner_id: User that owns the job
            correlation_id: Review or other upstream reference
            priority: Scheduling priority
            metadata: Caller data kept verbatim; never modified afterwards
            max_retries: Retry budget (defaults to DEFAULT_MAX_RETRIES)

        Returns:
            Snapshot of the created job

        Raises:
            ValidationError: If owner_id is empty or max_retries is negative
        """
        if not owner_id:
            raise ValidationError("owner_id is required")
        if max_retries is not None and max_retries < 0:
            raise ValidationError(f"max_retries must not be negative: {max_retries}")

        now = self._clock()
        job = Job(
            owner_id=owner_id,
            correlation_id=correlation_id,
            priority=JobPriority(priority),
            max_retries=self.default_max_retries if max_retries is None else max_retries,
            metadata=copy.deepcopy(metadata or {}),
            created_at=now,
            updated_at=now,
        )

        async with self._locks.acquire(job.id):
            self._jobs[job.id] = job
            self._sequence[job.id] = next(self._counter)

        logger.info(
            "Job created",
            extra={"job_id": job.id, "priority": job.priority.value, "owner_id": owner_id}
        )
        return self._snapshot(job)

    async def get(self, job_id: str) -> Optional[Job]:
        """Return a consistent snapshot of the job, or None."""
        job = self._jobs.get(job_id)
        return self._snapshot(job) if job else None

    async def find_by_provider_handle(self, provider_handle: str) -> Optional[Job]:
        """Look up the job that currently owns a provider handle."""
        job_id = self._handle_index.get(provider_handle)
        if job_id is None:
            return None
        return await self.get(job_id)

    async def list_pending(self) -> List[Job]:
        """
        Pending jobs in service order.

        Higher priority weight first, then older creation time, then insertion
        order so equal timestamps keep a stable order.
        """
        pending = [job for job in self._jobs.values() if job.status == JobStatus.PENDING]
        pending.sort(key=lambda j: (-j.priority.weight, j.created_at, self._sequence.get(j.id, 0)))
        return [self._snapshot(job) for job in pending]

    async def list_by_status(self, status: JobStatus) -> List[Job]:
        """All jobs currently in `status`, oldest first."""
        jobs = [job for job in self._jobs.values() if job.status == status]
        jobs.sort(key=lambda j: (j.created_at, self._sequence.get(j.id, 0)))
        return [self._snapshot(job) for job in jobs]

    async def list_by_owner(self, owner_id: str) -> List[Job]:
        """All jobs owned by `owner_id`, newest first."""
        jobs = [job for job in self._jobs.values() if job.owner_id == owner_id]
        jobs.sort(key=lambda j: (j.created_at, self._sequence.get(j.id, 0)), reverse=True)
        return [self._snapshot(job) for job in jobs]

    async def stats(self) -> QueueStats:
        """Counts by status and by priority."""
        by_status = {status.value: 0 for status in JobStatus}
        by_priority = {priority.value: 0 for priority in JobPriority}
        for job in self._jobs.values():
            by_status[job.status.value] += 1
            by_priority[job.priority.value] += 1
        return QueueStats(total=len(self._jobs), by_status=by_status, by_priority=by_priority)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def start_processing(self, job_id: str, provider_handle: str) -> Job:
        """
        Move a pending job to processing and bind its provider handle.

        Repeating the call with the same handle is a no-op.

        Raises:
            JobNotFoundError: If the job does not exist
            InvalidTransitionError: If the job is not pending, or a different
                handle is already bound to it or to another job
        """
        if not provider_handle:
            raise ValidationError("provider_handle is required", job_id=job_id)

        async with self._locks.acquire(job_id):
            job = self._require(job_id)
            if job.status == JobStatus.PROCESSING and job.provider_handle == provider_handle:
                return self._snapshot(job)
            if job.status != JobStatus.PENDING:
                raise InvalidTransitionError(
                    f"Cannot start job in status {job.status.value}", job_id=job_id
                )
            if job.provider_handle and job.provider_handle != provider_handle:
                raise InvalidTransitionError(
                    f"Job already bound to provider handle {job.provider_handle}", job_id=job_id
                )
            owner = self._handle_index.get(provider_handle)
            if owner is not None and owner != job_id:
                raise InvalidTransitionError(
                    f"Provider handle {provider_handle} already bound to job {owner}", job_id=job_id
                )

            now = self._clock()
            job.status = JobStatus.PROCESSING
            job.provider_handle = provider_handle
            job.progress = max(job.progress, PROCESSING_START_PROGRESS)
            if job.started_at is None:
                job.started_at = now
            job.updated_at = now
            self._handle_index[provider_handle] = job_id

            logger.info(
                "Job processing started",
                extra={"job_id": job_id, "provider_handle": provider_handle, "retry_count": job.retry_count}
            )
            return self._snapshot(job)

    async def update_progress(self, job_id: str, progress: int) -> Job:
        """
        Raise the job's progress.

        Values are clamped to 0-100. A value below the current progress is
        ignored so the timeline stays monotonic.

        Raises:
            JobNotFoundError: If the job does not exist
            InvalidTransitionError: If the job is terminal
        """
        value = max(0, min(100, int(progress)))
        async with self._locks.acquire(job_id):
            job = self._require(job_id)
            if job.is_terminal:
                raise InvalidTransitionError(
                    f"Cannot update progress of {job.status.value} job", job_id=job_id
                )
            if value > job.progress:
                job.progress = value
                self._touch(job)
            elif value < job.progress:
                logger.debug(
                    "Ignoring stale progress update",
                    extra={"job_id": job_id, "current": job.progress, "received": value}
                )
            return self._snapshot(job)

    async def complete(self, job_id: str, result: JobResult) -> Job:
        """
        Mark a processing job completed with its result.

        Completing an already completed job is a no-op.

        Raises:
            JobNotFoundError: If the job does not exist
            InvalidTransitionError: If the job is failed or was never started
        """
        async with self._locks.acquire(job_id):
            job = self._require(job_id)
            if job.status == JobStatus.COMPLETED:
                logger.debug("Duplicate completion ignored", extra={"job_id": job_id})
                return self._snapshot(job)
            if job.status != JobStatus.PROCESSING:
                raise InvalidTransitionError(
                    f"Cannot complete job in status {job.status.value}", job_id=job_id
                )

            now = self._clock()
            job.status = JobStatus.COMPLETED
            job.progress = 100
            job.result = result.model_copy(deep=True)
            job.error = None
            job.completed_at = now
            job.updated_at = now

            logger.info(
                "Job completed",
                extra={"job_id": job_id, "video_url": result.url, "retry_count": job.retry_count}
            )
            return self._snapshot(job)

    async def fail(self, job_id: str, error: str, terminal: bool = False) -> Job:
        """
        Record a failure and apply the retry policy.

        While retry budget remains (retry_count < max_retries) and the failure
        is not terminal, the job returns to pending with retry_count + 1, its
        progress reset to 0 and its provider handle released. Otherwise the
        job becomes terminally failed. Failing a terminal job is a no-op.

        Args:
            job_id: Job ID
            error: Human-readable failure reason
            terminal: Skip the retry budget (non-retryable provider errors)

        Returns:
            Snapshot after the transition
        """
        async with self._locks.acquire(job_id):
            job = self._require(job_id)
            if job.is_terminal:
                logger.debug(
                    "Failure for terminal job ignored",
                    extra={"job_id": job_id, "status": job.status.value, "error": error}
                )
                return self._snapshot(job)

            now = self._clock()
            job.error = error
            job.updated_at = now
            if not terminal and job.retry_count < job.max_retries:
                job.status = JobStatus.PENDING
                job.retry_count += 1
                job.progress = 0
                self._release_handle(job)
                logger.warning(
                    "Job failed, re-queued for retry",
                    extra={
                        "job_id": job_id,
                        "error": error,
                        "retry_count": job.retry_count,
                        "max_retries": job.max_retries,
                    }
                )
            else:
                job.status = JobStatus.FAILED
                job.completed_at = now
                logger.error(
                    "Job failed permanently",
                    extra={
                        "job_id": job_id,
                        "error": error,
                        "retry_count": job.retry_count,
                        "terminal": terminal,
                    }
                )
            return self._snapshot(job)

    async def cancel(self, job_id: str) -> Job:
        """
        Cancel a pending or processing job.

        Cancelling a job that is already terminal is a no-op.
        """
        async with self._locks.acquire(job_id):
            job = self._require(job_id)
            if job.is_terminal:
                return self._snapshot(job)

            now = self._clock()
            job.status = JobStatus.FAILED
            job.error = CANCELLED_ERROR
            job.completed_at = now
            job.updated_at = now
            logger.info("Job cancelled", extra={"job_id": job_id})
            return self._snapshot(job)

    async def retry(self, job_id: str) -> Job:
        """
        Manually re-queue a failed job.

        Raises:
            InvalidTransitionError: If the job is not failed or its retry
                budget is exhausted
        """
        async with self._locks.acquire(job_id):
            job = self._require(job_id)
            if job.status != JobStatus.FAILED:
                raise InvalidTransitionError(
                    f"Only failed jobs can be retried (status {job.status.value})", job_id=job_id
                )
            if job.retry_count >= job.max_retries:
                raise InvalidTransitionError(
                    f"Retry budget exhausted ({job.retry_count}/{job.max_retries})", job_id=job_id
                )

            job.status = JobStatus.PENDING
            job.retry_count += 1
            job.progress = 0
            job.error = None
            job.result = None
            job.completed_at = None
            self._release_handle(job)
            self._touch(job)
            logger.info("Job manually re-queued", extra={"job_id": job_id, "retry_count": job.retry_count})
            return self._snapshot(job)

    async def set_priority(self, job_id: str, priority: JobPriority) -> Job:
        """Change the priority of a non-terminal job."""
        async with self._locks.acquire(job_id):
            job = self._require(job_id)
            if job.is_terminal:
                raise InvalidTransitionError(
                    f"Cannot change priority of {job.status.value} job", job_id=job_id
                )
            job.priority = JobPriority(priority)
            self._touch(job)
            return self._snapshot(job)

    async def delete(self, job_id: str) -> bool:
        """Remove a job regardless of status. Returns False if it did not exist."""
        async with self._locks.acquire(job_id):
            job = self._jobs.pop(job_id, None)
            if job is None:
                return False
            self._sequence.pop(job_id, None)
            self._release_handle(job)
            return True

    async def clear(self) -> None:
        """Drop every job."""
        for job_id in list(self._jobs):
            await self.delete(job_id)

    # ------------------------------------------------------------------
    # Eviction
    # ------------------------------------------------------------------

    async def evict_expired(self, now: Optional[datetime] = None) -> int:
        """
        Remove terminal jobs older than their retention window.

        Completed jobs are kept for completed_retention and failed jobs for
        failed_retention, measured from their last update.

        Returns:
            Number of evicted jobs
        """
        now = now or self._clock()
        evicted = 0
        for job_id in list(self._jobs):
            async with self._locks.acquire(job_id):
                job = self._jobs.get(job_id)
                if job is None:
                    continue
                age = now - job.updated_at
                expired = (
                    (job.status == JobStatus.COMPLETED and age > self.completed_retention)
                    or (job.status == JobStatus.FAILED and age > self.failed_retention)
                )
                if not expired:
                    continue
                del self._jobs[job_id]
                self._sequence.pop(job_id, None)
                self._release_handle(job)
                evicted += 1

        if evicted:
            logger.info("Evicted expired jobs", extra={"evicted": evicted, "remaining": len(self._jobs)})
        return evicted

    async def _eviction_loop(self) -> None:
        while True:
            await asyncio.sleep(self.eviction_interval)
            try:
                await self.evict_expired()
            except Exception as e:
                logger.error("Eviction sweep failed", exc_info=e)

    def start_eviction(self) -> None:
        """Start the periodic eviction task on the running loop."""
        if self._eviction_task is None or self._eviction_task.done():
            self._eviction_task = asyncio.create_task(self._eviction_loop())
            logger.info("Eviction loop started", extra={"interval_seconds": self.eviction_interval})

    async def stop_eviction(self) -> None:
        """Cancel the periodic eviction task."""
        task, self._eviction_task = self._eviction_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def __len__(self) -> int:
        return len(self._jobs)
