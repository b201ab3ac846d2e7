"""Cooperative cancellation for running jobs."""

from __future__ import annotations

from loguru import logger

from plangen.collaborators import JobStore
from plangen.errors import JobCancelledError
from plangen.jobs.models import JobStatus


class CancellationToken:
    """Checked before every model call and before the final write.

    The job record is the source of truth: a cancel from another process is seen
    at the next checkpoint. `cancel()` flags the token locally for in-process callers.
    """

    def __init__(self, job_id: int, store: JobStore) -> None:
        self.job_id = job_id
        self._store = store
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    async def is_cancelled(self) -> bool:
        if self._cancelled:
            return True
        job = await self._store.get(self.job_id)
        if job is not None and job.status == JobStatus.CANCELLED:
            self._cancelled = True
        return self._cancelled

    async def check(self, checkpoint: str) -> None:
        """Raise JobCancelledError if the job has been cancelled.

        Args:
            checkpoint: What was about to happen (for logs), e.g. "structure"
        """
        if await self.is_cancelled():
            logger.info("Job cancelled, stopping", job_id=self.job_id, checkpoint=checkpoint)
            raise JobCancelledError(self.job_id, checkpoint)


class NeverCancelled(CancellationToken):
    """Token for pipeline calls made outside a job (CLI, tests)."""

    def __init__(self) -> None:
        self.job_id = 0
        self._cancelled = False

    async def is_cancelled(self) -> bool:
        return False
