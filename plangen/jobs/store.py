"""In-memory job store for tests and single-process embedding."""

from __future__ import annotations

import itertools
from dataclasses import replace
from datetime import UTC, datetime

from plangen.collaborators import JobStore
from plangen.errors import DuplicateActiveJobError, JobNotFoundError
from plangen.jobs.models import Job, JobStatus, JobSubject
from plangen.jobs.state import ACTIVE_STATUSES, apply_status


def utc_now() -> datetime:
    return datetime.now(UTC)


class InMemoryJobStore(JobStore):
    """JobStore backed by a dict.

    No method awaits anything before mutating, so each call is atomic with
    respect to other coroutines on the same event loop. That makes the
    check-and-insert in `create` race-free.
    """

    def __init__(self, clock=utc_now) -> None:
        self._jobs: dict[int, Job] = {}
        self._ids = itertools.count(1)
        self._clock = clock

    async def create(self, subject: JobSubject, created_by: int | None = None) -> Job:
        for job in self._jobs.values():
            if job.subject.key == subject.key and job.status in ACTIVE_STATUSES:
                raise DuplicateActiveJobError(subject.key)

        now = self._clock()
        job = Job(
            id=next(self._ids),
            subject=subject,
            status=JobStatus.PENDING,
            created_at=now,
            updated_at=now,
            created_by=created_by,
        )
        self._jobs[job.id] = job
        return job

    async def get(self, job_id: int) -> Job | None:
        return self._jobs.get(job_id)

    async def get_latest_by_subject(self, subject: JobSubject) -> Job | None:
        matches = [job for job in self._jobs.values() if job.subject.key == subject.key]
        if not matches:
            return None
        return max(matches, key=lambda job: (job.created_at, job.id))

    async def list_pending(self, limit: int | None = None) -> list[Job]:
        pending = sorted(
            (job for job in self._jobs.values() if job.status == JobStatus.PENDING),
            key=lambda job: (job.created_at, job.id),
        )
        return pending if limit is None else pending[:limit]

    def _require(self, job_id: int) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def update_status(self, job_id: int, status: JobStatus, current_step: str | None = None) -> Job:
        job = apply_status(self._require(job_id), status, self._clock(), current_step=current_step)
        self._jobs[job_id] = job
        return job

    async def mark_complete(self, job_id: int, result_id: int | None) -> Job:
        job = apply_status(self._require(job_id), JobStatus.COMPLETED, self._clock(), result_id=result_id)
        self._jobs[job_id] = job
        return job

    async def mark_failed(self, job_id: int, error_message: str) -> Job:
        job = apply_status(self._require(job_id), JobStatus.FAILED, self._clock(), error_message=error_message)
        self._jobs[job_id] = job
        return job

    async def mark_cancelled(self, job_id: int, reason: str | None = None) -> Job:
        job = apply_status(self._require(job_id), JobStatus.CANCELLED, self._clock(), cancel_reason=reason)
        self._jobs[job_id] = job
        return job

    def put(self, job: Job) -> None:
        """Insert or overwrite a record as is (test setup, e.g. a stale processing job)."""
        self._jobs[job.id] = replace(job)
        self._ids = itertools.count(max(self._jobs) + 1)
