"""Job state machine.

    pending ──> processing ──> completed
       │            │  ↺ ──> failed
       └────────────┴──────> cancelled

processing -> processing covers step updates and the restart of a stuck job.
Completed, failed and cancelled are terminal.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta

from plangen.config.settings import settings
from plangen.errors import InvalidTransitionError
from plangen.jobs.models import Job, JobStatus

STUCK_THRESHOLD = timedelta(seconds=settings.job_stuck_threshold_seconds)

ACTIVE_STATUSES = frozenset({JobStatus.PENDING, JobStatus.PROCESSING})
TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})

_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING, JobStatus.CANCELLED}),
    JobStatus.PROCESSING: frozenset({
        JobStatus.PROCESSING,
        JobStatus.COMPLETED,
        JobStatus.FAILED,
        JobStatus.CANCELLED,
    }),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


def can_transition(source: JobStatus, target: JobStatus) -> bool:
    return target in _TRANSITIONS[JobStatus(source)]


def ensure_transition(source: JobStatus, target: JobStatus, job_id: int | None = None) -> None:
    """Raise InvalidTransitionError unless `source -> target` is allowed."""
    if not can_transition(source, target):
        raise InvalidTransitionError(job_id, str(source), str(target))


def should_skip(job: Job, now: datetime, stuck_threshold: timedelta = STUCK_THRESHOLD) -> bool:
    """Decide whether a run request for `job` must be a no-op.

    Args:
        job: Job snapshot
        now: Current time (timezone-aware)
        stuck_threshold: How long a processing job may go without updates before
            it is considered abandoned

    Returns:
        True for terminal jobs and for processing jobs updated within the threshold
    """
    if job.status in TERMINAL_STATUSES:
        return True
    if job.status == JobStatus.PROCESSING:
        return now - job.updated_at < stuck_threshold
    return False


def apply_status(
    job: Job,
    target: JobStatus,
    now: datetime,
    *,
    current_step: str | None = None,
    error_message: str | None = None,
    result_id: int | None = None,
    cancel_reason: str | None = None,
) -> Job:
    """Return `job` moved to `target` with timestamps maintained.

    `started_at` is set on the first move to processing, `completed_at` on the move
    to a terminal status, `updated_at` on every change.

    Raises:
        InvalidTransitionError: If the transition is not allowed
    """
    ensure_transition(job.status, target, job.id)

    changes: dict = {"status": target, "updated_at": now}
    if current_step is not None:
        changes["current_step"] = current_step
    if target == JobStatus.PROCESSING and job.started_at is None:
        changes["started_at"] = now
    if target in TERMINAL_STATUSES:
        changes["completed_at"] = now
    if error_message is not None:
        changes["error_message"] = error_message
    if result_id is not None:
        changes["result_id"] = result_id
    if cancel_reason is not None:
        changes["cancel_reason"] = cancel_reason

    return replace(job, **changes)
