"""Error taxonomy for plan generation.

Provider errors split into transient (rate limiting, retried with backoff) and
fatal (everything else, never retried). Response errors are raised after local
repair has been exhausted and never trigger another model call. Job errors are
raised synchronously by enqueue/cancel; inside a job run every error is caught and
turned into a failed job.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from plangen.jobs.eligibility import WeekCompletionStatus


class PlangenError(Exception):
    """Base exception for plangen."""

    pass


class ProviderError(PlangenError):
    """Raised when the text-generation provider call fails."""

    pass


class TransientProviderError(ProviderError):
    """Raised for provider failures that may succeed on retry (rate limits)."""

    pass


class RateLimitExhaustedError(TransientProviderError):
    """Raised when every retry attempt was rate limited.

    Attributes:
        attempts: Number of attempts made
    """

    def __init__(self, attempts: int, last_error: Exception) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Rate limited after {attempts} attempts: {last_error}")


class FatalProviderError(ProviderError):
    """Raised for auth, malformed-request, timeout and other non-retryable failures."""

    def __init__(self, original_error: Exception) -> None:
        self.original_error = original_error
        super().__init__(f"{type(original_error).__name__}: {original_error}")


class EmptyCompletionError(ProviderError):
    """Raised when the provider returns no text."""

    pass


class MalformedResponseError(PlangenError):
    """Raised when model output cannot be recovered into a JSON object.

    Attributes:
        offset: Character offset of the failure in the cleaned text (if known)
        context: Text surrounding the offset
        path: Nesting path at the offset (e.g. "$.workouts[2].workout_data")
        depth: Bracket depth at the offset
    """

    def __init__(
        self,
        message: str,
        *,
        offset: int | None = None,
        context: str | None = None,
        path: str | None = None,
        depth: int | None = None,
    ) -> None:
        self.offset = offset
        self.context = context
        self.path = path
        self.depth = depth

        details = [message]
        if offset is not None:
            details.append(f"offset={offset}")
        if path is not None:
            details.append(f"path={path}")
        if depth is not None:
            details.append(f"depth={depth}")
        if context:
            details.append(f"near={context!r}")
        super().__init__(" | ".join(details))


class StructureValidationError(PlangenError):
    """Raised when a parsed plan structure misses mandatory fields."""

    pass


class JobError(PlangenError):
    """Base exception for job lifecycle errors."""

    pass


class JobNotFoundError(JobError):
    def __init__(self, job_id: int) -> None:
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")


class InvalidTransitionError(JobError):
    """Raised when a job status change is not allowed by the state machine."""

    def __init__(self, job_id: int | None, source: str, target: str) -> None:
        self.job_id = job_id
        self.source = source
        self.target = target
        super().__init__(f"Job {job_id}: transition {source} -> {target} is not allowed")


class JobNotCancellableError(JobError):
    """Raised when cancelling a job that already completed or failed."""

    def __init__(self, job_id: int, status: str) -> None:
        self.job_id = job_id
        self.status = status
        super().__init__(f"Job {job_id} is {status} and can no longer be cancelled")


class DuplicateActiveJobError(JobError):
    """Raised by a job store when a subject already has a pending/processing job."""

    def __init__(self, subject_key: str) -> None:
        self.subject_key = subject_key
        super().__init__(f"An active job already exists for {subject_key}")


class JobCancelledError(JobError):
    """Raised at a cancellation checkpoint once the job has been cancelled."""

    def __init__(self, job_id: int, checkpoint: str | None = None) -> None:
        self.job_id = job_id
        self.checkpoint = checkpoint
        where = f" before {checkpoint}" if checkpoint else ""
        super().__init__(f"Job {job_id} was cancelled{where}")


class SubjectNotFoundError(JobError):
    """Raised when the questionnaire/recommendation a job refers to is missing."""

    pass


class WeekNotEligibleError(JobError):
    """Raised when a progressive week cannot be generated yet.

    Attributes:
        week_number: Requested week
        previous_week_status: Completion status of the previous week, if checked
    """

    def __init__(
        self,
        message: str,
        week_number: int,
        previous_week_status: WeekCompletionStatus | None = None,
    ) -> None:
        self.week_number = week_number
        self.previous_week_status = previous_week_status
        super().__init__(message)


class WeekAlreadyGeneratedError(JobError):
    def __init__(self, recommendation_id: int, week_number: int) -> None:
        self.recommendation_id = recommendation_id
        self.week_number = week_number
        super().__init__(f"Week {week_number} workouts already exist for recommendation {recommendation_id}")


class GenerationError(JobError):
    """Raised when a generation phase produced nothing usable."""

    pass
