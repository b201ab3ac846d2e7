"""Job records for asynchronous plan generation."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class JobStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class JobKind(StrEnum):
    RECOMMENDATION = "recommendation"
    WEEK = "week"


@dataclass(frozen=True)
class JobSubject:
    """What a job generates: a full recommendation for a questionnaire, or one week of a recommendation.

    Attributes:
        kind: Job kind
        questionnaire_id: Source questionnaire (recommendation jobs)
        recommendation_id: Target recommendation (week jobs)
        week_number: Target week (week jobs)
    """

    kind: JobKind
    questionnaire_id: int | None = None
    recommendation_id: int | None = None
    week_number: int | None = None

    def __post_init__(self) -> None:
        if self.kind == JobKind.RECOMMENDATION and self.questionnaire_id is None:
            raise ValueError("Recommendation jobs need a questionnaire_id")
        if self.kind == JobKind.WEEK and (self.recommendation_id is None or self.week_number is None):
            raise ValueError("Week jobs need a recommendation_id and a week_number")

    @classmethod
    def for_questionnaire(cls, questionnaire_id: int) -> JobSubject:
        return cls(kind=JobKind.RECOMMENDATION, questionnaire_id=questionnaire_id)

    @classmethod
    def for_week(cls, recommendation_id: int, week_number: int) -> JobSubject:
        return cls(kind=JobKind.WEEK, recommendation_id=recommendation_id, week_number=week_number)

    @property
    def key(self) -> str:
        """Stable identity used for the one-active-job-per-subject rule."""
        if self.kind == JobKind.RECOMMENDATION:
            return f"questionnaire:{self.questionnaire_id}"
        return f"recommendation:{self.recommendation_id}:week:{self.week_number}"


@dataclass(frozen=True)
class Job:
    """Snapshot of a job record.

    Stores hand out snapshots; every status change goes back through the store.

    Attributes:
        id: Job ID
        subject: What the job generates
        status: Lifecycle status
        current_step: Human-readable phase label for polling clients
        error_message: Failure reason (failed jobs)
        result_id: Recommendation ID produced or extended by the job
        created_by: User who requested the job
        cancel_reason: Reason given when the job was cancelled
        created_at: Creation time (UTC)
        updated_at: Last status/step change (UTC)
        started_at: First transition to processing (UTC)
        completed_at: Transition to a terminal status (UTC)
    """

    id: int
    subject: JobSubject
    status: JobStatus
    created_at: datetime
    updated_at: datetime
    current_step: str | None = None
    error_message: str | None = None
    result_id: int | None = None
    created_by: int | None = None
    cancel_reason: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def kind(self) -> JobKind:
        return self.subject.kind
