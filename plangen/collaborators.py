"""Interfaces to the systems plan generation reads from and writes to.

Questionnaires, clients, body scans, recommendations and workouts are owned by
the host application. Job records are owned by a JobStore; two implementations
ship with the package (plangen.jobs.store and plangen.jobs.sql_store).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

from plangen.domain.models import (
    ActualWorkout,
    BodyScan,
    Client,
    GeneratedWorkout,
    Questionnaire,
    Recommendation,
    RecommendationStructure,
    Workout,
)
from plangen.jobs.models import Job, JobStatus, JobSubject


class JobStore(ABC):
    """Persistent job records.

    Implementations enforce the state machine (plangen.jobs.state.apply_status)
    and at most one pending/processing job per subject key.
    """

    @abstractmethod
    async def create(self, subject: JobSubject, created_by: int | None = None) -> Job:
        """Insert a pending job.

        Raises:
            DuplicateActiveJobError: If the subject already has a pending/processing job
        """
        raise NotImplementedError

    @abstractmethod
    async def get(self, job_id: int) -> Job | None:
        raise NotImplementedError

    @abstractmethod
    async def get_latest_by_subject(self, subject: JobSubject) -> Job | None:
        raise NotImplementedError

    @abstractmethod
    async def list_pending(self, limit: int | None = None) -> list[Job]:
        """Pending jobs, oldest first."""
        raise NotImplementedError

    @abstractmethod
    async def update_status(self, job_id: int, status: JobStatus, current_step: str | None = None) -> Job:
        """Move a job to `status`, optionally recording the current step.

        Raises:
            JobNotFoundError: If the job does not exist
            InvalidTransitionError: If the transition is not allowed
        """
        raise NotImplementedError

    @abstractmethod
    async def mark_complete(self, job_id: int, result_id: int | None) -> Job:
        raise NotImplementedError

    @abstractmethod
    async def mark_failed(self, job_id: int, error_message: str) -> Job:
        raise NotImplementedError

    @abstractmethod
    async def mark_cancelled(self, job_id: int, reason: str | None = None) -> Job:
        raise NotImplementedError


class QuestionnaireReader(ABC):
    @abstractmethod
    async def get_questionnaire(self, questionnaire_id: int) -> Questionnaire | None:
        raise NotImplementedError


class ClientReader(ABC):
    @abstractmethod
    async def get_client(self, client_id: int) -> Client | None:
        raise NotImplementedError


class BodyScanReader(ABC):
    @abstractmethod
    async def get_latest_body_scan(self, client_id: int) -> BodyScan | None:
        """Latest scan for the client, preferring verified scans over newer unverified ones."""
        raise NotImplementedError


class RecommendationReader(ABC):
    @abstractmethod
    async def get_recommendation(self, recommendation_id: int) -> Recommendation | None:
        raise NotImplementedError


class WorkoutReader(ABC):
    @abstractmethod
    async def get_workouts_by_week(self, recommendation_id: int, week_number: int) -> list[Workout]:
        raise NotImplementedError


class ActualWorkoutReader(ABC):
    @abstractmethod
    async def get_actual_workouts_by_workout_ids(self, workout_ids: Sequence[int]) -> list[ActualWorkout]:
        """Batch read; workouts without logged performance are simply absent."""
        raise NotImplementedError


class PlanWriter(ABC):
    """Persists generated plans."""

    @abstractmethod
    async def save_recommendation(
        self,
        client_id: int,
        questionnaire_id: int,
        structure: RecommendationStructure,
        workouts: list[GeneratedWorkout],
        body_scan_id: int | None = None,
        created_by: int | None = None,
    ) -> int:
        """Create or replace the recommendation for a questionnaire with its week-1 workouts.

        Returns:
            Recommendation ID
        """
        raise NotImplementedError

    @abstractmethod
    async def save_week_workouts(
        self,
        recommendation_id: int,
        week_number: int,
        workouts: list[GeneratedWorkout],
        created_by: int | None = None,
    ) -> None:
        """Store one week's workouts and advance the recommendation's current_week."""
        raise NotImplementedError
