"""Job dispatcher: enqueue, run, cancel and sweep generation jobs.

`run` never raises. Whatever goes wrong inside a run ends up as a failed job
with an error message prefixed by the phase it happened in. Only enqueue and
cancel raise to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from loguru import logger

from plangen.collaborators import (
    ActualWorkoutReader,
    BodyScanReader,
    ClientReader,
    JobStore,
    PlanWriter,
    QuestionnaireReader,
    RecommendationReader,
    WorkoutReader,
)
from plangen.config.settings import settings
from plangen.core.logger import job_log_context
from plangen.domain.models import Questionnaire
from plangen.errors import (
    DuplicateActiveJobError,
    InvalidTransitionError,
    JobCancelledError,
    JobNotCancellableError,
    JobNotFoundError,
    SubjectNotFoundError,
    WeekAlreadyGeneratedError,
    WeekNotEligibleError,
)
from plangen.jobs.cancellation import CancellationToken
from plangen.jobs.eligibility import get_week_completion_status
from plangen.jobs.models import Job, JobKind, JobStatus, JobSubject
from plangen.jobs.progress import emit_step_complete, emit_step_failed, emit_step_start
from plangen.jobs.state import ACTIVE_STATUSES, should_skip
from plangen.performance.aggregator import collect_performance_history
from plangen.planning.context import GenerationContext
from plangen.planning.pipeline import GenerationPipeline

STEP_LOADING_QUESTIONNAIRE = "Loading questionnaire..."
STEP_GENERATING_STRUCTURE = "Generating plan structure..."
STEP_GENERATING_WORKOUTS = "Generating workouts..."
STEP_SAVING_RECOMMENDATION = "Saving recommendation..."
STEP_LOADING_RECOMMENDATION = "Loading recommendation..."
STEP_COLLECTING_PERFORMANCE = "Collecting performance data..."
STEP_SAVING_WORKOUTS = "Saving workouts..."

STEP_FAILURE_PREFIX = {
    STEP_LOADING_QUESTIONNAIRE: "Failed to load questionnaire",
    STEP_GENERATING_STRUCTURE: "Failed to generate plan structure",
    STEP_GENERATING_WORKOUTS: "Failed to generate workouts",
    STEP_SAVING_RECOMMENDATION: "Failed to save recommendation",
    STEP_LOADING_RECOMMENDATION: "Failed to load recommendation",
    STEP_COLLECTING_PERFORMANCE: "Failed to collect performance data",
    STEP_SAVING_WORKOUTS: "Failed to save workouts",
}


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class ProcessSummary:
    """Outcome counts of one process_pending sweep."""

    recommendations_processed: int = 0
    recommendations_failed: int = 0
    weeks_processed: int = 0
    weeks_failed: int = 0

    @property
    def processed(self) -> int:
        return self.recommendations_processed + self.weeks_processed

    @property
    def failed(self) -> int:
        return self.recommendations_failed + self.weeks_failed

    def record(self, kind: JobKind, failed: bool) -> None:
        if kind == JobKind.RECOMMENDATION:
            if failed:
                self.recommendations_failed += 1
            else:
                self.recommendations_processed += 1
        elif failed:
            self.weeks_failed += 1
        else:
            self.weeks_processed += 1


class _RunTracker:
    """Current step of one run, for progress events and failure messages."""

    def __init__(self, job: Job, store: JobStore) -> None:
        self.job = job
        self.store = store
        self.step: str | None = None
        self.started: float | None = None

    async def enter(self, step: str) -> None:
        if self.step is not None and self.started is not None:
            emit_step_complete(self.job.id, self.job.kind, self.step, self.started)
        self.job = await self.store.update_status(self.job.id, JobStatus.PROCESSING, step)
        self.step = step
        self.started = emit_step_start(self.job.id, self.job.kind, step)

    def finish(self) -> None:
        if self.step is not None and self.started is not None:
            emit_step_complete(self.job.id, self.job.kind, self.step, self.started)
        self.step = None
        self.started = None

    def failure_message(self, error: Exception) -> str:
        message = str(error) or type(error).__name__
        prefix = STEP_FAILURE_PREFIX.get(self.step or "")
        return f"{prefix}: {message}" if prefix else message


class JobDispatcher:
    """Runs generation jobs against the host application's collaborators.

    Args:
        store: Job store
        pipeline: Generation pipeline
        questionnaires: Questionnaire reader
        clients: Client reader
        body_scans: Body-scan reader
        recommendations: Recommendation reader
        workouts: Workout reader
        actual_workouts: Actual-workout reader
        writer: Plan writer
        stuck_threshold: How long a processing job may go without updates before a
            new run restarts it
        plan_weeks: Plan length; week jobs are accepted for weeks 2..plan_weeks
        clock: Returns the current UTC time
    """

    def __init__(
        self,
        store: JobStore,
        pipeline: GenerationPipeline,
        questionnaires: QuestionnaireReader,
        clients: ClientReader,
        body_scans: BodyScanReader,
        recommendations: RecommendationReader,
        workouts: WorkoutReader,
        actual_workouts: ActualWorkoutReader,
        writer: PlanWriter,
        *,
        stuck_threshold: timedelta | None = None,
        plan_weeks: int | None = None,
        clock=utc_now,
    ) -> None:
        self.store = store
        self.pipeline = pipeline
        self.questionnaires = questionnaires
        self.clients = clients
        self.body_scans = body_scans
        self.recommendations = recommendations
        self.workouts = workouts
        self.actual_workouts = actual_workouts
        self.writer = writer
        self.stuck_threshold = stuck_threshold or timedelta(seconds=settings.job_stuck_threshold_seconds)
        self.plan_weeks = plan_weeks or settings.plan_weeks
        self.clock = clock

    # ------------------------------------------------------------------
    # Enqueue / cancel / status
    # ------------------------------------------------------------------

    async def enqueue(self, subject: JobSubject, created_by: int | None = None) -> Job:
        """Create a pending job, or return the subject's active job if there is one.

        Args:
            subject: What to generate
            created_by: Requesting user

        Returns:
            The new job, or the existing pending/processing job
        """
        existing = await self.store.get_latest_by_subject(subject)
        if existing is not None and existing.status in ACTIVE_STATUSES:
            logger.info(
                "Generation already in progress, returning existing job",
                job_id=existing.id,
                subject=subject.key,
                status=str(existing.status),
            )
            return existing

        try:
            job = await self.store.create(subject, created_by)
        except DuplicateActiveJobError:
            winner = await self.store.get_latest_by_subject(subject)
            if winner is None or winner.status not in ACTIVE_STATUSES:
                raise
            logger.info("Lost enqueue race, returning concurrent job", job_id=winner.id, subject=subject.key)
            return winner

        logger.info("Job enqueued", job_id=job.id, kind=str(job.kind), subject=subject.key, created_by=created_by)
        return job

    async def enqueue_recommendation(self, questionnaire_id: int, created_by: int | None = None) -> Job:
        return await self.enqueue(JobSubject.for_questionnaire(questionnaire_id), created_by)

    async def enqueue_week(self, recommendation_id: int, week_number: int, created_by: int | None = None) -> Job:
        """Enqueue generation of one progressive week.

        Raises:
            SubjectNotFoundError: If the recommendation does not exist
            WeekNotEligibleError: If the week is out of range or the previous week is not complete
            WeekAlreadyGeneratedError: If the week already has workouts
        """
        recommendation = await self.recommendations.get_recommendation(recommendation_id)
        if recommendation is None:
            raise SubjectNotFoundError(f"Recommendation {recommendation_id} not found")

        if not 2 <= week_number <= self.plan_weeks:
            raise WeekNotEligibleError(f"Week number must be between 2 and {self.plan_weeks}", week_number)

        previous_week = week_number - 1
        previous_status = await get_week_completion_status(self.workouts, recommendation_id, previous_week)
        if not previous_status.is_complete:
            raise WeekNotEligibleError(
                f"Week {previous_week} must be completed (all workouts completed or skipped) "
                f"before generating Week {week_number}",
                week_number,
                previous_status,
            )

        if await self.workouts.get_workouts_by_week(recommendation_id, week_number):
            raise WeekAlreadyGeneratedError(recommendation_id, week_number)

        return await self.enqueue(JobSubject.for_week(recommendation_id, week_number), created_by)

    async def cancel(self, job_id: int, reason: str | None = None) -> Job:
        """Cancel a pending or processing job.

        Cancelling an already-cancelled job is a no-op.

        Raises:
            JobNotFoundError: If the job does not exist
            JobNotCancellableError: If the job already completed or failed
        """
        job = await self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status == JobStatus.CANCELLED:
            return job
        if job.status not in ACTIVE_STATUSES:
            raise JobNotCancellableError(job_id, str(job.status))

        try:
            cancelled = await self.store.mark_cancelled(job_id, reason)
        except InvalidTransitionError:
            # Finished between the read and the write
            current = await self.store.get(job_id)
            if current is not None and current.status == JobStatus.CANCELLED:
                return current
            raise JobNotCancellableError(job_id, str(current.status if current else job.status)) from None

        logger.info("Job cancelled", job_id=job_id, kind=str(job.kind), previous_status=str(job.status), reason=reason)
        return cancelled

    async def get_status(self, job_id: int) -> Job | None:
        return await self.store.get(job_id)

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------

    async def run(self, job_id: int, now: datetime | None = None) -> Job | None:
        """Run a job from the beginning.

        Terminal jobs and recently updated processing jobs are left alone. A
        processing job idle for longer than the stuck threshold is restarted.

        Args:
            job_id: Job to run
            now: Current time (defaults to the dispatcher clock)

        Returns:
            Final job snapshot, or None if the job does not exist or could not be loaded
        """
        try:
            job = await self.store.get(job_id)
        except Exception as e:
            logger.error("Failed to load job", job_id=job_id, error_type=type(e).__name__, error=str(e))
            return None
        if job is None:
            logger.error("Job not found", job_id=job_id)
            return None

        with job_log_context(job.id, str(job.kind), job.subject.key):
            return await self._run_loaded(job, now or self.clock())

    async def _run_loaded(self, job: Job, now: datetime) -> Job | None:
        job_id = job.id
        if should_skip(job, now, self.stuck_threshold):
            logger.info(
                "Skipping job run",
                job_id=job_id,
                status=str(job.status),
                seconds_since_update=int((now - job.updated_at).total_seconds()),
            )
            return job

        if job.status == JobStatus.PROCESSING:
            logger.warning(
                "Job appears stuck, restarting",
                job_id=job_id,
                seconds_since_update=int((now - job.updated_at).total_seconds()),
            )

        logger.info("Running job", job_id=job_id, kind=str(job.kind), subject=job.subject.key)
        tracker = _RunTracker(job, self.store)
        token = CancellationToken(job_id, self.store)

        try:
            if job.kind == JobKind.RECOMMENDATION:
                result_id = await self._run_recommendation(job, tracker, token)
            else:
                result_id = await self._run_week(job, tracker, token)
        except JobCancelledError:
            emit_step_failed(job_id, job.kind, tracker.step, tracker.started, "cancelled")
            return await self._reload(tracker.job)
        except Exception as e:
            return await self._handle_failure(job, tracker, e)

        tracker.finish()
        try:
            return await self._complete(job, result_id)
        except Exception as e:
            return await self._handle_failure(job, tracker, e)

    async def _complete(self, job: Job, result_id: int) -> Job | None:
        try:
            completed = await self.store.mark_complete(job.id, result_id)
        except InvalidTransitionError:
            current = await self.store.get(job.id)
            if current is not None and current.status == JobStatus.CANCELLED:
                logger.warning(
                    "Job was cancelled after its results were saved; results are kept",
                    job_id=job.id,
                    result_id=result_id,
                )
                return current
            raise

        logger.info("Job completed", job_id=job.id, kind=str(job.kind), result_id=result_id)
        return completed

    async def _reload(self, job: Job) -> Job:
        """Re-read a job, falling back to the last snapshot when the store fails."""
        try:
            current = await self.store.get(job.id)
        except Exception as e:
            logger.error("Failed to reload job", job_id=job.id, error_type=type(e).__name__, error=str(e))
            return job
        return current or job

    async def _handle_failure(self, job: Job, tracker: _RunTracker, error: Exception) -> Job:
        current = await self._reload(tracker.job)
        if current.status == JobStatus.CANCELLED:
            logger.info("Job was cancelled while running", job_id=job.id, step=tracker.step)
            return current

        message = tracker.failure_message(error)
        emit_step_failed(job.id, job.kind, tracker.step, tracker.started, message)
        logger.error("Job failed", job_id=job.id, kind=str(job.kind), error_type=type(error).__name__, error=message)

        try:
            return await self.store.mark_failed(job.id, message)
        except Exception as mark_error:
            logger.error(
                "Failed to mark job as failed",
                job_id=job.id,
                error_type=type(mark_error).__name__,
                error=str(mark_error),
            )
            return current

    async def _load_context(self, questionnaire: Questionnaire) -> GenerationContext:
        client = await self.clients.get_client(questionnaire.client_id)
        if client is None:
            raise SubjectNotFoundError("Client not found")
        body_scan = await self.body_scans.get_latest_body_scan(questionnaire.client_id)
        return GenerationContext(questionnaire=questionnaire, client=client, body_scan=body_scan)

    async def _run_recommendation(self, job: Job, tracker: _RunTracker, token: CancellationToken) -> int:
        questionnaire_id = job.subject.questionnaire_id
        assert questionnaire_id is not None

        await tracker.enter(STEP_LOADING_QUESTIONNAIRE)
        questionnaire = await self.questionnaires.get_questionnaire(questionnaire_id)
        if questionnaire is None:
            raise SubjectNotFoundError("Questionnaire not found")
        context = await self._load_context(questionnaire)

        await tracker.enter(STEP_GENERATING_STRUCTURE)
        structure = await self.pipeline.generate_structure(context, token)

        await tracker.enter(STEP_GENERATING_WORKOUTS)
        workouts = await self.pipeline.generate_week_one(structure, context, token)

        await tracker.enter(STEP_SAVING_RECOMMENDATION)
        await token.check("save_recommendation")
        return await self.writer.save_recommendation(
            client_id=questionnaire.client_id,
            questionnaire_id=questionnaire_id,
            structure=structure,
            workouts=workouts,
            body_scan_id=context.body_scan.id if context.body_scan else None,
            created_by=job.created_by,
        )

    async def _run_week(self, job: Job, tracker: _RunTracker, token: CancellationToken) -> int:
        recommendation_id = job.subject.recommendation_id
        week_number = job.subject.week_number
        assert recommendation_id is not None and week_number is not None

        await tracker.enter(STEP_LOADING_RECOMMENDATION)
        recommendation = await self.recommendations.get_recommendation(recommendation_id)
        if recommendation is None:
            raise SubjectNotFoundError("Recommendation not found")
        questionnaire = None
        if recommendation.questionnaire_id is not None:
            questionnaire = await self.questionnaires.get_questionnaire(recommendation.questionnaire_id)
        if questionnaire is None:
            raise SubjectNotFoundError("Questionnaire not found")
        context = await self._load_context(questionnaire)

        await tracker.enter(STEP_COLLECTING_PERFORMANCE)
        history = await collect_performance_history(
            recommendation_id,
            week_number,
            self.workouts,
            self.actual_workouts,
        )

        await tracker.enter(STEP_GENERATING_WORKOUTS)
        workouts = await self.pipeline.generate_progressive_week(
            recommendation.to_structure(),
            context,
            week_number,
            history,
            token,
        )

        await tracker.enter(STEP_SAVING_WORKOUTS)
        await token.check("save_workouts")
        await self.writer.save_week_workouts(recommendation_id, week_number, workouts, created_by=job.created_by)
        return recommendation_id

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    async def process_pending(self, limit: int | None = None) -> ProcessSummary:
        """Run pending jobs oldest first; one job's failure never stops the sweep.

        Args:
            limit: Maximum number of jobs to run

        Returns:
            ProcessSummary with per-kind processed/failed counts
        """
        summary = ProcessSummary()
        pending = await self.store.list_pending(limit)
        logger.info("Processing pending jobs", count=len(pending))

        for job in pending:
            try:
                result = await self.run(job.id)
            except Exception as e:
                logger.exception("Unexpected error running job", job_id=job.id, error=str(e))
                summary.record(job.kind, failed=True)
                continue
            summary.record(job.kind, failed=result is None or result.status == JobStatus.FAILED)

        logger.info(
            "Finished processing pending jobs",
            recommendations_processed=summary.recommendations_processed,
            recommendations_failed=summary.recommendations_failed,
            weeks_processed=summary.weeks_processed,
            weeks_failed=summary.weeks_failed,
        )
        return summary
