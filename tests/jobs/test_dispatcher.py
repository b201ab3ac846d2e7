"""Tests for the job dispatcher.

Tests cover:
- Enqueue idempotence per subject (including a lost insert race)
- Recommendation and week runs end to end against fakes
- Phase-prefixed failure messages and rate-limit-only retries
- Cancellation before and during a run, and after the final write
- Stuck-job restart and the pending sweep
"""

import asyncio
from dataclasses import replace
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from fakes import STRUCTURE_RESPONSE, FakeCompletionClient, completion, week_response
from plangen.domain.models import WorkoutStatus
from plangen.errors import (
    JobNotCancellableError,
    JobNotFoundError,
    SubjectNotFoundError,
    WeekAlreadyGeneratedError,
    WeekNotEligibleError,
)
from plangen.jobs.dispatcher import (
    STEP_GENERATING_WORKOUTS,
    STEP_SAVING_RECOMMENDATION,
    STEP_SAVING_WORKOUTS,
)
from plangen.jobs.models import JobKind, JobStatus, JobSubject
from plangen.jobs.store import InMemoryJobStore, utc_now
from plangen.llm.validation import filter_week_workouts, validate_structure
from plangen.planning.load_guard import parse_load


class RateLimited(Exception):
    status_code = 429


def happy_script():
    return [completion(STRUCTURE_RESPONSE), completion(week_response(1))]


async def seed_plan(backend) -> int:
    """Store a recommendation with three scheduled week-1 workouts."""
    return await backend.save_recommendation(
        client_id=7,
        questionnaire_id=1,
        structure=validate_structure(STRUCTURE_RESPONSE),
        workouts=filter_week_workouts(week_response(1), 1, 3),
    )


# ----------------------------------------------------------------------
# Enqueue
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_enqueue_twice_returns_same_job(make_dispatcher):
    dispatcher = make_dispatcher(FakeCompletionClient())

    first = await dispatcher.enqueue_recommendation(1, created_by=42)
    second = await dispatcher.enqueue_recommendation(1, created_by=42)

    assert first.id == second.id
    assert first.status == JobStatus.PENDING
    assert first.created_by == 42


@pytest.mark.asyncio
async def test_concurrent_enqueue_returns_same_job(make_dispatcher):
    dispatcher = make_dispatcher(FakeCompletionClient())

    jobs = await asyncio.gather(*(dispatcher.enqueue_recommendation(1) for _ in range(5)))

    assert len({job.id for job in jobs}) == 1


@pytest.mark.asyncio
async def test_enqueue_lost_race_returns_winner(make_dispatcher):
    class RacingStore(InMemoryJobStore):
        """Hides the active job from the first lookup, like a concurrent insert would."""

        def __init__(self) -> None:
            super().__init__()
            self.lookups = 0

        async def get_latest_by_subject(self, subject):
            self.lookups += 1
            if self.lookups == 1:
                return None
            return await super().get_latest_by_subject(subject)

    racing = RacingStore()
    winner = await racing.create(JobSubject.for_questionnaire(1))
    dispatcher = make_dispatcher(FakeCompletionClient())
    dispatcher.store = racing

    job = await dispatcher.enqueue_recommendation(1)

    assert job.id == winner.id


@pytest.mark.asyncio
async def test_enqueue_after_completion_creates_new_job(make_dispatcher):
    dispatcher = make_dispatcher(FakeCompletionClient(happy_script()))
    first = await dispatcher.enqueue_recommendation(1)
    await dispatcher.run(first.id)

    second = await dispatcher.enqueue_recommendation(1)

    assert second.id != first.id
    assert second.status == JobStatus.PENDING


# ----------------------------------------------------------------------
# Recommendation runs
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_run_recommendation_success(backend, make_dispatcher):
    client = FakeCompletionClient(happy_script())
    dispatcher = make_dispatcher(client)
    job = await dispatcher.enqueue_recommendation(1, created_by=42)

    result = await dispatcher.run(job.id)

    assert result.status == JobStatus.COMPLETED
    assert result.result_id == 100
    assert result.current_step == STEP_SAVING_RECOMMENDATION
    assert result.started_at is not None
    assert result.completed_at is not None
    assert len(client.calls) == 2
    assert backend.saved_recommendations == [
        {"recommendation_id": 100, "questionnaire_id": 1, "body_scan_id": 3, "created_by": 42}
    ]
    assert len(await backend.get_workouts_by_week(100, 1)) == 3
    assert backend.recommendations[100].client_type == "The Rebuilder"


@pytest.mark.asyncio
async def test_structure_prompt_includes_client_context(make_dispatcher):
    client = FakeCompletionClient(happy_script())
    dispatcher = make_dispatcher(client)
    job = await dispatcher.enqueue_recommendation(1)

    await dispatcher.run(job.id)

    prompt = client.calls[0]["messages"][1]["content"]
    assert "ACL reconstruction 2023" in prompt
    assert "The Rebuilder" in prompt
    assert "## Body Composition" in prompt


@pytest.mark.asyncio
async def test_malformed_structure_fails_without_retry(make_dispatcher):
    client = FakeCompletionClient([completion("Sorry, I can't produce a plan right now.")])
    dispatcher = make_dispatcher(client)
    job = await dispatcher.enqueue_recommendation(1)

    result = await dispatcher.run(job.id)

    assert result.status == JobStatus.FAILED
    assert result.error_message.startswith("Failed to generate plan structure: ")
    assert len(client.calls) == 1


@pytest.mark.asyncio
async def test_truncated_structure_is_repaired(make_dispatcher):
    truncated = (
        '{"client_type":"The Rebuilder","sessions_per_week":3,"session_length_minutes":45,'
        '"plan_structure":{"weeks":6,"training_methods":["Tempo training"]}'
    )
    client = FakeCompletionClient([completion(truncated, finish_reason="length"), completion(week_response(1))])
    dispatcher = make_dispatcher(client)
    job = await dispatcher.enqueue_recommendation(1)

    result = await dispatcher.run(job.id)

    assert result.status == JobStatus.COMPLETED
    assert len(client.calls) == 2


@pytest.mark.asyncio
async def test_missing_questionnaire_fails(make_dispatcher):
    client = FakeCompletionClient()
    dispatcher = make_dispatcher(client)
    job = await dispatcher.enqueue_recommendation(999)

    result = await dispatcher.run(job.id)

    assert result.status == JobStatus.FAILED
    assert result.error_message == "Failed to load questionnaire: Questionnaire not found"
    assert client.calls == []


@pytest.mark.asyncio
async def test_empty_week_one_fails(make_dispatcher):
    client = FakeCompletionClient([completion(STRUCTURE_RESPONSE), completion(week_response(2))])
    dispatcher = make_dispatcher(client)
    job = await dispatcher.enqueue_recommendation(1)

    result = await dispatcher.run(job.id)

    assert result.status == JobStatus.FAILED
    assert result.error_message == "Failed to generate workouts: No workouts were generated for week 1"


@pytest.mark.asyncio
async def test_rate_limit_is_retried(make_dispatcher, sleeps):
    client = FakeCompletionClient([RateLimited("Too many requests"), *happy_script()])
    dispatcher = make_dispatcher(client)
    job = await dispatcher.enqueue_recommendation(1)

    result = await dispatcher.run(job.id)

    assert result.status == JobStatus.COMPLETED
    assert len(client.calls) == 3
    assert len(sleeps) == 1


@pytest.mark.asyncio
async def test_auth_error_fails_immediately(make_dispatcher, sleeps):
    client = FakeCompletionClient([PermissionError("Incorrect API key provided")])
    dispatcher = make_dispatcher(client)
    job = await dispatcher.enqueue_recommendation(1)

    result = await dispatcher.run(job.id)

    assert result.status == JobStatus.FAILED
    assert "Incorrect API key provided" in result.error_message
    assert len(client.calls) == 1
    assert sleeps == []


@pytest.mark.asyncio
async def test_writer_failure_is_reported(backend, make_dispatcher):
    backend.save_recommendation = AsyncMock(side_effect=RuntimeError("database unavailable"))
    dispatcher = make_dispatcher(FakeCompletionClient(happy_script()))
    job = await dispatcher.enqueue_recommendation(1)

    result = await dispatcher.run(job.id)

    assert result.status == JobStatus.FAILED
    assert result.error_message == "Failed to save recommendation: database unavailable"


# ----------------------------------------------------------------------
# Cancellation
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_cancelled_pending_job_is_not_run(make_dispatcher):
    client = FakeCompletionClient(happy_script())
    dispatcher = make_dispatcher(client)
    job = await dispatcher.enqueue_recommendation(1)

    cancelled = await dispatcher.cancel(job.id, reason="client changed their mind")
    result = await dispatcher.run(job.id)

    assert cancelled.status == JobStatus.CANCELLED
    assert cancelled.cancel_reason == "client changed their mind"
    assert result.status == JobStatus.CANCELLED
    assert client.calls == []


@pytest.mark.asyncio
async def test_cancel_during_run_stops_before_next_model_call(store, backend, make_dispatcher):
    job_ids = []

    async def cancel_then_answer():
        await store.mark_cancelled(job_ids[0], "stop")
        return completion(STRUCTURE_RESPONSE)

    client = FakeCompletionClient([cancel_then_answer, completion(week_response(1))])
    dispatcher = make_dispatcher(client)
    job = await dispatcher.enqueue_recommendation(1)
    job_ids.append(job.id)

    result = await dispatcher.run(job.id)

    assert result.status == JobStatus.CANCELLED
    assert len(client.calls) == 1
    assert backend.saved_recommendations == []


@pytest.mark.asyncio
async def test_cancel_after_save_keeps_results(store, backend, make_dispatcher):
    job_ids = []
    save = backend.save_recommendation

    async def save_then_cancel(**kwargs):
        recommendation_id = await save(**kwargs)
        await store.mark_cancelled(job_ids[0])
        return recommendation_id

    backend.save_recommendation = save_then_cancel
    dispatcher = make_dispatcher(FakeCompletionClient(happy_script()))
    job = await dispatcher.enqueue_recommendation(1)
    job_ids.append(job.id)

    result = await dispatcher.run(job.id)

    assert result.status == JobStatus.CANCELLED
    assert 100 in backend.recommendations


@pytest.mark.asyncio
async def test_cancel_is_idempotent(make_dispatcher):
    dispatcher = make_dispatcher(FakeCompletionClient())
    job = await dispatcher.enqueue_recommendation(1)

    first = await dispatcher.cancel(job.id)
    second = await dispatcher.cancel(job.id)

    assert first.status == second.status == JobStatus.CANCELLED


@pytest.mark.asyncio
async def test_cancel_completed_job_rejected(make_dispatcher):
    dispatcher = make_dispatcher(FakeCompletionClient(happy_script()))
    job = await dispatcher.enqueue_recommendation(1)
    await dispatcher.run(job.id)

    with pytest.raises(JobNotCancellableError):
        await dispatcher.cancel(job.id)


@pytest.mark.asyncio
async def test_cancel_unknown_job(make_dispatcher):
    dispatcher = make_dispatcher(FakeCompletionClient())
    with pytest.raises(JobNotFoundError):
        await dispatcher.cancel(12345)


# ----------------------------------------------------------------------
# Run guards
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_run_unknown_job_returns_none(make_dispatcher):
    dispatcher = make_dispatcher(FakeCompletionClient())
    assert await dispatcher.run(404) is None


@pytest.mark.asyncio
async def test_completed_job_is_not_rerun(make_dispatcher):
    client = FakeCompletionClient(happy_script())
    dispatcher = make_dispatcher(client)
    job = await dispatcher.enqueue_recommendation(1)
    completed = await dispatcher.run(job.id)

    again = await dispatcher.run(job.id)

    assert again == completed
    assert len(client.calls) == 2


@pytest.mark.asyncio
async def test_recent_processing_job_is_skipped(store, make_dispatcher):
    client = FakeCompletionClient(happy_script())
    dispatcher = make_dispatcher(client, stuck_threshold=timedelta(minutes=5))
    job = await dispatcher.enqueue_recommendation(1)
    store.put(replace(job, status=JobStatus.PROCESSING, updated_at=utc_now() - timedelta(minutes=1)))

    result = await dispatcher.run(job.id)

    assert result.status == JobStatus.PROCESSING
    assert client.calls == []


@pytest.mark.asyncio
async def test_stuck_processing_job_is_restarted(store, make_dispatcher):
    client = FakeCompletionClient(happy_script())
    dispatcher = make_dispatcher(client, stuck_threshold=timedelta(minutes=5))
    job = await dispatcher.enqueue_recommendation(1)
    stale = utc_now() - timedelta(minutes=10)
    store.put(replace(job, status=JobStatus.PROCESSING, updated_at=stale, started_at=stale))

    result = await dispatcher.run(job.id)

    assert result.status == JobStatus.COMPLETED
    assert result.started_at == stale
    assert len(client.calls) == 2


# ----------------------------------------------------------------------
# Week jobs
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_enqueue_week_requires_complete_previous_week(backend, make_dispatcher):
    recommendation_id = await seed_plan(backend)
    dispatcher = make_dispatcher(FakeCompletionClient())

    with pytest.raises(WeekNotEligibleError) as exc_info:
        await dispatcher.enqueue_week(recommendation_id, 2)

    status = exc_info.value.previous_week_status
    assert status.week_number == 1
    assert status.scheduled == 3
    assert not status.is_complete


@pytest.mark.asyncio
async def test_enqueue_week_accepts_skipped_week(backend, make_dispatcher):
    recommendation_id = await seed_plan(backend)
    backend.set_week_status(recommendation_id, 1, WorkoutStatus.SKIPPED)
    dispatcher = make_dispatcher(FakeCompletionClient())

    job = await dispatcher.enqueue_week(recommendation_id, 2)

    assert job.kind == JobKind.WEEK
    assert job.subject.key == f"recommendation:{recommendation_id}:week:2"


@pytest.mark.asyncio
@pytest.mark.parametrize("week_number", [1, 7])
async def test_enqueue_week_out_of_range(backend, make_dispatcher, week_number):
    recommendation_id = await seed_plan(backend)
    dispatcher = make_dispatcher(FakeCompletionClient(), plan_weeks=6)

    with pytest.raises(WeekNotEligibleError):
        await dispatcher.enqueue_week(recommendation_id, week_number)


@pytest.mark.asyncio
async def test_enqueue_week_unknown_recommendation(make_dispatcher):
    dispatcher = make_dispatcher(FakeCompletionClient())
    with pytest.raises(SubjectNotFoundError):
        await dispatcher.enqueue_week(999, 2)


@pytest.mark.asyncio
async def test_enqueue_week_already_generated(backend, make_dispatcher):
    recommendation_id = await seed_plan(backend)
    backend.set_week_status(recommendation_id, 1, WorkoutStatus.COMPLETED)
    await backend.save_week_workouts(recommendation_id, 2, filter_week_workouts(week_response(2), 2, 3))
    dispatcher = make_dispatcher(FakeCompletionClient())

    with pytest.raises(WeekAlreadyGeneratedError):
        await dispatcher.enqueue_week(recommendation_id, 2)


@pytest.mark.asyncio
async def test_week_after_failure_lowers_load(backend, make_dispatcher):
    recommendation_id = await seed_plan(backend)
    backend.set_week_status(recommendation_id, 1, WorkoutStatus.COMPLETED)
    for workout in await backend.get_workouts_by_week(recommendation_id, 1):
        backend.log_actual(
            workout.id,
            [
                {"exercise_name": "Barbell Squat", "sets_completed": 3, "weight_used": "60 kg", "rir": 0},
                {"exercise_name": "Plank", "sets_completed": 3, "rir": 2},
            ],
            overall_rir=1,
        )

    client = FakeCompletionClient([completion(week_response(2, squat_weight="65 kg"))])
    dispatcher = make_dispatcher(client)
    job = await dispatcher.enqueue_week(recommendation_id, 2)

    result = await dispatcher.run(job.id)

    assert result.status == JobStatus.COMPLETED
    assert result.result_id == recommendation_id
    assert result.current_step == STEP_SAVING_WORKOUTS
    assert backend.saved_weeks == [(recommendation_id, 2)]
    assert len(backend.actual_batches) == 1

    prompt = client.calls[0]["messages"][1]["content"]
    assert "### Week 1" in prompt
    assert "failure, reduce load" in prompt

    week_two = await backend.get_workouts_by_week(recommendation_id, 2)
    squats = [
        exercise
        for workout in week_two
        for exercise in workout.workout_data.exercises
        if exercise.name == "Barbell Squat"
    ]
    assert len(squats) == 3
    for squat in squats:
        assert parse_load(squat.weight).value < 60


@pytest.mark.asyncio
async def test_week_run_failure_message(backend, make_dispatcher):
    recommendation_id = await seed_plan(backend)
    backend.set_week_status(recommendation_id, 1, WorkoutStatus.COMPLETED)
    client = FakeCompletionClient([completion('{"workouts": "none"}')])
    dispatcher = make_dispatcher(client)
    job = await dispatcher.enqueue_week(recommendation_id, 2)

    result = await dispatcher.run(job.id)

    assert result.status == JobStatus.FAILED
    assert result.error_message == "Failed to generate workouts: Invalid response structure: workouts array missing"
    assert result.current_step == STEP_GENERATING_WORKOUTS


# ----------------------------------------------------------------------
# Sweep
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_process_pending_counts_outcomes(backend, make_dispatcher):
    client = FakeCompletionClient(happy_script())
    dispatcher = make_dispatcher(client)
    await dispatcher.enqueue_recommendation(1)
    await dispatcher.enqueue_recommendation(2)

    summary = await dispatcher.process_pending()

    assert summary.recommendations_processed == 1
    assert summary.recommendations_failed == 1
    assert summary.weeks_processed == 0
    assert summary.processed == 1
    assert summary.failed == 1


@pytest.mark.asyncio
async def test_process_pending_respects_limit(make_dispatcher, store):
    dispatcher = make_dispatcher(FakeCompletionClient(happy_script()))
    first = await dispatcher.enqueue_recommendation(1)
    second = await dispatcher.enqueue_recommendation(2)

    summary = await dispatcher.process_pending(limit=1)

    assert summary.processed == 1
    assert (await store.get(first.id)).status == JobStatus.COMPLETED
    assert (await store.get(second.id)).status == JobStatus.PENDING


# ----------------------------------------------------------------------
# Loose model output, cancellation during backoff, store outages
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_numeric_weights_do_not_drop_workouts(backend, make_dispatcher):
    client = FakeCompletionClient([completion(STRUCTURE_RESPONSE), completion(week_response(1, squat_weight=60))])
    dispatcher = make_dispatcher(client)
    job = await dispatcher.enqueue_recommendation(1)

    result = await dispatcher.run(job.id)

    assert result.status == JobStatus.COMPLETED
    workouts = await backend.get_workouts_by_week(result.result_id, 1)
    assert len(workouts) == 3
    assert workouts[0].workout_data.exercises[0].weight == "60"


@pytest.mark.asyncio
async def test_cancel_during_backoff_stops_retries(store, make_dispatcher, make_pipeline):
    job_ids = []

    async def cancel_while_sleeping(delay: float) -> None:
        await store.mark_cancelled(job_ids[0], "stop")

    client = FakeCompletionClient([RateLimited("Too many requests"), *happy_script()])
    dispatcher = make_dispatcher(client)
    dispatcher.pipeline = make_pipeline(client, retry_options={"sleep": cancel_while_sleeping, "max_attempts": 3})
    job = await dispatcher.enqueue_recommendation(1)
    job_ids.append(job.id)

    result = await dispatcher.run(job.id)

    assert result.status == JobStatus.CANCELLED
    assert len(client.calls) == 1


class FlakyStore(InMemoryJobStore):
    """Job store whose reads start failing once `fail_after(n)` has been called."""

    def __init__(self) -> None:
        super().__init__()
        self.healthy_reads: int | None = None

    def fail_after(self, reads: int) -> None:
        self.healthy_reads = reads

    async def get(self, job_id):
        if self.healthy_reads is not None:
            if self.healthy_reads == 0:
                raise ConnectionError("db down")
            self.healthy_reads -= 1
        return await super().get(job_id)


@pytest.mark.asyncio
async def test_store_outage_after_model_error_still_marks_failed(make_dispatcher):
    flaky = FlakyStore()

    def fail_store_then_error():
        flaky.fail_after(0)
        return RuntimeError("model exploded")

    dispatcher = make_dispatcher(FakeCompletionClient([fail_store_then_error]))
    dispatcher.store = flaky
    job = await dispatcher.enqueue_recommendation(1)

    result = await dispatcher.run(job.id)

    assert result.status == JobStatus.FAILED
    assert "model exploded" in result.error_message
    assert flaky._jobs[job.id].status == JobStatus.FAILED


@pytest.mark.asyncio
async def test_store_outage_after_cancellation_does_not_escape(make_dispatcher):
    flaky = FlakyStore()
    job_ids = []

    async def cancel_then_rate_limit():
        await flaky.mark_cancelled(job_ids[0], "stop")
        flaky.fail_after(1)
        return RateLimited("Too many requests")

    client = FakeCompletionClient([completion(STRUCTURE_RESPONSE), cancel_then_rate_limit])
    dispatcher = make_dispatcher(client)
    dispatcher.store = flaky
    job = await dispatcher.enqueue_recommendation(1)
    job_ids.append(job.id)

    result = await dispatcher.run(job.id)

    assert result.id == job.id
    assert len(client.calls) == 2
    assert flaky._jobs[job.id].status == JobStatus.CANCELLED


@pytest.mark.asyncio
async def test_store_outage_before_run_returns_none(make_dispatcher):
    flaky = FlakyStore()
    dispatcher = make_dispatcher(FakeCompletionClient())
    dispatcher.store = flaky
    job = await dispatcher.enqueue_recommendation(1)
    flaky.fail_after(0)

    assert await dispatcher.run(job.id) is None
