import json

import pytest

from fakes import STRUCTURE_RESPONSE, FakeCompletionClient, completion, week_response
from plangen.domain.models import Questionnaire, Workout
from plangen.errors import GenerationError, JobCancelledError, MalformedResponseError, StructureValidationError
from plangen.jobs.cancellation import CancellationToken
from plangen.jobs.models import JobSubject
from plangen.jobs.store import InMemoryJobStore
from plangen.llm.validation import validate_structure
from plangen.performance.aggregator import PerformanceSnapshot, SessionPerformance
from plangen.planning.context import GenerationContext

CONTEXT = GenerationContext(
    questionnaire=Questionnaire(id=1, client_id=7, primary_goal="Get stronger", available_days_per_week=3),
    age=52,
)


@pytest.mark.asyncio
async def test_generate_structure(make_pipeline):
    client = FakeCompletionClient([completion("```json\n" + json.dumps(STRUCTURE_RESPONSE) + "\n```")])
    pipeline = make_pipeline(client, structure_max_tokens=1234)

    structure = await pipeline.generate_structure(CONTEXT)

    assert structure.client_type == "The Rebuilder"
    assert client.calls[0]["max_output_tokens"] == 1234
    assert "Age: 52" in client.calls[0]["messages"][1]["content"]


@pytest.mark.asyncio
async def test_generate_structure_missing_fields(make_pipeline):
    client = FakeCompletionClient([completion({"client_type": "The Rebuilder"})])

    with pytest.raises(StructureValidationError):
        await make_pipeline(client).generate_structure(CONTEXT)


@pytest.mark.asyncio
async def test_generate_structure_unparseable(make_pipeline):
    client = FakeCompletionClient([completion("no json at all")])

    with pytest.raises(MalformedResponseError):
        await make_pipeline(client).generate_structure(CONTEXT)
    assert len(client.calls) == 1


@pytest.mark.asyncio
async def test_generate_week_one(make_pipeline):
    client = FakeCompletionClient([completion(week_response(1))])
    pipeline = make_pipeline(client, workout_max_tokens=999)

    workouts = await pipeline.generate_week_one(validate_structure(STRUCTURE_RESPONSE), CONTEXT)

    assert [workout.session_number for workout in workouts] == [1, 2, 3]
    assert client.calls[0]["max_output_tokens"] == 999
    prompt = client.calls[0]["messages"][1]["content"]
    assert "WEEK 1" in prompt
    assert "Re-establish movement patterns" in prompt


@pytest.mark.asyncio
async def test_generate_week_one_nothing_valid(make_pipeline):
    client = FakeCompletionClient([completion({"workouts": []})])

    with pytest.raises(GenerationError):
        await make_pipeline(client).generate_week_one(validate_structure(STRUCTURE_RESPONSE), CONTEXT)


@pytest.mark.asyncio
async def test_truncated_week_keeps_complete_workouts(make_pipeline):
    text = completion(week_response(1)).text
    cut = text.index('{"week_number": 1, "session_number": 3')
    client = FakeCompletionClient([completion(text[: cut + 40], finish_reason="length")])

    workouts = await make_pipeline(client).generate_week_one(validate_structure(STRUCTURE_RESPONSE), CONTEXT)

    assert [workout.session_number for workout in workouts] == [1, 2]


@pytest.mark.asyncio
async def test_progressive_week_uses_history_and_focus(make_pipeline):
    week_one = [
        Workout.model_validate({**item, "id": index, "recommendation_id": 100})
        for index, item in enumerate(week_response(1)["workouts"], start=1)
    ]
    history = [PerformanceSnapshot(week_number=1, sessions=tuple(SessionPerformance(workout=w) for w in week_one))]
    client = FakeCompletionClient([completion(week_response(3))])

    workouts = await make_pipeline(client).generate_progressive_week(
        validate_structure(STRUCTURE_RESPONSE),
        CONTEXT,
        3,
        history,
    )

    assert {workout.week_number for workout in workouts} == {3}
    prompt = client.calls[0]["messages"][1]["content"]
    assert "WEEK 3" in prompt
    assert "Build load tolerance" in prompt
    assert "No performance logged." in prompt


@pytest.mark.asyncio
async def test_cancelled_token_prevents_model_call(make_pipeline):
    store = InMemoryJobStore()
    job = await store.create(JobSubject.for_questionnaire(1))
    await store.mark_cancelled(job.id)
    client = FakeCompletionClient([completion(STRUCTURE_RESPONSE)])

    with pytest.raises(JobCancelledError):
        await make_pipeline(client).generate_structure(CONTEXT, CancellationToken(job.id, store))
    assert client.calls == []
