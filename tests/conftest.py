"""Root conftest for all tests."""

from datetime import date

import pytest

from fakes import FakeBackend
from plangen.domain.models import BodyScan, Client, Questionnaire
from plangen.jobs.dispatcher import JobDispatcher
from plangen.jobs.store import InMemoryJobStore
from plangen.llm.client import CompletionClient
from plangen.planning.pipeline import GenerationPipeline


@pytest.fixture
def backend() -> FakeBackend:
    backend = FakeBackend()
    backend.clients[7] = Client(id=7, first_name="Sam", last_name="Rivera", date_of_birth=date(1980, 5, 17))
    backend.questionnaires[1] = Questionnaire(
        id=1,
        client_id=7,
        primary_goal="Return to lifting after knee surgery",
        experience_level="intermediate",
        available_days_per_week=3,
        preferred_session_length=45,
        injury_history="ACL reconstruction 2023",
    )
    backend.body_scans[7] = BodyScan(id=3, client_id=7, weight_lbs=182.4, percent_body_fat=24.1, verified=True)
    return backend


@pytest.fixture
def store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def make_pipeline(sleeps):
    def factory(client: CompletionClient, **kwargs) -> GenerationPipeline:
        async def fake_sleep(delay: float) -> None:
            sleeps.append(delay)

        kwargs.setdefault("retry_options", {"sleep": fake_sleep, "max_attempts": 3})
        return GenerationPipeline(client, **kwargs)

    return factory


@pytest.fixture
def make_dispatcher(store, backend, make_pipeline):
    def factory(client: CompletionClient, **kwargs) -> JobDispatcher:
        return JobDispatcher(
            store=store,
            pipeline=make_pipeline(client),
            questionnaires=backend,
            clients=backend,
            body_scans=backend,
            recommendations=backend,
            workouts=backend,
            actual_workouts=backend,
            writer=backend,
            **kwargs,
        )

    return factory
