from fakes import week_response
from plangen.domain.models import Workout, WorkoutStatus
from plangen.jobs.eligibility import week_completion_status


def make_workouts(*statuses: WorkoutStatus) -> list[Workout]:
    items = week_response(1, sessions=len(statuses))["workouts"]
    return [
        Workout.model_validate({**item, "id": index, "recommendation_id": 1, "status": status})
        for index, (item, status) in enumerate(zip(items, statuses, strict=True), start=1)
    ]


def test_all_completed_is_complete():
    status = week_completion_status(1, make_workouts(WorkoutStatus.COMPLETED, WorkoutStatus.COMPLETED))
    assert status.is_complete
    assert status.completed == 2


def test_skipped_counts_as_done():
    status = week_completion_status(1, make_workouts(WorkoutStatus.COMPLETED, WorkoutStatus.SKIPPED))
    assert status.is_complete


def test_cancelled_workouts_are_ignored():
    status = week_completion_status(
        1,
        make_workouts(WorkoutStatus.COMPLETED, WorkoutStatus.CANCELLED, WorkoutStatus.SKIPPED),
    )
    assert status.active == 2
    assert status.is_complete


def test_scheduled_or_in_progress_blocks():
    assert not week_completion_status(1, make_workouts(WorkoutStatus.COMPLETED, WorkoutStatus.SCHEDULED)).is_complete
    assert not week_completion_status(1, make_workouts(WorkoutStatus.IN_PROGRESS)).is_complete


def test_empty_or_all_cancelled_week_is_not_complete():
    assert not week_completion_status(1, []).is_complete
    assert not week_completion_status(1, make_workouts(WorkoutStatus.CANCELLED)).is_complete


def test_to_dict():
    data = week_completion_status(2, make_workouts(WorkoutStatus.COMPLETED, WorkoutStatus.SCHEDULED)).to_dict()
    assert data == {
        "week_number": 2,
        "total": 2,
        "completed": 1,
        "skipped": 0,
        "in_progress": 0,
        "scheduled": 1,
        "cancelled": 0,
        "is_complete": False,
    }
