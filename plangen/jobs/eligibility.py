"""Week completion rules for progressive generation."""

from __future__ import annotations

from dataclasses import asdict, dataclass

from plangen.collaborators import WorkoutReader
from plangen.domain.models import Workout, WorkoutStatus


@dataclass(frozen=True)
class WeekCompletionStatus:
    """Workout counts for one week.

    Terminal workout states are completed, skipped and cancelled. A week is
    complete when it has at least one non-cancelled workout and every
    non-cancelled workout is completed or skipped.
    """

    week_number: int
    total: int = 0
    completed: int = 0
    skipped: int = 0
    in_progress: int = 0
    scheduled: int = 0
    cancelled: int = 0

    @property
    def active(self) -> int:
        return self.total - self.cancelled

    @property
    def is_complete(self) -> bool:
        return self.active > 0 and self.completed + self.skipped == self.active

    def to_dict(self) -> dict[str, int | bool]:
        data: dict[str, int | bool] = asdict(self)
        data["is_complete"] = self.is_complete
        return data


def week_completion_status(week_number: int, workouts: list[Workout]) -> WeekCompletionStatus:
    counts = {status: 0 for status in WorkoutStatus}
    for workout in workouts:
        counts[workout.status] += 1
    return WeekCompletionStatus(
        week_number=week_number,
        total=len(workouts),
        completed=counts[WorkoutStatus.COMPLETED],
        skipped=counts[WorkoutStatus.SKIPPED],
        in_progress=counts[WorkoutStatus.IN_PROGRESS],
        scheduled=counts[WorkoutStatus.SCHEDULED],
        cancelled=counts[WorkoutStatus.CANCELLED],
    )


async def get_week_completion_status(
    workouts: WorkoutReader,
    recommendation_id: int,
    week_number: int,
) -> WeekCompletionStatus:
    return week_completion_status(week_number, await workouts.get_workouts_by_week(recommendation_id, week_number))
