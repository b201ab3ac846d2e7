"""Proposed-vs-actual performance history for progressive week generation."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from loguru import logger

from plangen.collaborators import ActualWorkoutReader, WorkoutReader
from plangen.domain.models import ActualExercisePerformance, ActualWorkout, Exercise, Workout, WorkoutStatus

EASY_RIR = 3


def normalize_exercise_name(name: str) -> str:
    return re.sub(r"\s+", " ", name).strip().lower()


@dataclass(frozen=True)
class SessionPerformance:
    workout: Workout
    actual: ActualWorkout | None = None

    def actual_for(self, exercise_name: str) -> list[ActualExercisePerformance]:
        if self.actual is None:
            return []
        wanted = normalize_exercise_name(exercise_name)
        return [
            entry
            for entry in self.actual.actual_performance.exercises
            if normalize_exercise_name(entry.exercise_name) == wanted
        ]


@dataclass(frozen=True)
class PerformanceSnapshot:
    """One prior week: each workout paired with its logged performance (if any)."""

    week_number: int
    sessions: tuple[SessionPerformance, ...] = ()


@dataclass(frozen=True)
class ExerciseTrend:
    """Logged RIR for one exercise across all prior weeks.

    Attributes:
        name: Exercise name as first prescribed
        rir_values: Every logged RIR, oldest first
        trend: "failure" (all 0), "easy" (all >= EASY_RIR) or "on_target"
    """

    name: str
    rir_values: tuple[int, ...]
    trend: str


@dataclass(frozen=True)
class FailureMark:
    """An exercise taken to failure on every logged set of its most recent week.

    Attributes:
        name: Exercise name
        week_number: Week the failure was logged in
        prescribed_loads: Loads prescribed for the exercise that week
        used_loads: Loads logged as used that week
        rir_values: Logged RIR values that week (all 0)
    """

    name: str
    week_number: int
    prescribed_loads: tuple[str, ...] = ()
    used_loads: tuple[str, ...] = ()
    rir_values: tuple[int, ...] = field(default_factory=tuple)


async def collect_performance_history(
    recommendation_id: int,
    target_week: int,
    workouts: WorkoutReader,
    actuals: ActualWorkoutReader,
) -> list[PerformanceSnapshot]:
    """Read every prior week and its logged performance.

    Args:
        recommendation_id: Recommendation being extended
        target_week: Week about to be generated; weeks 1..target_week-1 are read
        workouts: Workout reader
        actuals: Actual-workout reader (one batch read for all weeks)

    Returns:
        Snapshots ordered by week, sessions ordered by session number
    """
    weeks = list(range(1, target_week))
    week_workouts = [await workouts.get_workouts_by_week(recommendation_id, week) for week in weeks]

    workout_ids = [workout.id for batch in week_workouts for workout in batch]
    actual_by_workout: dict[int, ActualWorkout] = {}
    if workout_ids:
        for actual in await actuals.get_actual_workouts_by_workout_ids(workout_ids):
            actual_by_workout[actual.workout_id] = actual

    snapshots = [
        PerformanceSnapshot(
            week_number=week,
            sessions=tuple(
                SessionPerformance(workout=workout, actual=actual_by_workout.get(workout.id))
                for workout in sorted(batch, key=lambda w: w.session_number)
            ),
        )
        for week, batch in zip(weeks, week_workouts, strict=True)
    ]

    logger.debug(
        "Collected performance history",
        recommendation_id=recommendation_id,
        target_week=target_week,
        workouts=len(workout_ids),
        logged=len(actual_by_workout),
    )
    return snapshots


def _prescription(exercise: Exercise) -> str:
    parts = []
    if exercise.sets is not None and exercise.reps is not None:
        parts.append(f"{exercise.sets}x{exercise.reps}")
    elif exercise.sets is not None:
        parts.append(f"{exercise.sets} sets")
    elif exercise.reps is not None:
        parts.append(f"{exercise.reps} reps")
    if exercise.weight:
        parts.append(f"@ {exercise.weight}")
    if exercise.rir is not None:
        parts.append(f"(target RIR {exercise.rir})")
    return " ".join(parts) or "no prescription details"


def _actual_line(entry: ActualExercisePerformance) -> str:
    parts = []
    if entry.sets_completed is not None:
        parts.append(f"{entry.sets_completed} sets")
    if entry.reps_completed is not None:
        parts.append(f"reps {entry.reps_completed}")
    if entry.rounds_completed is not None:
        parts.append(f"{entry.rounds_completed} rounds")
    if entry.weight_used:
        parts.append(entry.weight_used)
    if entry.rir is not None:
        parts.append(f"RIR {entry.rir}")
    text = ", ".join(parts) or "logged without details"
    if entry.notes:
        text += f" ({entry.notes})"
    return text


def _format_session(session: SessionPerformance) -> list[str]:
    workout = session.workout
    name = workout.workout_name or f"Session {workout.session_number}"
    lines = [f"Session {workout.session_number} - {name} [{workout.status}]"]

    if workout.status in (WorkoutStatus.SKIPPED, WorkoutStatus.CANCELLED):
        lines.append(f"  Session was {workout.status}; no performance data.")
        return lines
    if session.actual is None:
        lines.append("  No performance logged.")
        return lines

    actual = session.actual
    summary = []
    if actual.overall_rir is not None:
        summary.append(f"Session RIR: {actual.overall_rir}")
    if actual.client_energy_level is not None:
        summary.append(f"Energy: {actual.client_energy_level}/10")
    if actual.actual_performance.total_duration_minutes is not None:
        summary.append(f"Duration: {actual.actual_performance.total_duration_minutes} min")
    if summary:
        lines.append("  " + " | ".join(summary))

    prescribed_names = set()
    for exercise in workout.workout_data.exercises:
        prescribed_names.add(normalize_exercise_name(exercise.name))
        entries = session.actual_for(exercise.name)
        actual_text = "; ".join(_actual_line(entry) for entry in entries) if entries else "not logged"
        lines.append(f"  - {exercise.name}: proposed {_prescription(exercise)}; actual {actual_text}")

    for entry in actual.actual_performance.exercises:
        if normalize_exercise_name(entry.exercise_name) not in prescribed_names:
            lines.append(f"  - {entry.exercise_name} (not prescribed): actual {_actual_line(entry)}")

    if actual.actual_performance.modifications_made:
        lines.append(f"  Modifications: {actual.actual_performance.modifications_made}")
    if actual.trainer_observations:
        lines.append(f"  Trainer observations: {actual.trainer_observations}")
    if actual.session_notes:
        lines.append(f"  Session notes: {actual.session_notes}")
    return lines


def summarize_exercise_trends(snapshots: list[PerformanceSnapshot]) -> list[ExerciseTrend]:
    """Classify each exercise by its logged RIR across all prior weeks.

    Exercises without any logged RIR are left out.
    """
    names: dict[str, str] = {}
    values: dict[str, list[int]] = {}

    for snapshot in snapshots:
        for session in snapshot.sessions:
            if session.actual is None:
                continue
            for entry in session.actual.actual_performance.exercises:
                if entry.rir is None:
                    continue
                key = normalize_exercise_name(entry.exercise_name)
                names.setdefault(key, entry.exercise_name.strip())
                values.setdefault(key, []).append(entry.rir)

    trends = []
    for key, rir_values in values.items():
        if all(value == 0 for value in rir_values):
            trend = "failure"
        elif all(value >= EASY_RIR for value in rir_values):
            trend = "easy"
        else:
            trend = "on_target"
        trends.append(ExerciseTrend(name=names[key], rir_values=tuple(rir_values), trend=trend))
    return trends


def format_performance_history(snapshots: list[PerformanceSnapshot]) -> str:
    """Render prior weeks as a proposed-vs-actual narrative with a trend summary."""
    if not snapshots:
        return "No previous weeks."

    lines: list[str] = []
    for snapshot in snapshots:
        lines.append(f"### Week {snapshot.week_number}")
        if not snapshot.sessions:
            lines.append("No workouts.")
        for session in snapshot.sessions:
            lines.extend(_format_session(session))
        lines.append("")

    trends = summarize_exercise_trends(snapshots)
    flagged = [trend for trend in trends if trend.trend != "on_target"]
    if flagged:
        lines.append("### Exercise Trends")
        for trend in flagged:
            rir_text = ", ".join(str(value) for value in trend.rir_values)
            if trend.trend == "failure":
                lines.append(f"- {trend.name}: RIR 0 on every logged set ({rir_text}) - failure, reduce load")
            else:
                lines.append(f"- {trend.name}: RIR {EASY_RIR}+ on every logged set ({rir_text}) - easy, progress")

    return "\n".join(lines).rstrip()


def failure_exercises(snapshots: list[PerformanceSnapshot]) -> dict[str, FailureMark]:
    """Find exercises whose most recent performed week logged RIR 0 on every set.

    Args:
        snapshots: Prior weeks, oldest first

    Returns:
        Normalized exercise name -> FailureMark
    """
    latest: dict[str, FailureMark | None] = {}

    for snapshot in sorted(snapshots, key=lambda s: s.week_number, reverse=True):
        week_entries: dict[str, list[ActualExercisePerformance]] = {}
        week_loads: dict[str, list[str]] = {}
        display: dict[str, str] = {}

        for session in snapshot.sessions:
            for exercise in session.workout.workout_data.exercises:
                key = normalize_exercise_name(exercise.name)
                if exercise.weight:
                    week_loads.setdefault(key, []).append(exercise.weight)
            if session.actual is None:
                continue
            for entry in session.actual.actual_performance.exercises:
                key = normalize_exercise_name(entry.exercise_name)
                display.setdefault(key, entry.exercise_name.strip())
                week_entries.setdefault(key, []).append(entry)

        for key, entries in week_entries.items():
            if key in latest:
                continue
            rir_values = [entry.rir for entry in entries if entry.rir is not None]
            if not rir_values:
                continue
            if any(value != 0 for value in rir_values):
                latest[key] = None
                continue
            latest[key] = FailureMark(
                name=display[key],
                week_number=snapshot.week_number,
                prescribed_loads=tuple(week_loads.get(key, ())),
                used_loads=tuple(entry.weight_used for entry in entries if entry.weight_used),
                rir_values=tuple(rir_values),
            )

    return {key: mark for key, mark in latest.items() if mark is not None}
