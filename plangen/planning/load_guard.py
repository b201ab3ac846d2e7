"""Deterministic load reduction for exercises taken to failure.

The progressive prompt asks the model to back off after RIR 0, but the model
does not always listen. This pass runs after parsing and lowers any numeric load
that is not below the failure week's load, without another model call.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass

from loguru import logger

from plangen.domain.models import Exercise, GeneratedWorkout
from plangen.performance.aggregator import FailureMark, normalize_exercise_name

REDUCTION_FACTOR = 0.9
LOAD_STEP = 2.5
LBS_PER_KG = 2.20462

_LOAD_RE = re.compile(
    r"^\s*(?P<value>\d+(?:\.\d+)?)(?P<sep>\s*)(?P<unit>kgs?|kilograms?|lbs?|pounds?)?(?P<rest>.*)$",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class Load:
    """A numeric load parsed from free text such as "60 kg" or "135lbs each hand".

    Attributes:
        value: Numeric amount
        unit: Normalized unit ("kg", "lbs" or "" for a bare number)
        unit_text: Unit as written
        separator: Whitespace between number and unit as written
        rest: Trailing text after the unit
    """

    value: float
    unit: str
    unit_text: str = ""
    separator: str = ""
    rest: str = ""

    def in_unit(self, unit: str) -> float:
        if not self.unit or not unit or self.unit == unit:
            return self.value
        if self.unit == "kg":
            return self.value * LBS_PER_KG
        return self.value / LBS_PER_KG

    def with_value(self, value: float) -> str:
        return f"{format_amount(value)}{self.separator}{self.unit_text}{self.rest}"


def format_amount(value: float) -> str:
    return f"{value:g}"


def parse_load(text: str | None) -> Load | None:
    """Parse a load, or return None for non-numeric loads ("RIR 2", "bodyweight", "2 x 20kg")."""
    if not text:
        return None
    match = _LOAD_RE.match(text)
    if not match:
        return None
    unit_text = match.group("unit") or ""
    rest = match.group("rest")
    if not unit_text and rest.strip():
        return None
    if unit_text.lower().startswith(("kg", "kilo")):
        unit = "kg"
    elif unit_text:
        unit = "lbs"
    else:
        unit = ""
    return Load(
        value=float(match.group("value")),
        unit=unit,
        unit_text=unit_text,
        separator=match.group("sep") if unit_text else "",
        rest=rest if unit_text else "",
    )


def reduced_load(previous: float) -> float:
    """90% of `previous`, rounded down to a 2.5 step, always strictly below it."""
    stepped = math.floor(previous * REDUCTION_FACTOR / LOAD_STEP) * LOAD_STEP
    if 0 < stepped < previous:
        return stepped
    # Loads too small for the 2.5 step
    return math.floor(previous * REDUCTION_FACTOR * 10) / 10


def reference_load(mark: FailureMark) -> Load | None:
    """Lowest numeric load of the failure week: prescribed loads first, then loads used."""
    for candidates in (mark.prescribed_loads, mark.used_loads):
        parsed = [load for load in (parse_load(text) for text in candidates) if load is not None]
        if parsed:
            return min(parsed, key=lambda load: load.in_unit("kg"))
    return None


def _guard_exercise(exercise: Exercise, mark: FailureMark) -> Exercise:
    new_load = parse_load(exercise.weight)
    previous = reference_load(mark)
    if new_load is None or previous is None:
        return exercise

    previous_value = previous.in_unit(new_load.unit)
    if new_load.value < previous_value:
        return exercise

    lowered = reduced_load(previous_value)
    weight = new_load.with_value(lowered)
    note = (
        f"Load reduced from {exercise.weight} to {weight}: every logged set in week "
        f"{mark.week_number} was taken to failure (RIR 0)."
    )
    notes = f"{exercise.notes} {note}" if exercise.notes else note

    logger.warning(
        "Lowering load for exercise taken to failure",
        exercise=exercise.name,
        failure_week=mark.week_number,
        proposed=exercise.weight,
        previous=format_amount(previous_value),
        lowered=weight,
    )
    return exercise.model_copy(update={"weight": weight, "notes": notes})


def apply_failure_load_guard(
    workouts: list[GeneratedWorkout],
    failures: dict[str, FailureMark],
) -> list[GeneratedWorkout]:
    """Lower loads for exercises the client took to failure in their most recent week.

    Args:
        workouts: Regenerated workouts for the target week
        failures: Output of failure_exercises()

    Returns:
        Workouts with offending loads lowered; untouched workouts are returned as is
    """
    if not failures:
        return workouts

    guarded = []
    for workout in workouts:
        changed = False
        exercises = []
        for exercise in workout.workout_data.exercises:
            mark = failures.get(normalize_exercise_name(exercise.name))
            updated = _guard_exercise(exercise, mark) if mark is not None else exercise
            changed = changed or updated is not exercise
            exercises.append(updated)

        if changed:
            data = workout.workout_data.model_copy(update={"exercises": exercises})
            workout = workout.model_copy(update={"workout_data": data})
        guarded.append(workout)
    return guarded
