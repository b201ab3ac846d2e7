"""Post-parse checks applied to recovered model output."""

from __future__ import annotations

from typing import Any

from loguru import logger
from pydantic import ValidationError

from plangen.domain.models import GeneratedWorkout, RecommendationStructure
from plangen.errors import MalformedResponseError, StructureValidationError


def _integral_number(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def validate_structure(data: dict[str, Any]) -> RecommendationStructure:
    """Validate stage-1 output.

    Args:
        data: Parsed model output

    Returns:
        RecommendationStructure

    Raises:
        StructureValidationError: If client_type or sessions_per_week are missing or
            of the wrong type, or the remaining fields cannot be coerced
    """
    client_type = data.get("client_type")
    if not isinstance(client_type, str) or not client_type.strip():
        raise StructureValidationError("Invalid response structure: client_type must be a non-empty string")

    sessions = _integral_number(data.get("sessions_per_week"))
    if sessions is None:
        raise StructureValidationError(
            f"Invalid response structure: sessions_per_week must be a number, got {data.get('sessions_per_week')!r}"
        )
    if sessions < 1:
        raise StructureValidationError(f"Invalid response structure: sessions_per_week must be positive, got {sessions}")

    payload = dict(data)
    payload["client_type"] = client_type.strip()
    payload["sessions_per_week"] = sessions
    if payload.get("plan_structure") is None:
        payload.pop("plan_structure", None)

    try:
        return RecommendationStructure.model_validate(payload)
    except ValidationError as e:
        raise StructureValidationError(f"Invalid response structure: {e}") from e


def filter_week_workouts(data: dict[str, Any], week_number: int, expected_count: int) -> list[GeneratedWorkout]:
    """Keep the valid workouts for one target week.

    Items tagged with another week, items that fail schema validation and
    duplicate session numbers are dropped with a warning. A count different from
    `expected_count` is only a warning.

    Args:
        data: Parsed model output with a "workouts" list
        week_number: Target week
        expected_count: Sessions per week from the plan structure

    Returns:
        Workouts sorted by session number

    Raises:
        MalformedResponseError: If "workouts" is missing or not a list
    """
    items = data.get("workouts")
    if not isinstance(items, list):
        raise MalformedResponseError("Invalid response structure: workouts array missing")

    kept: dict[int, GeneratedWorkout] = {}
    wrong_week = 0
    invalid = 0
    duplicates = 0

    for index, item in enumerate(items):
        if not isinstance(item, dict):
            invalid += 1
            logger.warning("Dropping non-object workout item", index=index, item_type=type(item).__name__)
            continue

        item_week = _integral_number(item.get("week_number"))
        if item_week != week_number:
            wrong_week += 1
            logger.warning(
                "Dropping workout for another week",
                index=index,
                expected_week=week_number,
                got_week=item.get("week_number"),
            )
            continue

        try:
            workout = GeneratedWorkout.model_validate(item)
        except ValidationError as e:
            invalid += 1
            logger.warning("Dropping invalid workout item", index=index, error=str(e))
            continue

        if workout.session_number in kept:
            duplicates += 1
            logger.warning(
                "Dropping duplicate session",
                index=index,
                week_number=week_number,
                session_number=workout.session_number,
            )
            continue

        kept[workout.session_number] = workout

    workouts = [kept[number] for number in sorted(kept)]

    if len(workouts) != expected_count:
        logger.warning(
            "Workout count does not match sessions per week",
            week_number=week_number,
            expected=expected_count,
            received=len(workouts),
            dropped_wrong_week=wrong_week,
            dropped_invalid=invalid,
            dropped_duplicates=duplicates,
        )

    return workouts
