"""Domain values consumed and produced by plan generation.

Questionnaires, clients, body scans, recommendations, stored workouts and actual
workouts are read from collaborators. RecommendationStructure and GeneratedWorkout
are produced by the pipeline and handed back for persistence.
"""

from __future__ import annotations

import json
from datetime import date, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class WorkoutStatus(StrEnum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


class StructuredQuestionnaireData(BaseModel):
    """Five-section psychometric questionnaire (scores are 1-10)."""

    model_config = ConfigDict(extra="ignore")

    # Section 1 - Starting Point
    section1_energy_level: int | None = None
    section1_exercise_consistency: int | None = None
    section1_strength_confidence: int | None = None
    section1_limiting_factors: str | None = None

    # Section 2 - Motivation & Mindset
    section2_motivation: int | None = None
    section2_discipline: int | None = None
    section2_support_level: int | None = None
    section2_what_keeps_going: str | None = None

    # Section 3 - Body & Movement
    section3_pain_limitations: int | None = None
    section3_mobility_confidence: int | None = None
    section3_strength_comparison: int | None = None

    # Section 4 - Nutrition & Recovery
    section4_nutrition_alignment: int | None = None
    section4_meal_consistency: int | None = None
    section4_sleep_quality: int | None = None
    section4_stress_level: int | None = None

    # Section 5 - Identity & Self-Perception
    section5_body_connection: int | None = None
    section5_appearance_satisfaction: int | None = None
    section5_motivation_driver: int | None = None
    section5_sustainability_confidence: int | None = None
    section5_success_vision: str | None = None


class Questionnaire(BaseModel):
    id: int
    client_id: int
    primary_goal: str | None = None
    secondary_goals: list[str] | None = None
    experience_level: str | None = None
    preferred_training_style: list[str] | None = None
    available_days_per_week: int | None = None
    preferred_session_length: int | None = None
    time_preferences: list[str] | None = None
    injury_history: str | None = None
    medical_conditions: str | None = None
    fitness_equipment_access: list[str] | None = None
    activity_level: str | None = None
    stress_level: str | None = None
    sleep_quality: str | None = None
    nutrition_habits: str | None = None
    notes: str | None = None

    def structured_data(self) -> StructuredQuestionnaireData | None:
        """Return the structured questionnaire stored in `notes`, if any.

        The structured format is recognised by the presence of
        `section1_energy_level`. Anything else (plain text notes, other JSON) means
        the questionnaire uses the legacy scalar fields.
        """
        if not self.notes:
            return None
        try:
            parsed = json.loads(self.notes)
        except json.JSONDecodeError:
            return None
        if not isinstance(parsed, dict) or "section1_energy_level" not in parsed:
            return None
        return StructuredQuestionnaireData.model_validate(parsed)


class Client(BaseModel):
    id: int
    first_name: str
    last_name: str
    date_of_birth: date | None = None

    def age_on(self, today: date) -> int | None:
        if self.date_of_birth is None:
            return None
        dob = self.date_of_birth
        had_birthday = (today.month, today.day) >= (dob.month, dob.day)
        return today.year - dob.year - (0 if had_birthday else 1)


class SegmentMeasurement(BaseModel):
    muscle_mass_lbs: float | None = None
    fat_mass_lbs: float | None = None
    percent_fat: float | None = None


class BodyScan(BaseModel):
    """Body-composition scan (InBody style)."""

    id: int
    client_id: int
    scan_date: date | None = None
    weight_lbs: float | None = None
    smm_lbs: float | None = None
    body_fat_mass_lbs: float | None = None
    bmi: float | None = None
    percent_body_fat: float | None = None
    segment_analysis: dict[str, SegmentMeasurement] | None = None
    verified: bool = False


class PlanStructure(BaseModel):
    model_config = ConfigDict(extra="allow")

    archetype: str | None = None
    description: str | None = None
    weeks: int | None = None
    training_methods: list[str] = Field(default_factory=list)
    weekly_structure: dict[str, str] = Field(default_factory=dict)
    progression_strategy: str | None = None
    periodization_approach: str | None = None


class RecommendationStructure(BaseModel):
    """Stage-1 output: persona, cadence and plan skeleton."""

    model_config = ConfigDict(frozen=True)

    client_type: str
    client_type_reasoning: str | None = None
    sessions_per_week: int
    session_length_minutes: int | None = None
    training_style: str | None = None
    plan_structure: PlanStructure = Field(default_factory=PlanStructure)
    ai_reasoning: str | None = None


class Recommendation(BaseModel):
    id: int
    client_id: int
    questionnaire_id: int | None = None
    client_type: str
    sessions_per_week: int
    session_length_minutes: int | None = None
    training_style: str | None = None
    plan_structure: PlanStructure = Field(default_factory=PlanStructure)
    ai_reasoning: str | None = None
    current_week: int = 1

    def to_structure(self) -> RecommendationStructure:
        return RecommendationStructure(
            client_type=self.client_type,
            sessions_per_week=self.sessions_per_week,
            session_length_minutes=self.session_length_minutes,
            training_style=self.training_style,
            plan_structure=self.plan_structure,
            ai_reasoning=self.ai_reasoning,
        )


class Exercise(BaseModel):
    """One prescribed exercise.

    Models write prescriptions loosely ("weight": 60, "rir": "1-2",
    "rest_seconds": "60-90"), so numeric fields also accept text and bare
    numbers in text fields are kept as strings.
    """

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    name: str = Field(min_length=1)
    sets: int | str | None = None
    reps: int | str | None = None
    weight: str | None = None
    rest_seconds: int | str | None = None
    notes: str | None = None
    tempo: str | None = None
    rir: int | str | None = None


class WorkoutData(BaseModel):
    model_config = ConfigDict(extra="allow")

    exercises: list[Exercise]
    warmup: list[Exercise] | None = None
    cooldown: list[Exercise] | None = None
    total_duration_minutes: int | str | None = None
    focus_areas: list[str] | None = None
    notes: str | None = None


class GeneratedWorkout(BaseModel):
    """One session prescription produced by the workout stage."""

    week_number: int
    session_number: int
    workout_name: str | None = None
    workout_data: WorkoutData
    workout_reasoning: str | None = None


class Workout(GeneratedWorkout):
    """A stored workout as read back from the persistence collaborator."""

    id: int
    recommendation_id: int
    status: WorkoutStatus = WorkoutStatus.SCHEDULED


class ActualExercisePerformance(BaseModel):
    model_config = ConfigDict(extra="allow")

    exercise_name: str
    sets_completed: int | None = None
    reps_completed: int | str | None = None
    weight_used: str | None = None
    rir: int | None = None
    rounds_completed: int | None = None
    notes: str | None = None
    rest_taken_seconds: int | None = None


class ActualWorkoutPerformance(BaseModel):
    exercises: list[ActualExercisePerformance] = Field(default_factory=list)
    warmup_completed: bool | None = None
    cooldown_completed: bool | None = None
    total_duration_minutes: int | None = None
    modifications_made: str | None = None


class ActualWorkout(BaseModel):
    """Logged performance for one workout."""

    id: int
    workout_id: int
    actual_performance: ActualWorkoutPerformance = Field(default_factory=ActualWorkoutPerformance)
    session_notes: str | None = None
    overall_rir: int | None = None
    client_energy_level: int | None = None
    trainer_observations: str | None = None
    completed_at: datetime | None = None
