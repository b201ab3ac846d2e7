"""Prompt builders for the structure, week-1 and progressive stages.

Every builder returns chat messages (system + user). The model is always asked
for a single JSON object; the response parser copes with anything else.
"""

from __future__ import annotations

import json
import re

from plangen.domain.models import BodyScan, Questionnaire, RecommendationStructure, StructuredQuestionnaireData
from plangen.llm.client import Message
from plangen.planning.archetypes import format_archetypes
from plangen.planning.context import GenerationContext

STRUCTURE_SYSTEM_PROMPT = (
    "You are an expert personal trainer. Respond with ONLY valid JSON, no markdown, no additional text."
)

WORKOUT_SYSTEM_PROMPT = (
    "You are an expert personal trainer. Respond with ONLY valid JSON, no markdown, no additional text. "
    "All strings must be properly escaped. Generate workouts for the requested week only."
)

STRUCTURE_OUTPUT_EXAMPLE = {
    "client_type": "The [Persona Name]",
    "client_type_reasoning": "Why this persona was selected...",
    "sessions_per_week": 3,
    "session_length_minutes": 60,
    "training_style": "Description of the training approach...",
    "plan_structure": {
        "archetype": "The [Persona Name]",
        "description": "Brief description",
        "weeks": 6,
        "training_methods": ["Method 1", "Method 2", "Method 3"],
        "weekly_structure": {
            "week1_2": "Focus of weeks 1-2",
            "week3_4": "Focus of weeks 3-4",
            "week5_6": "Focus of weeks 5-6",
        },
        "progression_strategy": "How the program progresses",
        "periodization_approach": "Type of periodization used",
    },
    "ai_reasoning": "Reasoning for the overall program design...",
}


def _workout_output_example(week_number: int) -> dict:
    return {
        "workouts": [
            {
                "week_number": week_number,
                "session_number": 1,
                "workout_name": "Upper Body Strength",
                "workout_data": {
                    "exercises": [
                        {
                            "name": "Barbell Bench Press",
                            "sets": 4,
                            "reps": "6-8",
                            "weight": "60 kg",
                            "rest_seconds": 180,
                            "notes": "Controlled tempo",
                            "rir": 2,
                        }
                    ],
                    "warmup": [{"name": "Light Cardio", "notes": "5 minutes"}],
                    "cooldown": [{"name": "Static Stretching", "notes": "Chest and shoulders"}],
                    "total_duration_minutes": 60,
                    "focus_areas": ["upper body", "push", "strength"],
                },
                "workout_reasoning": "Why this session...",
            }
        ]
    }


def _score(value: int | None) -> str:
    return f"{value}/10" if value is not None else "N/A"


def _structured_sections(data: StructuredQuestionnaireData) -> list[str]:
    lines = [
        "### Section 1 - Starting Point",
        f"- Energy Level: {_score(data.section1_energy_level)}",
        f"- Exercise Consistency: {_score(data.section1_exercise_consistency)}",
        f"- Strength Confidence: {_score(data.section1_strength_confidence)}",
    ]
    if data.section1_limiting_factors:
        lines.append(f"- Limiting Factors: {data.section1_limiting_factors}")

    lines.extend([
        "",
        "### Section 2 - Motivation & Mindset",
        f"- Motivation: {_score(data.section2_motivation)}",
        f"- Discipline: {_score(data.section2_discipline)}",
        f"- Support Level: {_score(data.section2_support_level)}",
    ])
    if data.section2_what_keeps_going:
        lines.append(f"- What Keeps Going: {data.section2_what_keeps_going}")

    lines.extend([
        "",
        "### Section 3 - Body & Movement",
        f"- Pain Limitations: {_score(data.section3_pain_limitations)}",
        f"- Mobility Confidence: {_score(data.section3_mobility_confidence)}",
        f"- Strength Comparison: {_score(data.section3_strength_comparison)}",
        "",
        "### Section 4 - Nutrition & Recovery",
        f"- Nutrition Alignment: {_score(data.section4_nutrition_alignment)}",
        f"- Meal Consistency: {_score(data.section4_meal_consistency)}",
        f"- Sleep Quality: {_score(data.section4_sleep_quality)}",
        f"- Stress Level: {_score(data.section4_stress_level)}",
        "",
        "### Section 5 - Identity & Self-Perception",
        f"- Body Connection: {_score(data.section5_body_connection)}",
        f"- Appearance Satisfaction: {_score(data.section5_appearance_satisfaction)}",
        f"- Motivation Driver: {_score(data.section5_motivation_driver)}",
        f"- Sustainability Confidence: {_score(data.section5_sustainability_confidence)}",
    ])
    if data.section5_success_vision:
        lines.append(f"- Success Vision: {data.section5_success_vision}")
    return lines


def _legacy_answers(questionnaire: Questionnaire) -> list[str]:
    def value(item: object) -> str:
        if item is None or item == "" or item == []:
            return "N/A"
        if isinstance(item, list):
            return ", ".join(str(part) for part in item)
        return str(item)

    lines = [
        f"- Primary Goal: {value(questionnaire.primary_goal)}",
        f"- Secondary Goals: {value(questionnaire.secondary_goals)}",
        f"- Experience Level: {value(questionnaire.experience_level)}",
        f"- Preferred Training Style: {value(questionnaire.preferred_training_style)}",
        f"- Available Days Per Week: {value(questionnaire.available_days_per_week)}",
        f"- Preferred Session Length: {value(questionnaire.preferred_session_length)} minutes",
        f"- Time Preferences: {value(questionnaire.time_preferences)}",
        f"- Equipment Access: {value(questionnaire.fitness_equipment_access)}",
        f"- Activity Level: {value(questionnaire.activity_level)}",
        f"- Stress Level: {value(questionnaire.stress_level)}",
        f"- Sleep Quality: {value(questionnaire.sleep_quality)}",
        f"- Nutrition Habits: {value(questionnaire.nutrition_habits)}",
    ]
    if questionnaire.injury_history:
        lines.append(f"- Injury History: {questionnaire.injury_history}")
    if questionnaire.medical_conditions:
        lines.append(f"- Medical Conditions: {questionnaire.medical_conditions}")
    if questionnaire.notes:
        lines.append(f"- Notes: {questionnaire.notes}")
    return lines


def format_questionnaire(questionnaire: Questionnaire) -> str:
    """Render questionnaire answers, using the structured format when present."""
    structured = questionnaire.structured_data()
    lines = ["## Client Questionnaire Data", ""]
    if structured is not None:
        lines.extend(_structured_sections(structured))
    else:
        lines.extend(_legacy_answers(questionnaire))
    return "\n".join(lines)


def format_body_metrics(scan: BodyScan | None) -> str | None:
    """Render body-composition metrics, or None when there is no scan."""
    if scan is None:
        return None

    lines = ["## Body Composition"]
    if scan.scan_date is not None:
        verified = "verified" if scan.verified else "unverified"
        lines.append(f"- Scan Date: {scan.scan_date.isoformat()} ({verified})")
    metrics = [
        ("Weight", scan.weight_lbs, "lbs"),
        ("Skeletal Muscle Mass", scan.smm_lbs, "lbs"),
        ("Body Fat Mass", scan.body_fat_mass_lbs, "lbs"),
        ("BMI", scan.bmi, ""),
        ("Percent Body Fat", scan.percent_body_fat, "%"),
    ]
    for label, amount, unit in metrics:
        if amount is not None:
            suffix = f" {unit}" if unit and unit != "%" else unit
            lines.append(f"- {label}: {amount:g}{suffix}")

    if scan.segment_analysis:
        lines.append("- Segment Analysis:")
        for segment, measurement in scan.segment_analysis.items():
            parts = []
            if measurement.muscle_mass_lbs is not None:
                parts.append(f"muscle {measurement.muscle_mass_lbs:g} lbs")
            if measurement.fat_mass_lbs is not None:
                parts.append(f"fat {measurement.fat_mass_lbs:g} lbs")
            if measurement.percent_fat is not None:
                parts.append(f"{measurement.percent_fat:g}% fat")
            if parts:
                lines.append(f"  - {segment}: {', '.join(parts)}")

    return "\n".join(lines)


def _client_profile(context: GenerationContext) -> str:
    sections = []
    age = context.resolved_age()
    if age is not None:
        sections.append(f"## Client Profile\n- Age: {age}")
    body = format_body_metrics(context.body_scan)
    if body:
        sections.append(body)
    sections.append(format_questionnaire(context.questionnaire))
    return "\n\n".join(sections)


_WEEK_KEY_RE = re.compile(r"week_?(\d+)(?:\D+(\d+))?", re.IGNORECASE)


def weekly_focus(structure: RecommendationStructure, week_number: int) -> str | None:
    """Find the weekly-structure narrative covering `week_number` (keys like "week3_4")."""
    for key, narrative in structure.plan_structure.weekly_structure.items():
        match = _WEEK_KEY_RE.fullmatch(key.strip())
        if not match:
            continue
        first = int(match.group(1))
        last = int(match.group(2)) if match.group(2) else first
        if first <= week_number <= last:
            return narrative
    return None


def _structure_summary(structure: RecommendationStructure) -> str:
    plan = structure.plan_structure
    lines = [
        "## Plan",
        f"**Selected Persona:** {structure.client_type}",
        f"**Sessions Per Week:** {structure.sessions_per_week}",
        f"**Session Length:** {structure.session_length_minutes or 'N/A'} minutes",
        f"**Training Style:** {structure.training_style or 'N/A'}",
    ]
    if plan.training_methods:
        lines.append(f"**Training Methods:** {', '.join(plan.training_methods)}")
    if plan.progression_strategy:
        lines.append(f"**Progression Strategy:** {plan.progression_strategy}")
    if plan.periodization_approach:
        lines.append(f"**Periodization:** {plan.periodization_approach}")
    return "\n".join(lines)


def build_structure_messages(context: GenerationContext, total_weeks: int = 6) -> list[Message]:
    """Build the stage-1 prompt: pick a persona and design the plan skeleton.

    Args:
        context: Client context
        total_weeks: Plan length in weeks

    Returns:
        System and user messages
    """
    prompt_parts = [
        f"You are an expert personal trainer designing a {total_weeks}-week training program for a client.",
        "",
        "## Available Client Personas",
        "",
        format_archetypes(),
        "",
        _client_profile(context),
        "",
        "## Instructions",
        "1. Select the ONE client persona that best matches this client and explain why.",
        "2. Design the plan around that persona's training methods and the client's answers "
        "(energy, motivation, limitations, body composition).",
        "3. Choose sessions per week (typically 2-6) and session length in minutes (typically 30-90).",
        f"4. Describe a {total_weeks}-week structure with a progression strategy and periodization approach.",
        "",
        "## Output Format",
        "Respond with a JSON object with exactly this structure:",
        json.dumps(STRUCTURE_OUTPUT_EXAMPLE, indent=2),
        "",
        "CRITICAL: Respond with ONLY valid JSON, no markdown, no additional text.",
    ]
    return [
        {"role": "system", "content": STRUCTURE_SYSTEM_PROMPT},
        {"role": "user", "content": "\n".join(prompt_parts)},
    ]


def _workout_rules(week_number: int, sessions: int) -> list[str]:
    return [
        f"- Generate exactly {sessions} workouts, sessions 1-{sessions}, all with \"week_number\": {week_number}",
        f"- Do NOT generate workouts for any week other than week {week_number}",
        "- Each exercise must have at least a name; use actual exercise names",
        "- Give sets, reps, load guidance, rest periods and target RIR (reps in reserve)",
        "- Include warmup and cooldown when appropriate",
        "- Keep notes and reasoning concise to stay within the output limit",
        "- All strings must be properly escaped",
    ]


def build_week_one_messages(
    structure: RecommendationStructure,
    context: GenerationContext,
    total_weeks: int = 6,
) -> list[Message]:
    """Build the stage-2 prompt: week-1 workouts for the chosen structure."""
    focus = weekly_focus(structure, 1)
    prompt_parts = [
        f"You are an expert personal trainer generating detailed workouts for WEEK 1 of a "
        f"{total_weeks}-week training program.",
        "",
        _structure_summary(structure),
    ]
    if focus:
        prompt_parts.append(f"**Week 1 Focus:** {focus}")
    prompt_parts.extend([
        "",
        _client_profile(context),
        "",
        "## Instructions",
        "These are foundational workouts that establish the program. Make them realistic and "
        "achievable for the client's level.",
        *_workout_rules(1, structure.sessions_per_week),
        "",
        "## Output Format",
        json.dumps(_workout_output_example(1), indent=2),
        "",
        "CRITICAL: Respond with ONLY valid JSON.",
    ])
    return [
        {"role": "system", "content": WORKOUT_SYSTEM_PROMPT},
        {"role": "user", "content": "\n".join(prompt_parts)},
    ]


def build_progressive_messages(
    structure: RecommendationStructure,
    context: GenerationContext,
    week_number: int,
    performance_history: str,
    total_weeks: int = 6,
) -> list[Message]:
    """Build the progressive-week prompt.

    Args:
        structure: Plan structure from stage 1
        context: Client context
        week_number: Target week (2 or later)
        performance_history: Narrative of proposed vs actual for every prior week
        total_weeks: Plan length in weeks

    Returns:
        System and user messages
    """
    focus = weekly_focus(structure, week_number)
    prompt_parts = [
        f"You are an expert personal trainer generating workouts for WEEK {week_number} of a "
        f"{total_weeks}-week training program, based on how the client actually performed so far.",
        "",
        _structure_summary(structure),
    ]
    if focus:
        prompt_parts.append(f"**Week {week_number} Focus:** {focus}")
    prompt_parts.extend([
        "",
        _client_profile(context),
        "",
        "## Performance History",
        performance_history,
        "",
        "## Instructions",
        f"Adjust difficulty and volume for week {week_number} from the performance history while keeping "
        "the plan's periodization and the weekly focus above.",
        "- Where the client reached failure (RIR 0) on every logged set, reduce the load",
        "- Where every logged set had RIR 3 or more, progress the load or volume",
        "- Skipped or unlogged sessions carry no performance signal; progress those exercises conservatively",
        *_workout_rules(week_number, structure.sessions_per_week),
        "",
        "## Output Format",
        json.dumps(_workout_output_example(week_number), indent=2),
        "",
        "CRITICAL: Respond with ONLY valid JSON.",
    ])
    return [
        {"role": "system", "content": WORKOUT_SYSTEM_PROMPT},
        {"role": "user", "content": "\n".join(prompt_parts)},
    ]
