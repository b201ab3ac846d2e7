import json
from datetime import date

from fakes import STRUCTURE_RESPONSE
from plangen.domain.models import BodyScan, Client, Questionnaire, SegmentMeasurement
from plangen.llm.validation import validate_structure
from plangen.planning.archetypes import CLIENT_ARCHETYPES, get_archetype
from plangen.planning.context import GenerationContext
from plangen.planning.prompts import (
    build_structure_messages,
    format_body_metrics,
    format_questionnaire,
    weekly_focus,
)


def test_archetype_lookup():
    assert len(CLIENT_ARCHETYPES) == 10
    assert get_archetype("The Rebuilder").type == "The Rebuilder"
    assert get_archetype("rebuilder").type == "The Rebuilder"
    assert get_archetype("The Unknown") is None


def test_structured_questionnaire_is_rendered_by_section():
    notes = json.dumps({"section1_energy_level": 4, "section2_motivation": 9, "section5_success_vision": "Hike again"})
    questionnaire = Questionnaire(id=1, client_id=1, notes=notes)

    text = format_questionnaire(questionnaire)

    assert "- Energy Level: 4/10" in text
    assert "- Motivation: 9/10" in text
    assert "- Discipline: N/A" in text
    assert "Success Vision: Hike again" in text
    assert "Primary Goal" not in text


def test_legacy_questionnaire():
    questionnaire = Questionnaire(
        id=1,
        client_id=1,
        primary_goal="Lose fat",
        fitness_equipment_access=["dumbbells", "bands"],
        notes="Prefers mornings",
    )

    text = format_questionnaire(questionnaire)

    assert "- Primary Goal: Lose fat" in text
    assert "- Equipment Access: dumbbells, bands" in text
    assert "- Experience Level: N/A" in text
    assert "- Notes: Prefers mornings" in text


def test_body_metrics():
    scan = BodyScan(
        id=1,
        client_id=1,
        scan_date=date(2026, 1, 15),
        weight_lbs=180.5,
        percent_body_fat=22.0,
        segment_analysis={"right_arm": SegmentMeasurement(muscle_mass_lbs=8.1, percent_fat=18.0)},
    )

    text = format_body_metrics(scan)

    assert "- Scan Date: 2026-01-15 (unverified)" in text
    assert "- Weight: 180.5 lbs" in text
    assert "- Percent Body Fat: 22%" in text
    assert "right_arm: muscle 8.1 lbs, 18% fat" in text
    assert format_body_metrics(None) is None


def test_weekly_focus_ranges():
    structure = validate_structure(STRUCTURE_RESPONSE)
    assert weekly_focus(structure, 1) == "Re-establish movement patterns"
    assert weekly_focus(structure, 4) == "Build load tolerance"
    assert weekly_focus(structure, 6) == "Consolidate strength"
    assert weekly_focus(structure, 7) is None


def test_structure_messages_use_client_age():
    context = GenerationContext(
        questionnaire=Questionnaire(id=1, client_id=1),
        client=Client(id=1, first_name="Ada", last_name="Lee", date_of_birth=date(1970, 12, 31)),
    )

    assert context.resolved_age(date(2026, 12, 30)) == 55
    assert context.resolved_age(date(2026, 12, 31)) == 56

    system, user = build_structure_messages(context, total_weeks=8)
    assert system["role"] == "system"
    assert "8-week training program" in user["content"]
    assert "## Available Client Personas" in user["content"]
