from datetime import date

import pytest

from tabi.models.request_models import MessageRole, PlanOptions
from tabi.prompts.trip_prompts import (
    build_activity_suggestion_prompt,
    build_trip_planning_prompt,
    validate_prompt_input,
)
from tabi.utils.config import get_settings


@pytest.mark.parametrize("text", [None, "", "  ", "ab", "  ab  ", 42, "x" * 501])
def test_rejects_invalid_input(text):
    result = validate_prompt_input(text)
    assert result["valid"] is False
    assert result["error"]
    assert result["sanitized_input"] is None


@pytest.mark.parametrize("text", ["abc", "  abc  ", "x" * 500, "  " + "x" * 500 + "  "])
def test_accepts_input_within_bounds_after_trim(text):
    result = validate_prompt_input(text)
    assert result["valid"] is True
    assert result["sanitized_input"] == text.strip()


def test_planning_prompt_message_roles_and_settings():
    prompt = build_trip_planning_prompt("5-day trip to Lisbon", PlanOptions(), today=date(2026, 3, 1))

    assert [m.role for m in prompt.messages] == [MessageRole.SYSTEM, MessageRole.USER, MessageRole.SYSTEM]
    assert prompt.temperature == 0.7
    assert prompt.response_format == {"type": "json_object"}
    assert prompt.max_tokens > 0
    assert prompt.model

    assert len(prompt.system_instructions()) == 2
    assert [m.role for m in prompt.conversation()] == [MessageRole.USER]


def test_planning_prompt_uses_configured_temperature(monkeypatch):
    monkeypatch.setattr(get_settings(), "GENERATION_TEMPERATURE", 0.3)

    prompt = build_trip_planning_prompt("5-day trip to Lisbon")

    assert prompt.temperature == 0.3


def test_planning_prompt_embeds_schema_contract():
    prompt = build_trip_planning_prompt("5-day trip to Lisbon", PlanOptions(max_days=9), today=date(2026, 3, 1))
    system_text = prompt.messages[0].content
    format_text = prompt.messages[2].content

    assert "Trip name: 1-100 characters" in system_text
    assert "Location: 1-100 characters" in system_text
    assert "Description: max 500 characters" in system_text
    assert "Activity titles: 1-100 characters" in system_text
    assert "Activity descriptions: 1-300 characters" in system_text
    assert "YYYY-MM-DD" in system_text
    assert "HH:MM" in system_text
    assert "at most 9 days" in system_text
    for category in ("sightseeing", "dining", "shopping", "transportation", "accommodation"):
        assert category in format_text
    assert '"itinerary"' in format_text
    assert "2026-03-01" in prompt.messages[1].content


def test_planning_prompt_without_itinerary():
    prompt = build_trip_planning_prompt("Weekend in Porto", PlanOptions(include_itinerary=False))
    assert '"itinerary"' not in prompt.messages[2].content
    assert "no detailed itinerary" in prompt.messages[1].content


def test_optional_hints_only_when_supplied():
    plain = build_trip_planning_prompt("Weekend in Porto", PlanOptions())
    assert "Budget consideration" not in plain.messages[1].content
    assert "Travel style" not in plain.messages[1].content

    hinted = build_trip_planning_prompt("Weekend in Porto", PlanOptions(budget="mid-range", travel_style="relaxed"))
    assert "Budget consideration: mid-range" in hinted.messages[1].content
    assert "Travel style: relaxed" in hinted.messages[1].content


def test_ai_prompt_echo_is_bounded():
    long_input = "y" * 450
    prompt = build_trip_planning_prompt(long_input, PlanOptions())
    assert ("y" * 200) in prompt.messages[2].content
    assert ("y" * 201) not in prompt.messages[2].content


def test_activity_suggestion_prompt():
    trip = {
        "location": "Kyoto, Japan",
        "start_date": "2026-11-02",
        "end_date": "2026-11-05",
        "description": "Temples and maple leaves",
    }
    prompt = build_activity_suggestion_prompt(trip, "tea ceremonies")

    assert [m.role for m in prompt.messages] == [MessageRole.SYSTEM, MessageRole.USER, MessageRole.SYSTEM]
    assert "Kyoto, Japan" in prompt.messages[1].content
    assert "November 02 - November 05, 2026 (4 days)" in prompt.messages[1].content
    assert "3-5" in prompt.messages[1].content
    assert '"activities"' in prompt.messages[2].content
    assert prompt.temperature == 0.8
