"""
Prompts for AI trip planning and activity suggestions.

Every prompt is a role-tagged message list: a system message describing the
planner's expertise and data rules, the user's request, and a closing system
message with the exact JSON shape the response parser accepts.
"""

from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

from tabi.models.request_models import (
    GenerationMessage,
    GenerationPrompt,
    MessageRole,
    PlanOptions,
)
from tabi.utils.config import get_settings
from tabi.utils.formatters import TripFormatter
from tabi.utils.trip_constants import (
    ACTIVITY_VALIDATION,
    AI_PROMPT_ECHO_LENGTH,
    DATE_FORMAT_HINT,
    GENERATED_ACTIVITY_CATEGORIES,
    PROMPT_INPUT_MAX_LENGTH,
    PROMPT_INPUT_MIN_LENGTH,
    TIME_FORMAT_HINT,
    TRIP_VALIDATION,
    to_date,
)

SUGGESTION_TEMPERATURE = 0.8
SUGGESTION_MAX_TOKENS = 800
JSON_RESPONSE_FORMAT = {"type": "json_object"}

_CATEGORY_CHOICES = "|".join(GENERATED_ACTIVITY_CATEGORIES)


def validate_prompt_input(text: Any) -> Dict[str, Any]:
    """Check user text before any generation call is made"""
    if not text or not isinstance(text, str):
        return {'valid': False, 'error': "Input is required and must be a string", 'sanitized_input': None}

    trimmed = text.strip()
    if len(trimmed) < PROMPT_INPUT_MIN_LENGTH:
        return {'valid': False, 'error': f"Input must be at least {PROMPT_INPUT_MIN_LENGTH} characters long", 'sanitized_input': None}
    if len(trimmed) > PROMPT_INPUT_MAX_LENGTH:
        return {'valid': False, 'error': f"Input must be at most {PROMPT_INPUT_MAX_LENGTH} characters long", 'sanitized_input': None}

    return {'valid': True, 'error': None, 'sanitized_input': trimmed}


def get_trip_planning_system_prompt(max_days: int) -> str:
    """System prompt describing the planner and the data rules it must respect"""
    return f"""You are a professional travel planning expert specializing in detailed, practical trip itineraries. Your task is to convert user requests into structured trip data that matches specific technical requirements.

CRITICAL REQUIREMENTS:
1. Return ONLY valid JSON - no additional text, explanations, or markdown
2. All string fields must respect length limits strictly
3. Dates must be in {DATE_FORMAT_HINT} format
4. Times must be in {TIME_FORMAT_HINT} format (24-hour)
5. All required fields must be present and non-empty

DATA VALIDATION RULES:
- Trip name: 1-{TRIP_VALIDATION['name']['max_length']} characters
- Location: 1-{TRIP_VALIDATION['location']['max_length']} characters
- Description: max {TRIP_VALIDATION['description']['max_length']} characters
- Activity titles: 1-{ACTIVITY_VALIDATION['title']['max_length']} characters
- Activity descriptions: 1-{ACTIVITY_VALIDATION['description']['max_length']} characters
- Activity category: one of {", ".join(GENERATED_ACTIVITY_CATEGORIES)}
- Start date must be before or equal to end date
- Trips last at most {max_days} days
- Dates must be within one year of today
- Activity times must be logical (start before end)

TRAVEL PLANNING EXPERTISE:
- Suggest realistic travel times and locations
- Include diverse activity types (sightseeing, dining, culture, leisure)
- Consider local customs, opening hours, and practical logistics
- Balance busy days with relaxation time
- Suggest appropriate activity durations"""


def get_trip_request_prompt(user_input: str, options: PlanOptions, today: date) -> str:
    lines = [
        f'Plan a trip based on this request: "{user_input}"',
        f"Today's date is {today.isoformat()}.",
    ]
    if options.budget:
        lines.append(f"Budget consideration: {options.budget}")
    if options.travel_style:
        lines.append(f"Travel style: {options.travel_style}")
    if not options.include_itinerary:
        lines.append("Focus on basic trip information only - no detailed itinerary needed.")
    return "\n".join(lines)


def get_trip_format_instructions(user_input: str, options: PlanOptions, generated_at: str) -> str:
    """Exact response shape, including the itinerary section only when requested"""
    echo = user_input[:AI_PROMPT_ECHO_LENGTH].replace('"', "'")
    trip_block = f"""  "trip": {{
    "name": "Trip name (1-{TRIP_VALIDATION['name']['max_length']} chars)",
    "location": "Primary destination (1-{TRIP_VALIDATION['location']['max_length']} chars)",
    "startDate": "{DATE_FORMAT_HINT}",
    "endDate": "{DATE_FORMAT_HINT}",
    "description": "Brief trip overview (max {TRIP_VALIDATION['description']['max_length']} chars)",
    "aiGenerated": true,
    "aiPrompt": "{echo}",
    "generatedAt": "{generated_at}"
  }}"""

    itinerary_block = ""
    if options.include_itinerary:
        itinerary_block = f""",
  "itinerary": {{
    "day_1": [
      {{
        "title": "Activity name (1-{ACTIVITY_VALIDATION['title']['max_length']} chars)",
        "description": "Activity details (1-{ACTIVITY_VALIDATION['description']['max_length']} chars)",
        "startTime": "{TIME_FORMAT_HINT}",
        "endTime": "{TIME_FORMAT_HINT}",
        "location": "Specific location",
        "category": "{_CATEGORY_CHOICES}"
      }}
    ]
  }}"""

    day_note = ""
    if options.include_itinerary:
        day_note = f"\n\nUse one key per trip day (day_1 ... day_N, N at most {options.max_days})."

    return f"""Return ONLY this exact JSON structure with NO additional text:

{{
{trip_block}{itinerary_block}
}}{day_note}"""


def build_trip_planning_prompt(
    user_input: str,
    options: Optional[PlanOptions] = None,
    today: Optional[date] = None,
    max_tokens: Optional[int] = None,
) -> GenerationPrompt:
    """Build the structured payload for a trip planning request.

    ``user_input`` is expected to have passed ``validate_prompt_input``.
    """
    options = options or PlanOptions()
    today = today or date.today()
    settings = get_settings()

    messages = [
        GenerationMessage(role=MessageRole.SYSTEM, content=get_trip_planning_system_prompt(options.max_days)),
        GenerationMessage(role=MessageRole.USER, content=get_trip_request_prompt(user_input, options, today)),
        GenerationMessage(
            role=MessageRole.SYSTEM,
            content=get_trip_format_instructions(user_input, options, datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")),
        ),
    ]
    return GenerationPrompt(
        messages=messages,
        model=settings.GENERATION_MODEL,
        temperature=settings.GENERATION_TEMPERATURE,
        max_tokens=max_tokens or settings.GENERATION_MAX_TOKENS,
        response_format=dict(JSON_RESPONSE_FORMAT),
    )


def _describe_dates(trip: Dict[str, Any]) -> str:
    start = to_date(trip.get("start_date"))
    end = to_date(trip.get("end_date"))
    if not start or not end:
        return "Flexible"
    return TripFormatter.format_date_range(start, end)


def build_activity_suggestion_prompt(trip: Dict[str, Any], activity_request: str) -> GenerationPrompt:
    """Prompt for 3-5 activity suggestions that fit an existing trip"""
    system_prompt = """You are a local travel expert specializing in activity recommendations. Generate activity suggestions that fit within an existing trip plan.

REQUIREMENTS:
- Return ONLY valid JSON - no additional text
- Activities must be location-appropriate
- Times must be realistic and non-overlapping
- Include practical details (duration, location, logistics)"""

    user_prompt = f"""Trip details:
- Destination: {trip.get('location', '')}
- Dates: {_describe_dates(trip)}
- Trip type: {trip.get('description') or 'General travel'}

Activity request: "{activity_request}"

Suggest 3-5 specific activities that match this request."""

    format_instructions = f"""Return ONLY this JSON structure:

{{
  "activities": [
    {{
      "title": "Activity name (1-{ACTIVITY_VALIDATION['title']['max_length']} chars)",
      "description": "Detailed description (1-{ACTIVITY_VALIDATION['description']['max_length']} chars)",
      "suggestedDuration": "X hours",
      "location": "Specific address or area",
      "category": "{_CATEGORY_CHOICES}",
      "estimatedCost": "Budget estimate",
      "bestTimeToVisit": "Morning|Afternoon|Evening|Anytime"
    }}
  ]
}}"""

    return GenerationPrompt(
        messages=[
            GenerationMessage(role=MessageRole.SYSTEM, content=system_prompt),
            GenerationMessage(role=MessageRole.USER, content=user_prompt),
            GenerationMessage(role=MessageRole.SYSTEM, content=format_instructions),
        ],
        model=get_settings().GENERATION_MODEL,
        temperature=SUGGESTION_TEMPERATURE,
        max_tokens=SUGGESTION_MAX_TOKENS,
        response_format=dict(JSON_RESPONSE_FORMAT),
    )
