"""
Parsing and validation of generated trip plans.

Generated text is untrusted: it is parsed into a strict internal shape and
every field is checked against the same business rules used for manually
created trips. An invalid itinerary never fails the whole plan; the trip is
kept and the itinerary is dropped.
"""

import json
import logging
import math
import re
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from tabi.models.response_models import (
    ActivitySuggestion,
    ParsedActivity,
    ParsedTrip,
    ParsedTripPlan,
    ParseResult,
    PlanMetadata,
)
from tabi.utils.errors import ErrorCategory
from tabi.utils.formatters import sanitize_ai_text
from tabi.utils.trip_constants import (
    ACTIVITY_VALIDATION,
    FALLBACK_ACTIVITY_CATEGORY,
    GENERATED_ACTIVITY_CATEGORIES,
    TRIP_VALIDATION,
)
from tabi.utils.validators import TripDataValidator

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


def _strip_code_fence(text: str) -> str:
    match = _FENCE_RE.match(text.strip())
    return match.group(1) if match else text.strip()


def parse_response_structure(response_text: Any) -> Dict[str, Any]:
    """Deserialize generated text and check it carries a trip object.

    Returns ``{'valid', 'data', 'error', 'original_error'}``.
    """
    if not isinstance(response_text, str) or not response_text.strip():
        return {'valid': False, 'data': None, 'error': "Empty response from AI", 'original_error': None}

    try:
        data = json.loads(_strip_code_fence(response_text))
    except json.JSONDecodeError as e:
        return {'valid': False, 'data': None, 'error': "Invalid JSON response from AI", 'original_error': str(e)}

    if not isinstance(data, dict):
        return {'valid': False, 'data': None, 'error': "Response must be a valid object", 'original_error': None}
    if not isinstance(data.get("trip"), dict):
        return {'valid': False, 'data': data, 'error': 'Response must contain a "trip" object', 'original_error': None}

    return {'valid': True, 'data': data, 'error': None, 'original_error': None}


def parse_trip_data(trip_data: Dict[str, Any], today: Optional[date] = None) -> Dict[str, Any]:
    """Validate the trip object of a response. Returns ``{'success', 'data' | 'error'}``."""
    errors: List[str] = []
    parsed: Dict[str, Any] = {}

    for field in ("name", "location"):
        value = trip_data.get(field)
        if not value or not isinstance(value, str):
            errors.append(TripDataValidator.validate_text_field(None, field))
            continue
        error = TripDataValidator.validate_text_field(value, field)
        if error:
            errors.append(error)
        else:
            parsed[field] = value.strip()

    date_check = TripDataValidator.validate_dates(trip_data.get("startDate"), trip_data.get("endDate"), today)
    if date_check['valid']:
        parsed["start_date"] = date_check['start_date']
        parsed["end_date"] = date_check['end_date']
    else:
        errors.extend(date_check['errors'])

    description = trip_data.get("description")
    if description and isinstance(description, str):
        parsed["description"] = description.strip()[:TRIP_VALIDATION["description"]["max_length"]].rstrip()
    else:
        parsed["description"] = ""

    ai_prompt = trip_data.get("aiPrompt")
    parsed["ai_generated"] = True
    parsed["ai_prompt"] = ai_prompt if isinstance(ai_prompt, str) else ""
    generated_at = trip_data.get("generatedAt")
    parsed["generated_at"] = generated_at if isinstance(generated_at, str) and generated_at else datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

    if errors:
        return {'success': False, 'error': "; ".join(errors)}
    return {'success': True, 'data': ParsedTrip(**parsed)}


def parse_activity_times(activity: Dict[str, Any]) -> Dict[str, Any]:
    error = TripDataValidator.validate_activity_times(activity.get("startTime"), activity.get("endTime"))
    if error:
        return {'success': False, 'error': error}
    return {'success': True, 'start_time': activity["startTime"], 'end_time': activity["endTime"]}


def parse_activity(activity: Any) -> Dict[str, Any]:
    if not isinstance(activity, dict):
        return {'success': False, 'error': "Activity must be an object"}

    errors = TripDataValidator.collect_errors(
        TripDataValidator.validate_activity_text(activity.get("title"), "title", "Activity title"),
        TripDataValidator.validate_activity_text(activity.get("description"), "description", "Activity description"),
    )
    times = parse_activity_times(activity)
    if not times['success']:
        errors.append(times['error'])
    if errors:
        return {'success': False, 'error': "; ".join(errors)}

    location = activity.get("location")
    category = activity.get("category")
    return {
        'success': True,
        'data': ParsedActivity(
            title=activity["title"].strip(),
            description=activity["description"].strip(),
            start_time=times['start_time'],
            end_time=times['end_time'],
            location=location.strip() if isinstance(location, str) and location.strip() else None,
            category=category if category in GENERATED_ACTIVITY_CATEGORIES else FALLBACK_ACTIVITY_CATEGORY,
        )
    }


def parse_day_activities(activities: Any, day_number: int) -> Dict[str, Any]:
    if not isinstance(activities, list):
        return {'success': False, 'error': f"Day {day_number} activities must be an array"}

    parsed: List[ParsedActivity] = []
    errors: List[str] = []
    for index, activity in enumerate(activities):
        result = parse_activity(activity)
        if result['success']:
            parsed.append(result['data'])
        else:
            errors.append(f"Activity {index + 1}: {result['error']}")

    if errors:
        return {'success': False, 'error': "; ".join(errors)}
    return {'success': True, 'data': parsed}


def parse_itinerary_data(itinerary_data: Any, trip: ParsedTrip) -> Dict[str, Any]:
    """Validate ``day_N`` entries that fall within the trip's length; keys past it are ignored"""
    if not isinstance(itinerary_data, dict):
        return {'success': False, 'error': "Itinerary must be an object"}

    expected_days = math.ceil((trip.end_date - trip.start_date).days) + 1
    parsed: Dict[str, List[ParsedActivity]] = {}
    errors: List[str] = []

    for day_number in range(1, expected_days + 1):
        day_key = f"day_{day_number}"
        if day_key not in itinerary_data:
            continue
        result = parse_day_activities(itinerary_data[day_key], day_number)
        if result['success']:
            parsed[day_key] = result['data']
        else:
            errors.append(f"Day {day_number}: {result['error']}")

    if errors:
        return {'success': False, 'error': "; ".join(errors)}
    return {'success': True, 'data': parsed}


def validate_trip_plan(data: Dict[str, Any], today: Optional[date] = None) -> ParseResult:
    """Field validation of a structurally valid response"""
    trip_result = parse_trip_data(data["trip"], today)
    if not trip_result['success']:
        logger.warning("[parser] trip validation failed", extra={"error": trip_result['error']})
        return ParseResult.fail(
            f"Trip data validation failed: {trip_result['error']}",
            category=ErrorCategory.VALIDATION,
            code="validation-failed",
        )
    trip: ParsedTrip = trip_result['data']

    itinerary = None
    if data.get("itinerary"):
        itinerary_result = parse_itinerary_data(data["itinerary"], trip)
        if itinerary_result['success']:
            itinerary = itinerary_result['data'] or None
        else:
            logger.warning(
                "[parser] itinerary parsing failed, proceeding with trip data only",
                extra={"error": itinerary_result['error']}
            )

    return ParseResult.ok(ParsedTripPlan(
        trip=trip,
        itinerary=itinerary,
        metadata=PlanMetadata(has_itinerary=itinerary is not None),
    ))


def parse_trip_planning_response(response_text: Any, today: Optional[date] = None) -> ParseResult:
    """Raw generated text to a validated plan, or a categorized failure"""
    structure = parse_response_structure(response_text)
    if not structure['valid']:
        logger.warning(
            "[parser] response structure invalid",
            extra={"error": structure['error'], "original_error": structure['original_error']}
        )
        return ParseResult.fail(
            structure['error'],
            category=ErrorCategory.PARSING,
            code="parsing-failed",
            original_error=structure['original_error'],
        )
    return validate_trip_plan(structure['data'], today)


def parse_activity_suggestions(response_text: Any) -> Dict[str, Any]:
    """Parse an activity suggestion response; invalid suggestions are skipped"""
    if not isinstance(response_text, str) or not response_text.strip():
        return {'success': False, 'error': "Empty response from AI", 'activities': []}
    try:
        data = json.loads(_strip_code_fence(response_text))
    except json.JSONDecodeError as e:
        return {'success': False, 'error': f"Invalid JSON response from AI: {e}", 'activities': []}

    raw = data.get("activities") if isinstance(data, dict) else None
    if not isinstance(raw, list):
        return {'success': False, 'error': 'Response must contain an "activities" array', 'activities': []}

    activities: List[ActivitySuggestion] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        errors = TripDataValidator.collect_errors(
            TripDataValidator.validate_activity_text(item.get("title"), "title", "Activity title"),
            TripDataValidator.validate_activity_text(item.get("description"), "description", "Activity description"),
        )
        if errors:
            logger.debug("[parser] skipping suggestion", extra={"errors": errors})
            continue
        try:
            activities.append(ActivitySuggestion(
                title=item["title"].strip(),
                description=item["description"].strip(),
                suggested_duration=item.get("suggestedDuration") if isinstance(item.get("suggestedDuration"), str) else None,
                location=sanitize_ai_text(item.get("location"), ACTIVITY_VALIDATION["location"]["max_length"]) or None,
                category=item.get("category") if item.get("category") in GENERATED_ACTIVITY_CATEGORIES else FALLBACK_ACTIVITY_CATEGORY,
                estimated_cost=item.get("estimatedCost") if isinstance(item.get("estimatedCost"), str) else None,
                best_time_to_visit=item.get("bestTimeToVisit") if isinstance(item.get("bestTimeToVisit"), str) else None,
            ))
        except ValidationError as e:
            logger.debug("[parser] skipping suggestion", extra={"error": str(e)})

    if not activities:
        return {'success': False, 'error': "No valid activity suggestions in response", 'activities': []}
    return {'success': True, 'error': None, 'activities': activities}
