import re
from typing import List, Dict, Any, Optional
from datetime import date

from tabi.utils.trip_constants import (
    ACTIVITY_VALIDATION,
    TIME_PATTERN,
    TRIP_VALIDATION,
    is_within_one_year,
    time_to_minutes,
    to_date,
)

_TIME_RE = re.compile(TIME_PATTERN)

_FIELD_LABELS = {
    "name": "Trip name",
    "location": "Location",
    "description": "Description",
}

class TripDataValidator:
    """Business rules for trips and activities, shared by the parser, the materializer and the stores"""

    @staticmethod
    def validate_text_field(value: Any, field: str) -> Optional[str]:
        """Return an error message for a trip text field, or None when it is acceptable"""
        rules = TRIP_VALIDATION[field]
        label = _FIELD_LABELS.get(field, field)
        if value is None or (isinstance(value, str) and not value.strip()):
            if rules["required"]:
                return f"{label} is required"
            return None
        if not isinstance(value, str):
            return f"{label} must be text"

        length = len(value.strip())
        if length < rules["min_length"] or length > rules["max_length"]:
            if rules["min_length"]:
                return f"{label} must be {rules['min_length']}-{rules['max_length']} characters"
            return f"{label} must be {rules['max_length']} characters or less"
        return None

    @staticmethod
    def validate_dates(start_value: Any, end_value: Any, today: Optional[date] = None) -> Dict[str, Any]:
        """Validate a trip's date pair.

        Both dates must parse, start must not be after end, and both must lie
        within one year of today in either direction. Out-of-window dates are
        rejected rather than clamped.
        """
        if start_value in (None, ""):
            return {'valid': False, 'errors': ["Start date is required"]}
        start = to_date(start_value)
        if start is None:
            return {'valid': False, 'errors': ["Invalid start date format"]}

        if end_value in (None, ""):
            return {'valid': False, 'errors': ["End date is required"]}
        end = to_date(end_value)
        if end is None:
            return {'valid': False, 'errors': ["Invalid end date format"]}

        if start > end:
            return {'valid': False, 'errors': ["Start date must be before or equal to end date"]}

        errors = []
        if not is_within_one_year(start, today):
            errors.append("Start date must be within one year of today")
        if not is_within_one_year(end, today):
            errors.append("End date must be within one year of today")

        return {
            'valid': len(errors) == 0,
            'errors': errors,
            'start_date': start,
            'end_date': end
        }

    @staticmethod
    def validate_trip(trip_data: Dict[str, Any], today: Optional[date] = None) -> Dict[str, Any]:
        """Validate a complete trip document before it is persisted"""
        errors = []
        for field in ("name", "location", "description"):
            error = TripDataValidator.validate_text_field(trip_data.get(field), field)
            if error:
                errors.append(error)

        date_check = TripDataValidator.validate_dates(
            trip_data.get("start_date"), trip_data.get("end_date"), today
        )
        errors.extend(date_check['errors'])

        return {
            'valid': len(errors) == 0,
            'errors': errors
        }

    @staticmethod
    def validate_trip_update(changes: Dict[str, Any], current: Dict[str, Any], today: Optional[date] = None) -> Dict[str, Any]:
        """Validate only the provided fields; dates are checked as a pair against the stored values"""
        errors = []
        for field in ("name", "location", "description"):
            if field in changes:
                error = TripDataValidator.validate_text_field(changes[field], field)
                if error:
                    errors.append(error)

        if "start_date" in changes or "end_date" in changes:
            date_check = TripDataValidator.validate_dates(
                changes.get("start_date", current.get("start_date")),
                changes.get("end_date", current.get("end_date")),
                today
            )
            errors.extend(date_check['errors'])

        return {
            'valid': len(errors) == 0,
            'errors': errors
        }

    @staticmethod
    def validate_activity_times(start_time: Any, end_time: Any) -> Optional[str]:
        if not isinstance(start_time, str) or not _TIME_RE.match(start_time):
            return "Invalid start time format (expected HH:MM)"
        if not isinstance(end_time, str) or not _TIME_RE.match(end_time):
            return "Invalid end time format (expected HH:MM)"
        if time_to_minutes(start_time) >= time_to_minutes(end_time):
            return "Start time must be before end time"
        return None

    @staticmethod
    def validate_activity_text(value: Any, field: str, label: str) -> Optional[str]:
        rules = ACTIVITY_VALIDATION[field]
        if not value or not isinstance(value, str):
            return f"{label} is required"
        length = len(value.strip())
        if length < rules["min_length"] or length > rules["max_length"]:
            return f"{label} must be {rules['min_length']}-{rules['max_length']} characters"
        return None

    @staticmethod
    def collect_errors(*checks: Optional[str]) -> List[str]:
        return [c for c in checks if c]
