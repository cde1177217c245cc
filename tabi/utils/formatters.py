import re
from typing import Optional, Any
from datetime import date

from tabi.utils.trip_constants import calculate_trip_days, to_date

_SCRIPT_BLOCK_RE = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]*>")
_JS_SCHEME_RE = re.compile(r"javascript:", re.IGNORECASE)

class TextSanitizer:
    """Clean free text that came from generated content before it is stored"""

    @staticmethod
    def strip_markup(text: str) -> str:
        """Remove script blocks, markup tags and javascript: scheme prefixes"""
        cleaned = _SCRIPT_BLOCK_RE.sub("", text)
        cleaned = _TAG_RE.sub("", cleaned)
        cleaned = _JS_SCHEME_RE.sub("", cleaned)
        return cleaned.strip()

    @staticmethod
    def truncate_at_word_boundary(text: str, max_length: int) -> str:
        """Hard-truncate to max_length, cutting at the last space past 80% of the limit"""
        if len(text) <= max_length:
            return text

        truncated = text[:max_length].strip()
        last_space = truncated.rfind(" ")
        if last_space > max_length * 0.8:
            truncated = truncated[:last_space]
        return truncated

    @staticmethod
    def sanitize_ai_text(text: Any, max_length: int = 500) -> str:
        """Sanitize generated text for storage; non-strings become empty"""
        if not text or not isinstance(text, str):
            return ""
        return TextSanitizer.truncate_at_word_boundary(TextSanitizer.strip_markup(text), max_length)


def sanitize_ai_text(text: Any, max_length: int = 500) -> str:
    return TextSanitizer.sanitize_ai_text(text, max_length)


class TripFormatter:
    """Computed text for trips that arrive without a name or description"""

    @staticmethod
    def primary_place(location: Optional[str], default: str) -> str:
        if not location:
            return default
        head = location.split(",")[0].strip()
        return head or default

    @staticmethod
    def fallback_trip_name(location: Optional[str], start_date: Any) -> str:
        start = to_date(start_date) or date.today()
        return f"{TripFormatter.primary_place(location, 'Adventure')} Trip {start.year}"

    @staticmethod
    def fallback_description(location: Optional[str], start_date: Any, end_date: Any) -> str:
        duration = calculate_trip_days(start_date, end_date)
        place = TripFormatter.primary_place(location, "an amazing destination")
        return f"A {duration}-day trip to {place}, planned with AI assistance."

    @staticmethod
    def format_date_range(start_date: date, end_date: date) -> str:
        """Format date range in a user-friendly way"""
        duration = (end_date - start_date).days

        if duration == 0:
            return f"{start_date.strftime('%B %d, %Y')}"
        return f"{start_date.strftime('%B %d')} - {end_date.strftime('%B %d, %Y')} ({duration + 1} days)"
