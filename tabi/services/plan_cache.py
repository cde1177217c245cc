"""
Bounded in-memory cache of successful trip plans, keyed by normalized input.
Entries expire after a TTL; when full, the oldest share of entries is evicted
in one pass.
"""
import hashlib
import json
import logging
import math
import time
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel

from tabi.models.request_models import PlanOptions
from tabi.models.response_models import ParsedTripPlan, TokenUsage

logger = logging.getLogger(__name__)


class CachedPlan(BaseModel):
    """Everything needed to replay a successful plan without a generation call"""
    plan: ParsedTripPlan
    raw_text: str
    usage: Optional[TokenUsage] = None
    response_time_ms: Optional[int] = None
    request_id: Optional[str] = None
    model: Optional[str] = None


class PlanCache:
    def __init__(
        self,
        max_entries: int = 20,
        ttl_seconds: float = 3600,
        evict_fraction: float = 0.25,
        clock: Callable[[], float] = time.time,
    ):
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self.evict_fraction = evict_fraction
        self._clock = clock
        self._entries: Dict[str, tuple[CachedPlan, float]] = {}

    @staticmethod
    def make_key(user_input: str, options: Optional[PlanOptions] = None) -> str:
        """Stable key from trimmed, lower-cased input and the plan options"""
        normalized = (user_input or "").strip().lower()
        options_json = json.dumps((options or PlanOptions()).model_dump(), sort_keys=True, ensure_ascii=False)
        return hashlib.md5(f"{normalized}:{options_json}".encode()).hexdigest()

    def get(self, key: str) -> Optional[CachedPlan]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, created_at = entry
        if self._clock() - created_at > self.ttl_seconds:
            del self._entries[key]
            logger.debug("[cache] entry expired", extra={"key": key})
            return None
        logger.debug("[cache] hit", extra={"key": key})
        return value

    def set(self, key: str, value: CachedPlan):
        if key not in self._entries and len(self._entries) >= self.max_entries:
            self._evict_oldest()
        self._entries[key] = (value, self._clock())

    def _evict_oldest(self):
        count = max(1, math.floor(self.max_entries * self.evict_fraction))
        by_age = sorted(self._entries.items(), key=lambda item: item[1][1])
        for key, _ in by_age[:count]:
            del self._entries[key]
        logger.debug(f"[cache] evicted {count} oldest entries")

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [k for k, (_, created_at) in self._entries.items() if now - created_at > self.ttl_seconds]
        for k in expired:
            del self._entries[k]
        return len(expired)

    def clear(self):
        self._entries.clear()
        logger.info("[cache] cleared")

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Any) -> bool:
        return key in self._entries
