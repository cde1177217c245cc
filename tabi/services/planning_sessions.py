import logging
import time
from collections import OrderedDict
from typing import Callable, Optional, Tuple

from tabi.services.plan_cache import PlanCache
from tabi.services.trip_planning_orchestrator import TripPlanningOrchestrator
from tabi.utils.config import get_settings

OrchestratorFactory = Callable[[], TripPlanningOrchestrator]


class PlanningSessionRegistry:
    """One planner per caller session, each with its own plan cache.

    Sessions idle for longer than ``idle_seconds`` are dropped, and when more
    than ``max_sessions`` are open the least recently used one is closed.
    """

    def __init__(
        self,
        factory: OrchestratorFactory,
        max_sessions: int = 1000,
        idle_seconds: float = 3600,
        clock: Callable[[], float] = time.time,
    ):
        self._factory = factory
        self.max_sessions = max(1, max_sessions)
        self.idle_seconds = idle_seconds
        self._clock = clock
        self._sessions: "OrderedDict[str, Tuple[TripPlanningOrchestrator, float]]" = OrderedDict()
        self.logger = logging.getLogger(__name__)

    def get(self, session_id: str, user_id: Optional[str]) -> TripPlanningOrchestrator:
        """Planner for ``session_id``, switched to ``user_id``"""
        self.purge_idle()
        entry = self._sessions.get(session_id)
        if entry is None:
            orchestrator = self._factory()
            self.logger.debug(f"[planner] new session {session_id}")
        else:
            orchestrator = entry[0]
        self._sessions[session_id] = (orchestrator, self._clock())
        self._sessions.move_to_end(session_id)

        while len(self._sessions) > self.max_sessions:
            oldest_id = next(iter(self._sessions))
            self.close(oldest_id)
            self.logger.info(f"[planner] session limit reached, closed {oldest_id}")

        orchestrator.set_user(user_id)
        return orchestrator

    def peek(self, session_id: str) -> Optional[TripPlanningOrchestrator]:
        entry = self._sessions.get(session_id)
        return entry[0] if entry else None

    def close(self, session_id: str) -> bool:
        entry = self._sessions.pop(session_id, None)
        if entry is None:
            return False
        entry[0].reset()
        return True

    def purge_idle(self) -> int:
        """Close sessions not used within ``idle_seconds``; returns how many"""
        cutoff = self._clock() - self.idle_seconds
        idle = [sid for sid, (_, last_used) in self._sessions.items() if last_used < cutoff]
        for session_id in idle:
            self.close(session_id)
        if idle:
            self.logger.debug(f"[planner] closed {len(idle)} idle sessions")
        return len(idle)

    def __len__(self) -> int:
        return len(self._sessions)


def orchestrator_factory(client, materializer) -> OrchestratorFactory:
    """Factory building planners that share the client and materializer but not caches"""
    def build() -> TripPlanningOrchestrator:
        settings = get_settings()
        return TripPlanningOrchestrator(
            client=client,
            materializer=materializer,
            cache=PlanCache(
                max_entries=settings.PLAN_CACHE_MAX_ENTRIES,
                ttl_seconds=settings.PLAN_CACHE_TTL_SECONDS,
                evict_fraction=settings.PLAN_CACHE_EVICT_FRACTION,
            ),
        )
    return build
