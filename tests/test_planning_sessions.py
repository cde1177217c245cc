import pytest

from tabi.services.planning_sessions import PlanningSessionRegistry, orchestrator_factory

from conftest import ScriptedModelFactory, build_plan_json, make_client


@pytest.fixture
def registry(materializer):
    return PlanningSessionRegistry(orchestrator_factory(make_client(ScriptedModelFactory()), materializer))


def test_one_planner_per_session(registry):
    first = registry.get("tab-1", "alice")
    again = registry.get("tab-1", "alice")
    other = registry.get("tab-2", "alice")

    assert first is again
    assert first is not other
    assert first.cache is not other.cache
    assert first.user_id == "alice"
    assert len(registry) == 2


@pytest.mark.asyncio
async def test_session_follows_user_switch(registry):
    planner = registry.get("shared", "alice")
    planner.client._model_factory.script.append(build_plan_json())
    await planner.plan("5-day trip to Lisbon")

    switched = registry.get("shared", "bob")

    assert switched is planner
    assert switched.user_id == "bob"
    assert switched.plan_result is None
    assert len(switched.cache) == 0


def test_peek_and_close(registry):
    assert registry.peek("tab-1") is None
    planner = registry.get("tab-1", "alice")

    assert registry.peek("tab-1") is planner
    assert registry.close("tab-1") is True
    assert registry.close("tab-1") is False
    assert len(registry) == 0


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_idle_sessions_are_closed(materializer):
    clock = FakeClock()
    registry = PlanningSessionRegistry(
        orchestrator_factory(make_client(ScriptedModelFactory()), materializer), idle_seconds=60, clock=clock
    )
    stale = registry.get("tab-1", "alice")
    clock.now += 30
    registry.get("tab-2", "alice")
    clock.now += 45

    fresh = registry.get("tab-1", "alice")

    assert fresh is not stale
    assert registry.peek("tab-2") is not None
    assert len(registry) == 2


def test_least_recently_used_session_is_closed_at_limit(materializer):
    clock = FakeClock()
    registry = PlanningSessionRegistry(
        orchestrator_factory(make_client(ScriptedModelFactory()), materializer), max_sessions=2, clock=clock
    )
    registry.get("tab-1", "alice")
    clock.now += 1
    registry.get("tab-2", "alice")
    clock.now += 1
    registry.get("tab-1", "alice")
    clock.now += 1

    registry.get("tab-3", "alice")

    assert len(registry) == 2
    assert registry.peek("tab-2") is None
    assert registry.peek("tab-1") is not None
    assert registry.peek("tab-3") is not None
