import pytest
from fastapi.testclient import TestClient

from tabi.api import main
from tabi.api.main import app
from tabi.utils.document_store import InMemoryDocumentStore

from conftest import ScriptedModelFactory, build_plan_json, make_client

client = TestClient(app)

ALICE = {"X-User-Id": "alice"}
BOB = {"X-User-Id": "bob"}


@pytest.fixture
def model_factory():
    factory = ScriptedModelFactory()
    main.configure_services(client=make_client(factory, max_attempts=1), documents=InMemoryDocumentStore())
    return factory


def _plan_and_save(factory, headers=ALICE):
    factory.script.append(build_plan_json())
    planned = client.post("/api/v1/plan", json={"input": "5-day trip to Lisbon, relaxed pace"}, headers=headers)
    assert planned.json()["success"] is True
    saved = client.post("/api/v1/plan/save", headers=headers)
    assert saved.status_code == 200
    return saved.json()


def test_root_endpoint():
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["message"] == "Tabi Trip Planner API"


def test_health_check(model_factory):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["services"]["generation"] is True
    assert "timestamp" in data


def test_plan_requires_user(model_factory):
    response = client.post("/api/v1/plan", json={"input": "Weekend in Porto"})
    assert response.status_code == 401


def test_plan_returns_parsed_plan_and_state(model_factory):
    model_factory.script.append(build_plan_json())

    response = client.post(
        "/api/v1/plan",
        json={"input": "5-day trip to Lisbon, relaxed pace", "options": {"max_days": 5}},
        headers=ALICE,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["plan"]["trip"]["name"] == "Lisbon Slow Travel"
    assert data["plan"]["trip"]["startDate"]
    assert data["plan"]["itinerary"]["day_1"][0]["startTime"] == "09:00"
    assert data["state"]["state"] == "complete"

    state = client.get("/api/v1/plan/state", headers=ALICE).json()
    assert state["trip"]["location"] == "Lisbon, Portugal"


def test_invalid_input_reports_validation_error(model_factory):
    response = client.post("/api/v1/plan", json={"input": "hi"}, headers=ALICE)

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is False
    assert data["error"]["category"] == "validation"
    assert data["error"]["code"] == "invalid-input"
    assert data["state"]["state"] == "error"
    assert model_factory.calls == []

    cleared = client.post("/api/v1/plan/clear-error", headers=ALICE).json()
    assert cleared["state"] == "idle"


def test_sessions_are_isolated(model_factory):
    model_factory.script.append(build_plan_json())
    client.post("/api/v1/plan", json={"input": "5-day trip to Lisbon"}, headers={**ALICE, "X-Session-Id": "tab-1"})

    other_tab = client.get("/api/v1/plan/state", headers={**ALICE, "X-Session-Id": "tab-2"}).json()
    assert other_tab["state"] == "idle"


def test_save_plan_and_browse_trip(model_factory):
    saved = _plan_and_save(model_factory)

    assert saved["success"] is True
    assert saved["activities_created"] == 3
    trip_id = saved["trip_id"]

    listing = client.get("/api/v1/trips", headers=ALICE).json()
    assert [t["id"] for t in listing["trips"]] == [trip_id]
    assert listing["has_more"] is False

    trip = client.get(f"/api/v1/trips/{trip_id}", headers=ALICE).json()
    assert trip["duration"] == 5
    assert trip["status"] == "upcoming"

    itinerary = client.get(f"/api/v1/trips/{trip_id}/itinerary", headers=ALICE).json()
    assert len(itinerary["days"]) == 5
    assert len(itinerary["days"][0]["activities"]) == 2

    found = client.get("/api/v1/trips/search", params={"q": "lisbon"}, headers=ALICE).json()
    assert found["count"] == 1


def test_save_without_plan(model_factory):
    response = client.post("/api/v1/plan/save", headers=ALICE)
    assert response.json()["success"] is False
    assert response.json()["error"]["code"] == "nothing-to-save"


def test_trip_access_is_owner_only(model_factory):
    trip_id = _plan_and_save(model_factory)["trip_id"]

    response = client.get(f"/api/v1/trips/{trip_id}", headers=BOB)
    assert response.status_code == 403
    assert response.json()["detail"]["code"] == "access-denied"

    assert client.get("/api/v1/trips/unknown", headers=ALICE).status_code == 404


def test_update_trip_validates_fields(model_factory):
    trip_id = _plan_and_save(model_factory)["trip_id"]

    renamed = client.patch(f"/api/v1/trips/{trip_id}", json={"name": "Lisbon & Sintra"}, headers=ALICE)
    assert renamed.status_code == 200
    assert renamed.json()["name"] == "Lisbon & Sintra"

    rejected = client.patch(f"/api/v1/trips/{trip_id}", json={"name": "x" * 101}, headers=ALICE)
    assert rejected.status_code == 422
    assert rejected.json()["detail"]["errors"] == ["Trip name must be 1-100 characters"]


def test_delete_day_returns_next_selection(model_factory):
    trip_id = _plan_and_save(model_factory)["trip_id"]

    response = client.delete(f"/api/v1/trips/{trip_id}/itinerary/days/4", params={"selected_day": 5}, headers=ALICE)

    assert response.status_code == 200
    data = response.json()
    assert len(data["days"]) == 4
    assert data["selected_day"] == 4


def test_delete_trip(model_factory):
    trip_id = _plan_and_save(model_factory)["trip_id"]

    response = client.delete(f"/api/v1/trips/{trip_id}", headers=ALICE)

    assert response.json() == {"deleted": True, "trip_id": trip_id}
    assert client.get(f"/api/v1/trips/{trip_id}", headers=ALICE).status_code == 404


def test_suggest_activities_for_saved_trip(model_factory):
    trip_id = _plan_and_save(model_factory)["trip_id"]
    model_factory.script.append(
        '{"activities": [{"title": "Fado night", "description": "Live fado in Alfama", "category": "dining"}]}'
    )

    response = client.post(
        "/api/v1/plan/suggest-activities",
        json={"trip_id": trip_id, "request": "evening music"},
        headers=ALICE,
    )

    data = response.json()
    assert data["success"] is True
    assert data["activities"][0]["title"] == "Fado night"


def test_close_plan_session(model_factory):
    model_factory.script.append(build_plan_json())
    tab = {**ALICE, "X-Session-Id": "tab-9"}
    client.post("/api/v1/plan", json={"input": "5-day trip to Lisbon"}, headers=tab)

    assert client.delete("/api/v1/plan/session", headers={**BOB, "X-Session-Id": "tab-9"}).json()["closed"] is False
    assert client.delete("/api/v1/plan/session", headers=tab).json() == {"closed": True, "session_id": "tab-9"}
    assert client.get("/api/v1/plan/state", headers=tab).json()["state"] == "idle"
