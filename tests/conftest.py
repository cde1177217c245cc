import json
from datetime import date, timedelta
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest

from tabi.services.generation_client import VertexGenerationClient
from tabi.services.itinerary_store import ItineraryStore
from tabi.services.trip_materializer import TripMaterializer
from tabi.services.trip_store import TripStore
from tabi.utils.document_store import InMemoryDocumentStore


def fake_response(text: str, response_id: str = "resp-1", total_tokens: int = 120):
    """Object shaped like a Vertex AI GenerationResponse"""
    part = SimpleNamespace(text=text)
    candidate = SimpleNamespace(content=SimpleNamespace(parts=[part]), finish_reason="STOP")
    usage = SimpleNamespace(prompt_token_count=80, candidates_token_count=total_tokens - 80, total_token_count=total_tokens)
    return SimpleNamespace(candidates=[candidate], usage_metadata=usage, response_id=response_id)


class ScriptedModel:
    def __init__(self, factory: "ScriptedModelFactory", model_name: str, system_instruction: List[str]):
        self.factory = factory
        self.model_name = model_name
        self.system_instruction = system_instruction

    async def generate_content_async(self, contents, generation_config=None):
        self.factory.calls.append({
            "model": self.model_name,
            "system_instruction": self.system_instruction,
            "contents": contents,
            "generation_config": generation_config,
        })
        if self.factory.gate is not None:
            await self.factory.gate.wait()
        if not self.factory.script:
            raise AssertionError("generation called more times than scripted")
        item = self.factory.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, str):
            return fake_response(item, response_id=f"resp-{len(self.factory.calls)}")
        return item


class ScriptedModelFactory:
    """Model factory returning scripted texts or raising scripted errors, in order"""

    def __init__(self, script: Optional[List[Any]] = None):
        self.script = list(script or [])
        self.calls: List[Dict[str, Any]] = []
        self.gate = None

    def __call__(self, model_name: str, system_instruction: List[str]) -> ScriptedModel:
        return ScriptedModel(self, model_name, system_instruction)


def make_client(factory: ScriptedModelFactory, max_attempts: int = 3, timeout_seconds: float = 5.0) -> VertexGenerationClient:
    return VertexGenerationClient(
        project_id="test-project",
        model_name="gemini-test",
        model_factory=factory,
        timeout_seconds=timeout_seconds,
        max_attempts=max_attempts,
        min_wait_seconds=0,
        max_wait_seconds=0,
    )


def build_plan_payload(
    start_offset: int = 30,
    days: int = 5,
    itinerary: Optional[Dict[str, Any]] = None,
    include_itinerary: bool = True,
    **trip_overrides,
) -> Dict[str, Any]:
    """Well-formed response envelope with dates relative to today"""
    start = date.today() + timedelta(days=start_offset)
    end = start + timedelta(days=days - 1)
    trip = {
        "name": "Lisbon Slow Travel",
        "location": "Lisbon, Portugal",
        "startDate": start.isoformat(),
        "endDate": end.isoformat(),
        "description": "Five relaxed days of trams, tiles and pastries.",
        "aiGenerated": True,
        "aiPrompt": "5-day trip to Lisbon, relaxed pace",
        "generatedAt": "2026-01-01T00:00:00Z",
    }
    trip.update(trip_overrides)
    payload: Dict[str, Any] = {"trip": trip}
    if include_itinerary:
        payload["itinerary"] = itinerary if itinerary is not None else {
            "day_1": [
                {
                    "title": "Alfama walking tour",
                    "description": "Wander the oldest quarter and its viewpoints.",
                    "startTime": "09:00",
                    "endTime": "11:30",
                    "location": "Alfama",
                    "category": "sightseeing",
                },
                {
                    "title": "Lunch at Time Out Market",
                    "description": "Sample local dishes from many stalls.",
                    "startTime": "12:00",
                    "endTime": "13:30",
                    "location": "Cais do Sodre",
                    "category": "dining",
                },
            ],
            "day_2": [
                {
                    "title": "Belem pastries",
                    "description": "Pasteis de Belem and the monastery.",
                    "startTime": "10:00",
                    "endTime": "12:00",
                    "category": "food-tour",
                },
            ],
        }
    return payload


def build_plan_json(**kwargs) -> str:
    return json.dumps(build_plan_payload(**kwargs))


@pytest.fixture
def documents():
    return InMemoryDocumentStore()


@pytest.fixture
def itinerary_store(documents):
    return ItineraryStore(documents, collection="itineraries")


@pytest.fixture
def trip_store(documents, itinerary_store):
    return TripStore(documents, itinerary_store=itinerary_store, collection="trips")


@pytest.fixture
def materializer(trip_store, itinerary_store):
    return TripMaterializer(trip_store, itinerary_store)


@pytest.fixture
def trip_input():
    start = date.today() + timedelta(days=10)
    return {
        "name": "Kyoto in Autumn",
        "location": "Kyoto, Japan",
        "description": "Temples and maple leaves",
        "start_date": start,
        "end_date": start + timedelta(days=3),
    }
