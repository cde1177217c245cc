import asyncio

import pytest
from google.api_core import exceptions as google_exceptions

from tabi.models.request_models import GenerationMessage, GenerationPrompt, MessageRole
from tabi.prompts.trip_prompts import build_trip_planning_prompt
from tabi.utils.errors import ErrorCategory, GenerationError

from conftest import ScriptedModelFactory, fake_response, make_client


def _prompt() -> GenerationPrompt:
    return build_trip_planning_prompt("5-day trip to Lisbon")


@pytest.mark.asyncio
async def test_generate_splits_system_instructions_and_contents():
    factory = ScriptedModelFactory(['{"trip": {}}'])
    client = make_client(factory)

    response = await client.generate(_prompt())

    assert response.text == '{"trip": {}}'
    assert response.request_id == "resp-1"
    assert response.usage.total_tokens == 120
    assert response.usage.prompt_tokens == 80

    call = factory.calls[0]
    assert len(call["system_instruction"]) == 2
    assert len(call["contents"]) == 1
    assert "Lisbon" in call["contents"][0]
    assert call["generation_config"]["response_mime_type"] == "application/json"
    assert call["generation_config"]["temperature"] == 0.7
    assert call["generation_config"]["candidate_count"] == 1


@pytest.mark.asyncio
async def test_client_model_used_when_prompt_names_none():
    factory = ScriptedModelFactory(["{}"])
    client = make_client(factory)
    prompt = GenerationPrompt(
        messages=[GenerationMessage(role=MessageRole.USER, content="hi there")],
        model=None,
        response_format={"type": "text"},
    )

    await client.generate(prompt)

    assert factory.calls[0]["model"] == "gemini-test"
    assert "response_mime_type" not in factory.calls[0]["generation_config"]


@pytest.mark.asyncio
async def test_transient_errors_are_retried():
    factory = ScriptedModelFactory([
        google_exceptions.ServiceUnavailable("overloaded"),
        ConnectionError("reset"),
        '{"trip": {}}',
    ])
    client = make_client(factory, max_attempts=3)

    response = await client.generate(_prompt())

    assert response.text == '{"trip": {}}'
    assert len(factory.calls) == 3


@pytest.mark.asyncio
async def test_exhausted_retries_surface_network_error():
    factory = ScriptedModelFactory([google_exceptions.ServiceUnavailable("overloaded")] * 2)
    client = make_client(factory, max_attempts=2)

    with pytest.raises(GenerationError) as exc_info:
        await client.generate(_prompt())

    assert exc_info.value.category == ErrorCategory.NETWORK
    assert exc_info.value.code == "network-error"
    assert exc_info.value.can_retry is True
    assert len(factory.calls) == 2


@pytest.mark.asyncio
async def test_auth_failure_is_configuration_error_without_retry():
    factory = ScriptedModelFactory([google_exceptions.PermissionDenied("no access")])
    client = make_client(factory)

    with pytest.raises(GenerationError) as exc_info:
        await client.generate(_prompt())

    assert exc_info.value.category == ErrorCategory.CONFIGURATION
    assert exc_info.value.code == "auth-failed"
    assert exc_info.value.can_retry is False
    assert len(factory.calls) == 1


@pytest.mark.asyncio
async def test_service_error_keeps_status_code():
    factory = ScriptedModelFactory([google_exceptions.InternalServerError("backend exploded")])
    client = make_client(factory)

    with pytest.raises(GenerationError) as exc_info:
        await client.generate(_prompt())

    assert exc_info.value.category == ErrorCategory.SERVICE
    assert exc_info.value.status_code == 500
    assert len(factory.calls) == 1


@pytest.mark.asyncio
async def test_timeout_is_network_error():
    factory = ScriptedModelFactory(["{}"])
    factory.gate = asyncio.Event()
    client = make_client(factory, max_attempts=1, timeout_seconds=0.05)

    with pytest.raises(GenerationError) as exc_info:
        await client.generate(_prompt())

    assert exc_info.value.category == ErrorCategory.NETWORK
    assert exc_info.value.code == "timeout"


@pytest.mark.asyncio
async def test_empty_response_is_service_error():
    factory = ScriptedModelFactory([fake_response("   ")])
    client = make_client(factory)

    with pytest.raises(GenerationError) as exc_info:
        await client.generate(_prompt())

    assert exc_info.value.category == ErrorCategory.SERVICE
    assert exc_info.value.code == "empty-response"


@pytest.mark.asyncio
async def test_code_fence_is_stripped():
    factory = ScriptedModelFactory(['```json\n{"trip": {"name": "x"}}\n```'])
    client = make_client(factory)

    response = await client.generate(_prompt())

    assert response.text == '{"trip": {"name": "x"}}'


def test_injected_factory_is_always_available():
    client = make_client(ScriptedModelFactory())
    assert client.is_available() is True
    assert client.unavailable_reason is None
