"""Tests for the upstream generateContent client."""

import json

import httpx
import pytest

from conftest import ANSWER, UpstreamRecorder
from vetintel.service.errors import (
    ConfigurationError,
    UpstreamEmptyResponseError,
    UpstreamUnavailableError,
)
from vetintel.service.gemini import (
    ERROR_BODY_LIMIT,
    GENERATION_CONFIG,
    GeminiClient,
    extract_answer_text,
)


def make_client(handler, api_key="test-gemini-key") -> GeminiClient:
    return GeminiClient(api_key, transport=httpx.MockTransport(handler))


async def test_generate_returns_answer_text():
    upstream = UpstreamRecorder()
    client = make_client(upstream)

    answer = await client.generate("prompt text")

    assert answer == ANSWER
    assert upstream.last_prompt() == "prompt text"


async def test_request_shape():
    upstream = UpstreamRecorder()
    client = make_client(upstream)

    await client.generate("prompt text")

    request = upstream.calls[0]
    assert request.method == "POST"
    assert request.url.path == "/v1beta/models/gemini-pro:generateContent"
    assert request.headers["x-goog-api-key"] == "test-gemini-key"
    assert "key" not in request.url.params
    body = json.loads(request.content)
    assert body["generationConfig"] == {
        "temperature": 0.7,
        "topK": 40,
        "topP": 0.95,
        "maxOutputTokens": 2048,
    }
    assert len(body["safetySettings"]) == 4
    assert {s["threshold"] for s in body["safetySettings"]} == {"BLOCK_MEDIUM_AND_ABOVE"}


def test_payload_is_not_shared_with_module_constants():
    client = GeminiClient("k")
    payload = client.build_payload("p")
    payload["generationConfig"]["temperature"] = 2.0

    assert GENERATION_CONFIG["temperature"] == 0.7


async def test_missing_key_is_configuration_error():
    upstream = UpstreamRecorder()
    client = make_client(upstream, api_key=None)

    with pytest.raises(ConfigurationError) as excinfo:
        await client.generate("prompt")

    assert excinfo.value.status_code == 500
    assert excinfo.value.message == "API configuration error"
    assert upstream.calls == []


@pytest.mark.parametrize("status", [400, 429, 500, 503])
async def test_non_success_is_unavailable(status):
    client = make_client(UpstreamRecorder(status_code=status, text="x" * 1000))

    with pytest.raises(UpstreamUnavailableError) as excinfo:
        await client.generate("prompt")

    error = excinfo.value
    assert error.status_code == 503
    assert error.message == "AI service temporarily unavailable"
    assert error.upstream_status == status
    assert len(error.upstream_body) <= ERROR_BODY_LIMIT


async def test_error_body_is_sanitized():
    body = "API key not valid: api_key=AIzaSyA1234567890abcdefghijklmnop"
    client = make_client(UpstreamRecorder(status_code=400, text=body))

    with pytest.raises(UpstreamUnavailableError) as excinfo:
        await client.generate("prompt")

    assert "AIzaSy" not in excinfo.value.upstream_body


async def test_timeout_is_unavailable():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(UpstreamUnavailableError) as excinfo:
        await make_client(handler).generate("prompt")

    assert excinfo.value.upstream_status is None


async def test_connection_failure_is_unavailable():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(UpstreamUnavailableError):
        await make_client(handler).generate("prompt")


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"candidates": []},
        {"candidates": [{"content": {"parts": []}}]},
        {"candidates": [{"content": {"parts": [{"text": ""}]}}]},
        {"candidates": [{"finishReason": "SAFETY"}]},
    ],
)
async def test_empty_answer_is_server_error(payload):
    client = make_client(UpstreamRecorder(payload=payload))

    with pytest.raises(UpstreamEmptyResponseError) as excinfo:
        await client.generate("prompt")

    assert excinfo.value.status_code == 500
    assert excinfo.value.message == "No response generated"


async def test_non_json_success_is_empty_response():
    client = make_client(UpstreamRecorder(text="<html>proxy page</html>"))

    with pytest.raises(UpstreamEmptyResponseError):
        await client.generate("prompt")


def test_extract_answer_text_tolerates_garbage():
    assert extract_answer_text(None) is None
    assert extract_answer_text("text") is None
    assert extract_answer_text({"candidates": [{"content": {"parts": [{"text": 5}]}}]}) is None
