"""
Unit tests for the completion client.

Requests are served by httpx.MockTransport; nothing leaves the process.
"""
import asyncio
import json

import httpx
import pytest

from intent_router.core.circuit_breaker import CircuitBreakerOpenError
from intent_router.core.deadline import collaborator_deadline
from intent_router.services.llm.llm_client import (
    LLMClient,
    LLMResponseFormatError,
    extract_message_content,
)


def _completion(content, usage=None):
    body = {"choices": [{"message": {"role": "assistant", "content": content}}]}
    if usage is not None:
        body["usage"] = usage
    return body


def _client(handler, api_key="sk-test", **kwargs):
    return LLMClient(
        api_base="https://llm.internal/v1/",
        api_key=api_key,
        model="gpt-4o-mini",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_complete_returns_message_content():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_completion('{"intent": "chat"}', {"prompt_tokens": 20, "completion_tokens": 5}))

    client = _client(handler, cost_per_1k_tokens=0.5)
    text = await client.complete("hi there", system="classify", agent="classifier", max_tokens=64)

    assert text == '{"intent": "chat"}'
    assert seen["url"] == "https://llm.internal/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["model"] == "gpt-4o-mini"
    assert seen["body"]["max_tokens"] == 64
    assert seen["body"]["messages"] == [
        {"role": "system", "content": "classify"},
        {"role": "user", "content": "hi there"},
    ]
    assert "response_format" not in seen["body"]


@pytest.mark.asyncio
async def test_response_format_is_forwarded():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_completion("{}"))

    await _client(handler).complete("x", response_format={"type": "json_object"})

    assert seen["body"]["response_format"] == {"type": "json_object"}


@pytest.mark.asyncio
async def test_missing_api_key_raises_without_request():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json=_completion("x"))

    with pytest.raises(RuntimeError):
        await _client(handler, api_key=None).complete("x")
    assert calls == []


@pytest.mark.asyncio
async def test_http_error_propagates():
    def handler(request):
        return httpx.Response(503, json={"error": "overloaded"})

    with pytest.raises(httpx.HTTPStatusError):
        await _client(handler).complete("x")


@pytest.mark.asyncio
async def test_timeout_propagates():
    def handler(request):
        raise httpx.ReadTimeout("slow upstream", request=request)

    with pytest.raises(httpx.TimeoutException):
        await _client(handler).complete("x")


@pytest.mark.asyncio
async def test_non_json_body_is_format_error():
    def handler(request):
        return httpx.Response(200, text="<html>gateway</html>")

    with pytest.raises(LLMResponseFormatError):
        await _client(handler).complete("x")


@pytest.mark.asyncio
async def test_repeated_failures_open_the_circuit():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500)

    client = _client(handler)
    for _ in range(client.circuit_breaker.min_requests_for_threshold):
        with pytest.raises(httpx.HTTPStatusError):
            await client.complete("x")

    with pytest.raises(CircuitBreakerOpenError):
        await client.complete("x")
    assert len(calls) == client.circuit_breaker.min_requests_for_threshold


def test_extract_message_content():
    assert extract_message_content(_completion("hello")) == "hello"
    assert extract_message_content(_completion(None)) == ""


@pytest.mark.parametrize(
    "data",
    [
        {},
        {"choices": []},
        {"choices": [{"text": "legacy"}]},
        {"choices": [{"message": {"content": ["part"]}}]},
    ],
)
def test_extract_message_content_malformed(data):
    with pytest.raises(LLMResponseFormatError):
        extract_message_content(data)


async def _stalled(request):
    await asyncio.sleep(10)
    return httpx.Response(200, json=_completion("late"))


@pytest.mark.asyncio
async def test_call_gives_up_before_enclosing_deadline():
    client = _client(_stalled)

    with collaborator_deadline(0.2):
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(client.complete("x"), timeout=0.2)

    assert client.circuit_breaker.get_metrics()["recent_failures"] == 1


@pytest.mark.asyncio
async def test_stalled_upstream_opens_the_circuit():
    client = _client(_stalled)
    client.circuit_breaker.min_requests_for_threshold = 3

    for _ in range(3):
        with collaborator_deadline(0.1):
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(client.complete("x"), timeout=0.1)

    with pytest.raises(CircuitBreakerOpenError):
        await client.complete("x")


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [[1, 2, 3], "just text", 42])
async def test_non_object_json_is_format_error(body):
    def handler(request):
        return httpx.Response(200, json=body)

    with pytest.raises(LLMResponseFormatError):
        await _client(handler).complete("x")
