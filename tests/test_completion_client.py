import asyncio
import json

import httpx
import pytest

from exchange.completion_client import CompletionClient, normalize_completion_payload
from models.errors import (
    CompletionAuthFailed,
    CompletionRateLimited,
    CompletionUnavailable,
)

ACTION = {"function": "swap", "parameters": {"fromToken": "ETH", "toToken": "USDC", "amount": "0.1"}}
CUSTOM = "https://llm.example.com/complete"


def _openai_body(content: str):
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def _client(handler, api_key="sk-test"):
    return CompletionClient(
        api_url="https://api.example.com/v1",
        api_key=api_key,
        transport=httpx.MockTransport(handler),
    )


def _run(coro):
    return asyncio.run(coro)


@pytest.mark.parametrize(
    "payload,envelope",
    [
        (_openai_body("hello"), "choices"),
        ({"response": "hello"}, "response"),
        ({"output": "hello"}, "output"),
        ("hello", "string"),
    ],
)
def test_normalize_supported_envelopes(payload, envelope):
    assert normalize_completion_payload(payload) == ("hello", envelope)


def test_normalize_serializes_object_output():
    text, envelope = normalize_completion_payload({"output": ACTION})
    assert envelope == "output"
    assert json.loads(text) == ACTION


def test_normalize_rejects_unknown_shape():
    with pytest.raises(CompletionUnavailable):
        normalize_completion_payload({"data": "hello"})


def test_openai_request_shape():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_openai_body(json.dumps(ACTION)))

    client = _client(handler)
    result = _run(client.complete("system", "Swap 0.1 ETH for USDC"))

    assert seen["url"] == "https://api.example.com/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["model"] == "gpt-4o"
    assert seen["body"]["temperature"] == 0.3
    assert seen["body"]["response_format"] == {"type": "json_object"}
    assert [m["role"] for m in seen["body"]["messages"]] == ["system", "user"]
    assert json.loads(result.text) == ACTION
    assert result.source == "primary"
    assert result.envelope == "choices"


def test_request_api_key_overrides_configured_key():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json=_openai_body("{}"))

    _run(_client(handler).complete("system", "text", api_key="sk-user"))
    assert seen["auth"] == "Bearer sk-user"


def test_missing_key_is_unavailable_without_network():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with pytest.raises(CompletionUnavailable) as exc_info:
        _run(_client(handler, api_key=None).complete("system", "text"))
    assert "not configured" in exc_info.value.message


def test_custom_endpoint_is_primary():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        body = json.loads(request.content)
        assert set(body) == {"messages", "temperature"}
        return httpx.Response(200, json={"response": json.dumps(ACTION)})

    result = _run(_client(handler).complete("system", "text", custom_endpoint=CUSTOM))

    assert seen == [CUSTOM]
    assert result.source == "primary"
    assert result.envelope == "response"


def test_custom_endpoint_bare_text_body():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text=json.dumps(ACTION).replace("{", "Here: {", 1))

    result = _run(_client(handler).complete("system", "text", custom_endpoint=CUSTOM))
    assert result.envelope == "string"
    assert result.text.startswith("Here: ")


def test_custom_failure_falls_back_once():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        if str(request.url) == CUSTOM:
            return httpx.Response(503, text="overloaded")
        return httpx.Response(200, json=_openai_body(json.dumps(ACTION)))

    result = _run(_client(handler).complete("system", "text", custom_endpoint=CUSTOM))

    assert seen == [CUSTOM, "https://api.example.com/v1/chat/completions"]
    assert result.source == "fallback"


def test_fallback_failure_is_not_retried_again():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(500, text="boom")

    with pytest.raises(CompletionUnavailable):
        _run(_client(handler).complete("system", "text", custom_endpoint=CUSTOM))
    assert len(seen) == 2


def test_connection_error_maps_to_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(CompletionUnavailable):
        _run(_client(handler).complete("system", "text"))


@pytest.mark.parametrize(
    "status,error",
    [(401, CompletionAuthFailed), (429, CompletionRateLimited), (500, CompletionUnavailable)],
)
def test_status_errors_are_mapped(status, error):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={"error": {"message": "nope"}})

    with pytest.raises(error) as exc_info:
        _run(_client(handler).complete("system", "text"))
    assert exc_info.value.status_code == status
