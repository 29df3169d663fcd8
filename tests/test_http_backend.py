"""Wire-protocol tests for the httpx streaming transports."""

from __future__ import annotations

import json

import allure
import httpx
import pytest

from ai_orchestrator.orchestrator.backend.base import flatten_parts
from ai_orchestrator.orchestrator.backend.http_backend import (
    AnthropicChatTransport,
    GeminiChatTransport,
    OpenAIChatTransport,
)
from ai_orchestrator.orchestrator.errors import AdapterTransportError
from ai_orchestrator.orchestrator.events import CancellationToken
from ai_orchestrator.orchestrator.models import ChatMessage, FailureClass, TextPart, ToolCallPart

pytestmark = [
    allure.epic("Backends"),
    allure.feature("HTTP Transports"),
]

_MESSAGES = [
    ChatMessage(role="system", content="Be brief"),
    ChatMessage(role="user", content="hello"),
]


def _sse(*events: object) -> bytes:
    lines = []
    for event in events:
        data = event if isinstance(event, str) else json.dumps(event)
        lines.append(f"data: {data}\n\n")
    return "".join(lines).encode("utf-8")


def _client(handler, captured: list[httpx.Request] | None = None) -> httpx.Client:
    def _record(request: httpx.Request) -> httpx.Response:
        if captured is not None:
            captured.append(request)
        return handler(request)

    return httpx.Client(transport=httpx.MockTransport(_record))


def _stream_parts(transport, *, cancellation=None, **overrides) -> list[object]:
    kwargs = {
        "model": "m",
        "messages": _MESSAGES,
        "temperature": None,
        "max_tokens": None,
        "cancellation": cancellation,
    }
    kwargs.update(overrides)
    return list(flatten_parts(transport.open_stream(**kwargs)))


class TestOpenAIChatTransport:
    def test_streams_text_and_buffers_tool_calls(self):
        body = _sse(
            {"choices": [{"delta": {"content": "Hel"}}]},
            {"choices": [{"delta": {"content": "lo"}}]},
            {
                "choices": [
                    {
                        "delta": {
                            "tool_calls": [
                                {
                                    "index": 0,
                                    "id": "call_1",
                                    "function": {"name": "write_file", "arguments": '{"pa'},
                                },
                            ],
                        },
                    },
                ],
            },
            {
                "choices": [
                    {"delta": {"tool_calls": [{"index": 0, "function": {"arguments": 'th": 1}'}}]}},
                ],
            },
            {"choices": [{"delta": {}, "finish_reason": "tool_calls"}]},
            "[DONE]",
        )
        captured: list[httpx.Request] = []
        transport = OpenAIChatTransport(
            provider_id="openai",
            base_url="https://api.test/v1/",
            models=("gpt-4o",),
            api_key="sk-test",
            client=_client(lambda _request: httpx.Response(200, content=body), captured),
        )

        parts = _stream_parts(transport, model="gpt-4o", temperature=0.3, max_tokens=50)

        assert parts == [
            TextPart("Hel"),
            TextPart("lo"),
            ToolCallPart(tool="write_file", arguments={"path": 1}, call_id="call_1"),
        ]
        request = captured[0]
        assert str(request.url) == "https://api.test/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-test"
        payload = json.loads(request.content)
        assert payload == {
            "model": "gpt-4o",
            "messages": [
                {"role": "system", "content": "Be brief"},
                {"role": "user", "content": "hello"},
            ],
            "stream": True,
            "temperature": 0.3,
            "max_tokens": 50,
        }

    def test_unfinished_tool_calls_flush_at_stream_end(self):
        body = _sse(
            {
                "choices": [
                    {
                        "delta": {
                            "tool_calls": [
                                {"index": 1, "function": {"name": "b", "arguments": "not json"}},
                                {"index": 0, "function": {"name": "a", "arguments": "[1]"}},
                            ],
                        },
                    },
                ],
            },
        )
        transport = OpenAIChatTransport(
            provider_id="fireworks",
            base_url="https://api.test/v1",
            api_key="key",
            client=_client(lambda _request: httpx.Response(200, content=body)),
        )

        parts = _stream_parts(transport)

        assert parts == [
            ToolCallPart(tool="a", arguments={"value": [1]}),
            ToolCallPart(tool="b", arguments={"raw": "not json"}),
        ]

    def test_missing_api_key_reports_no_models(self):
        transport = OpenAIChatTransport(
            provider_id="openai",
            base_url="https://api.test/v1",
            models=("gpt-4o",),
            client=_client(lambda _request: httpx.Response(500)),
        )

        assert not transport.configured
        assert transport.list_model_ids() == []

    def test_local_runtime_discovers_models(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/models"
            assert "Authorization" not in request.headers
            models = [{"id": "phi3:3b-mini"}, {"id": "llama3.1:8b"}]
            return httpx.Response(200, json={"data": models})

        transport = OpenAIChatTransport(
            provider_id="local-npu",
            base_url="http://localhost:11434/v1",
            discover_models=True,
            client=_client(handler),
        )

        assert transport.configured
        assert transport.list_model_ids() == ["phi3:3b-mini", "llama3.1:8b"]

    def test_model_discovery_errors_are_classified(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        transport = OpenAIChatTransport(
            provider_id="local-ram",
            base_url="http://localhost:11434/v1",
            discover_models=True,
            client=_client(handler),
        )

        with pytest.raises(AdapterTransportError) as error:
            transport.list_model_ids()

        assert error.value.transient

    def test_http_error_status_is_classified(self):
        transport = OpenAIChatTransport(
            provider_id="openai",
            base_url="https://api.test/v1",
            api_key="bad",
            client=_client(
                lambda _request: httpx.Response(
                    401,
                    json={"error": {"message": "Invalid API key"}},
                ),
            ),
        )

        with pytest.raises(AdapterTransportError) as error:
            _stream_parts(transport)

        assert error.value.status_code == 401
        assert error.value.failure_class == FailureClass.ACCESS_OR_AUTH
        assert not error.value.transient
        assert "HTTP 401" in str(error.value)

    def test_rate_limit_status_is_transient(self):
        transport = OpenAIChatTransport(
            provider_id="openai",
            base_url="https://api.test/v1",
            api_key="key",
            client=_client(lambda _request: httpx.Response(429, text="slow down")),
        )

        with pytest.raises(AdapterTransportError) as error:
            _stream_parts(transport)

        assert error.value.transient
        assert error.value.failure_class == FailureClass.BACKEND_TRANSIENT

    def test_timeouts_are_classified(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("read timed out", request=request)

        transport = OpenAIChatTransport(
            provider_id="openai",
            base_url="https://api.test/v1",
            api_key="key",
            client=_client(handler),
        )

        with pytest.raises(AdapterTransportError) as error:
            _stream_parts(transport)

        assert error.value.failure_class == FailureClass.TIMEOUT
        assert error.value.transient

    def test_malformed_event_is_not_transient(self):
        transport = OpenAIChatTransport(
            provider_id="openai",
            base_url="https://api.test/v1",
            api_key="key",
            client=_client(lambda _request: httpx.Response(200, content=b"data: {oops\n\n")),
        )

        with pytest.raises(AdapterTransportError, match="Malformed stream event") as error:
            _stream_parts(transport)

        assert not error.value.transient

    def test_cancelled_stream_stops_reading(self):
        body = _sse(
            {"choices": [{"delta": {"content": "a"}}]},
            {"choices": [{"delta": {"content": "b"}}]},
        )
        transport = OpenAIChatTransport(
            provider_id="openai",
            base_url="https://api.test/v1",
            api_key="key",
            client=_client(lambda _request: httpx.Response(200, content=body)),
        )
        token = CancellationToken()
        token.cancel()

        assert _stream_parts(transport, cancellation=token) == []


class TestAnthropicChatTransport:
    def test_streams_text_and_tool_use_blocks(self):
        body = _sse(
            {"type": "message_start", "message": {"id": "msg_1"}},
            {"type": "content_block_start", "index": 0, "content_block": {"type": "text"}},
            {
                "type": "content_block_delta",
                "index": 0,
                "delta": {"type": "text_delta", "text": "Sure"},
            },
            {"type": "content_block_stop", "index": 0},
            {
                "type": "content_block_start",
                "index": 1,
                "content_block": {"type": "tool_use", "id": "toolu_1", "name": "edit"},
            },
            {
                "type": "content_block_delta",
                "index": 1,
                "delta": {"type": "input_json_delta", "partial_json": '{"file": '},
            },
            {
                "type": "content_block_delta",
                "index": 1,
                "delta": {"type": "input_json_delta", "partial_json": '"a.py"}'},
            },
            {"type": "content_block_stop", "index": 1},
            {"type": "message_stop"},
        )
        captured: list[httpx.Request] = []
        transport = AnthropicChatTransport(
            provider_id="anthropic",
            base_url="https://api.anthropic.test/v1",
            models=("claude-sonnet-4.5",),
            api_key="ak",
            client=_client(lambda _request: httpx.Response(200, content=body), captured),
        )

        parts = _stream_parts(transport, model="claude-sonnet-4-5")

        assert parts == [
            TextPart("Sure"),
            ToolCallPart(tool="edit", arguments={"file": "a.py"}, call_id="toolu_1"),
        ]
        request = captured[0]
        assert str(request.url) == "https://api.anthropic.test/v1/messages"
        assert request.headers["x-api-key"] == "ak"
        assert request.headers["anthropic-version"] == "2023-06-01"
        payload = json.loads(request.content)
        assert payload["system"] == "Be brief"
        assert payload["messages"] == [{"role": "user", "content": "hello"}]
        assert payload["max_tokens"] == 4096
        assert "temperature" not in payload

    def test_error_event_raises_classified_error(self):
        body = _sse(
            {
                "type": "error",
                "error": {"type": "overloaded_error", "message": "Overloaded"},
            },
        )
        transport = AnthropicChatTransport(
            provider_id="anthropic",
            base_url="https://api.anthropic.test/v1",
            api_key="ak",
            client=_client(lambda _request: httpx.Response(200, content=body)),
        )

        with pytest.raises(AdapterTransportError) as error:
            _stream_parts(transport)

        assert error.value.transient
        assert "overloaded_error" in str(error.value)


class TestGeminiChatTransport:
    def test_streams_candidate_parts_as_lists(self):
        body = _sse(
            {"candidates": [{"content": {"role": "model", "parts": [{"text": "Hi"}]}}]},
            {
                "candidates": [
                    {
                        "content": {
                            "parts": [
                                {"text": " there"},
                                {"functionCall": {"name": "lookup", "args": {"q": "x"}}},
                            ],
                        },
                    },
                ],
            },
            {"usageMetadata": {"totalTokenCount": 5}},
        )
        captured: list[httpx.Request] = []
        transport = GeminiChatTransport(
            provider_id="google",
            base_url="https://gemini.test/v1beta",
            models=("gemini-2.0-flash",),
            api_key="gk",
            client=_client(lambda _request: httpx.Response(200, content=body), captured),
        )

        raw = list(
            transport.open_stream(
                model="gemini-2.0-flash",
                messages=_MESSAGES,
                temperature=0.5,
                max_tokens=100,
                cancellation=None,
            ),
        )

        assert raw == [
            [TextPart("Hi")],
            [TextPart(" there"), ToolCallPart(tool="lookup", arguments={"q": "x"})],
        ]
        request = captured[0]
        assert request.url.path == "/v1beta/models/gemini-2.0-flash:streamGenerateContent"
        assert request.url.params["alt"] == "sse"
        assert request.headers["x-goog-api-key"] == "gk"
        payload = json.loads(request.content)
        assert payload["systemInstruction"] == {"parts": [{"text": "Be brief"}]}
        assert payload["contents"] == [{"role": "user", "parts": [{"text": "hello"}]}]
        assert payload["generationConfig"] == {"temperature": 0.5, "maxOutputTokens": 100}

    def test_error_object_raises(self):
        body = _sse(
            {"error": {"code": 429, "status": "RESOURCE_EXHAUSTED", "message": "Quota exceeded"}},
        )
        transport = GeminiChatTransport(
            provider_id="google",
            base_url="https://gemini.test/v1beta",
            api_key="gk",
            client=_client(lambda _request: httpx.Response(200, content=body)),
        )

        with pytest.raises(AdapterTransportError) as error:
            _stream_parts(transport)

        assert error.value.failure_class == FailureClass.BILLING_OR_QUOTA
        assert not error.value.transient
