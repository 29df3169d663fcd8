"""httpx-based streaming transports for the HTTP chat backends.

Three wire protocols cover every remote and local backend:

- OpenAI-compatible `/chat/completions` SSE (OpenAI, Fireworks, v0, Ollama),
- Anthropic Messages SSE,
- Gemini `streamGenerateContent` SSE.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import httpx

from ai_orchestrator.orchestrator.backend.base import DEFAULT_MAX_TOKENS, RawChunk
from ai_orchestrator.orchestrator.errors import AdapterTransportError
from ai_orchestrator.orchestrator.failure_classifier import transport_error
from ai_orchestrator.orchestrator.models import ChatMessage, StreamPart, TextPart, ToolCallPart

if TYPE_CHECKING:
    from ai_orchestrator.orchestrator.events import CancellationToken

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 120.0
DEFAULT_CONNECT_TIMEOUT_SECONDS = 10.0
ANTHROPIC_API_VERSION = "2023-06-01"
_ERROR_BODY_LIMIT = 500


@dataclass(slots=True)
class _PendingToolCall:
    name: str = ""
    call_id: str | None = None
    arguments: list[str] = field(default_factory=list)

    def to_part(self) -> ToolCallPart:
        return ToolCallPart(
            tool=self.name,
            arguments=_parse_arguments("".join(self.arguments)),
            call_id=self.call_id,
        )


_PendingCalls = dict[int, _PendingToolCall]


class HttpChatTransport:
    """Shared SSE plumbing; subclasses build the request and decode events.

    Without an API key (for backends that need one) the model catalog is empty,
    so the owning adapter reports itself unavailable.
    """

    requires_api_key = True

    def __init__(  # noqa: PLR0913
        self,
        *,
        provider_id: str,
        base_url: str,
        models: tuple[str, ...] = (),
        api_key: str | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        client: httpx.Client | None = None,
    ) -> None:
        self.provider_id = provider_id
        self.base_url = base_url.rstrip("/")
        self.models = models
        self.api_key = api_key
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=DEFAULT_CONNECT_TIMEOUT_SECONDS),
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key) or not self.requires_api_key

    def list_model_ids(self) -> list[str]:
        if not self.configured:
            return []
        return list(self.models)

    def open_stream(  # noqa: PLR0913
        self,
        *,
        model: str,
        messages: list[ChatMessage],
        temperature: float | None,
        max_tokens: int | None,
        cancellation: CancellationToken | None,
    ) -> Iterator[RawChunk]:
        url, headers, payload = self._build_request(
            model=model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        return self._stream(url=url, headers=headers, payload=payload, cancellation=cancellation)

    def close(self) -> None:
        self._client.close()

    def _build_request(
        self,
        *,
        model: str,
        messages: list[ChatMessage],
        temperature: float | None,
        max_tokens: int | None,
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        raise NotImplementedError

    def _decode(self, data: str, pending: _PendingCalls) -> Iterator[RawChunk]:
        raise NotImplementedError

    def _finish(self, pending: _PendingCalls) -> Iterator[RawChunk]:
        return iter(())

    def _stream(
        self,
        *,
        url: str,
        headers: dict[str, str],
        payload: dict[str, Any],
        cancellation: CancellationToken | None,
    ) -> Iterator[RawChunk]:
        pending: _PendingCalls = {}
        try:
            with self._client.stream("POST", url, headers=headers, json=payload) as response:
                if response.status_code >= 400:  # noqa: PLR2004
                    body = response.read().decode("utf-8", errors="replace")
                    raise transport_error(
                        provider_id=self.provider_id,
                        message=f"HTTP {response.status_code}: {body[:_ERROR_BODY_LIMIT]}",
                        status_code=response.status_code,
                    )
                for line in response.iter_lines():
                    if cancellation is not None and cancellation.is_cancellation_requested:
                        logger.info("[%s] Stream cancelled", self.provider_id)
                        return
                    data = _sse_data(line)
                    if data is None:
                        continue
                    yield from self._decode(data, pending)
                yield from self._finish(pending)
        except httpx.TimeoutException as error:
            raise transport_error(
                provider_id=self.provider_id,
                message=f"Request timed out: {error}",
                timed_out=True,
            ) from error
        except httpx.HTTPError as error:
            raise transport_error(
                provider_id=self.provider_id,
                message=f"Network error: {error}",
            ) from error


class OpenAIChatTransport(HttpChatTransport):
    """OpenAI-compatible `/chat/completions` streaming.

    Tool-call argument fragments arrive spread over many events; they are
    buffered per call index and emitted as whole `ToolCallPart`s when the
    choice finishes.
    """

    def __init__(self, *, discover_models: bool = False, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.discover_models = discover_models
        self.requires_api_key = not discover_models

    def list_model_ids(self) -> list[str]:
        if not self.discover_models:
            return super().list_model_ids()
        try:
            response = self._client.get(f"{self.base_url}/models", headers=self._headers())
            response.raise_for_status()
        except httpx.HTTPStatusError as error:
            raise transport_error(
                provider_id=self.provider_id,
                message=f"Model listing failed: HTTP {error.response.status_code}",
                status_code=error.response.status_code,
            ) from error
        except httpx.HTTPError as error:
            raise transport_error(
                provider_id=self.provider_id,
                message=f"Model listing failed: {error}",
            ) from error
        return [str(item["id"]) for item in response.json().get("data", []) if "id" in item]

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            return {}
        return {"Authorization": f"Bearer {self.api_key}"}

    def _build_request(
        self,
        *,
        model: str,
        messages: list[ChatMessage],
        temperature: float | None,
        max_tokens: int | None,
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        payload: dict[str, Any] = {
            "model": model,
            "messages": [{"role": msg.role, "content": msg.content} for msg in messages],
            "stream": True,
        }
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        return f"{self.base_url}/chat/completions", self._headers(), payload

    def _decode(self, data: str, pending: _PendingCalls) -> Iterator[RawChunk]:
        if data == "[DONE]":
            yield from _flush_tool_calls(pending)
            return
        event = _load_event(self.provider_id, data)
        for choice in event.get("choices", []):
            delta = choice.get("delta") or {}
            content = delta.get("content")
            if content:
                yield TextPart(content)
            for fragment in delta.get("tool_calls") or []:
                call = pending.setdefault(fragment.get("index", 0), _PendingToolCall())
                if fragment.get("id"):
                    call.call_id = fragment["id"]
                function = fragment.get("function") or {}
                if function.get("name"):
                    call.name = function["name"]
                if function.get("arguments"):
                    call.arguments.append(function["arguments"])
            if choice.get("finish_reason"):
                yield from _flush_tool_calls(pending)

    def _finish(self, pending: _PendingCalls) -> Iterator[RawChunk]:
        return _flush_tool_calls(pending)


class AnthropicChatTransport(HttpChatTransport):
    """Anthropic Messages API streaming (`/v1/messages`)."""

    def _build_request(
        self,
        *,
        model: str,
        messages: list[ChatMessage],
        temperature: float | None,
        max_tokens: int | None,
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        system = "\n\n".join(msg.content for msg in messages if msg.role == "system")
        payload: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens or DEFAULT_MAX_TOKENS,
            "messages": [
                {"role": msg.role, "content": msg.content}
                for msg in messages
                if msg.role != "system"
            ],
            "stream": True,
        }
        if system:
            payload["system"] = system
        if temperature is not None:
            payload["temperature"] = temperature
        headers = {
            "x-api-key": self.api_key or "",
            "anthropic-version": ANTHROPIC_API_VERSION,
        }
        return f"{self.base_url}/messages", headers, payload

    def _decode(self, data: str, pending: _PendingCalls) -> Iterator[RawChunk]:
        event = _load_event(self.provider_id, data)
        event_type = event.get("type")
        index = event.get("index", 0)
        if event_type == "content_block_start":
            block = event.get("content_block") or {}
            if block.get("type") == "tool_use":
                pending[index] = _PendingToolCall(
                    name=block.get("name", ""),
                    call_id=block.get("id"),
                )
        elif event_type == "content_block_delta":
            delta = event.get("delta") or {}
            if delta.get("type") == "text_delta" and delta.get("text"):
                yield TextPart(delta["text"])
            elif delta.get("type") == "input_json_delta" and index in pending:
                pending[index].arguments.append(delta.get("partial_json", ""))
        elif event_type == "content_block_stop" and index in pending:
            yield pending.pop(index).to_part()
        elif event_type == "error":
            error = event.get("error") or {}
            raise transport_error(
                provider_id=self.provider_id,
                message=f"{error.get('type', 'error')}: {error.get('message', '')}",
            )


class GeminiChatTransport(HttpChatTransport):
    """Gemini `streamGenerateContent` streaming; each event yields a list of parts."""

    def _build_request(
        self,
        *,
        model: str,
        messages: list[ChatMessage],
        temperature: float | None,
        max_tokens: int | None,
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        system = "\n\n".join(msg.content for msg in messages if msg.role == "system")
        payload: dict[str, Any] = {
            "contents": [
                {
                    "role": "model" if msg.role == "assistant" else "user",
                    "parts": [{"text": msg.content}],
                }
                for msg in messages
                if msg.role != "system"
            ],
        }
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}
        generation_config: dict[str, Any] = {}
        if temperature is not None:
            generation_config["temperature"] = temperature
        if max_tokens is not None:
            generation_config["maxOutputTokens"] = max_tokens
        if generation_config:
            payload["generationConfig"] = generation_config
        url = f"{self.base_url}/models/{model}:streamGenerateContent?alt=sse"
        return url, {"x-goog-api-key": self.api_key or ""}, payload

    def _decode(self, data: str, pending: _PendingCalls) -> Iterator[RawChunk]:
        event = _load_event(self.provider_id, data)
        if "error" in event:
            error = event["error"]
            raise transport_error(
                provider_id=self.provider_id,
                message=f"{error.get('status', 'error')}: {error.get('message', '')}",
                status_code=error.get("code"),
            )
        candidates = event.get("candidates") or []
        if not candidates:
            return
        parts: list[StreamPart] = []
        for raw_part in (candidates[0].get("content") or {}).get("parts") or []:
            if raw_part.get("text"):
                parts.append(TextPart(raw_part["text"]))
            elif "functionCall" in raw_part:
                call = raw_part["functionCall"]
                parts.append(
                    ToolCallPart(tool=call.get("name", ""), arguments=call.get("args") or {}),
                )
        if parts:
            yield parts


def _flush_tool_calls(pending: _PendingCalls) -> Iterator[RawChunk]:
    if not pending:
        return
    parts: list[StreamPart] = [pending[index].to_part() for index in sorted(pending)]
    pending.clear()
    yield parts


def _sse_data(line: str) -> str | None:
    if not line.startswith("data:"):
        return None
    data = line[len("data:") :].strip()
    return data or None


def _load_event(provider_id: str, data: str) -> dict[str, Any]:
    try:
        event = json.loads(data)
    except json.JSONDecodeError as error:
        raise AdapterTransportError(
            f"[{provider_id}] Malformed stream event: {data[:_ERROR_BODY_LIMIT]}",
            transient=False,
        ) from error
    if not isinstance(event, dict):
        return {}
    return event


def _parse_arguments(raw: str) -> dict[str, Any]:
    if not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Tool call arguments are not valid JSON: %s", raw[:_ERROR_BODY_LIMIT])
        return {"raw": raw}
    if isinstance(parsed, dict):
        return parsed
    return {"value": parsed}
