"""Backend interface shared by every chat adapter and wire transport."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from ai_orchestrator.orchestrator.errors import ValidationError
from ai_orchestrator.orchestrator.models import ChatMessage, StreamPart, ToolCallPart

if TYPE_CHECKING:
    from ai_orchestrator.orchestrator.events import CancellationToken

DEFAULT_MAX_TOKENS = 4096


@dataclass(frozen=True, slots=True)
class ChatRequest:
    """Inputs for one backend conversation turn."""

    messages: tuple[ChatMessage, ...]
    system_prompt: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    model: str | None = None


@dataclass(frozen=True, slots=True)
class ChatResponseChunk:
    """One streamed unit; the last chunk has `done=True` and a finish reason."""

    part: StreamPart | None
    done: bool = False
    finish_reason: str | None = None


@dataclass(slots=True)
class ChatResponse:
    """Aggregated response of a non-streaming call."""

    content: str
    model: str
    finish_reason: str | None = None
    tool_calls: list[ToolCallPart] = field(default_factory=list)


RawChunk = StreamPart | list[StreamPart]


class ChatTransport(Protocol):
    """Wire protocol of one backend family."""

    def list_model_ids(self) -> list[str]:
        """Return model identifiers the backend can serve right now."""

    def open_stream(
        self,
        *,
        model: str,
        messages: list[ChatMessage],
        temperature: float | None,
        max_tokens: int | None,
        cancellation: CancellationToken | None,
    ) -> Iterator[RawChunk]:
        """Stream raw chunks, each either one part or a list of parts."""


def validate_request(request: ChatRequest) -> None:
    """Reject malformed requests before any network or process call."""

    if not request.messages:
        raise ValidationError("Chat request must contain at least one message")
    if request.temperature is not None and not 0 <= request.temperature <= 1:
        raise ValidationError("Temperature must be between 0 and 1")
    if request.max_tokens is not None and request.max_tokens < 1:
        raise ValidationError("Max tokens must be greater than 0")


def flatten_parts(chunks: Iterable[RawChunk]) -> Iterator[StreamPart]:
    """Emit one part at a time from single-part or list-of-parts chunks."""

    for chunk in chunks:
        if isinstance(chunk, list):
            yield from chunk
        else:
            yield chunk
