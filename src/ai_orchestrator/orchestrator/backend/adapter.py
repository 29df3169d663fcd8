"""Generic chat adapter parameterised by a vendor profile and a wire transport."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import replace
from typing import TYPE_CHECKING

from ai_orchestrator.orchestrator.backend.base import (
    ChatRequest,
    ChatResponse,
    ChatResponseChunk,
    ChatTransport,
    RawChunk,
    flatten_parts,
    validate_request,
)
from ai_orchestrator.orchestrator.errors import AdapterTransportError, NoProviderAvailable
from ai_orchestrator.orchestrator.events import Observers
from ai_orchestrator.orchestrator.models import ChatMessage, TextPart, ToolCallPart

if TYPE_CHECKING:
    from ai_orchestrator.orchestrator.backend.vendors import VendorProfile
    from ai_orchestrator.orchestrator.events import CancellationToken

logger = logging.getLogger(__name__)


class ChatAdapter:
    """Uniform send/stream surface over one backend."""

    def __init__(self, profile: VendorProfile, transport: ChatTransport) -> None:
        self.profile = profile
        self.transport = transport
        self._available = False
        self.on_did_change_availability: Observers[bool] = Observers(
            f"{profile.provider_id}.availability",
        )

    @property
    def provider_id(self) -> str:
        return self.profile.provider_id

    @property
    def display_name(self) -> str:
        return self.profile.display_name

    @property
    def is_available(self) -> bool:
        return self._available

    def set_availability(self, available: bool) -> None:
        if self._available == available:
            return
        self._available = available
        logger.info("[%s] Availability: %s", self.display_name, available)
        self.on_did_change_availability.emit(available)

    def refresh_availability(self) -> bool:
        """Derive availability from the backend's current model catalog."""

        try:
            model_ids = self.transport.list_model_ids()
        except AdapterTransportError as error:
            logger.warning("[%s] Error checking availability: %s", self.display_name, error)
            self.set_availability(False)
            return False
        self.set_availability(any(self.profile.matches(model_id) for model_id in model_ids))
        return self._available

    def select_model(self) -> str:
        """Pick the preferred vendor model among those the backend serves."""

        candidates = [
            model_id
            for model_id in self.transport.list_model_ids()
            if self.profile.matches(model_id)
        ]
        if not candidates:
            raise NoProviderAvailable(
                f"No {self.display_name} models available",
                provider_id=self.provider_id,
            )
        for preferred in self.profile.preferred_models:
            for model_id in candidates:
                if preferred in model_id:
                    return model_id
        return candidates[0]

    def stream_message(
        self,
        request: ChatRequest,
        cancellation: CancellationToken | None = None,
    ) -> Iterator[ChatResponseChunk]:
        """Validate, open the backend stream and yield one part per chunk.

        Validation and model choice happen eagerly; the returned iterator ends
        with a `done` chunk carrying the finish reason.
        """

        validate_request(request)
        model = request.model or self.select_model()
        logger.info("[%s] Streaming with model %s", self.display_name, model)
        raw = self.transport.open_stream(
            model=self.profile.wire_name(model),
            messages=_canonical_messages(request),
            temperature=request.temperature,
            max_tokens=request.max_tokens,
            cancellation=cancellation,
        )
        return self._relay(raw, cancellation)

    def send_message(self, request: ChatRequest) -> ChatResponse:
        """Collect a full streamed response."""

        validate_request(request)
        model = request.model or self.select_model()
        content: list[str] = []
        tool_calls: list[ToolCallPart] = []
        finish_reason: str | None = None
        for chunk in self.stream_message(replace(request, model=model)):
            if chunk.done:
                finish_reason = chunk.finish_reason
            elif isinstance(chunk.part, TextPart):
                content.append(chunk.part.value)
            elif isinstance(chunk.part, ToolCallPart):
                tool_calls.append(chunk.part)
        return ChatResponse(
            content="".join(content),
            model=model,
            finish_reason=finish_reason,
            tool_calls=tool_calls,
        )

    def _relay(
        self,
        raw: Iterator[RawChunk],
        cancellation: CancellationToken | None,
    ) -> Iterator[ChatResponseChunk]:
        finish_reason = "stop"
        try:
            for part in flatten_parts(raw):
                if cancellation is not None and cancellation.is_cancellation_requested:
                    finish_reason = "cancelled"
                    break
                if isinstance(part, ToolCallPart):
                    finish_reason = "tool_calls"
                yield ChatResponseChunk(part=part)
        except AdapterTransportError:
            logger.error("[%s] Stream error", self.display_name)
            raise
        finally:
            close = getattr(raw, "close", None)
            if close is not None:
                close()
        yield ChatResponseChunk(part=None, done=True, finish_reason=finish_reason)


def _canonical_messages(request: ChatRequest) -> list[ChatMessage]:
    messages: list[ChatMessage] = []
    if request.system_prompt:
        messages.append(ChatMessage(role="system", content=request.system_prompt))
    messages.extend(request.messages)
    return messages

