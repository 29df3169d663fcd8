"""Chat adapters and wire transports."""

from ai_orchestrator.orchestrator.backend.adapter import ChatAdapter
from ai_orchestrator.orchestrator.backend.base import (
    ChatRequest,
    ChatResponse,
    ChatResponseChunk,
    ChatTransport,
)
from ai_orchestrator.orchestrator.backend.cli_backend import CliChatTransport
from ai_orchestrator.orchestrator.backend.http_backend import (
    AnthropicChatTransport,
    GeminiChatTransport,
    OpenAIChatTransport,
)
from ai_orchestrator.orchestrator.backend.vendors import VENDOR_PROFILES, VendorProfile

__all__ = [
    "VENDOR_PROFILES",
    "AnthropicChatTransport",
    "ChatAdapter",
    "ChatRequest",
    "ChatResponse",
    "ChatResponseChunk",
    "ChatTransport",
    "CliChatTransport",
    "GeminiChatTransport",
    "OpenAIChatTransport",
    "VendorProfile",
]
