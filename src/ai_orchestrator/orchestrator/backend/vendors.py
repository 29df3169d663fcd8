"""Static per-vendor configuration and specialist role table."""

from __future__ import annotations

from dataclasses import dataclass, field

from ai_orchestrator.orchestrator.models import AgentInfo, AgentType


@dataclass(frozen=True, slots=True)
class VendorProfile:
    """Everything that differs between backends apart from the wire protocol.

    `vendor_tags` filter the backend's model ids; `preferred_models` is the
    ordered predicate chain (substring matches, newest/largest first) applied
    to the filtered ids.
    """

    provider_id: str
    display_name: str
    vendor_tags: tuple[str, ...]
    preferred_models: tuple[str, ...]
    models: tuple[str, ...]
    max_context_tokens: int
    input_per_1m: float
    output_per_1m: float
    supports_tool_calling: bool = True
    supports_streaming: bool = True
    is_local: bool = False
    wire_names: dict[str, str] = field(default_factory=dict)

    def matches(self, model_id: str) -> bool:
        lowered = model_id.lower()
        return any(tag in lowered for tag in self.vendor_tags)

    def wire_name(self, model_id: str) -> str:
        return self.wire_names.get(model_id, model_id)


OPENAI = VendorProfile(
    provider_id="openai",
    display_name="GPT (OpenAI)",
    vendor_tags=("gpt", "openai"),
    preferred_models=("gpt-4o", "gpt-4-turbo", "gpt-4"),
    models=("gpt-4o", "gpt-4-turbo", "gpt-4", "gpt-3.5-turbo"),
    max_context_tokens=128_000,
    input_per_1m=2.50,
    output_per_1m=10.00,
)

ANTHROPIC = VendorProfile(
    provider_id="anthropic",
    display_name="Claude (Anthropic)",
    vendor_tags=("claude", "anthropic"),
    preferred_models=("claude-sonnet-4", "claude-3-5-sonnet", "claude-3-opus", "claude-3-sonnet"),
    models=(
        "claude-sonnet-4.5",
        "claude-3-5-sonnet-20241022",
        "claude-3-opus-20240229",
        "claude-3-haiku-20240307",
    ),
    max_context_tokens=200_000,
    input_per_1m=3.00,
    output_per_1m=15.00,
    wire_names={"claude-sonnet-4.5": "claude-sonnet-4-5"},
)

GOOGLE = VendorProfile(
    provider_id="google",
    display_name="Gemini (Google)",
    vendor_tags=("gemini", "google"),
    preferred_models=("gemini-2.0", "gemini-1.5-pro", "gemini-pro"),
    models=("gemini-2.0-flash", "gemini-1.5-pro", "gemini-pro"),
    max_context_tokens=1_000_000,
    input_per_1m=0.10,
    output_per_1m=0.40,
)

VERCEL = VendorProfile(
    provider_id="vercel",
    display_name="v0 (Vercel)",
    vendor_tags=("v0", "vercel"),
    preferred_models=(),
    models=("v0-1.5-md", "v0-1.0-md"),
    max_context_tokens=128_000,
    input_per_1m=3.00,
    output_per_1m=15.00,
    supports_tool_calling=False,
)

FIREWORKS = VendorProfile(
    provider_id="fireworks",
    display_name="Fireworks.ai",
    vendor_tags=("llama", "deepseek", "fireworks"),
    preferred_models=("llama-v3p3-70b", "deepseek-v3", "llama-v3p1-8b"),
    models=("llama-v3p3-70b", "deepseek-v3", "llama-v3p1-8b"),
    max_context_tokens=128_000,
    input_per_1m=0.90,
    output_per_1m=0.90,
    wire_names={
        "llama-v3p3-70b": "accounts/fireworks/models/llama-v3p3-70b-instruct",
        "deepseek-v3": "accounts/fireworks/models/deepseek-v3",
        "llama-v3p1-8b": "accounts/fireworks/models/llama-v3p1-8b-instruct",
    },
)

LOCAL_NPU = VendorProfile(
    provider_id="local-npu",
    display_name="Local NPU",
    vendor_tags=("phi3",),
    preferred_models=("phi3:3b-mini",),
    models=("phi3:3b-mini",),
    max_context_tokens=4_096,
    input_per_1m=0.0,
    output_per_1m=0.0,
    supports_tool_calling=False,
    is_local=True,
)

LOCAL_RAM = VendorProfile(
    provider_id="local-ram",
    display_name="Local RAM",
    vendor_tags=("llama3",),
    preferred_models=("llama3.1:8b",),
    models=("llama3.1:8b",),
    max_context_tokens=128_000,
    input_per_1m=0.0,
    output_per_1m=0.0,
    supports_tool_calling=False,
    is_local=True,
)

VENDOR_PROFILES: dict[str, VendorProfile] = {
    profile.provider_id: profile
    for profile in (OPENAI, ANTHROPIC, GOOGLE, VERCEL, FIREWORKS, LOCAL_NPU, LOCAL_RAM)
}

AGENT_CAPABILITIES: dict[AgentType, AgentInfo] = {
    "v0": AgentInfo(
        id="v0",
        name="v0",
        description="UI component generation specialist",
        capabilities=("UI generation", "React components", "Tailwind CSS", "shadcn/ui"),
        model_family="v0",
        vendor="vercel",
    ),
    "claude": AgentInfo(
        id="claude",
        name="Claude",
        description="Code writing and refactoring specialist",
        capabilities=("Code generation", "Refactoring", "Bug fixing", "Documentation"),
        model_family="claude",
        vendor="anthropic",
    ),
    "gemini": AgentInfo(
        id="gemini",
        name="Gemini",
        description="Multimodal analysis specialist",
        capabilities=("Image analysis", "Code + UI", "Complex reasoning", "Long context"),
        model_family="gemini",
        vendor="google",
    ),
    "gpt": AgentInfo(
        id="gpt",
        name="GPT",
        description="General-purpose AI assistant",
        capabilities=("General coding", "Explanations", "Planning", "Research"),
        model_family="gpt",
        vendor="openai",
    ),
}

SUPPORTED_AGENTS: tuple[AgentType, ...] = ("v0", "claude", "gemini", "gpt")
DEFAULT_AGENT: AgentType = "gpt"


def provider_for_agent(agent: AgentType) -> str:
    """Provider id serving a specialist role."""

    return AGENT_CAPABILITIES[agent].vendor
