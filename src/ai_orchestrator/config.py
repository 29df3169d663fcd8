"""Runtime configuration for planning, routing, and backends."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from ai_orchestrator.orchestrator.backend.vendors import SUPPORTED_AGENTS, VENDOR_PROFILES
from ai_orchestrator.orchestrator.selector import SelectionPolicy


@dataclass(slots=True)
class SelectorSettings:
    """Routing thresholds (complexity on a 1-10 scale, context in tokens)."""

    local_fast_max_complexity: int = 2
    local_fast_max_context: int = 2_000
    local_balanced_max_complexity: int = 5
    local_balanced_max_context: int = 8_000
    heavy_max_complexity: int = 8
    large_context_threshold: int = 100_000

    def to_policy(self) -> SelectionPolicy:
        return SelectionPolicy(
            local_fast_max_complexity=self.local_fast_max_complexity,
            local_fast_max_context=self.local_fast_max_context,
            local_balanced_max_complexity=self.local_balanced_max_complexity,
            local_balanced_max_context=self.local_balanced_max_context,
            heavy_max_complexity=self.heavy_max_complexity,
            large_context_threshold=self.large_context_threshold,
        )


@dataclass(slots=True)
class BackendSettings:
    """Credentials and endpoints of the HTTP backends."""

    openai_api_key: str | None = None
    anthropic_api_key: str | None = None
    gemini_api_key: str | None = None
    fireworks_api_key: str | None = None
    v0_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com/v1"
    anthropic_base_url: str = "https://api.anthropic.com/v1"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    fireworks_base_url: str = "https://api.fireworks.ai/inference/v1"
    v0_base_url: str = "https://api.v0.dev/v1"
    http_timeout_seconds: float = 120.0


@dataclass(slots=True)
class LocalSettings:
    """Local OpenAI-compatible runtime (for example Ollama)."""

    enabled: bool = False
    base_url: str = "http://localhost:11434/v1"


@dataclass(slots=True)
class CliSettings:
    """Optional CLI agent replacing the HTTP transport of the listed providers."""

    provider_ids: tuple[str, ...] = ()
    command_template: str = ""


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    planner_agent: str = "gpt"
    selector: SelectorSettings = field(default_factory=SelectorSettings)
    backends: BackendSettings = field(default_factory=BackendSettings)
    local: LocalSettings = field(default_factory=LocalSettings)
    cli: CliSettings = field(default_factory=CliSettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with defaults for local development."""

        defaults = BackendSettings()
        return cls(
            planner_agent=os.getenv("AI_ORCHESTRATOR_PLANNER_AGENT", "gpt").strip().lower(),
            selector=SelectorSettings(
                local_fast_max_complexity=int(
                    os.getenv("AI_ORCHESTRATOR_LOCAL_FAST_MAX_COMPLEXITY", "2"),
                ),
                local_fast_max_context=int(
                    os.getenv("AI_ORCHESTRATOR_LOCAL_FAST_MAX_CONTEXT", "2000"),
                ),
                local_balanced_max_complexity=int(
                    os.getenv("AI_ORCHESTRATOR_LOCAL_BALANCED_MAX_COMPLEXITY", "5"),
                ),
                local_balanced_max_context=int(
                    os.getenv("AI_ORCHESTRATOR_LOCAL_BALANCED_MAX_CONTEXT", "8000"),
                ),
                heavy_max_complexity=int(os.getenv("AI_ORCHESTRATOR_HEAVY_MAX_COMPLEXITY", "8")),
                large_context_threshold=int(
                    os.getenv("AI_ORCHESTRATOR_LARGE_CONTEXT_THRESHOLD", "100000"),
                ),
            ),
            backends=BackendSettings(
                openai_api_key=_env_optional("OPENAI_API_KEY"),
                anthropic_api_key=_env_optional("ANTHROPIC_API_KEY"),
                gemini_api_key=_env_optional("GEMINI_API_KEY") or _env_optional("GOOGLE_API_KEY"),
                fireworks_api_key=_env_optional("FIREWORKS_API_KEY"),
                v0_api_key=_env_optional("V0_API_KEY"),
                openai_base_url=os.getenv(
                    "AI_ORCHESTRATOR_OPENAI_BASE_URL",
                    defaults.openai_base_url,
                ),
                anthropic_base_url=os.getenv(
                    "AI_ORCHESTRATOR_ANTHROPIC_BASE_URL",
                    defaults.anthropic_base_url,
                ),
                gemini_base_url=os.getenv(
                    "AI_ORCHESTRATOR_GEMINI_BASE_URL",
                    defaults.gemini_base_url,
                ),
                fireworks_base_url=os.getenv(
                    "AI_ORCHESTRATOR_FIREWORKS_BASE_URL",
                    defaults.fireworks_base_url,
                ),
                v0_base_url=os.getenv("AI_ORCHESTRATOR_V0_BASE_URL", defaults.v0_base_url),
                http_timeout_seconds=float(
                    os.getenv("AI_ORCHESTRATOR_HTTP_TIMEOUT_SECONDS", "120"),
                ),
            ),
            local=LocalSettings(
                enabled=_env_bool("AI_ORCHESTRATOR_LOCAL_ENABLED", default=False),
                base_url=os.getenv("AI_ORCHESTRATOR_LOCAL_BASE_URL", "http://localhost:11434/v1"),
            ),
            cli=CliSettings(
                provider_ids=_env_csv("AI_ORCHESTRATOR_CLI_PROVIDERS"),
                command_template=os.getenv("AI_ORCHESTRATOR_CLI_COMMAND", ""),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error on inconsistent values."""

        if self.planner_agent not in SUPPORTED_AGENTS:
            raise ValueError(
                f"AI_ORCHESTRATOR_PLANNER_AGENT must be one of {', '.join(SUPPORTED_AGENTS)}; "
                f"got {self.planner_agent!r}.",
            )
        if self.backends.http_timeout_seconds <= 0:
            raise ValueError("AI_ORCHESTRATOR_HTTP_TIMEOUT_SECONDS must be > 0.")
        self.selector.to_policy().validate()
        if self.cli.command_template.strip():
            unknown = [pid for pid in self.cli.provider_ids if pid not in VENDOR_PROFILES]
            if unknown or not self.cli.provider_ids:
                raise ValueError(
                    "AI_ORCHESTRATOR_CLI_PROVIDERS must list known providers "
                    f"({', '.join(VENDOR_PROFILES)}); got {', '.join(unknown) or 'none'}.",
                )
            if (
                "{prompt}" not in self.cli.command_template
                and "{prompt_file}" not in self.cli.command_template
            ):
                raise ValueError(
                    "AI_ORCHESTRATOR_CLI_COMMAND must include {prompt} or {prompt_file}.",
                )


def _env_optional(name: str) -> str | None:
    value = os.getenv(name, "").strip()
    return value or None


def _env_csv(name: str) -> tuple[str, ...]:
    raw = os.getenv(name, "")
    return tuple(part.strip().lower() for part in raw.split(",") if part.strip())


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off", ""}:
        return False
    raise ValueError(f"{name} must be a boolean flag, got {value!r}.")
