"""Use-case facade and default wiring of providers."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from typing import cast

import httpx

from ai_orchestrator.config import Settings
from ai_orchestrator.orchestrator.backend.adapter import ChatAdapter
from ai_orchestrator.orchestrator.backend.base import ChatTransport
from ai_orchestrator.orchestrator.backend.cli_backend import CliChatTransport
from ai_orchestrator.orchestrator.backend.http_backend import (
    AnthropicChatTransport,
    GeminiChatTransport,
    OpenAIChatTransport,
)
from ai_orchestrator.orchestrator.backend.vendors import (
    AGENT_CAPABILITIES,
    ANTHROPIC,
    DEFAULT_AGENT,
    FIREWORKS,
    GOOGLE,
    LOCAL_NPU,
    LOCAL_RAM,
    OPENAI,
    VENDOR_PROFILES,
    VERCEL,
)
from ai_orchestrator.orchestrator.events import CancellationToken
from ai_orchestrator.orchestrator.executor import TaskExecutor
from ai_orchestrator.orchestrator.models import (
    AgentInfo,
    AgentType,
    ProjectContext,
    StreamPart,
    Task,
    TaskChangeEvent,
    TaskPlan,
)
from ai_orchestrator.orchestrator.planner import RequestPlanner
from ai_orchestrator.orchestrator.registry import Provider, ProviderRegistry
from ai_orchestrator.orchestrator.selector import (
    ProviderSelection,
    ProviderSelector,
    TaskCharacteristics,
)
from ai_orchestrator.orchestrator.store import TaskStore

logger = logging.getLogger(__name__)


def build_default_transports(
    settings: Settings,
    *,
    http_client: httpx.Client | None = None,
) -> dict[str, ChatTransport]:
    """Create one transport per configured provider id."""

    backends = settings.backends
    common = {"timeout_seconds": backends.http_timeout_seconds, "client": http_client}
    transports: dict[str, ChatTransport] = {
        OPENAI.provider_id: OpenAIChatTransport(
            provider_id=OPENAI.provider_id,
            base_url=backends.openai_base_url,
            models=OPENAI.models,
            api_key=backends.openai_api_key,
            **common,
        ),
        ANTHROPIC.provider_id: AnthropicChatTransport(
            provider_id=ANTHROPIC.provider_id,
            base_url=backends.anthropic_base_url,
            models=ANTHROPIC.models,
            api_key=backends.anthropic_api_key,
            **common,
        ),
        GOOGLE.provider_id: GeminiChatTransport(
            provider_id=GOOGLE.provider_id,
            base_url=backends.gemini_base_url,
            models=GOOGLE.models,
            api_key=backends.gemini_api_key,
            **common,
        ),
        VERCEL.provider_id: OpenAIChatTransport(
            provider_id=VERCEL.provider_id,
            base_url=backends.v0_base_url,
            models=VERCEL.models,
            api_key=backends.v0_api_key,
            **common,
        ),
        FIREWORKS.provider_id: OpenAIChatTransport(
            provider_id=FIREWORKS.provider_id,
            base_url=backends.fireworks_base_url,
            models=FIREWORKS.models,
            api_key=backends.fireworks_api_key,
            **common,
        ),
    }
    if settings.local.enabled:
        for profile in (LOCAL_NPU, LOCAL_RAM):
            transports[profile.provider_id] = OpenAIChatTransport(
                provider_id=profile.provider_id,
                base_url=settings.local.base_url,
                models=profile.models,
                discover_models=True,
                **common,
            )
    if settings.cli.command_template.strip():
        for provider_id in settings.cli.provider_ids:
            transports[provider_id] = CliChatTransport(
                provider_id=provider_id,
                command_template=settings.cli.command_template,
                models=VENDOR_PROFILES[provider_id].models,
            )
    return transports


def build_default_registry(
    settings: Settings,
    *,
    transports: dict[str, ChatTransport] | None = None,
    refresh: bool = True,
) -> ProviderRegistry:
    """Register every provider with an adapter over its transport."""

    registry = ProviderRegistry()
    for provider_id, transport in (transports or build_default_transports(settings)).items():
        adapter = ChatAdapter(VENDOR_PROFILES[provider_id], transport)
        registry.register(Provider.from_adapter(adapter))
    if refresh:
        availability = registry.refresh_availability()
        logger.info(
            "Available providers: %s",
            ", ".join(sorted(pid for pid, ok in availability.items() if ok)) or "none",
        )
    return registry


class OrchestratorService:
    """Plan, route, and execute delegated tasks over a shared store."""

    def __init__(
        self,
        *,
        registry: ProviderRegistry,
        store: TaskStore | None = None,
        selector: ProviderSelector | None = None,
        planning_agent: AgentType = DEFAULT_AGENT,
    ) -> None:
        self.registry = registry
        self.store = store or TaskStore()
        self.selector = selector or ProviderSelector(registry)
        self.planner = RequestPlanner(registry, self.store, planning_agent=planning_agent)
        self.executor = TaskExecutor(self.selector, self.store)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        transports: dict[str, ChatTransport] | None = None,
    ) -> OrchestratorService:
        settings.validate()
        registry = build_default_registry(settings, transports=transports)
        return cls(
            registry=registry,
            selector=ProviderSelector(registry, settings.selector.to_policy()),
            planning_agent=cast(AgentType, settings.planner_agent),
        )

    def plan_tasks(self, request_text: str, context: ProjectContext) -> TaskPlan:
        return self.planner.plan(request_text, context)

    def execute_task(
        self,
        task_id: str,
        cancellation: CancellationToken | None = None,
    ) -> Iterator[StreamPart]:
        """Start a stored task; iterate the result to drive it to completion."""

        return self.executor.execute(self.store.get(task_id), cancellation)

    def select_provider(self, characteristics: TaskCharacteristics) -> ProviderSelection:
        return self.selector.select(characteristics)

    def get_all_tasks(self) -> list[Task]:
        return self.store.list()

    def get_task(self, task_id: str) -> Task | None:
        return self.store.find(task_id)

    def cancel_task(self, task_id: str) -> bool:
        return self.store.cancel(task_id)

    def delete_task(self, task_id: str) -> None:
        self.store.delete(task_id)
        logger.info("Deleted task %s", task_id)

    def ready_tasks(self) -> list[Task]:
        return self.store.ready_tasks()

    def get_available_agents(self) -> list[AgentInfo]:
        return list(AGENT_CAPABILITIES.values())

    def subscribe(self, listener: Callable[[TaskChangeEvent], None]) -> Callable[[], None]:
        return self.store.subscribe(listener)

    def refresh_availability(self) -> dict[str, bool]:
        return self.registry.refresh_availability()
