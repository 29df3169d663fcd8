"""Deterministic provider selection by cost, quality, and latency thresholds."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ai_orchestrator.orchestrator.errors import NoProviderAvailable, ValidationError
from ai_orchestrator.orchestrator.pricing import estimate_tokens, route_estimate
from ai_orchestrator.orchestrator.registry import Provider, ProviderRegistry

logger = logging.getLogger(__name__)

DEFAULT_COMPLEXITY = 5
MIN_COMPLEXITY = 1
MAX_COMPLEXITY = 10

ROUTE_CRITICAL = "critical"
ROUTE_LOCAL_FAST = "local-fast"
ROUTE_LOCAL_BALANCED = "local-balanced"
ROUTE_REASONING = "reasoning"
ROUTE_HEAVY = "heavy"
ROUTE_LARGE_CONTEXT = "large-context"
ROUTE_DEFAULT = "default"

_RATIONALES: dict[str, str] = {
    ROUTE_CRITICAL: "Critical or security-related task, highest-quality backend",
    ROUTE_LOCAL_FAST: "Simple task, local NPU is fastest and free",
    ROUTE_LOCAL_BALANCED: "Medium task, local RAM is fast and nearly free",
    ROUTE_REASONING: "Complex reasoning task, reasoning-specialised model",
    ROUTE_HEAVY: "Heavy task or tool calling needed, strong tool-calling backend",
    ROUTE_LARGE_CONTEXT: "Large context window needed, long-context backend",
    ROUTE_DEFAULT: "Default choice, balance of cost, quality, and speed",
}


@dataclass(frozen=True, slots=True)
class TaskCharacteristics:
    """Routing inputs derived from one task."""

    prompt: str = ""
    context: tuple[str, ...] = ()
    complexity: int = DEFAULT_COMPLEXITY
    requires_reasoning: bool = False
    requires_tool_calling: bool = False
    critical: bool = False
    security_related: bool = False

    def __post_init__(self) -> None:
        if not MIN_COMPLEXITY <= self.complexity <= MAX_COMPLEXITY:
            raise ValidationError(
                f"Complexity must be between {MIN_COMPLEXITY} and {MAX_COMPLEXITY}, "
                f"got {self.complexity}",
            )

    @property
    def context_tokens(self) -> int:
        return estimate_tokens(self.prompt) + sum(
            estimate_tokens(fragment) for fragment in self.context
        )


@dataclass(frozen=True, slots=True)
class RouteTarget:
    """Provider and model a route resolves to."""

    provider_id: str
    model: str


@dataclass(frozen=True, slots=True)
class SelectionPolicy:
    """Thresholds and targets of the routing decision.

    Complexity limits are inclusive, local context limits are exclusive, and
    the large-context threshold must be strictly exceeded.
    """

    local_fast_max_complexity: int = 2
    local_fast_max_context: int = 2_000
    local_balanced_max_complexity: int = 5
    local_balanced_max_context: int = 8_000
    heavy_max_complexity: int = 8
    large_context_threshold: int = 100_000
    targets: dict[str, RouteTarget] = field(
        default_factory=lambda: {
            ROUTE_CRITICAL: RouteTarget("anthropic", "claude-sonnet-4.5"),
            ROUTE_LOCAL_FAST: RouteTarget("local-npu", "phi3:3b-mini"),
            ROUTE_LOCAL_BALANCED: RouteTarget("local-ram", "llama3.1:8b"),
            ROUTE_REASONING: RouteTarget("fireworks", "deepseek-v3"),
            ROUTE_HEAVY: RouteTarget("fireworks", "llama-v3p3-70b"),
            ROUTE_LARGE_CONTEXT: RouteTarget("google", "gemini-2.0-flash"),
            ROUTE_DEFAULT: RouteTarget("fireworks", "llama-v3p3-70b"),
        },
    )

    def validate(self) -> None:
        """Reject threshold combinations that make routes unreachable."""

        if not (
            MIN_COMPLEXITY
            <= self.local_fast_max_complexity
            <= self.local_balanced_max_complexity
            <= self.heavy_max_complexity
            <= MAX_COMPLEXITY
        ):
            raise ValueError(
                "Complexity thresholds must satisfy "
                f"{MIN_COMPLEXITY} <= local_fast <= local_balanced <= heavy <= {MAX_COMPLEXITY}",
            )
        if not 0 < self.local_fast_max_context <= self.local_balanced_max_context:
            raise ValueError("Context thresholds must satisfy 0 < local_fast <= local_balanced")
        if self.large_context_threshold <= 0:
            raise ValueError("Large-context threshold must be positive")
        missing = sorted(set(_RATIONALES) - set(self.targets))
        if missing:
            raise ValueError(f"Missing route targets: {', '.join(missing)}")


@dataclass(frozen=True, slots=True)
class ProviderSelection:
    """Outcome of one routing decision. Never revised in place."""

    provider: Provider
    model: str
    estimated_cost_usd: float
    estimated_latency_ms: int
    rationale: str
    route: str


class ProviderSelector:
    """Pure decision function over task characteristics and live availability."""

    def __init__(self, registry: ProviderRegistry, policy: SelectionPolicy | None = None) -> None:
        self.registry = registry
        self.policy = policy or SelectionPolicy()
        self.policy.validate()

    def select(self, characteristics: TaskCharacteristics) -> ProviderSelection:
        """Pick the provider/model for a task; first matching route wins."""

        route = self.resolve_route(characteristics)
        target = self.policy.targets[route]
        provider = self.registry.get(target.provider_id)
        if provider is None or not provider.available:
            raise NoProviderAvailable(
                f"Provider {target.provider_id!r} for route {route!r} is not available",
                provider_id=target.provider_id,
                route=route,
            )
        estimate = route_estimate(route)
        selection = ProviderSelection(
            provider=provider,
            model=target.model,
            estimated_cost_usd=estimate.cost_usd,
            estimated_latency_ms=estimate.latency_ms,
            rationale=_RATIONALES[route],
            route=route,
        )
        logger.debug(
            "Selected %s/%s via route %s (complexity=%s, context_tokens=%s)",
            provider.id,
            target.model,
            route,
            characteristics.complexity,
            characteristics.context_tokens,
        )
        return selection

    def resolve_route(self, characteristics: TaskCharacteristics) -> str:
        policy = self.policy
        complexity = characteristics.complexity
        context_tokens = characteristics.context_tokens
        tool_calling = characteristics.requires_tool_calling

        if characteristics.critical or characteristics.security_related:
            return ROUTE_CRITICAL
        if (
            self._is_available(ROUTE_LOCAL_FAST)
            and complexity <= policy.local_fast_max_complexity
            and context_tokens < policy.local_fast_max_context
            and not tool_calling
        ):
            return ROUTE_LOCAL_FAST
        if (
            self._is_available(ROUTE_LOCAL_BALANCED)
            and complexity <= policy.local_balanced_max_complexity
            and context_tokens < policy.local_balanced_max_context
            and not tool_calling
        ):
            return ROUTE_LOCAL_BALANCED
        if complexity <= policy.heavy_max_complexity or tool_calling:
            return ROUTE_REASONING if characteristics.requires_reasoning else ROUTE_HEAVY
        if context_tokens > policy.large_context_threshold:
            return ROUTE_LARGE_CONTEXT
        return ROUTE_DEFAULT

    def _is_available(self, route: str) -> bool:
        return self.registry.is_available(self.policy.targets[route].provider_id)
