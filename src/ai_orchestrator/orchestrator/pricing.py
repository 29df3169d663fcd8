"""Token and cost estimation helpers for provider routing."""

from __future__ import annotations

import math
from dataclasses import dataclass

from ai_orchestrator.orchestrator.backend.vendors import VENDOR_PROFILES

CHARS_PER_TOKEN = 4


@dataclass(frozen=True, slots=True)
class RouteEstimate:
    """Static per-route cost (USD per request) and latency (ms) estimate."""

    cost_usd: float
    latency_ms: int


ROUTE_ESTIMATES: dict[str, RouteEstimate] = {
    "critical": RouteEstimate(cost_usd=0.075, latency_ms=2500),
    "local-fast": RouteEstimate(cost_usd=0.0001, latency_ms=50),
    "local-balanced": RouteEstimate(cost_usd=0.001, latency_ms=200),
    "reasoning": RouteEstimate(cost_usd=0.015, latency_ms=3000),
    "heavy": RouteEstimate(cost_usd=0.012, latency_ms=2000),
    "large-context": RouteEstimate(cost_usd=0.020, latency_ms=1500),
    "default": RouteEstimate(cost_usd=0.012, latency_ms=2000),
}


def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four characters, rounded up."""

    return math.ceil(len(text) / CHARS_PER_TOKEN)


def route_estimate(route: str) -> RouteEstimate:
    return ROUTE_ESTIMATES[route]


def estimate_cost_usd(
    *,
    provider_id: str,
    prompt_tokens: int | None,
    completion_tokens: int | None,
) -> float | None:
    """Estimate request cost in USD from token usage and vendor pricing."""

    profile = VENDOR_PROFILES.get(provider_id)
    if profile is None or prompt_tokens is None:
        return None
    cost = (prompt_tokens / 1_000_000) * profile.input_per_1m
    if completion_tokens is not None:
        cost += (completion_tokens / 1_000_000) * profile.output_per_1m
    return cost
