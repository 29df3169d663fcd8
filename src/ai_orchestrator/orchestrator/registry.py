"""In-memory provider registry with live availability."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ai_orchestrator.orchestrator.events import Observers

if TYPE_CHECKING:
    from ai_orchestrator.orchestrator.backend.adapter import ChatAdapter

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Provider:
    """Backend descriptor plus its mutable availability flag."""

    id: str
    display_name: str
    supports_streaming: bool
    supports_tool_calling: bool
    max_context_tokens: int
    input_per_1m: float
    output_per_1m: float
    is_local: bool = False
    available: bool = False
    adapter: ChatAdapter | None = field(default=None, repr=False)

    @classmethod
    def from_adapter(cls, adapter: ChatAdapter) -> Provider:
        """Describe a provider from its adapter's vendor profile."""

        profile = adapter.profile
        return cls(
            id=profile.provider_id,
            display_name=profile.display_name,
            supports_streaming=profile.supports_streaming,
            supports_tool_calling=profile.supports_tool_calling,
            max_context_tokens=profile.max_context_tokens,
            input_per_1m=profile.input_per_1m,
            output_per_1m=profile.output_per_1m,
            is_local=profile.is_local,
            available=adapter.is_available,
            adapter=adapter,
        )


@dataclass(frozen=True, slots=True)
class AvailabilityChange:
    """Emitted whenever a provider's availability flag flips."""

    provider_id: str
    available: bool


class ProviderRegistry:
    """Identity-keyed provider map.

    Providers that carry an adapter have their flag kept in sync with the
    adapter's availability notifications.
    """

    def __init__(self) -> None:
        self._providers: dict[str, Provider] = {}
        self._unsubscribers: dict[str, Callable[[], None]] = {}
        self._lock = threading.RLock()
        self.on_did_change_availability: Observers[AvailabilityChange] = Observers(
            "registry.availability",
        )

    def register(self, provider: Provider) -> None:
        """Add or replace a provider; the last registration for an id wins."""

        with self._lock:
            self._detach(provider.id)
            self._providers[provider.id] = provider
            if provider.adapter is not None:
                provider.available = provider.adapter.is_available
                notifications = provider.adapter.on_did_change_availability
                self._unsubscribers[provider.id] = notifications.subscribe(
                    lambda available, provider_id=provider.id: self.set_availability(
                        provider_id,
                        available,
                    ),
                )
        logger.info("Registered provider %s (available=%s)", provider.id, provider.available)

    def unregister(self, provider_id: str) -> Provider | None:
        with self._lock:
            self._detach(provider_id)
            return self._providers.pop(provider_id, None)

    def get(self, provider_id: str) -> Provider | None:
        with self._lock:
            return self._providers.get(provider_id)

    def list(self) -> list[Provider]:
        with self._lock:
            return list(self._providers.values())

    def get_by_capability(self, predicate: Callable[[Provider], bool]) -> list[Provider]:
        with self._lock:
            return [provider for provider in self._providers.values() if predicate(provider)]

    def is_available(self, provider_id: str) -> bool:
        with self._lock:
            provider = self._providers.get(provider_id)
            return provider is not None and provider.available

    def set_availability(self, provider_id: str, available: bool) -> None:
        with self._lock:
            provider = self._providers.get(provider_id)
            if provider is None or provider.available == available:
                return
            provider.available = available
        logger.info("Provider %s availability: %s", provider_id, available)
        self.on_did_change_availability.emit(AvailabilityChange(provider_id, available))

    def subscribe(self, listener: Callable[[AvailabilityChange], None]) -> Callable[[], None]:
        return self.on_did_change_availability.subscribe(listener)

    def refresh_availability(self) -> dict[str, bool]:
        """Ask every adapter to re-derive its availability from its backend."""

        result: dict[str, bool] = {}
        for provider in self.list():
            if provider.adapter is not None:
                provider.adapter.refresh_availability()
            result[provider.id] = self.is_available(provider.id)
        return result

    def _detach(self, provider_id: str) -> None:
        unsubscribe = self._unsubscribers.pop(provider_id, None)
        if unsubscribe is not None:
            unsubscribe()
