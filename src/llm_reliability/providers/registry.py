"""Registry of configured providers and their shared, synchronized state."""

from __future__ import annotations

import os
import time
from collections.abc import Callable

from llm_reliability.config.settings import ProviderSettings, Settings
from llm_reliability.exceptions import ConfigurationError
from llm_reliability.models.domain import ProviderDescriptor
from llm_reliability.observability.logger import get_logger
from llm_reliability.protocols.provider import ProviderClient
from llm_reliability.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from llm_reliability.resilience.rate_limit_tracker import RateLimitTracker

logger = get_logger("provider_registry")


class ProviderRegistry:
    """Owns one descriptor, client and circuit breaker per provider.

    Created at process start, entries are never removed; descriptors are
    updated in place by the resilience layer.
    """

    def __init__(
        self,
        rate_limits: RateLimitTracker | None = None,
        breaker_config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self.rate_limits = rate_limits or RateLimitTracker(clock=clock)
        self._breaker_config = breaker_config or CircuitBreakerConfig()
        self._clients: dict[str, ProviderClient] = {}
        self._descriptors: dict[str, ProviderDescriptor] = {}
        self._breakers: dict[str, CircuitBreaker] = {}

    def register(
        self,
        client: ProviderClient,
        priority: int,
        timeout_s: float,
        requests_per_minute: int = 60,
        requests_per_day: int = 10000,
    ) -> ProviderDescriptor:
        if client.name in self._clients:
            raise ConfigurationError(f"Duplicate provider: {client.name}")
        descriptor = ProviderDescriptor(
            name=client.name,
            priority=priority,
            capabilities=frozenset(client.capabilities),
            timeout_s=timeout_s,
        )
        self._clients[client.name] = client
        self._descriptors[client.name] = descriptor
        self._breakers[client.name] = CircuitBreaker(
            client.name, self._breaker_config, clock=self._clock
        )
        self.rate_limits.configure(client.name, requests_per_minute, requests_per_day)
        logger.info("provider_registered", provider=client.name, priority=priority)
        return descriptor

    def names(self) -> list[str]:
        return list(self._descriptors)

    def client(self, name: str) -> ProviderClient:
        return self._clients[name]

    def breaker(self, name: str) -> CircuitBreaker:
        return self._breakers[name]

    def descriptor(self, name: str) -> ProviderDescriptor:
        """Descriptor with live circuit and rate-limit state folded in."""
        d = self._descriptors[name]
        d.circuit_state = self._breakers[name].state.value
        d.rate_limit_state = self.rate_limits.state(name)
        return d

    def descriptors(self) -> list[ProviderDescriptor]:
        return [self.descriptor(n) for n in self._descriptors]

    def by_capability(self, capability: str) -> list[ProviderDescriptor]:
        matching = [d for d in self.descriptors() if capability in d.capabilities]
        return sorted(matching, key=lambda d: (d.priority, d.name))

    def mark_degraded(self, name: str, reason: str) -> None:
        d = self._descriptors[name]
        d.healthy = False
        d.degraded_reason = reason
        d.fatal_failures += 1
        logger.warning("provider_degraded", provider=name, reason=reason)

    def clear_degraded(self, name: str) -> None:
        d = self._descriptors[name]
        d.healthy = True
        d.degraded_reason = None
        self._breakers[name].reset()
        logger.info("provider_restored", provider=name)

    def is_eligible(self, name: str) -> tuple[bool, str | None]:
        """(eligible, reason_if_not). Open circuits, throttling and degradation exclude."""
        d = self._descriptors[name]
        if not d.healthy:
            return False, "degraded"
        if self._breakers[name].state == CircuitState.OPEN:
            return False, "circuit_open"
        if not self.rate_limits.may_call(name):
            return False, "throttled"
        return True, None

    async def run_health_check(self, name: str) -> bool:
        healthy = await self._clients[name].health_check()
        if healthy:
            self.clear_degraded(name)
        return healthy


def build_client(spec: ProviderSettings) -> ProviderClient:
    """Instantiate the client for one provider entry. Raises ConfigurationError on a missing key."""
    api_key = os.environ.get(spec.api_key_env, "") if spec.api_key_env else ""
    if not api_key:
        raise ConfigurationError(f"Missing API key env var {spec.api_key_env!r} for {spec.name}")
    capabilities = frozenset(spec.capabilities)

    if spec.kind == "gemini":
        from llm_reliability.providers.gemini_provider import GeminiProvider

        return GeminiProvider(api_key, spec.model, name=spec.name, capabilities=capabilities)
    if spec.kind == "cohere":
        from llm_reliability.providers.cohere_provider import CohereProvider

        return CohereProvider(
            api_key,
            spec.model,
            base_url=spec.base_url or "https://api.cohere.com/v2",
            name=spec.name,
            capabilities=capabilities,
        )
    if spec.kind == "openai_compatible":
        from llm_reliability.providers.openai_compatible import OpenAICompatibleProvider

        return OpenAICompatibleProvider(
            spec.name, api_key, spec.model, base_url=spec.base_url, capabilities=capabilities
        )
    raise ConfigurationError(f"Unknown provider kind: {spec.kind}")


def create_default_registry(settings: Settings) -> ProviderRegistry:
    """Build the registry from settings. Providers without credentials are skipped."""
    registry = ProviderRegistry(
        breaker_config=CircuitBreakerConfig(
            failure_threshold=settings.circuit_failure_threshold,
            cooldown_s=settings.circuit_cooldown_s,
            cooldown_multiplier=settings.circuit_cooldown_multiplier,
            max_cooldown_s=settings.circuit_max_cooldown_s,
        )
    )
    for spec in settings.providers:
        try:
            client = build_client(spec)
        except ConfigurationError as e:
            logger.warning("provider_not_configured", provider=spec.name, error=str(e))
            continue
        registry.register(
            client,
            priority=spec.priority,
            timeout_s=spec.timeout_s,
            requests_per_minute=spec.requests_per_minute,
            requests_per_day=spec.requests_per_day,
        )
    if not registry.names():
        logger.warning("no_providers_configured")
    return registry
