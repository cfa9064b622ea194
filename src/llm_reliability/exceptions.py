"""Custom exception hierarchy for the reliability core."""

from __future__ import annotations


class ReliabilityError(Exception):
    """Base exception for all reliability core errors."""


class ConfigurationError(ReliabilityError):
    """Error in system configuration."""


class InputRejectedError(ReliabilityError):
    """User input judged unsafe or invalid; the pipeline stops before orchestration."""

    def __init__(self, reason: str, flags: list[str] | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.flags = flags or []


class ProviderError(ReliabilityError):
    """Failure of a single upstream provider call."""

    retryable = False
    outcome = "error"
    tries = 0

    def __init__(self, provider: str, message: str = "") -> None:
        super().__init__(f"{provider}: {message}" if message else provider)
        self.provider = provider


class ProviderTimeoutError(ProviderError):
    retryable = True
    outcome = "timeout"


class ProviderServerError(ProviderError):
    """5xx-equivalent upstream failure."""

    retryable = True
    outcome = "server_error"


class ProviderConnectionError(ProviderError):
    retryable = True
    outcome = "connection_error"


class ProviderAuthError(ProviderError):
    """Bad or missing credentials. Fatal for the provider until a health check clears it."""

    outcome = "auth_error"


class ProviderRequestError(ProviderError):
    """Malformed request rejected upstream. Not retried."""

    outcome = "bad_request"


class ProviderRateLimitedError(ProviderError):
    """Upstream or local throttling. The provider is skipped, not marked unhealthy."""

    outcome = "throttled"

    def __init__(self, provider: str, message: str = "", retry_after_s: float = 0.0) -> None:
        super().__init__(provider, message)
        self.retry_after_s = retry_after_s


class CircuitOpenError(ProviderError):
    """Short-circuited because the provider's breaker is open."""

    outcome = "circuit_open"


class OrchestrationError(ReliabilityError):
    """Every provider in the fallback chain failed."""

    def __init__(
        self,
        correlation_id: str,
        attempts: list | None = None,
        all_providers_failed: bool = True,
        message: str = "All providers failed",
    ) -> None:
        super().__init__(message)
        self.correlation_id = correlation_id
        self.attempts = attempts or []
        self.all_providers_failed = all_providers_failed


class PipelineDeadlineExceeded(ReliabilityError):
    """Overall pipeline deadline was exceeded."""


class FeedbackError(ReliabilityError):
    """Error while recording or aggregating feedback."""
