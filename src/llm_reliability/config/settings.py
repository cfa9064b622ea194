"""Central configuration via Pydantic Settings. All values driven by env vars."""

from __future__ import annotations

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class ProviderSettings(BaseModel):
    """One upstream provider entry, parsed from the LLMR_PROVIDERS JSON list."""

    name: str
    kind: str = "openai_compatible"  # "openai_compatible", "gemini", "cohere"
    model: str
    base_url: str | None = None
    api_key_env: str = ""
    priority: int = 100
    timeout_s: float = 15.0
    requests_per_minute: int = 30
    requests_per_day: int = 14400
    capabilities: list[str] = Field(default_factory=lambda: ["chat"])


DEFAULT_PROVIDERS = [
    ProviderSettings(
        name="groq",
        model="llama-3.1-8b-instant",
        base_url="https://api.groq.com/openai/v1",
        api_key_env="GROQ_API_KEY",
        priority=1,
        timeout_s=10.0,
    ),
    ProviderSettings(
        name="gemini",
        kind="gemini",
        model="gemini-2.0-flash",
        api_key_env="GEMINI_API_KEY",
        priority=2,
        timeout_s=20.0,
        requests_per_minute=15,
        requests_per_day=1500,
    ),
    ProviderSettings(
        name="cerebras",
        model="llama3.1-8b",
        base_url="https://api.cerebras.ai/v1",
        api_key_env="CEREBRAS_API_KEY",
        priority=3,
    ),
    ProviderSettings(
        name="mistral",
        model="mistral-small-latest",
        base_url="https://api.mistral.ai/v1",
        api_key_env="MISTRAL_API_KEY",
        priority=4,
    ),
    ProviderSettings(
        name="openrouter",
        model="meta-llama/llama-3.1-8b-instruct:free",
        base_url="https://openrouter.ai/api/v1",
        api_key_env="OPENROUTER_API_KEY",
        priority=5,
        timeout_s=30.0,
        requests_per_minute=20,
        requests_per_day=200,
    ),
    ProviderSettings(
        name="cohere",
        kind="cohere",
        model="command-r",
        base_url="https://api.cohere.com/v2",
        api_key_env="COHERE_API_KEY",
        priority=6,
        timeout_s=30.0,
        requests_per_minute=20,
        requests_per_day=1000,
    ),
]


class Settings(BaseSettings):
    # Providers
    providers: list[ProviderSettings] = Field(default_factory=lambda: list(DEFAULT_PROVIDERS))
    # query type -> ordered provider names; types not listed fall back to priority order
    fallback_chains: dict[str, list[str]] = Field(
        default_factory=lambda: {
            "factual": ["gemini", "groq", "cerebras", "mistral", "openrouter", "cohere"],
            "study": ["groq", "cerebras", "mistral", "gemini", "openrouter", "cohere"],
            "general": ["groq", "openrouter", "cerebras", "mistral", "gemini", "cohere"],
        }
    )
    provider_temperature: float = 0.3
    provider_max_tokens: int = 1024
    max_concurrent_provider_calls: int = 16

    # Retry / circuit breaker
    retry_max_attempts: int = 3
    retry_base_delay_s: float = 0.25
    retry_max_delay_s: float = 4.0
    retry_jitter_s: float = 0.25
    circuit_failure_threshold: int = 5
    circuit_cooldown_s: float = 30.0
    circuit_cooldown_multiplier: float = 2.0
    circuit_max_cooldown_s: float = 600.0

    # Response cache
    cache_ttl_s: float = 3600.0
    cache_max_entries: int = 1000

    # Input validation
    max_input_chars: int = 8000
    classification_cache_size: int = 2048

    # Context grounding
    context_token_budget: int = 1500
    knowledge_top_k: int = 5
    history_max_turns: int = 10
    fact_check_min_reliability: float = 0.7
    tiktoken_encoding: str = "cl100k_base"
    knowledge_base_path: str = "data/knowledge.json"

    # Response validation weights (normalized to sum to 1)
    val_w_factual: float = 0.4
    val_w_logical: float = 0.2
    val_w_complete: float = 0.2
    val_w_consistent: float = 0.2
    val_support_threshold: float = 0.5
    val_unverified_weight: float = 0.5
    strict_support_threshold: float = 0.7
    strict_unverified_weight: float = 0.3
    risk_high_below: float = 0.5
    risk_medium_below: float = 0.75
    check_pass_threshold: float = 0.6

    # Confidence
    conf_alpha: float = 0.50
    conf_beta: float = 0.35
    conf_gamma: float = 0.15

    # Pipeline
    pipeline_deadline_s: float = 45.0
    default_quality_threshold: float = 0.6

    # Feedback / learning
    feedback_queue_size: int = 10000
    learning_interval_s: float = 300.0
    learning_min_confidence: float = 0.6
    learning_prior_weight: int = 5
    provider_demotion_ratio: float = 0.6

    # Monitoring
    monitor_interval_s: float = 30.0
    monitor_window_s: float = 900.0
    alert_hallucination_rate: float = 0.2
    alert_min_avg_quality: float = 0.6
    alert_provider_failure_rate: float = 0.5
    alert_all_failed_rate: float = 0.1
    alert_p95_latency_ms: float = 20000.0
    alert_fatal_failures: int = 3
    monitor_min_samples: int = 10

    # Storage
    sqlite_db_path: str = "data/reliability.db"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    json_logs: bool = True

    model_config = {"env_file": ".env", "env_prefix": "LLMR_"}
