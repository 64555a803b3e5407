"""Environment-bound configuration objects.

This module provides Pydantic BaseSettings-based configuration loading from .env files.
Every group accepts its field names as keyword arguments and one or more
environment variable aliases (e.g., MAX_AGENT_ITERATIONS or AGENT_MAX_ITERATIONS).

Example:
    from guardedAgent.config.settings import get_settings

    settings = get_settings()  # Cached singleton
    threshold = settings.circuit.failure_threshold
    max_iterations = settings.governance.max_iterations
"""

from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


load_dotenv()


_ENV_CONFIG = SettingsConfigDict(
    env_file=".env",
    env_file_encoding="utf-8",
    extra="ignore",
)


class ProviderSettings(BaseSettings):
    """Model provider endpoint and retry policy.

    - model: OpenAI-compatible model identifier
    - api_key / base_url: credentials for the endpoint (OpenRouter by default)
    - max_attempts: total attempts for 429/5xx responses (default: 3)
    - backoff_base_seconds: delay = 2^(attempt-1) * base (default: 2s)
    """

    model: str = Field(
        default="anthropic/claude-sonnet-4",
        validation_alias=AliasChoices("model", "MODEL_ID", "OPENROUTER_MODEL"),
    )
    api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("api_key", "MODEL_API_KEY", "OPENROUTER_API_KEY"),
    )
    base_url: Optional[str] = Field(
        default="https://openrouter.ai/api/v1",
        validation_alias=AliasChoices("base_url", "MODEL_BASE_URL", "OPENROUTER_BASE_URL"),
    )
    temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    max_output_tokens: int = Field(
        default=8192,
        ge=256,
        validation_alias=AliasChoices("max_output_tokens", "MODEL_MAX_OUTPUT_TOKENS"),
    )
    timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        validation_alias=AliasChoices("timeout_seconds", "MODEL_TIMEOUT"),
    )
    max_attempts: int = Field(default=3, ge=1, le=10)
    backoff_base_seconds: float = Field(default=2.0, ge=0.0)

    model_config = _ENV_CONFIG


class GovernanceSettings(BaseSettings):
    """Loop limits and approval policy.

    - max_iterations: hard cap on model calls per task (default: 50)
    - auto_approve_writes: apply dangerous operations without asking (default: False)
    """

    max_iterations: int = Field(
        default=50,
        ge=1,
        le=500,
        validation_alias=AliasChoices("max_iterations", "MAX_AGENT_ITERATIONS"),
    )
    auto_approve_writes: bool = Field(
        default=False,
        validation_alias=AliasChoices("auto_approve_writes", "AUTO_APPROVE_WRITES"),
    )

    model_config = _ENV_CONFIG


class ResilienceSettings(BaseSettings):
    """Retry, timeout and health tracking for tool execution."""

    max_retries: int = Field(default=2, ge=0, le=5)
    backoff_ms: List[int] = Field(default_factory=lambda: [100, 500, 1000])
    tool_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        validation_alias=AliasChoices("tool_timeout_seconds", "TOOL_TIMEOUT"),
    )
    health_window: int = Field(default=20, ge=1)
    unhealthy_error_rate: float = Field(default=0.3, ge=0.0, le=1.0)
    tool_failure_rate: float = Field(default=0.5, ge=0.0, le=1.0)
    tool_min_calls: int = Field(default=5, ge=1)
    stale_window_seconds: float = Field(default=300.0, ge=0)
    max_output_size: int = Field(default=50_000, ge=1000)
    max_field_size: int = Field(default=10_000, ge=100)

    model_config = _ENV_CONFIG


class CircuitBreakerSettings(BaseSettings):
    """Failure-spiral guard.

    - failure_threshold: consecutive failures before the circuit opens (default: 5)
    - cooldown_seconds: open -> half-open delay (default: 30)
    - warning_threshold: failures before a warning is surfaced (default: 3)
    - track_per_tool: separate counters per tool name (default: off)
    """

    failure_threshold: int = Field(
        default=5,
        ge=1,
        validation_alias=AliasChoices("failure_threshold", "CIRCUIT_FAILURE_THRESHOLD"),
    )
    cooldown_seconds: float = Field(
        default=30.0,
        ge=0,
        validation_alias=AliasChoices("cooldown_seconds", "CIRCUIT_COOLDOWN"),
    )
    warning_threshold: int = Field(default=3, ge=1)
    reset_on_success: bool = True
    track_per_tool: bool = Field(
        default=False,
        validation_alias=AliasChoices("track_per_tool", "CIRCUIT_TRACK_PER_TOOL"),
    )

    model_config = _ENV_CONFIG


class ValidationSettings(BaseSettings):
    """Pre-flight validation switches."""

    check_path_exists: bool = True
    check_placeholders: bool = True
    check_syntax: bool = True
    max_suggestions: int = Field(default=3, ge=0, le=10)
    rules_path: Optional[str] = Field(
        default="guardedAgent/config/validation_rules.yaml",
        validation_alias=AliasChoices("rules_path", "VALIDATION_RULES_PATH"),
    )

    model_config = _ENV_CONFIG


class PredictorSettings(BaseSettings):
    """Non-blocking risk prediction windows (seconds)."""

    freshness_threshold_seconds: float = Field(default=120.0, ge=0)
    failure_window_seconds: float = Field(default=120.0, ge=0)
    similar_failure_count: int = Field(default=2, ge=1)
    min_search_length: int = Field(default=20, ge=1)

    model_config = _ENV_CONFIG


class ErrorAnalysisSettings(BaseSettings):
    """Failure classification and loop detection.

    - history_size / max_error_age_seconds: errors kept for loop detection
    - loop_window: most recent task errors inspected (default: 5)
    - loop_threshold: repeats of one category or tool that count as a loop (default: 3)
    - max_strategy_attempts: tries before a recovery strategy is exhausted (default: 2)
    """

    history_size: int = Field(default=50, ge=1)
    max_error_age_seconds: float = Field(default=120.0, gt=0)
    loop_window: int = Field(default=5, ge=1)
    loop_threshold: int = Field(default=3, ge=2)
    max_strategy_attempts: int = Field(default=2, ge=1)
    max_suggestions: int = Field(default=3, ge=1)

    model_config = _ENV_CONFIG


class PlanningSettings(BaseSettings):
    """Per-task plan tracking and periodic reflection."""

    enabled: bool = Field(default=True, validation_alias=AliasChoices("enabled", "PLANNING_ENABLED"))
    reflection_interval: int = Field(
        default=5,
        ge=1,
        validation_alias=AliasChoices("reflection_interval", "REFLECTION_INTERVAL"),
    )
    reflect_on_failure: bool = True
    escalation_ticket_count: int = Field(default=5, ge=1)
    session_history_size: int = Field(default=6, ge=1)

    model_config = _ENV_CONFIG


class VerificationSettings(BaseSettings):
    """Checks run against the workspace after an approved operation is applied."""

    enabled: bool = Field(default=True, validation_alias=AliasChoices("enabled", "VERIFY_AFTER_APPLY"))
    verify_after_create: bool = True
    verify_after_edit: bool = True
    line_count_tolerance: int = Field(default=2, ge=0)

    model_config = _ENV_CONFIG


class SelectionSettings(BaseSettings):
    """Relevance-based context selection."""

    max_relevant_items: int = Field(default=20, ge=1)
    recent_edit_window_minutes: float = Field(default=30.0, gt=0)
    fresh_seconds: float = Field(default=300.0, ge=0)
    stale_seconds: float = Field(default=600.0, ge=0)

    model_config = _ENV_CONFIG


class MemorySettings(BaseSettings):
    """Tiered working memory with exponential decay."""

    max_working_items: int = Field(default=20, ge=1)
    compact_threshold: int = Field(default=15, ge=1)
    max_background_items: int = Field(default=50, ge=1)
    half_life_seconds: float = Field(default=300.0, gt=0)
    relevance_floor: float = Field(default=10.0, ge=0)
    access_boost: float = Field(default=5.0, ge=0)
    max_content_length: int = Field(default=500, ge=50)
    prompt_min_relevance: float = Field(default=30.0, ge=0)

    model_config = _ENV_CONFIG


class CompressionSettings(BaseSettings):
    """History compression trigger and fallback limits."""

    threshold_tokens: int = Field(
        default=50_000,
        ge=1000,
        validation_alias=AliasChoices("threshold_tokens", "COMPRESSION_THRESHOLD"),
    )
    preserve_count: int = Field(
        default=10,
        ge=1,
        validation_alias=AliasChoices("preserve_count", "MESSAGES_TO_PRESERVE"),
    )
    min_summary_length: int = Field(default=50, ge=1)
    max_summary_chars: int = Field(default=4000, ge=200)

    model_config = _ENV_CONFIG


class PersistenceSettings(BaseSettings):
    """Persisted project knowledge and decision patterns.

    Set KNOWLEDGE_DB_PATH to an empty string to keep both documents in memory.
    """

    db_path: Optional[str] = Field(
        default="data/knowledge.db",
        validation_alias=AliasChoices("db_path", "KNOWLEDGE_DB_PATH"),
    )
    max_project_entries: int = Field(default=50, ge=1)
    max_entry_length: int = Field(default=500, ge=50)
    stale_threshold_days: float = Field(default=7.0, gt=0)
    max_patterns: int = Field(default=100, ge=1)
    pattern_decay_days: float = Field(default=7.0, gt=0)
    min_keyword_matches: int = Field(default=2, ge=1)
    require_capability_match: bool = True

    model_config = _ENV_CONFIG


class ObservabilitySettings(BaseSettings):
    """Logging configuration."""

    log_dir: str = Field(default="logs", validation_alias=AliasChoices("log_dir", "LOG_DIR"))
    log_level: str = Field(default="INFO", validation_alias=AliasChoices("log_level", "LOG_LEVEL"))
    log_prompt_max_length: int = Field(
        default=500,
        ge=100,
        le=5000,
        validation_alias=AliasChoices("log_prompt_max_length", "LOG_PROMPT_MAX_LENGTH"),
    )

    model_config = _ENV_CONFIG


class Settings(BaseSettings):
    """Root application settings loaded from .env file.

    All groups are nested BaseSettings instances so each reads its own
    environment aliases. Use get_settings() to obtain a cached singleton.
    """

    environment: str = Field(default="dev", alias="APP_ENV")
    provider: ProviderSettings = Field(default_factory=ProviderSettings)
    governance: GovernanceSettings = Field(default_factory=GovernanceSettings)
    resilience: ResilienceSettings = Field(default_factory=ResilienceSettings)
    circuit: CircuitBreakerSettings = Field(default_factory=CircuitBreakerSettings)
    validation: ValidationSettings = Field(default_factory=ValidationSettings)
    predictor: PredictorSettings = Field(default_factory=PredictorSettings)
    errors: ErrorAnalysisSettings = Field(default_factory=ErrorAnalysisSettings)
    planning: PlanningSettings = Field(default_factory=PlanningSettings)
    verification: VerificationSettings = Field(default_factory=VerificationSettings)
    selection: SelectionSettings = Field(default_factory=SelectionSettings)
    memory: MemorySettings = Field(default_factory=MemorySettings)
    compression: CompressionSettings = Field(default_factory=CompressionSettings)
    persistence: PersistenceSettings = Field(default_factory=PersistenceSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        validate_assignment=True,
        case_sensitive=False,
        populate_by_name=True,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton Settings instance.

    Returns:
        Settings: Cached application settings instance
    """
    return Settings()
