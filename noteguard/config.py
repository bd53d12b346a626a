"""
NoteGuard — Configuration
==========================

What:  Centralized configuration management using Pydantic Settings.
How:   Pydantic Settings reads from environment variables (or .env file),
       validates types/ranges, and provides a module-level `settings` object.
Who:   Read by the composition root (`noteguard.main.create_guard`) and by
       anything that needs a default when no explicit value is injected.
When:  Loaded once at module import time.

Notes:
    Settings only seed the stores. The stores themselves keep their own
    LimitConfig, so `TokenMonitor.update_limits()` changes a running store
    without touching the environment.
"""

from pydantic_settings import BaseSettings
from pydantic import Field, field_validator


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings have development defaults. Production deployments must set
    GEMINI_API_KEY and ENVIRONMENT.
    """

    # ── Google Gemini ─────────────────────────────────────────────────────
    # How to obtain: https://aistudio.google.com/app/apikey
    gemini_api_key: str = Field(
        default="",
        description="Google Gemini API key for summaries and tag generation"
    )
    gemini_model: str = Field(default="gemini-2.5-flash")

    # Upper bound on generated tokens per call
    gemini_max_output_tokens: int = Field(default=1000, ge=16, le=8192)

    # Prompt-size guard applied before the provider is called
    gemini_max_prompt_tokens: int = Field(default=8000, ge=100, le=1_000_000)

    # ── Token Budget ──────────────────────────────────────────────────────
    token_daily_limit: int = Field(default=100_000, ge=0)
    token_hourly_limit: int = Field(default=10_000, ge=0)
    token_per_request_limit: int = Field(default=8_000, ge=0)

    # Fraction of a limit at which warnings start (0.8 → warn at 80%)
    token_warning_threshold: float = Field(default=0.8, ge=0.0, le=1.0)

    # ── Retention Windows ─────────────────────────────────────────────────
    usage_retention_days: int = Field(default=7, ge=1, le=365)
    error_log_retention_days: int = Field(default=30, ge=1, le=365)
    fallback_retention_days: int = Field(default=30, ge=1, le=365)

    # Background pruning; 0 disables the sweeper
    sweep_interval_seconds: int = Field(default=300, ge=0, le=86_400)

    # ── Retry Configuration ───────────────────────────────────────────────
    # Sleep before attempt n+1 is max(retry_after, base * 2^(n-1))
    retry_max_attempts: int = Field(default=3, ge=1, le=10)
    retry_base_delay_ms: int = Field(default=1000, ge=0, le=60_000)

    # ── Alerting ──────────────────────────────────────────────────────────
    # A rule fires at most once per cooldown window
    alert_cooldown_seconds: int = Field(default=3600, ge=60, le=86_400)
    alert_delivery_attempts: int = Field(default=3, ge=1, le=10)

    # ── Runtime ───────────────────────────────────────────────────────────
    environment: str = Field(default="development")
    app_version: str = Field(default="1.0.0")

    # Valid: DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        valid = {"development", "staging", "production", "test"}
        lower = v.lower()
        if lower not in valid:
            raise ValueError(f"Invalid environment '{v}'. Must be one of: {valid}")
        return lower

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }

    def validate_required_for_production(self) -> None:
        """
        Validates that the settings a live provider needs are present.

        Raises:
            ValueError listing every missing setting.
        """
        errors = []
        if not self.gemini_api_key or self.gemini_api_key == "your_gemini_api_key_here":
            errors.append(
                "GEMINI_API_KEY is not set. "
                "Get a free key at https://aistudio.google.com/app/apikey"
            )
        if self.token_per_request_limit > self.token_hourly_limit:
            errors.append(
                f"TOKEN_PER_REQUEST_LIMIT ({self.token_per_request_limit}) exceeds "
                f"TOKEN_HOURLY_LIMIT ({self.token_hourly_limit})"
            )
        if errors:
            raise ValueError(
                "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            )


settings = Settings()
