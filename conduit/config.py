"""Runtime configuration for the conduit orchestrator.

Resolution order: programmatic, environment vars (``CONDUIT_`` prefix),
.env files, defaults.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConduitSettings(BaseSettings):
    """Tunables consumed by the orchestration core."""

    model_config = SettingsConfigDict(
        env_prefix="CONDUIT_", env_file=".env", extra="ignore"
    )

    # Iteration budgets
    simple_max_iterations: int = Field(
        default=5, ge=1, description="Hard iteration cap for simple-mode queries"
    )
    analysis_max_iterations: int = Field(
        default=10, ge=1, description="Hard iteration cap for analysis-mode queries"
    )

    # Progressive record limit
    initial_record_limit: int = Field(default=10, ge=1)
    record_limit_multiplier: float = Field(default=2.0, ge=1.0)
    max_record_limit: int = Field(default=500, ge=1)

    # Result quality
    min_data_threshold: int = Field(
        default=3, ge=1, description="Record count below which data is 'limited'"
    )
    max_total_records: int = Field(
        default=5000, ge=1, description="Record budget for a whole run"
    )
    max_result_records: int = Field(
        default=50, ge=1, description="Records kept per result in the working context"
    )
    max_result_chars: int = Field(
        default=8000, ge=256, description="Serialized size cap per annotated result"
    )

    # Context bounds
    max_history_pairs: int = Field(default=10, ge=1)
    max_context_chars: int = Field(default=120_000, ge=1024)
    absolute_context_bytes: int = Field(default=400_000, ge=1024)

    # Model provider
    model_name: str = Field(default="gpt-4o-mini")
    temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    max_output_tokens: int = Field(default=3072, ge=1)
    default_retry_after_seconds: int = Field(default=30, ge=1)

    # Tool service
    tool_service_url: str = Field(default="http://localhost:8080")
    tool_call_timeout_seconds: float = Field(default=30.0, gt=0)
    tool_connect_timeout_seconds: float = Field(default=5.0, gt=0)
    tool_connect_retries: int = Field(default=3, ge=1)
    tool_retry_delay_seconds: float = Field(default=1.0, ge=0)
    health_check_interval_seconds: float = Field(default=30.0, ge=0)
    tool_cache_ttl_seconds: float = Field(
        default=0.0, ge=0, description="0 disables the tool result cache"
    )
    tool_cache_maxsize: int = Field(default=256, ge=1)

    # Streaming
    stream_buffer_size: int = Field(
        default=64, ge=1, description="Bound on queued, undelivered stream events"
    )

    def max_iterations_for(self, mode: str) -> int:
        """Return the iteration cap for a query mode value."""
        if mode == "simple":
            return self.simple_max_iterations
        return self.analysis_max_iterations


@lru_cache(maxsize=1)
def get_settings() -> ConduitSettings:
    """Return the process-wide settings instance."""
    return ConduitSettings()
