"""Pydantic models for configuration."""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, HttpUrl, model_validator

from plannerbridge.constants import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_RATE_LIMIT_WAIT_SECONDS,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_RETRY_BASE_SECONDS,
    DEFAULT_THROTTLE_DELAY_MS,
    GRAPH_BASE_URL,
)


class GraphConfig(BaseModel):
    """Microsoft Graph connection configuration for the target tenant."""

    base_url: HttpUrl = HttpUrl(GRAPH_BASE_URL)
    access_token: str | None = ""
    timeout: int = Field(default=DEFAULT_REQUEST_TIMEOUT_SECONDS, ge=5, le=600)
    verify_ssl: bool = True


class RetryConfig(BaseModel):
    """Retry, backoff and throttling settings for Graph requests.

    Examples:
        >>> # Defaults: 3 attempts, 2s/4s backoff, 500ms between requests
        >>> config = RetryConfig()

        >>> # Tests: no waiting at all
        >>> config = RetryConfig(throttle_delay_ms=0, base_delay_seconds=0)
    """

    max_retries: int = Field(
        default=DEFAULT_MAX_RETRIES,
        ge=1,
        le=20,
        description="Total attempts per operation, rate-limited attempts included",
    )

    base_delay_seconds: float = Field(
        default=DEFAULT_RETRY_BASE_SECONDS,
        ge=0,
        description="Linear backoff step: attempt N waits N * base_delay_seconds",
    )

    rate_limit_wait_seconds: float = Field(
        default=DEFAULT_RATE_LIMIT_WAIT_SECONDS,
        ge=0,
        description="Wait after HTTP 429 when the server sends no Retry-After header",
    )

    throttle_delay_ms: int = Field(
        default=DEFAULT_THROTTLE_DELAY_MS,
        ge=0,
        le=60_000,
        description="Fixed delay before every request, first attempts included",
    )

    def __str__(self) -> str:
        """Return human-readable configuration summary."""
        return (
            f"RetryConfig(max_retries={self.max_retries}, base={self.base_delay_seconds}s, "
            f"rate_limit_wait={self.rate_limit_wait_seconds}s, throttle={self.throttle_delay_ms}ms)"
        )


class RestoreConfig(BaseModel):
    """Settings for a restoration run."""

    group_id: str | None = None
    output_dir: Path = Path("restore-records")
    user_map_path: Path | None = None
    dry_run: bool = False
    include_details: bool = True
    include_categories: bool = True

    @model_validator(mode="after")
    def validate_user_map_suffix(self) -> "RestoreConfig":
        """Only CSV and JSON mapping files are understood.

        Raises:
            ValueError: If the user map file has an unsupported extension
        """
        if self.user_map_path is not None and self.user_map_path.suffix.lower() not in {
            ".csv",
            ".json",
        }:
            raise ValueError(
                f"user_map_path must be a .csv or .json file, got {self.user_map_path}"
            )
        return self


class OutputConfig(BaseModel):
    """Output formatting preferences for CLI commands."""

    default_format: Literal["table", "json"] = "table"
    color_enabled: bool = True


class Configuration(BaseModel):
    """Complete plannerbridge configuration."""

    config_version: str = "1.0"
    graph: GraphConfig = GraphConfig()
    retry: RetryConfig = RetryConfig()
    restore: RestoreConfig = RestoreConfig()
    output: OutputConfig = OutputConfig()
