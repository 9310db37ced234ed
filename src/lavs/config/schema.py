"""Pydantic models for lavs.yaml configuration."""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field


class ExecutionConfig(BaseModel):
    """Handler execution configuration."""

    default_timeout_ms: int = Field(
        default=30_000,
        description="Timeout for handlers that declare none and have no policy cap",
        ge=1,
    )
    kill_grace_ms: int = Field(
        default=5_000,
        description="Time between SIGTERM and SIGKILL when a script times out",
        ge=0,
    )


class RateLimitConfig(BaseModel):
    """Per agent/endpoint rate limiting."""

    max_requests: int = Field(default=60, description="Calls allowed per window", ge=1)
    window_ms: int = Field(default=60_000, description="Window length in milliseconds", ge=1)
    cleanup_interval_s: int = Field(
        default=300,
        description="Seconds between sweeps of expired rate limit windows",
        ge=1,
    )


class SubscriptionsConfig(BaseModel):
    """Subscription (SSE) configuration."""

    max_subscriptions: int = Field(
        default=100, description="Maximum concurrently open subscriptions", ge=1
    )
    heartbeat_interval_s: float = Field(
        default=30.0, description="Seconds between heartbeat comments", gt=0
    )


class AgentsConfig(BaseModel):
    """Where agent directories live."""

    search_paths: list[str] = Field(
        default_factory=lambda: [str(Path.home() / ".lavs" / "agents")],
        description="Directories containing one sub-directory per agent",
    )
    manifest_filename: str = Field(default="lavs.json", description="Manifest file name")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Root log level"
    )


class LAVSConfig(BaseModel):
    """Root configuration model for lavs.yaml."""

    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    subscriptions: SubscriptionsConfig = Field(default_factory=SubscriptionsConfig)
    agents: AgentsConfig = Field(default_factory=AgentsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
