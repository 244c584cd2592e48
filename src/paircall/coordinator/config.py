"""Configuration schema for the coordinator.

Defines Pydantic models for loading and validating coordinator configuration
from YAML files and environment variables.
"""

from pathlib import Path

from pydantic import BaseModel, Field, field_validator


class WebSocketConfig(BaseModel):
    """WebSocket transport configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host address")  # noqa: S104
    port: int = Field(
        default=8080, ge=0, le=65535, description="Bind port (0 selects an ephemeral port)"
    )
    max_connections: int = Field(default=1000, ge=1, description="Maximum concurrent connections")
    send_queue_size: int = Field(
        default=256, ge=8, description="Outbound message buffer per participant"
    )
    max_message_bytes: int = Field(
        default=2**16, ge=1024, description="Largest accepted inbound frame"
    )
    ping_interval_s: float = Field(
        default=25.0, gt=0, description="Seconds between keepalive pings"
    )
    ping_timeout_s: float = Field(
        default=60.0, gt=0, description="Seconds to wait for a pong before dropping the link"
    )


class HealthConfig(BaseModel):
    """Diagnostic HTTP endpoint configuration."""

    enabled: bool = Field(default=True, description="Serve /health, /status and /metrics")
    host: str = Field(default="127.0.0.1", description="Bind host address")
    port: int | None = Field(
        default=None,
        ge=0,
        le=65535,
        description="Bind port (defaults to websocket port + 1)",
    )


class MatchingConfig(BaseModel):
    """Queue and pair lifetime limits."""

    max_wait_s: float = Field(
        default=300.0,
        gt=0,
        description="Longest a participant may sit in the queue before eviction",
    )
    pair_idle_timeout_s: float = Field(
        default=7200.0,
        gt=0,
        description="Pairs with no relayed message for this long are reclaimed",
    )


class SweeperConfig(BaseModel):
    """Stale-resource sweeper configuration."""

    enabled: bool = Field(default=True, description="Run the periodic sweeper")
    interval_s: float = Field(default=30.0, gt=0, description="Seconds between sweeps")


class CoordinatorConfig(BaseModel):
    """Root coordinator configuration."""

    websocket: WebSocketConfig = Field(default_factory=WebSocketConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    matching: MatchingConfig = Field(default_factory=MatchingConfig)
    sweeper: SweeperConfig = Field(default_factory=SweeperConfig)
    log_level: str = Field(default="INFO", description="Logging level")
    graceful_shutdown_timeout_s: float = Field(
        default=10.0, ge=0, description="Seconds to wait for connection handlers on shutdown"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a known logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {sorted(valid_levels)}")
        return v.upper()

    @property
    def health_port(self) -> int:
        """Port for the diagnostic HTTP server."""
        if self.health.port is not None:
            return self.health.port
        return self.websocket.port + 1

    @classmethod
    def from_yaml(cls, path: Path) -> "CoordinatorConfig":
        """Load configuration from YAML file with environment variable overrides.

        Args:
            path: Path to YAML configuration file

        Returns:
            Loaded configuration

        Raises:
            FileNotFoundError: If configuration file doesn't exist
            ValueError: If YAML is invalid or validation fails
        """
        import os

        import yaml  # type: ignore[import-untyped]

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Configuration root must be a mapping: {path}")

        # Apply environment variable overrides
        if host := os.getenv("PAIRCALL_HOST"):
            data.setdefault("websocket", {})["host"] = host

        if port := os.getenv("PORT"):
            data.setdefault("websocket", {})["port"] = int(port)

        if max_wait := os.getenv("PAIRCALL_MAX_WAIT_S"):
            data.setdefault("matching", {})["max_wait_s"] = float(max_wait)

        if log_level := os.getenv("PAIRCALL_LOG_LEVEL"):
            data["log_level"] = log_level

        return cls.model_validate(data)

    @classmethod
    def from_yaml_with_defaults(cls, path: Path | None = None) -> "CoordinatorConfig":
        """Load configuration from YAML or use defaults if file doesn't exist.

        Args:
            path: Optional path to YAML configuration file

        Returns:
            Loaded configuration or defaults
        """
        if path is not None and path.exists():
            return cls.from_yaml(path)

        return cls()
