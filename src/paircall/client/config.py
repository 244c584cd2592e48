"""Configuration schema for the participant client.

Timer durations, the media ladder policy and quality thresholds, loaded
from YAML with environment variable overrides.
"""

from pathlib import Path

from pydantic import BaseModel, Field

from paircall.client.quality import QualityThresholds


class TimerConfig(BaseModel):
    """Lifecycle timer durations in seconds."""

    connection_timeout_s: float = Field(
        default=30.0, gt=0, description="Match request to connected, else give up"
    )
    ice_gathering_timeout_s: float = Field(
        default=20.0, gt=0, description="Force-send the offer if still unsent"
    )
    quality_interval_s: float = Field(default=2.0, gt=0, description="Stats sampling period")
    rematch_grace_s: float = Field(
        default=2.0, ge=0, description="Delay before re-requesting a match after a partner leaves"
    )
    ice_restart_timeout_s: float = Field(
        default=5.0, gt=0, description="Time an in-place ICE restart has to recover the link"
    )
    video_upgrade_delay_s: float = Field(
        default=5.0, gt=0, description="Time connected before raising video to the full preset"
    )


class MediaConfig(BaseModel):
    """Local media acquisition policy."""

    max_retries: int = Field(default=3, ge=0, le=10, description="Retries before audio-only")
    retry_backoff_s: float = Field(default=1.0, ge=0, description="Delay before a plain retry")
    mobile: bool = Field(default=False, description="Request mobile-class video")
    progressive_video: bool = Field(
        default=True, description="Start calls at a lower video preset and upgrade once connected"
    )


class SignalingConfig(BaseModel):
    """Coordinator connection settings."""

    server_url: str = Field(default="ws://localhost:8080", description="Coordinator WebSocket URL")
    reconnect_delay_s: float = Field(default=2.0, gt=0, description="Delay between reconnects")
    max_reconnect_attempts: int = Field(
        default=5, ge=0, description="Consecutive failed reconnects before giving up (0 = never)"
    )
    ping_interval_s: float = Field(default=25.0, gt=0)
    ping_timeout_s: float = Field(default=60.0, gt=0)


class ClientConfig(BaseModel):
    """Root client configuration."""

    timers: TimerConfig = Field(default_factory=TimerConfig)
    media: MediaConfig = Field(default_factory=MediaConfig)
    signaling: SignalingConfig = Field(default_factory=SignalingConfig)
    quality: QualityThresholds = Field(default_factory=QualityThresholds)

    @classmethod
    def from_yaml(cls, path: Path) -> "ClientConfig":
        """Load configuration from YAML file with environment variable overrides.

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

        if server_url := os.getenv("PAIRCALL_SERVER_URL"):
            data.setdefault("signaling", {})["server_url"] = server_url

        return cls.model_validate(data)

    @classmethod
    def from_yaml_with_defaults(cls, path: Path | None = None) -> "ClientConfig":
        if path is not None and path.exists():
            return cls.from_yaml(path)
        return cls()
