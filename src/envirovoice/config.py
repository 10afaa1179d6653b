"""Configuration schema for the relay.

Defines Pydantic models for loading and validating relay configuration
from YAML files and environment variables.
"""

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


class WebSocketConfig(BaseModel):
    """WebSocket transport configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host address")  # noqa: S104
    port: int = Field(default=3000, ge=1, le=65535, description="Bind port")
    max_connections: int = Field(
        default=200, ge=1, description="Maximum concurrently registered participants"
    )
    max_message_size: int = Field(
        default=50 * 1024,
        ge=1024,
        description="Largest inbound frame in bytes; larger frames close the connection",
    )


class HttpConfig(BaseModel):
    """HTTP API configuration (snapshot ingestion, health, state inspection)."""

    host: str = Field(default="0.0.0.0", description="Bind host address")  # noqa: S104
    port: int = Field(default=3001, ge=1, le=65535, description="Bind port")
    max_body_size: int = Field(
        default=100 * 1024, ge=1024, description="Largest accepted request body in bytes"
    )
    static_dir: Path | None = Field(
        default=None, description="Directory served as static files (optional)"
    )
    cors_allow_origin: str = Field(default="*", description="Access-Control-Allow-Origin")
    slow_request_ms: int = Field(
        default=1000, ge=1, description="Requests slower than this are logged as warnings"
    )


class RateLimitConfig(BaseModel):
    """Per-connection message rate limiting."""

    window_ms: int = Field(default=1000, ge=10, le=60_000, description="Window length in ms")
    max_messages: int = Field(
        default=50, ge=1, le=10_000, description="Messages allowed per window"
    )


class HeartbeatConfig(BaseModel):
    """Transport-level ping/pong liveness."""

    enabled: bool = Field(default=True, description="Send periodic pings")
    interval_s: float = Field(default=30.0, gt=0, description="Ping interval in seconds")
    timeout_s: float = Field(
        default=5.0, gt=0, description="Upper bound on writing a single ping"
    )

    @field_validator("timeout_s")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Validate timeout is within reasonable bounds."""
        if v > 300:
            raise ValueError(f"heartbeat timeout_s must be <= 300, got {v}")
        return v

    @model_validator(mode="after")
    def validate_timeout_within_interval(self) -> "HeartbeatConfig":
        """Ping writes must not outlive the interval between pings."""
        if self.timeout_s >= self.interval_s:
            raise ValueError(
                f"heartbeat timeout_s ({self.timeout_s}) must be less than "
                f"interval_s ({self.interval_s})"
            )
        return self


class CleanupConfig(BaseModel):
    """Inactivity sweeper configuration."""

    interval_s: float = Field(default=60.0, gt=0, description="Sweep interval in seconds")
    inactivity_timeout_s: float = Field(
        default=60.0, ge=1, description="Idle participants older than this are evicted"
    )


class LookupConfig(BaseModel):
    """Gamertag existence lookup against a public profile search page."""

    enabled: bool = Field(default=True, description="Expose GET /gamertag/{tag}")
    url_template: str = Field(
        default="https://xboxgamertag.com/search/{tag}",
        description="Search URL, {tag} is replaced with the URL-encoded gamertag",
    )
    marker: str = Field(
        default="Gamerscore", description="Text whose presence means the gamertag exists"
    )
    timeout_s: float = Field(default=10.0, gt=0, description="Upstream request timeout")

    @field_validator("url_template")
    @classmethod
    def validate_url_template(cls, v: str) -> str:
        """Template must contain the {tag} placeholder."""
        if "{tag}" not in v:
            raise ValueError(f"lookup url_template must contain '{{tag}}', got '{v}'")
        return v


class RelayConfig(BaseModel):
    """Root relay configuration."""

    websocket: WebSocketConfig = Field(default_factory=WebSocketConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    heartbeat: HeartbeatConfig = Field(default_factory=HeartbeatConfig)
    cleanup: CleanupConfig = Field(default_factory=CleanupConfig)
    lookup: LookupConfig = Field(default_factory=LookupConfig)

    # Operational settings
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    graceful_shutdown_timeout_s: float = Field(
        default=5.0,
        ge=0,
        description="Grace period for connections to close on shutdown",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate logging level name."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}, got '{v}'")
        return v.upper()

    @classmethod
    def from_yaml(cls, path: Path) -> "RelayConfig":
        """Load configuration from YAML file with environment variable overrides.

        Args:
            path: Path to YAML configuration file

        Returns:
            Loaded configuration

        Raises:
            FileNotFoundError: If configuration file doesn't exist
            ValueError: If YAML is invalid or validation fails
        """
        import yaml  # type: ignore[import-untyped]

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Configuration root must be a mapping: {path}")

        return cls.model_validate(apply_env_overrides(data))

    @classmethod
    def from_yaml_with_defaults(cls, path: Path | None = None) -> "RelayConfig":
        """Load configuration from YAML or use defaults if file doesn't exist.

        Environment overrides apply in both cases.

        Args:
            path: Optional path to YAML configuration file

        Returns:
            Loaded configuration or defaults
        """
        if path is not None and path.exists():
            return cls.from_yaml(path)

        return cls.model_validate(apply_env_overrides({}))


# Environment variable -> (section, field). A section of None targets the root.
ENV_OVERRIDES: dict[str, tuple[str | None, str]] = {
    "PORT": ("websocket", "port"),
    "HTTP_PORT": ("http", "port"),
    "MAX_CONNECTIONS": ("websocket", "max_connections"),
    "MAX_MESSAGE_SIZE": ("websocket", "max_message_size"),
    "MAX_BODY_SIZE": ("http", "max_body_size"),
    "RATE_LIMIT_WINDOW_MS": ("rate_limit", "window_ms"),
    "RATE_LIMIT_MAX": ("rate_limit", "max_messages"),
    "HEARTBEAT_INTERVAL_S": ("heartbeat", "interval_s"),
    "HEARTBEAT_TIMEOUT_S": ("heartbeat", "timeout_s"),
    "CLIENT_TIMEOUT_S": ("cleanup", "inactivity_timeout_s"),
    "CLEANUP_INTERVAL_S": ("cleanup", "interval_s"),
    "STATIC_DIR": ("http", "static_dir"),
    "LOG_LEVEL": (None, "log_level"),
}


def apply_env_overrides(
    data: dict[str, Any], environ: dict[str, str] | None = None
) -> dict[str, Any]:
    """Overlay environment variables onto raw configuration data.

    Values are left as strings; Pydantic coerces them during validation.

    Args:
        data: Raw configuration mapping (modified in place)
        environ: Environment mapping (defaults to os.environ)

    Returns:
        The updated mapping
    """
    env = os.environ if environ is None else environ

    # HOST binds both listeners
    if host := env.get("HOST"):
        for section in ("websocket", "http"):
            data.setdefault(section, {})["host"] = host

    for var, (section, key) in ENV_OVERRIDES.items():
        value = env.get(var)
        if not value:
            continue
        if section is None:
            data[key] = value
        else:
            data.setdefault(section, {})[key] = value

    return data
