"""Unit tests for relay configuration.

Tests configuration loading, validation, defaults and environment overrides.
"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from envirovoice.config import (
    ENV_OVERRIDES,
    CleanupConfig,
    HeartbeatConfig,
    HttpConfig,
    LookupConfig,
    RateLimitConfig,
    RelayConfig,
    WebSocketConfig,
    apply_env_overrides,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the host environment from leaking into loaded configs."""
    for var in [*ENV_OVERRIDES, "HOST"]:
        monkeypatch.delenv(var, raising=False)


def test_websocket_config_defaults() -> None:
    """Test WebSocket configuration defaults."""
    config = WebSocketConfig()
    assert config.host == "0.0.0.0"  # noqa: S104
    assert config.port == 3000
    assert config.max_connections == 200
    assert config.max_message_size == 50 * 1024


def test_websocket_config_validation() -> None:
    """Test WebSocket configuration validation."""
    config = WebSocketConfig(port=9000)
    assert config.port == 9000

    with pytest.raises(ValidationError):
        WebSocketConfig(port=0)

    with pytest.raises(ValidationError):
        WebSocketConfig(port=70000)

    with pytest.raises(ValidationError):
        WebSocketConfig(max_connections=0)


def test_http_config_defaults() -> None:
    """Test HTTP configuration defaults."""
    config = HttpConfig()
    assert config.port == 3001
    assert config.max_body_size == 100 * 1024
    assert config.static_dir is None
    assert config.cors_allow_origin == "*"


def test_rate_limit_config_defaults() -> None:
    """Test rate limit defaults (50 messages per second)."""
    config = RateLimitConfig()
    assert config.window_ms == 1000
    assert config.max_messages == 50


def test_heartbeat_config_timeout_validation() -> None:
    """Test heartbeat timeout upper bound."""
    assert HeartbeatConfig(interval_s=600, timeout_s=300).timeout_s == 300

    with pytest.raises(ValidationError, match="heartbeat timeout_s must be <= 300"):
        HeartbeatConfig(interval_s=600, timeout_s=301)


def test_heartbeat_timeout_must_be_shorter_than_interval() -> None:
    """Test a ping write cannot outlive the interval between pings."""
    assert HeartbeatConfig(interval_s=10, timeout_s=9.5).timeout_s == 9.5

    with pytest.raises(ValidationError, match="must be less than interval_s"):
        HeartbeatConfig(interval_s=10, timeout_s=10)

    with pytest.raises(ValidationError, match="must be less than interval_s"):
        HeartbeatConfig(interval_s=2, timeout_s=5)


def test_cleanup_config_defaults() -> None:
    """Test inactivity sweeper defaults."""
    config = CleanupConfig()
    assert config.interval_s == 60.0
    assert config.inactivity_timeout_s == 60.0


def test_lookup_config_requires_placeholder() -> None:
    """Test lookup URL template must contain {tag}."""
    config = LookupConfig(url_template="https://example.test/u/{tag}")
    assert config.url_template == "https://example.test/u/{tag}"

    with pytest.raises(ValidationError, match="must contain"):
        LookupConfig(url_template="https://example.test/search")


def test_relay_config_log_level_normalized() -> None:
    """Test log level is validated and upper-cased."""
    assert RelayConfig(log_level="debug").log_level == "DEBUG"

    with pytest.raises(ValidationError, match="log_level must be one of"):
        RelayConfig(log_level="verbose")


def test_relay_config_from_yaml(tmp_path: Path) -> None:
    """Test loading configuration from a YAML file."""
    config_file = tmp_path / "relay.yaml"
    config_file.write_text(
        "websocket:\n"
        "  port: 4000\n"
        "  max_connections: 10\n"
        "rate_limit:\n"
        "  max_messages: 5\n"
        "log_level: warning\n"
    )

    config = RelayConfig.from_yaml(config_file)

    assert config.websocket.port == 4000
    assert config.websocket.max_connections == 10
    assert config.rate_limit.max_messages == 5
    assert config.rate_limit.window_ms == 1000
    assert config.http.port == 3001
    assert config.log_level == "WARNING"


def test_relay_config_from_yaml_missing_file(tmp_path: Path) -> None:
    """Test missing config file raises FileNotFoundError."""
    with pytest.raises(FileNotFoundError):
        RelayConfig.from_yaml(tmp_path / "missing.yaml")


def test_relay_config_from_yaml_non_mapping(tmp_path: Path) -> None:
    """Test a YAML list at the root is rejected."""
    config_file = tmp_path / "relay.yaml"
    config_file.write_text("- 1\n- 2\n")

    with pytest.raises(ValueError, match="must be a mapping"):
        RelayConfig.from_yaml(config_file)


def test_relay_config_from_yaml_with_defaults(tmp_path: Path) -> None:
    """Test defaults are used when no config file exists."""
    config = RelayConfig.from_yaml_with_defaults(tmp_path / "missing.yaml")
    assert config.websocket.port == 3000

    config = RelayConfig.from_yaml_with_defaults(None)
    assert config.websocket.max_connections == 200


def test_env_overrides_applied() -> None:
    """Test environment variables overlay raw config data."""
    data = apply_env_overrides(
        {"websocket": {"port": 4000}},
        environ={
            "PORT": "5000",
            "MAX_CONNECTIONS": "20",
            "RATE_LIMIT_MAX": "7",
            "CLIENT_TIMEOUT_S": "90",
            "LOG_LEVEL": "debug",
        },
    )

    config = RelayConfig.model_validate(data)
    assert config.websocket.port == 5000
    assert config.websocket.max_connections == 20
    assert config.rate_limit.max_messages == 7
    assert config.cleanup.inactivity_timeout_s == 90.0
    assert config.log_level == "DEBUG"


def test_env_host_binds_both_listeners() -> None:
    """Test HOST applies to the WebSocket and HTTP listeners."""
    data = apply_env_overrides({}, environ={"HOST": "127.0.0.1"})
    config = RelayConfig.model_validate(data)

    assert config.websocket.host == "127.0.0.1"
    assert config.http.host == "127.0.0.1"


def test_env_empty_values_ignored() -> None:
    """Test empty environment values do not override."""
    data = apply_env_overrides({}, environ={"PORT": ""})
    assert data == {}


def test_env_overrides_from_yaml(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Test environment wins over file values."""
    config_file = tmp_path / "relay.yaml"
    config_file.write_text("http:\n  port: 8001\n")
    monkeypatch.setenv("HTTP_PORT", "9001")

    config = RelayConfig.from_yaml(config_file)
    assert config.http.port == 9001


def test_shipped_config_loads() -> None:
    """Test the shipped configs/relay.yaml validates."""
    path = Path(__file__).resolve().parents[2] / "configs" / "relay.yaml"
    config = RelayConfig.from_yaml(path)
    assert config.websocket.max_message_size == 51200
    assert config.lookup.marker == "Gamerscore"
