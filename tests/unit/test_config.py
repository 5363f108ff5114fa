"""Unit tests for channel configuration."""

from __future__ import annotations

from agent_mail_client.config import ChannelConfig


class TestDefaults:
    """Tests for default values."""

    def test_defaults(self) -> None:
        """Defaults match the backend's expectations."""
        config = ChannelConfig()

        assert config.url == "ws://localhost:8000/ws"
        assert config.timeout == 30.0
        assert config.connect_timeout == 30.0
        assert config.heartbeat_interval == 30.0
        assert config.reconnect is True
        assert config.reconnect_interval == 5.0
        assert config.max_reconnect_attempts == 10
        assert config.operation_timeout == 180.0
        assert config.debug is False

    def test_defaults_validate(self) -> None:
        """The default configuration has no problems."""
        assert ChannelConfig().validate() == []

    def test_with_overrides_copies(self) -> None:
        """Overrides produce a new config and leave the original alone."""
        base = ChannelConfig()
        changed = base.with_overrides(url="wss://example.org/ws", timeout=5.0)

        assert changed.url == "wss://example.org/ws"
        assert changed.timeout == 5.0
        assert base.url == "ws://localhost:8000/ws"


class TestValidation:
    """Tests for validate()."""

    def test_bad_url(self) -> None:
        errors = ChannelConfig(url="http://localhost:8000").validate()
        assert any("url" in e for e in errors)

    def test_timeout_bounds(self) -> None:
        assert ChannelConfig(timeout=0.5).validate()
        assert ChannelConfig(timeout=601.0).validate()
        assert ChannelConfig(timeout=600.0).validate() == []

    def test_negative_values(self) -> None:
        errors = ChannelConfig(max_reconnect_attempts=-1, reconnect_interval=-1.0).validate()
        assert len(errors) == 2


class TestFromEnv:
    """Tests for environment loading."""

    def test_reads_prefixed_variables(self) -> None:
        """AGENT_MAIL_* variables override defaults."""
        config = ChannelConfig.from_env(
            {
                "AGENT_MAIL_WS_URL": "wss://mail.example.org/ws",
                "AGENT_MAIL_TIMEOUT": "12",
                "AGENT_MAIL_CONNECT_TIMEOUT": "3.5",
                "AGENT_MAIL_HEARTBEAT_INTERVAL": "15",
                "AGENT_MAIL_RECONNECT_INTERVAL": "2",
                "AGENT_MAIL_MAX_RECONNECT_ATTEMPTS": "4",
                "AGENT_MAIL_OPERATION_TIMEOUT": "60",
                "AGENT_MAIL_DEBUG": "true",
            }
        )

        assert config.url == "wss://mail.example.org/ws"
        assert config.timeout == 12.0
        assert config.connect_timeout == 3.5
        assert config.heartbeat_interval == 15.0
        assert config.reconnect_interval == 2.0
        assert config.max_reconnect_attempts == 4
        assert config.operation_timeout == 60.0
        assert config.debug is True

    def test_invalid_values_ignored(self) -> None:
        """Unparseable numbers fall back to defaults."""
        config = ChannelConfig.from_env(
            {"AGENT_MAIL_TIMEOUT": "soon", "AGENT_MAIL_MAX_RECONNECT_ATTEMPTS": "many"}
        )

        assert config.timeout == 30.0
        assert config.max_reconnect_attempts == 10

    def test_explicit_overrides_win(self) -> None:
        config = ChannelConfig.from_env({"AGENT_MAIL_WS_URL": "ws://env/ws"}, url="ws://arg/ws")
        assert config.url == "ws://arg/ws"

    def test_empty_environment(self) -> None:
        assert ChannelConfig.from_env({}) == ChannelConfig()
