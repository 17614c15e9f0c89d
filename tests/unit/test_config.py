"""Unit tests for RuntimeConfig."""

from __future__ import annotations

import pytest

from conduit_runtime.config import RuntimeConfig


class TestRuntimeConfig:
    """Tests for defaults and validation."""

    def test_defaults(self):
        config = RuntimeConfig()

        assert config.host == "127.0.0.1"
        assert config.port == 4100
        assert config.command_timeout == 60.0
        assert config.scan_timeout == 300.0
        assert config.scan_chunk_size == 10
        assert config.batch_chunk_size == 5
        assert config.allow_replace is False
        assert config.sandbox is False
        assert config.log_level == "INFO"

    def test_log_level_uppercased(self):
        assert RuntimeConfig(log_level="debug").log_level == "DEBUG"

    def test_rejects_bad_timeout(self):
        with pytest.raises(ValueError):
            RuntimeConfig(command_timeout=0)

    def test_rejects_bad_chunk_size(self):
        with pytest.raises(ValueError):
            RuntimeConfig(scan_chunk_size=0)

    def test_reconnect_defaults(self):
        config = RuntimeConfig()

        assert config.reconnect is True
        assert config.reconnect_delay == 1.0
        assert config.max_reconnect_delay == 30.0
        assert config.reconnect_backoff == 2.0
        assert config.max_reconnect_attempts == 5
        assert config.connect_timeout == 10.0

    @pytest.mark.parametrize(
        "overrides",
        [
            {"reconnect_delay": -1},
            {"reconnect_delay": 5, "max_reconnect_delay": 1},
            {"reconnect_backoff": 0.5},
            {"max_reconnect_attempts": -1},
            {"connect_timeout": 0},
        ],
    )
    def test_rejects_bad_reconnect_settings(self, overrides):
        with pytest.raises(ValueError):
            RuntimeConfig(**overrides)


class TestFromEnv:
    """Tests for RuntimeConfig.from_env."""

    def test_empty_environment_gives_defaults(self):
        assert RuntimeConfig.from_env({}) == RuntimeConfig()

    def test_reads_prefixed_variables(self):
        config = RuntimeConfig.from_env(
            {
                "CONDUIT_PORT": "9000",
                "CONDUIT_COMMAND_TIMEOUT": "2.5",
                "CONDUIT_ALLOW_REPLACE": "yes",
                "CONDUIT_SANDBOX": "1",
                "CONDUIT_SANDBOX_DOCUMENT": "/tmp/doc.yaml",
                "CONDUIT_LOG_LEVEL": "warning",
                "UNRELATED": "x",
            }
        )

        assert config.port == 9000
        assert config.command_timeout == 2.5
        assert config.allow_replace is True
        assert config.sandbox is True
        assert config.sandbox_document == "/tmp/doc.yaml"
        assert config.log_level == "WARNING"

    def test_empty_optional_string_is_none(self):
        assert RuntimeConfig.from_env({"CONDUIT_SANDBOX_DOCUMENT": ""}).sandbox_document is None

    def test_invalid_number_names_variable(self):
        with pytest.raises(ValueError, match="CONDUIT_PORT"):
            RuntimeConfig.from_env({"CONDUIT_PORT": "eighty"})

    def test_invalid_bool_names_variable(self):
        with pytest.raises(ValueError, match="CONDUIT_SANDBOX"):
            RuntimeConfig.from_env({"CONDUIT_SANDBOX": "maybe"})

    def test_overrides_win(self):
        config = RuntimeConfig.from_env({"CONDUIT_PORT": "9000"}, port=9100, host=None)

        assert config.port == 9100
        assert config.host == "127.0.0.1"

    def test_reads_os_environ_by_default(self, monkeypatch):
        monkeypatch.setenv("CONDUIT_SCAN_CHUNK_SIZE", "25")

        assert RuntimeConfig.from_env().scan_chunk_size == 25

    def test_reads_reconnect_variables(self):
        config = RuntimeConfig.from_env(
            {
                "CONDUIT_RECONNECT": "off",
                "CONDUIT_RECONNECT_DELAY": "0.5",
                "CONDUIT_MAX_RECONNECT_ATTEMPTS": "9",
            }
        )

        assert config.reconnect is False
        assert config.reconnect_delay == 0.5
        assert config.max_reconnect_attempts == 9
