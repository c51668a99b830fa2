#  Agent Watch - Config Validation Tests
#
#  Tests for validate_config() startup checks.
#
#  Depends on: agentwatch/config.py
#  Used by:    pytest

import logging
from unittest.mock import patch

import pytest

from agentwatch.config import ConfigError, cfg, validate_config


class TestValidateConfig:
    def test_defaults_pass(self):
        validate_config()  # should not raise

    def test_raises_on_bad_port(self):
        with patch("agentwatch.config.PORT", 70000):
            with pytest.raises(ConfigError, match="server.port"):
                validate_config()

    def test_raises_on_zero_queue_size(self):
        with patch("agentwatch.config.WATCHER_QUEUE_SIZE", 0):
            with pytest.raises(ConfigError, match="watcher.queue_size"):
                validate_config()

    def test_raises_on_non_int_dispatch_pool(self):
        with patch("agentwatch.config.MAX_CONCURRENT_DISPATCH", "4"):
            with pytest.raises(ConfigError, match="max_concurrent_dispatch"):
                validate_config()

    def test_raises_on_negative_timeout(self):
        with patch("agentwatch.config.WEBHOOK_TIMEOUT", -1):
            with pytest.raises(ConfigError, match="webhook_timeout"):
                validate_config()

    def test_raises_on_unordered_windows(self):
        with patch("agentwatch.config.ACTIVE_WINDOW_HOURS", 48), \
             patch("agentwatch.config.RECENT_ACTIVITY_HOURS", 24):
            with pytest.raises(ConfigError, match="recent_activity_hours"):
                validate_config()

    def test_raises_on_invalid_cors_origin(self):
        with patch("agentwatch.config.CORS_ORIGINS", ["not-a-url"]):
            with pytest.raises(ConfigError, match="CORS origin must start with"):
                validate_config()

    def test_warns_on_cors_wildcard(self, caplog):
        with patch("agentwatch.config.CORS_ORIGINS", ["*"]):
            with caplog.at_level(logging.WARNING):
                validate_config()
            assert "allows all origins" in caplog.text

    def test_warns_on_smtp_user_without_password(self, caplog):
        with patch("agentwatch.config.SMTP_USERNAME", "alerts"), \
             patch("agentwatch.config.SMTP_PASSWORD", ""):
            with caplog.at_level(logging.WARNING):
                validate_config()
            assert "AGENTWATCH_SMTP_PASSWORD" in caplog.text

    def test_warns_on_tiny_queue(self, caplog):
        with patch("agentwatch.config.WATCHER_QUEUE_SIZE", 5):
            with caplog.at_level(logging.WARNING):
                validate_config()
            assert "very small" in caplog.text


class TestCfg:
    def test_missing_path_returns_default(self):
        assert cfg("no.such.key", "fallback") == "fallback"

    def test_dot_path_lookup(self):
        with patch("agentwatch.config._config", {"watcher": {"queue_size": 7}}):
            assert cfg("watcher.queue_size") == 7
            assert cfg("watcher.queue_size.deeper", 1) == 1
