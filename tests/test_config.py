"""
Tests for Settings validation.
"""

import pytest

from app_deployer.core.config import Settings, load_settings
from app_deployer.core.exceptions import ConfigurationError


def test_defaults():
    settings = Settings()
    assert settings.deploy_path == "/var/www/app"
    assert settings.process_name == "node-app"
    assert settings.port == 4000
    assert settings.enable_rollback is False
    assert settings.health_path == "/api/health"
    assert settings.health_max_attempts == 30
    assert settings.health_interval_seconds == 2.0
    assert settings.settle_seconds == 3.0
    assert settings.backup_retention_days == 7
    assert settings.health_url == "http://localhost:4000/api/health"


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("APP_DEPLOYER_PORT", "3000")
    monkeypatch.setenv("APP_DEPLOYER_ENABLE_ROLLBACK", "true")
    monkeypatch.setenv("APP_DEPLOYER_REQUIRED_COMMANDS", '["pm2"]')
    settings = Settings()
    assert settings.port == 3000
    assert settings.enable_rollback is True
    assert settings.required_commands == ["pm2"]


def test_overrides_beat_environment(monkeypatch):
    monkeypatch.setenv("APP_DEPLOYER_PORT", "3000")
    assert load_settings(port=5000).port == 5000


def test_none_overrides_are_ignored():
    assert load_settings(port=None, process_name=None).process_name == "node-app"


def test_health_path_gets_leading_slash():
    assert Settings(health_path="health").health_path == "/health"


@pytest.mark.parametrize("overrides", [
    {"port": 0},
    {"port": 65536},
    {"health_max_attempts": 0},
    {"health_interval_seconds": -1},
    {"backup_retention_days": -1},
    {"log_format": "xml"},
])
def test_invalid_values_raise_configuration_error(overrides):
    with pytest.raises(ConfigurationError) as exc_info:
        load_settings(**overrides)
    assert exc_info.value.code == "CONFIGURATION_ERROR"


def test_invalid_env_value_raises_configuration_error(monkeypatch):
    monkeypatch.setenv("APP_DEPLOYER_PORT", "abc")
    with pytest.raises(ConfigurationError):
        load_settings()


def test_log_level_is_normalized():
    assert Settings(log_level="debug").log_level == "DEBUG"


def test_unknown_log_level_raises_configuration_error(monkeypatch):
    monkeypatch.setenv("APP_DEPLOYER_LOG_LEVEL", "verbose")
    with pytest.raises(ConfigurationError):
        load_settings()
