"""Tests for RelaySettings and the settings cache."""

import pytest
from pydantic import ValidationError

from relay.core.settings import RelaySettings, clear_settings_cache, get_settings


class TestRelaySettingsDefaults:
    """Tests for default values."""

    def test_defaults(self):
        settings = RelaySettings()
        assert settings.rate_limit_max_calls == 10
        assert settings.rate_limit_window_seconds == 1.0
        assert settings.circuit_failure_threshold == 5
        assert settings.circuit_cool_down_seconds == 30.0
        assert settings.retry_max_retries == 3
        assert settings.retry_initial_delay == 1.0
        assert settings.retry_max_delay == 60.0
        assert settings.retry_backoff_multiplier == 2.0
        assert settings.retry_jitter_fraction == 0.25
        assert settings.default_timeout is None
        assert settings.log_format == "json"


class TestRelaySettingsEnvironment:
    """Tests for RELAY_* environment overrides."""

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("RELAY_RATE_LIMIT_MAX_CALLS", "50")
        monkeypatch.setenv("RELAY_CIRCUIT_COOL_DOWN_SECONDS", "2.5")
        monkeypatch.setenv("RELAY_DEFAULT_TIMEOUT", "10")

        settings = RelaySettings()

        assert settings.rate_limit_max_calls == 50
        assert settings.circuit_cool_down_seconds == 2.5
        assert settings.default_timeout == 10.0

    def test_env_file(self, tmp_path):
        """Values can come from a .env file."""
        env_file = tmp_path / "relay.env"
        env_file.write_text("RELAY_CIRCUIT_FAILURE_THRESHOLD=9\n")

        settings = get_settings(env_file=str(env_file))

        assert settings.circuit_failure_threshold == 9

    def test_unknown_variables_ignored(self, monkeypatch):
        monkeypatch.setenv("RELAY_SOMETHING_ELSE", "x")
        RelaySettings()


class TestRelaySettingsValidation:
    """Tests for validation at load time."""

    @pytest.mark.parametrize(
        ("env", "value"),
        [
            ("RELAY_RATE_LIMIT_MAX_CALLS", "0"),
            ("RELAY_RATE_LIMIT_WINDOW_SECONDS", "0"),
            ("RELAY_CIRCUIT_FAILURE_THRESHOLD", "0"),
            ("RELAY_RETRY_JITTER_FRACTION", "1.5"),
            ("RELAY_DEFAULT_TIMEOUT", "-1"),
            ("RELAY_LOG_FORMAT", "xml"),
        ],
    )
    def test_invalid_values(self, monkeypatch, env, value):
        monkeypatch.setenv(env, value)
        with pytest.raises(ValidationError):
            RelaySettings()

    def test_max_delay_below_initial_delay(self):
        """retry_max_delay must not be smaller than retry_initial_delay."""
        with pytest.raises(ValidationError, match="retry_max_delay"):
            RelaySettings(retry_initial_delay=5.0, retry_max_delay=1.0)


class TestRelaySettingsBuilders:
    """Tests for the config builders."""

    def test_builders(self):
        settings = RelaySettings(
            rate_limit_max_calls=3,
            rate_limit_window_seconds=2.0,
            circuit_failure_threshold=7,
            circuit_cool_down_seconds=4.0,
            retry_max_retries=5,
            retry_initial_delay=0.5,
            retry_max_delay=8.0,
            retry_jitter_fraction=0.0,
        )

        limiter = settings.build_rate_limiter_config()
        breaker = settings.build_circuit_breaker_config()
        policy = settings.build_retry_policy()

        assert (limiter.max_calls, limiter.window_seconds) == (3, 2.0)
        assert (breaker.failure_threshold, breaker.cool_down_seconds) == (7, 4.0)
        assert policy.max_retries == 5
        assert policy.base_delay(5) == 8.0


class TestGetSettings:
    """Tests for the cached settings factory."""

    def test_cached(self):
        assert get_settings() is get_settings()

    def test_force_reload(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("RELAY_RETRY_MAX_RETRIES", "8")

        assert get_settings() is first
        assert get_settings(_force_reload=True).retry_max_retries == 8

    def test_clear_cache(self):
        first = get_settings()
        clear_settings_cache()
        assert get_settings() is not first
