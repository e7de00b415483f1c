"""Tests for configuration loading."""

from __future__ import annotations

import pytest

from fleetload._internal.config import Settings, TestConfig, load_settings
from fleetload._internal.errors import ConfigError


class TestTestConfig:
    """Tests for the TestConfig dataclass."""

    def test_defaults(self):
        """TestConfig mirrors the CLI defaults."""
        config = TestConfig(target="my-alb.example.com")
        assert config.region == "ap-southeast-2"
        assert config.concurrency == 10
        assert config.duration == 300
        assert config.ramp_up == 60
        assert config.fleet_name is None
        assert config.request_delay == 0.1
        assert config.ramp_steps == 5
        assert config.hold is False

    def test_frozen(self):
        """TestConfig is immutable."""
        config = TestConfig(target="host")
        with pytest.raises(AttributeError):
            config.concurrency = 99  # type: ignore[misc]

    def test_bare_host_becomes_http_url(self):
        assert TestConfig(target="my-alb.example.com").target_url == "http://my-alb.example.com"

    def test_url_is_kept(self):
        config = TestConfig(target="https://api.example.com/health")
        assert config.target_url == "https://api.example.com/health"

    @pytest.mark.parametrize(
        ("field", "value", "match"),
        [
            ("concurrency", 0, "concurrency must be >= 1"),
            ("duration", 0, "duration must be >= 1"),
            ("ramp_steps", 0, "ramp_steps must be >= 1"),
            ("request_delay", -0.1, "request_delay must be non-negative"),
            ("ramp_up", 0, "ramp_up must be positive"),
            ("request_timeout", 0, "request_timeout must be positive"),
            ("probe_timeout", -1, "probe_timeout must be positive"),
        ],
    )
    def test_out_of_range_values_raise(self, field: str, value: float, match: str):
        with pytest.raises(ConfigError, match=match):
            TestConfig(target="host", **{field: value})

    def test_empty_target_raises(self):
        with pytest.raises(ConfigError, match="target must not be empty"):
            TestConfig(target="  ")

    def test_zero_request_delay_is_allowed(self):
        assert TestConfig(target="host", request_delay=0).request_delay == 0

    def test_ramp_longer_than_duration_is_only_checked_for_ramp(self):
        """A long ramp-up is fine until a ramp mode asks for validation."""
        config = TestConfig(target="host", duration=30, ramp_up=60)
        with pytest.raises(ConfigError, match="must not exceed duration"):
            config.validate_for_ramp()

    def test_ramp_equal_to_duration_is_valid(self):
        TestConfig(target="host", duration=60, ramp_up=60).validate_for_ramp()


class TestLoadSettings:
    """Tests for the load_settings function."""

    def test_defaults_from_env(self, monkeypatch: pytest.MonkeyPatch):
        for name in (
            "FLEETLOAD_REQUEST_TIMEOUT",
            "FLEETLOAD_REQUEST_DELAY",
            "FLEETLOAD_REPORT_INTERVAL",
            "FLEETLOAD_PROBE_TIMEOUT",
        ):
            monkeypatch.delenv(name, raising=False)

        assert load_settings() == Settings()

    def test_values_from_env(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("FLEETLOAD_REQUEST_TIMEOUT", "2.5")
        monkeypatch.setenv("FLEETLOAD_REQUEST_DELAY", "0")
        monkeypatch.setenv("FLEETLOAD_REPORT_INTERVAL", "1")
        monkeypatch.setenv("FLEETLOAD_PROBE_TIMEOUT", "0.5")

        settings = load_settings()
        assert settings.request_timeout == 2.5
        assert settings.request_delay == 0.0
        assert settings.report_interval == 1.0
        assert settings.probe_timeout == 0.5

    def test_non_numeric_value_raises(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("FLEETLOAD_REQUEST_TIMEOUT", "soon")
        with pytest.raises(ConfigError, match="must be a number"):
            load_settings()

    def test_zero_timeout_raises(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("FLEETLOAD_PROBE_TIMEOUT", "0")
        with pytest.raises(ConfigError, match="must be positive"):
            load_settings()

    def test_negative_delay_raises(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("FLEETLOAD_REQUEST_DELAY", "-1")
        with pytest.raises(ConfigError, match="must be non-negative"):
            load_settings()
