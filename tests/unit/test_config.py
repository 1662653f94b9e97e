"""Unit tests for settings loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from oci_retag.config import RetagSettings, RetryConfig, get_settings, load_yaml_config
from oci_retag.errors import RetagError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove RETAG_ variables inherited from the host environment."""
    for name in (
        "RETAG_PLATFORM",
        "RETAG_LOG_LEVEL",
        "RETAG_LOG_FORMAT",
        "RETAG_TIMEOUT_SECONDS",
        "RETAG_INSECURE_REGISTRIES",
        "RETAG_RETRY__MAX_ATTEMPTS",
    ):
        monkeypatch.delenv(name, raising=False)


class TestRetagSettings:
    """Tests for defaults and validation."""

    def test_defaults(self) -> None:
        """Test default settings."""
        settings = get_settings()

        assert settings.retry == RetryConfig()
        assert settings.timeout_seconds == pytest.approx(30.0)
        assert settings.insecure_registries == []
        assert settings.platform == "linux/amd64"
        assert settings.log_level == "WARNING"
        assert settings.log_format == "console"

    def test_retry_config_is_frozen(self) -> None:
        """Test RetryConfig is immutable."""
        config = RetryConfig()

        with pytest.raises(ValidationError):
            config.max_attempts = 9  # type: ignore[misc]

    def test_retry_config_rejects_zero_attempts(self) -> None:
        """Test at least one attempt is required."""
        with pytest.raises(ValidationError):
            RetryConfig(max_attempts=0)

    def test_lowercase_log_level(self) -> None:
        """Test log levels are case-insensitive."""
        assert RetagSettings(log_level="debug").log_level == "DEBUG"


class TestGetSettings:
    """Tests for layered configuration."""

    def test_yaml_file(self, tmp_path: Path) -> None:
        """Test values are read from YAML."""
        path = tmp_path / "retag.yaml"
        path.write_text(
            "retry:\n"
            "  max_attempts: 6\n"
            "  jitter: false\n"
            "timeout_seconds: 12\n"
            "insecure_registries:\n"
            "  - localhost:5000\n"
        )

        settings = get_settings(path)

        assert settings.retry.max_attempts == 6
        assert settings.retry.jitter is False
        assert settings.timeout_seconds == pytest.approx(12.0)
        assert settings.insecure_registries == ["localhost:5000"]

    def test_environment_beats_yaml(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test RETAG_ variables override the YAML file."""
        path = tmp_path / "retag.yaml"
        path.write_text("platform: linux/arm64\nlog_level: INFO\n")
        monkeypatch.setenv("RETAG_PLATFORM", "linux/s390x")

        settings = get_settings(path)

        assert settings.platform == "linux/s390x"
        assert settings.log_level == "INFO"

    def test_nested_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test nested retry fields use the '__' delimiter."""
        monkeypatch.setenv("RETAG_RETRY__MAX_ATTEMPTS", "2")

        assert get_settings().retry.max_attempts == 2

    def test_overrides_beat_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test explicit overrides (CLI flags) win; None overrides are ignored."""
        monkeypatch.setenv("RETAG_PLATFORM", "linux/s390x")

        assert get_settings(platform="linux/arm64").platform == "linux/arm64"
        assert get_settings(platform=None).platform == "linux/s390x"

    def test_invalid_value(self) -> None:
        """Test invalid values raise RetagError."""
        with pytest.raises(RetagError, match="Invalid configuration"):
            get_settings(platform="not a platform")

    def test_empty_yaml(self, tmp_path: Path) -> None:
        """Test an empty file yields defaults."""
        path = tmp_path / "retag.yaml"
        path.write_text("")

        assert load_yaml_config(path) == {}

    def test_non_mapping_yaml(self, tmp_path: Path) -> None:
        """Test a YAML list is rejected."""
        path = tmp_path / "retag.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(RetagError, match="mapping"):
            get_settings(path)

    def test_missing_file(self, tmp_path: Path) -> None:
        """Test a missing file raises RetagError."""
        with pytest.raises(RetagError, match="not found"):
            get_settings(tmp_path / "missing.yaml")
