"""Tests for settings loading."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from foo_controller.config import ControllerSettings, load_settings
from foo_controller.models import FINALIZER_NAME


class TestDefaults:
    def test_defaults(self) -> None:
        settings = ControllerSettings()
        assert settings.namespace == ""
        assert (settings.group, settings.version, settings.plural) == ("example.com", "v1", "foos")
        assert settings.finalizer_name == FINALIZER_NAME
        assert settings.workers == 1
        assert settings.max_retries == 5
        assert settings.resync_period == 30.0
        assert settings.default_image == "nginx:latest"


class TestEnvironment:
    def test_env_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FOO_CONTROLLER_WORKERS", "4")
        monkeypatch.setenv("FOO_CONTROLLER_NAMESPACE", "team-a")
        monkeypatch.setenv("FOO_CONTROLLER_LOG_LEVEL", "debug")
        settings = load_settings()
        assert settings.workers == 4
        assert settings.namespace == "team-a"
        assert settings.log_level == "DEBUG"

    def test_invalid_worker_count(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FOO_CONTROLLER_WORKERS", "0")
        with pytest.raises(ValidationError):
            load_settings()


class TestValidation:
    def test_bad_log_format(self) -> None:
        with pytest.raises(ValidationError):
            ControllerSettings(log_format="xml")

    def test_max_delay_below_base(self) -> None:
        with pytest.raises(ValidationError):
            ControllerSettings(backoff_base_delay=2.0, backoff_max_delay=1.0)

    def test_unknown_log_level(self) -> None:
        with pytest.raises(ValidationError):
            ControllerSettings(log_level="verbose")
