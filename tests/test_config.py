from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from snow_plow.config import SnowPlowSettings, get_settings


def test_defaults_follow_xdg_config_home(tmp_path: Path) -> None:
    settings = get_settings()

    assert settings.config_dir == (tmp_path / "xdg" / "snow-plow").resolve()
    assert settings.registry_path.name == "registry.yaml"
    assert settings.log_dir == settings.config_dir / "logs"
    assert settings.update_command == ("flake", "update")
    assert settings.timeout == 600.0
    assert settings.log_level == "WARNING"
    assert settings.effective_jobs >= 1


def test_environment_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SNOW_PLOW_CONFIG", str(tmp_path / "custom"))
    monkeypatch.setenv("SNOW_PLOW_UPDATE_ARGS", "flake update --commit-lock-file")
    monkeypatch.setenv("SNOW_PLOW_JOBS", "3")
    monkeypatch.setenv("SNOW_PLOW_TIMEOUT", "42.5")
    monkeypatch.setenv("SNOW_PLOW_LOG_LEVEL", "debug")

    settings = get_settings()

    assert settings.config_dir == (tmp_path / "custom").resolve()
    assert settings.update_command == ("flake", "update", "--commit-lock-file")
    assert settings.effective_jobs == 3
    assert settings.timeout == 42.5
    assert settings.log_level == "DEBUG"


def test_get_settings_is_cached() -> None:
    assert get_settings() is get_settings()


@pytest.mark.parametrize(
    "name, value",
    [
        ("SNOW_PLOW_LOG_LEVEL", "chatty"),
        ("SNOW_PLOW_JOBS", "0"),
        ("SNOW_PLOW_TIMEOUT", "-1"),
        ("SNOW_PLOW_LOCK", "nested/flake.lock"),
    ],
)
def test_invalid_values_are_rejected(name: str, value: str, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValidationError):
        SnowPlowSettings()
