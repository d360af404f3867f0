from __future__ import annotations

import json
from pathlib import Path
from typing import Callable

import pytest

from snow_plow.config import get_settings


def lock_document(pins: dict[str, str]) -> dict:
    nodes: dict[str, dict] = {"root": {"inputs": {name: name for name in pins}}}
    for name, rev in pins.items():
        nodes[name] = {
            "locked": {"owner": "example", "repo": name, "rev": rev, "type": "github"},
            "original": {"owner": "example", "repo": name, "type": "github"},
        }
    return {"nodes": nodes, "root": "root", "version": 7}


def write_lock(directory: Path, pins: dict[str, str]) -> Path:
    lock_path = directory / "flake.lock"
    lock_path.write_text(json.dumps(lock_document(pins), indent=2), encoding="utf-8")
    return lock_path


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    for name in (
        "SNOW_PLOW_CONFIG",
        "SNOW_PLOW_NIX",
        "SNOW_PLOW_UPDATE_ARGS",
        "SNOW_PLOW_DESCRIPTOR",
        "SNOW_PLOW_LOCK",
        "SNOW_PLOW_JOBS",
        "SNOW_PLOW_TIMEOUT",
        "SNOW_PLOW_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def make_flake(tmp_path: Path) -> Callable[..., Path]:
    def factory(name: str, *, pins: dict[str, str] | None = None) -> Path:
        directory = tmp_path / "flakes" / name
        directory.mkdir(parents=True)
        (directory / "flake.nix").write_text("{ outputs = _: { }; }\n", encoding="utf-8")
        if pins is not None:
            write_lock(directory, pins)
        return directory.resolve()

    return factory
