from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from snow_plow.cli import build_parser, main
from snow_plow.config import get_settings
from snow_plow.registry import store as store_module

from conftest import write_lock

REV_OLD = "1" * 40

FAKE_NIX = """#!/bin/sh
case "$(basename "$PWD")" in
  b)
    echo "fetching inputs"
    echo "error: cannot fetch input 'nixpkgs'" >&2
    echo "       reason: connection refused" >&2
    exit 1
    ;;
esac
if [ -f flake.lock ]; then
  sed 's/1111111111/2222222222/g' flake.lock > flake.lock.new && mv flake.lock.new flake.lock
fi
echo "updated $PWD"
"""


@pytest.fixture
def config_dir(tmp_path: Path) -> Path:
    return tmp_path / "config"


@pytest.fixture
def fake_nix(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    script = tmp_path / "bin" / "nix"
    script.parent.mkdir(parents=True)
    script.write_text(FAKE_NIX, encoding="utf-8")
    script.chmod(0o755)
    monkeypatch.setenv("SNOW_PLOW_NIX", str(script))
    return script


def _run(config_dir: Path, *argv: str) -> int:
    return main(["--config-dir", str(config_dir), *argv])


def test_no_subcommand_prints_help(capsys: pytest.CaptureFixture[str]) -> None:
    assert main([]) == 0
    assert "usage: snow-plow" in capsys.readouterr().out


def test_add_list_remove_roundtrip(
    config_dir: Path, make_flake, capsys: pytest.CaptureFixture[str]
) -> None:
    first, second = make_flake("first"), make_flake("second")

    assert _run(config_dir, "add", str(first), "--label", "primary") == 0
    assert _run(config_dir, "add", str(second)) == 0
    capsys.readouterr()

    assert _run(config_dir, "list") == 0
    assert capsys.readouterr().out.splitlines() == [f"{first} [primary]", str(second)]

    assert _run(config_dir, "remove", str(first)) == 0
    assert "no longer tracking" in capsys.readouterr().out
    document = yaml.safe_load((config_dir / "registry.yaml").read_text(encoding="utf-8"))
    assert [entry["path"] for entry in document["projects"]] == [str(second)]


def test_registry_errors_exit_non_zero(
    config_dir: Path, make_flake, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    flake = make_flake("site")
    assert _run(config_dir, "add", str(flake)) == 0
    capsys.readouterr()

    assert _run(config_dir, "add", str(flake)) == 1
    assert "is already tracked" in capsys.readouterr().err

    assert _run(config_dir, "remove", str(tmp_path / "elsewhere")) == 1
    assert "is not tracked" in capsys.readouterr().err

    plain = tmp_path / "plain"
    plain.mkdir()
    assert _run(config_dir, "add", str(plain)) == 1
    assert "does not contain a `flake.nix`" in capsys.readouterr().err


def test_corrupted_registry_is_reported(config_dir: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config_dir.mkdir(parents=True)
    (config_dir / "registry.yaml").write_text("projects: [oops", encoding="utf-8")

    assert _run(config_dir, "list") == 1
    assert "snow-plow: error:" in capsys.readouterr().err


def test_enable_disable_and_info(
    config_dir: Path, make_flake, capsys: pytest.CaptureFixture[str]
) -> None:
    active, paused = make_flake("active"), make_flake("paused")
    _run(config_dir, "add", str(active))
    _run(config_dir, "add", str(paused))
    capsys.readouterr()

    assert _run(config_dir, "disable", str(paused)) == 0
    assert capsys.readouterr().out.strip() == f"disabled {paused}"

    _run(config_dir, "list", "--disabled")
    assert capsys.readouterr().out.splitlines() == [f"{paused} (disabled)"]
    _run(config_dir, "list", "--enabled")
    assert capsys.readouterr().out.splitlines() == [str(active)]

    assert _run(config_dir, "info", str(paused)) == 0
    info = capsys.readouterr().out
    assert "status:       disabled" in info
    assert "last update:  -" in info

    assert _run(config_dir, "enable", str(paused)) == 0
    assert capsys.readouterr().out.strip() == f"enabled {paused}"


def test_update_with_empty_registry(config_dir: Path, fake_nix: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(config_dir, "update") == 0
    assert capsys.readouterr().out.strip() == "0 projects: 0 succeeded, 0 failed, 0 skipped (empty)"


def test_update_reports_every_project_in_registry_order(
    config_dir: Path, fake_nix: Path, make_flake, capsys: pytest.CaptureFixture[str]
) -> None:
    a = make_flake("a", pins={"nixpkgs": REV_OLD})
    b = make_flake("b")
    c = make_flake("c")
    skipped = make_flake("d")
    for path in (a, b, c, skipped):
        assert _run(config_dir, "add", str(path)) == 0
    assert _run(config_dir, "disable", str(skipped)) == 0
    capsys.readouterr()

    exit_code = _run(config_dir, "update", "--jobs", "3", "--timeout", "30")

    lines = capsys.readouterr().out.splitlines()
    assert exit_code == 1
    assert lines[0] == f"[ok] a ({a}): 1 changed"
    assert lines[1].startswith(
        f"[FAILED] b ({b}): exit code 1: error: cannot fetch input 'nixpkgs' reason: connection refused"
    )
    assert "[output: " in lines[1]
    assert lines[2] == f"[ok] c ({c}): diff unavailable: no lock file before update"
    assert lines[-1] == "3 projects: 2 succeeded, 1 failed, 0 skipped (partial failure)"

    logs = list((config_dir / "logs").glob("*/002-b.log"))
    assert len(logs) == 1
    assert "connection refused" in logs[0].read_text(encoding="utf-8")

    _run(config_dir, "info", str(a))
    info = capsys.readouterr().out
    assert "last update:  -" not in info
    _run(config_dir, "info", str(b))
    assert "lock hash:    -" in capsys.readouterr().out


def test_update_only_selects_named_projects(
    config_dir: Path, fake_nix: Path, make_flake, capsys: pytest.CaptureFixture[str]
) -> None:
    a, c = make_flake("a"), make_flake("c")
    _run(config_dir, "add", str(a))
    _run(config_dir, "add", str(c))
    _run(config_dir, "disable", str(c))
    capsys.readouterr()

    assert _run(config_dir, "update", "--only", str(c)) == 0
    lines = capsys.readouterr().out.splitlines()
    assert len(lines) == 2
    assert lines[0].startswith(f"[ok] c ({c})")

    assert _run(config_dir, "update", "--only", str(config_dir)) == 1
    assert "is not tracked" in capsys.readouterr().err


def test_update_without_nix_is_a_total_failure(
    config_dir: Path, make_flake, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys
) -> None:
    flake = make_flake("site")
    write_lock(flake, {"nixpkgs": REV_OLD})
    _run(config_dir, "add", str(flake))
    capsys.readouterr()
    monkeypatch.setenv("SNOW_PLOW_NIX", str(tmp_path / "no-such-nix"))
    get_settings.cache_clear()

    assert _run(config_dir, "update") == 2
    out = capsys.readouterr().out
    assert "[FAILED] site" in out
    assert "launch error: cannot launch" in out
    assert "(total failure)" in out


def test_metadata_write_failure_keeps_batch_exit_code(
    config_dir: Path, fake_nix: Path, make_flake, monkeypatch: pytest.MonkeyPatch, capsys
) -> None:
    flake = make_flake("site")
    _run(config_dir, "add", str(flake))
    capsys.readouterr()

    def broken_replace(src, dst):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(store_module.os, "replace", broken_replace)

    assert _run(config_dir, "update") == 0
    captured = capsys.readouterr()
    assert captured.out.strip().endswith("1 project: 1 succeeded, 0 failed, 0 skipped (success)")
    assert "could not record update metadata" in captured.err


def test_invalid_environment_is_reported(
    config_dir: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setenv("SNOW_PLOW_JOBS", "0")

    assert _run(config_dir, "list") == 1
    assert "invalid configuration" in capsys.readouterr().err


def test_parser_rejects_non_positive_jobs() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args(["update", "--jobs", "0"])
