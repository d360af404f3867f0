"""Command-line entry point for snow-plow."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Sequence

from pydantic import ValidationError

from . import __version__
from .config import SnowPlowSettings, get_settings
from .orchestrator import (
    BatchRun,
    DispatchConfig,
    JobStatus,
    UpdateDispatcher,
    render_report,
    select_snapshot,
    write_job_logs,
)
from .orchestrator.jobs import Runner
from .registry import RegistryError, RegistryStore, TrackedProject
from .runner import UpdateRunner

logger = logging.getLogger("snow_plow")

_LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


def configure_logging(level: str) -> None:
    """Configure root logging; diagnostics go to stderr, reports to stdout."""

    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


def load_settings(args: argparse.Namespace) -> SnowPlowSettings:
    settings = get_settings()
    updates: dict[str, object] = {}
    if getattr(args, "config_dir", None):
        updates["config_dir"] = Path(args.config_dir).expanduser().resolve()
    if getattr(args, "log_level", None):
        updates["log_level"] = args.log_level
    return settings.model_copy(update=updates) if updates else settings


def build_store(settings: SnowPlowSettings) -> RegistryStore:
    return RegistryStore(settings.registry_path, descriptor=settings.descriptor_name)


def build_runner(settings: SnowPlowSettings) -> UpdateRunner:
    return UpdateRunner(settings.nix_path, args=settings.update_command)


def _describe(project: TrackedProject) -> str:
    text = str(project.path)
    if project.label:
        text += f" [{project.label}]"
    if not project.enabled:
        text += " (disabled)"
    return text


def cmd_add(args: argparse.Namespace, settings: SnowPlowSettings) -> int:
    project = build_store(settings).add(args.path, label=args.label)
    print(f"tracking {project.path}")
    return 0


def cmd_remove(args: argparse.Namespace, settings: SnowPlowSettings) -> int:
    project = build_store(settings).remove(args.path)
    print(f"no longer tracking {project.path}")
    return 0


def cmd_list(args: argparse.Namespace, settings: SnowPlowSettings) -> int:
    for project in build_store(settings).list():
        if args.enabled and not project.enabled:
            continue
        if args.disabled and project.enabled:
            continue
        print(_describe(project))
    return 0


def cmd_enable(args: argparse.Namespace, settings: SnowPlowSettings) -> int:
    project, changed = build_store(settings).set_enabled(args.path, True)
    if changed:
        print(f"enabled {project.path}")
    return 0


def cmd_disable(args: argparse.Namespace, settings: SnowPlowSettings) -> int:
    project, changed = build_store(settings).set_enabled(args.path, False)
    if changed:
        print(f"disabled {project.path}")
    return 0


def cmd_info(args: argparse.Namespace, settings: SnowPlowSettings) -> int:
    project = build_store(settings).get(args.path)
    print(f"path:         {project.path}")
    print(f"label:        {project.label or '-'}")
    print(f"status:       {'enabled' if project.enabled else 'disabled'}")
    print(f"added:        {project.added_at.isoformat()}")
    print(f"last update:  {project.last_updated_at.isoformat() if project.last_updated_at else '-'}")
    print(f"lock hash:    {project.lock_hash or '-'}")
    return 0


async def run_batch(dispatcher: UpdateDispatcher, projects: Sequence[TrackedProject]) -> BatchRun:
    """Dispatch ``projects`` with SIGINT/SIGTERM wired to batch cancellation."""

    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, dispatcher.cancel)
        except (NotImplementedError, RuntimeError) as exc:
            # Unsupported on this platform or outside the main thread.
            logger.debug("Signal handler unavailable", extra={"signal": sig.name, "error": str(exc)})
            continue
        installed.append(sig)
    try:
        return await dispatcher.dispatch(projects)
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def cmd_update(
    args: argparse.Namespace,
    settings: SnowPlowSettings,
    *,
    runner: Runner | None = None,
) -> int:
    store = build_store(settings)
    projects = select_snapshot(store.load(), args.only)
    config = DispatchConfig(
        max_concurrency=args.jobs or settings.effective_jobs,
        timeout=args.timeout or settings.timeout,
        lock_name=settings.lock_name,
    )
    dispatcher = UpdateDispatcher(runner or build_runner(settings), config)
    batch = asyncio.run(run_batch(dispatcher, projects))

    log_paths: dict[Path, Path] = {}
    if batch.count(JobStatus.FAILED):
        log_dir = settings.log_dir / batch.started_at.strftime("%Y%m%dT%H%M%SZ")
        try:
            log_paths = write_job_logs(batch, log_dir)
        except OSError as exc:
            logger.warning("Could not write job logs to %s: %s", log_dir, exc)

    print(render_report(batch, log_paths=log_paths, verbose=args.verbose))
    try:
        store.record_updates(batch.lock_hashes())
    except RegistryError as exc:
        print(f"snow-plow: warning: could not record update metadata: {exc}", file=sys.stderr)
    return batch.exit_code


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError("must be >= 1")
    return number


def _positive_float(value: str) -> float:
    number = float(value)
    if number <= 0:
        raise argparse.ArgumentTypeError("must be > 0")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="snow-plow",
        description="Update every tracked flake of this machine in one go",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config-dir",
        help="Directory holding the registry (default: $SNOW_PLOW_CONFIG or ~/.config/snow-plow)",
    )
    parser.add_argument("--log-level", choices=_LOG_LEVELS, help="Diagnostic log level")
    sub = parser.add_subparsers(dest="cmd")

    p_add = sub.add_parser("add", help="Track a flake directory")
    p_add.add_argument("path", help="Directory containing a flake.nix")
    p_add.add_argument("--label", help="Display label used in reports")
    p_add.set_defaults(func=cmd_add)

    p_remove = sub.add_parser("remove", help="Stop tracking a flake directory")
    p_remove.add_argument("path")
    p_remove.set_defaults(func=cmd_remove)

    p_list = sub.add_parser("list", help="List tracked flakes in registry order")
    group = p_list.add_mutually_exclusive_group()
    group.add_argument("-e", "--enabled", action="store_true", help="Only list enabled flakes")
    group.add_argument("-d", "--disabled", action="store_true", help="Only list disabled flakes")
    p_list.set_defaults(func=cmd_list)

    p_enable = sub.add_parser("enable", help="Include a tracked flake in updates again")
    p_enable.add_argument("path")
    p_enable.set_defaults(func=cmd_enable)

    p_disable = sub.add_parser("disable", help="Keep a flake tracked but skip it in updates")
    p_disable.add_argument("path")
    p_disable.set_defaults(func=cmd_disable)

    p_info = sub.add_parser("info", help="Show the stored details of a tracked flake")
    p_info.add_argument("path")
    p_info.set_defaults(func=cmd_info)

    p_update = sub.add_parser("update", help="Update all enabled flakes")
    p_update.add_argument("--jobs", "-j", type=_positive_int, help="Maximum concurrent updates")
    p_update.add_argument(
        "--timeout", type=_positive_float, help="Per-project timeout in seconds"
    )
    p_update.add_argument(
        "--only", nargs="+", metavar="PATH", help="Restrict the batch to these tracked paths"
    )
    p_update.add_argument(
        "--verbose", "-v", action="store_true", help="Show every changed input"
    )
    p_update.set_defaults(func=cmd_update)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return 0

    try:
        settings = load_settings(args)
    except ValidationError as exc:
        print(f"snow-plow: error: invalid configuration: {exc}", file=sys.stderr)
        return 1

    configure_logging(settings.log_level)
    try:
        return args.func(args, settings)
    except RegistryError as exc:
        print(f"snow-plow: error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
