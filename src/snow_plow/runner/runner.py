"""Async runner for the external flake update command."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import signal
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping, Sequence

from .utils import sanitize_environment

logger = logging.getLogger(__name__)

DEFAULT_UPDATE_ARGS: tuple[str, ...] = ("flake", "update")


class UpdateRunnerError(RuntimeError):
    """Base class for update runner errors."""


class UpdateLaunchError(UpdateRunnerError):
    """Raised when the update process cannot be started at all."""


@dataclass(slots=True)
class UpdateExecutionResult:
    """Holds the outcome of one update invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class UpdateRunner:
    """Run ``nix flake update`` inside a project directory.

    Given a directory, :meth:`run` produces an :class:`UpdateExecutionResult`
    or raises :class:`UpdateLaunchError`. Cancelling the awaiting task kills
    the child process group before the cancellation propagates.
    """

    def __init__(
        self,
        executable: Path | str | None = None,
        *,
        args: Sequence[str] = DEFAULT_UPDATE_ARGS,
    ) -> None:
        self._explicit = Path(executable) if executable is not None else None
        self._args = tuple(args)

    @property
    def executable(self) -> Path | None:
        if self._explicit is not None:
            return self._explicit
        binary = shutil.which("nix")
        return Path(binary) if binary else None

    async def run(self, project_dir: Path) -> UpdateExecutionResult:
        executable = self.executable
        if executable is None:
            raise UpdateLaunchError("nix executable not found on PATH")

        cmd = [str(executable), *self._args]
        spawn = asyncio.ensure_future(
            asyncio.create_subprocess_exec(
                *cmd,
                cwd=str(project_dir),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=sanitize_environment(),
                start_new_session=True,
            )
        )
        try:
            process = await asyncio.shield(spawn)
        except asyncio.CancelledError:
            # The child may already exist; wait for the spawn so it can be killed.
            with suppress(OSError):
                process = await spawn
                await _terminate(process, project_dir)
            raise
        except OSError as exc:
            raise UpdateLaunchError(f"cannot launch {cmd[0]}: {exc}") from exc

        try:
            stdout_bytes, stderr_bytes = await process.communicate()
        except asyncio.CancelledError:
            await _terminate(process, project_dir)
            raise

        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        return UpdateExecutionResult(args=tuple(cmd), returncode=process.returncode, stdout=stdout, stderr=stderr)


async def _terminate(process: asyncio.subprocess.Process, project_dir: Path) -> None:
    _kill_process_group(process)
    with suppress(Exception):
        await process.communicate()
    logger.debug("Killed update process", extra={"path": str(project_dir), "pid": process.pid})


def _kill_process_group(process: asyncio.subprocess.Process) -> None:
    if os.name == "nt":
        with suppress(ProcessLookupError):
            process.kill()
        return
    with suppress(ProcessLookupError, PermissionError):
        os.killpg(process.pid, signal.SIGKILL)


class FakeUpdateRunner(UpdateRunner):
    """Test double that simulates update responses per project directory."""

    def __init__(  # type: ignore[override]
        self,
        responses: Mapping[Path, UpdateExecutionResult | BaseException] | None = None,
        *,
        delays: Mapping[Path, float] | None = None,
        effects: Mapping[Path, Callable[[Path], None]] | None = None,
    ) -> None:
        self._responses = dict(responses or {})
        self._delays = dict(delays or {})
        self._effects = dict(effects or {})
        self._invocations: list[Path] = []
        self._explicit = Path("/tmp/fake-nix")
        self._args = DEFAULT_UPDATE_ARGS
        self._active = 0
        self.max_active = 0

    async def run(self, project_dir: Path) -> UpdateExecutionResult:  # type: ignore[override]
        self._invocations.append(project_dir)
        self._active += 1
        self.max_active = max(self.max_active, self._active)
        try:
            delay = self._delays.get(project_dir)
            if delay:
                await asyncio.sleep(delay)
            response = self._responses.get(project_dir)
            if isinstance(response, BaseException):
                raise response
            effect = self._effects.get(project_dir)
            if effect is not None:
                effect(project_dir)
            if response is None:
                return UpdateExecutionResult(
                    args=("nix", *self._args), returncode=0, stdout="", stderr=""
                )
            return response
        finally:
            self._active -= 1

    @property
    def invocations(self) -> list[Path]:
        return self._invocations


__all__ = [
    "DEFAULT_UPDATE_ARGS",
    "FakeUpdateRunner",
    "UpdateExecutionResult",
    "UpdateLaunchError",
    "UpdateRunner",
    "UpdateRunnerError",
]
