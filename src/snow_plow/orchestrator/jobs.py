"""Update jobs and the runner that drives one job to a terminal status."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Protocol

from ..lockdiff import LockDiff, LockParseError, diff_pins, hash_lock, read_pins
from ..registry import TrackedProject
from ..runner import UpdateExecutionResult, UpdateLaunchError
from ..runner.utils import first_error

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in {JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.SKIPPED}


class FailureReason(str, Enum):
    LAUNCH_ERROR = "launch_error"
    EXIT_CODE = "exit_code"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


class SkipReason(str, Enum):
    CANCELLED = "cancelled"
    NOT_DISPATCHED = "not_dispatched"


_ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.RUNNING, JobStatus.SKIPPED},
    JobStatus.RUNNING: {JobStatus.SUCCEEDED, JobStatus.FAILED},
}


class InvalidTransition(RuntimeError):
    """Raised when a job would move backwards or leave a terminal status."""


@dataclass(slots=True)
class UpdateJob:
    """Tracks the lifecycle and captured output of one project update."""

    project: TrackedProject
    index: int
    status: JobStatus = JobStatus.PENDING
    failure_reason: FailureReason | None = None
    skip_reason: SkipReason | None = None
    exit_code: int | None = None
    detail: str | None = None
    stdout: str = ""
    stderr: str = ""
    lock_diff: LockDiff | None = None
    lock_hash: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def path(self) -> Path:
        return self.project.path

    def _transition(self, target: JobStatus) -> None:
        if target not in _ALLOWED_TRANSITIONS.get(self.status, set()):
            raise InvalidTransition(
                f"job for {self.path} cannot move from {self.status.value} to {target.value}"
            )
        self.status = target

    def start(self) -> None:
        self._transition(JobStatus.RUNNING)
        self.started_at = datetime.now(timezone.utc)

    def succeed(self, result: UpdateExecutionResult, lock_diff: LockDiff, lock_hash: str | None) -> None:
        self._transition(JobStatus.SUCCEEDED)
        self.exit_code = result.returncode
        self.stdout = result.stdout
        self.stderr = result.stderr
        self.lock_diff = lock_diff
        self.lock_hash = lock_hash
        self.finished_at = datetime.now(timezone.utc)

    def fail(
        self,
        reason: FailureReason,
        *,
        detail: str | None = None,
        result: UpdateExecutionResult | None = None,
    ) -> None:
        self._transition(JobStatus.FAILED)
        self.failure_reason = reason
        self.detail = detail
        if result is not None:
            self.exit_code = result.returncode
            self.stdout = result.stdout
            self.stderr = result.stderr
        self.finished_at = datetime.now(timezone.utc)

    def skip(self, reason: SkipReason) -> None:
        self._transition(JobStatus.SKIPPED)
        self.skip_reason = reason
        self.finished_at = datetime.now(timezone.utc)

    def describe_reason(self) -> str | None:
        """Short human description of why a job did not succeed."""

        if self.status is JobStatus.FAILED:
            if self.failure_reason is FailureReason.EXIT_CODE:
                text = f"exit code {self.exit_code}"
            else:
                text = self.failure_reason.value.replace("_", " ") if self.failure_reason else "failed"
            return f"{text}: {self.detail}" if self.detail else text
        if self.status is JobStatus.SKIPPED and self.skip_reason is not None:
            return self.skip_reason.value.replace("_", " ")
        return None

    @property
    def has_output(self) -> bool:
        return bool(self.stdout.strip() or self.stderr.strip())


class Runner(Protocol):
    async def run(self, project_dir: Path) -> UpdateExecutionResult:
        ...


def _read_pins_safely(lock_path: Path) -> tuple[dict[str, str] | None, str | None]:
    try:
        return read_pins(lock_path), None
    except LockParseError as exc:
        return None, str(exc)


class JobRunner:
    """Run a single job: snapshot the lock, invoke the tool, diff the lock."""

    def __init__(
        self,
        runner: Runner,
        *,
        lock_name: str = "flake.lock",
        timeout: float | None = None,
    ) -> None:
        self._runner = runner
        self._lock_name = lock_name
        self._timeout = timeout

    async def run(self, job: UpdateJob) -> UpdateJob:
        """Drive ``job`` from Running to a terminal status.

        Only cancellation escapes this coroutine; the job is left Running in
        that case so the caller can record why it stopped.
        """

        job.start()
        lock_path = job.path / self._lock_name
        before, before_error = _read_pins_safely(lock_path)
        logger.info("Updating project", extra={"path": str(job.path), "index": job.index})

        try:
            if self._timeout is None:
                result = await self._runner.run(job.path)
            else:
                result = await asyncio.wait_for(self._runner.run(job.path), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Update timed out", extra={"path": str(job.path), "timeout": self._timeout}
            )
            job.fail(FailureReason.TIMEOUT, detail=f"no result after {self._timeout:g}s")
            return job
        except UpdateLaunchError as exc:
            job.fail(FailureReason.LAUNCH_ERROR, detail=str(exc))
            return job

        if not result.ok:
            job.fail(FailureReason.EXIT_CODE, detail=first_error(result.stderr), result=result)
            return job

        after, after_error = _read_pins_safely(lock_path)
        if before_error or after_error:
            lock_diff = LockDiff.unavailable(before_error or after_error or "unparseable lock file")
        else:
            lock_diff = diff_pins(before, after)
        job.succeed(result, lock_diff, hash_lock(lock_path))
        logger.info(
            "Project updated",
            extra={"path": str(job.path), "diff": lock_diff.summary()},
        )
        return job


__all__ = [
    "FailureReason",
    "InvalidTransition",
    "JobRunner",
    "JobStatus",
    "Runner",
    "SkipReason",
    "UpdateJob",
]
