"""Batch results: collection, outcome classification and rendering."""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Iterable, Mapping

from .jobs import JobStatus, SkipReason, UpdateJob


class BatchOutcome(str, Enum):
    EMPTY = "empty"
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    TOTAL_FAILURE = "total_failure"

    @property
    def exit_code(self) -> int:
        return _EXIT_CODES[self]


_EXIT_CODES = {
    BatchOutcome.EMPTY: 0,
    BatchOutcome.SUCCESS: 0,
    BatchOutcome.PARTIAL_FAILURE: 1,
    BatchOutcome.TOTAL_FAILURE: 2,
}


def classify(jobs: Iterable[UpdateJob]) -> BatchOutcome:
    jobs = list(jobs)
    if not jobs:
        return BatchOutcome.EMPTY
    if all(job.status is JobStatus.SUCCEEDED for job in jobs):
        return BatchOutcome.SUCCESS
    if all(job.status is JobStatus.FAILED for job in jobs):
        return BatchOutcome.TOTAL_FAILURE
    return BatchOutcome.PARTIAL_FAILURE


@dataclass(slots=True)
class BatchRun:
    """Report of one update invocation; never persisted."""

    jobs: tuple[UpdateJob, ...]
    started_at: datetime
    finished_at: datetime
    outcome: BatchOutcome
    cancelled: bool = False

    @property
    def exit_code(self) -> int:
        return self.outcome.exit_code

    def count(self, status: JobStatus) -> int:
        return sum(1 for job in self.jobs if job.status is status)

    def lock_hashes(self) -> dict[Path, str | None]:
        """Post-update lock hashes of every succeeded job."""

        return {job.path: job.lock_hash for job in self.jobs if job.status is JobStatus.SUCCEEDED}


class ResultAggregator:
    """Collect job completions from concurrent workers.

    Completion order is whatever the pool produces; :meth:`finalize` puts the
    jobs back into snapshot order.
    """

    def __init__(self, jobs: Iterable[UpdateJob], *, started_at: datetime | None = None) -> None:
        self._jobs = tuple(jobs)
        self._started_at = started_at or datetime.now(timezone.utc)
        self._lock = threading.Lock()
        self._completed: list[UpdateJob] = []

    @property
    def jobs(self) -> tuple[UpdateJob, ...]:
        return self._jobs

    def collect(self, job: UpdateJob) -> None:
        if not job.status.terminal:
            raise ValueError(f"job for {job.path} is still {job.status.value}")
        with self._lock:
            self._completed.append(job)

    @property
    def completion_order(self) -> list[UpdateJob]:
        with self._lock:
            return list(self._completed)

    def finalize(self, *, cancelled: bool = False) -> BatchRun:
        reason = SkipReason.CANCELLED if cancelled else SkipReason.NOT_DISPATCHED
        with self._lock:
            for job in self._jobs:
                if job.status is JobStatus.PENDING:
                    job.skip(reason)
                    self._completed.append(job)
            ordered = tuple(sorted(self._completed, key=lambda job: job.index))

        if len(ordered) != len(self._jobs):
            missing = {job.index for job in self._jobs} - {job.index for job in ordered}
            raise RuntimeError(f"batch finished with unaccounted jobs: {sorted(missing)}")

        return BatchRun(
            jobs=ordered,
            started_at=self._started_at,
            finished_at=datetime.now(timezone.utc),
            outcome=classify(ordered),
            cancelled=cancelled,
        )


_STATUS_TAGS = {
    JobStatus.SUCCEEDED: "ok",
    JobStatus.FAILED: "FAILED",
    JobStatus.SKIPPED: "skipped",
    JobStatus.PENDING: "pending",
    JobStatus.RUNNING: "running",
}


def _log_name(job: UpdateJob) -> str:
    slug = re.sub(r"[^A-Za-z0-9._-]+", "-", job.project.display_name).strip("-") or "project"
    return f"{job.index + 1:03d}-{slug}.log"


def write_job_logs(batch: BatchRun, directory: Path) -> dict[Path, Path]:
    """Write the captured output of failed jobs; returns project path -> log file."""

    written: dict[Path, Path] = {}
    for job in batch.jobs:
        if job.status is not JobStatus.FAILED or not job.has_output:
            continue
        directory.mkdir(parents=True, exist_ok=True)
        log_path = directory / _log_name(job)
        log_path.write_text(
            "\n".join(
                [
                    f"# project: {job.path}",
                    f"# reason: {job.describe_reason()}",
                    "# --- stdout ---",
                    job.stdout.rstrip(),
                    "# --- stderr ---",
                    job.stderr.rstrip(),
                    "",
                ]
            ),
            encoding="utf-8",
        )
        written[job.path] = log_path
    return written


def render_job(job: UpdateJob, *, log_path: Path | None = None, verbose: bool = False) -> list[str]:
    tag = _STATUS_TAGS[job.status]
    name = job.project.label or job.path.name
    line = f"[{tag}] {name} ({job.path})"
    if job.status is JobStatus.SUCCEEDED and job.lock_diff is not None:
        line += f": {job.lock_diff.summary()}"
    else:
        reason = job.describe_reason()
        if reason:
            line += f": {reason}"
    if log_path is not None:
        line += f" [output: {log_path}]"

    lines = [line]
    if verbose and job.lock_diff is not None and job.lock_diff.available:
        lines.extend(f"    {detail}" for detail in job.lock_diff.details())
    return lines


def render_report(
    batch: BatchRun,
    *,
    log_paths: Mapping[Path, Path] | None = None,
    verbose: bool = False,
) -> str:
    """Render one line per job in registry order followed by a summary line."""

    log_paths = log_paths or {}
    lines: list[str] = []
    for job in batch.jobs:
        lines.extend(render_job(job, log_path=log_paths.get(job.path), verbose=verbose))

    total = len(batch.jobs)
    noun = "project" if total == 1 else "projects"
    summary = (
        f"{total} {noun}: {batch.count(JobStatus.SUCCEEDED)} succeeded, "
        f"{batch.count(JobStatus.FAILED)} failed, {batch.count(JobStatus.SKIPPED)} skipped "
        f"({batch.outcome.value.replace('_', ' ')})"
    )
    if batch.cancelled:
        summary += " [cancelled]"
    lines.append(summary)
    return "\n".join(lines)


__all__ = [
    "BatchOutcome",
    "BatchRun",
    "ResultAggregator",
    "classify",
    "render_job",
    "render_report",
    "write_job_logs",
]
