"""Fan a registry snapshot out into bounded-concurrency update jobs."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Sequence

from ..registry import NotTrackedError, Registry, TrackedProject, canonicalize
from .jobs import FailureReason, JobRunner, JobStatus, Runner, SkipReason, UpdateJob
from .report import BatchRun, ResultAggregator

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 600.0


def select_snapshot(
    registry: Registry,
    only: Sequence[str | os.PathLike[str]] | None = None,
    *,
    cwd: Path | None = None,
) -> tuple[TrackedProject, ...]:
    """Return the projects a batch should cover, in registry order.

    Without ``only`` every enabled project is selected. Paths named in
    ``only`` are selected even when disabled; an untracked one is an error.
    """

    if not only:
        return tuple(project for project in registry.projects if project.enabled)

    wanted: set[Path] = set()
    for raw in only:
        canonical = canonicalize(raw, cwd=cwd)
        if canonical not in registry:
            raise NotTrackedError(canonical)
        wanted.add(canonical)
    return tuple(project for project in registry.projects if project.path in wanted)


@dataclass(slots=True)
class DispatchConfig:
    max_concurrency: int | None = None
    timeout: float | None = DEFAULT_TIMEOUT
    lock_name: str = "flake.lock"

    def __post_init__(self) -> None:
        if self.max_concurrency is None:
            self.max_concurrency = os.cpu_count() or 1
        if self.max_concurrency <= 0:
            raise ValueError("max_concurrency must be > 0")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be > 0")


class UpdateDispatcher:
    """Run one update job per project through a bounded worker pool.

    Jobs never short-circuit each other: every project in the snapshot gets
    exactly one attempt and one entry in the resulting :class:`BatchRun`.
    """

    def __init__(self, runner: Runner, config: DispatchConfig | None = None) -> None:
        self._config = config or DispatchConfig()
        self._job_runner = JobRunner(
            runner, lock_name=self._config.lock_name, timeout=self._config.timeout
        )
        self._tasks: list[asyncio.Task[None]] = []
        self._cancelled = False

    @property
    def config(self) -> DispatchConfig:
        return self._config

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Stop the batch: kill running jobs and skip the ones still queued."""

        if self._cancelled:
            return
        self._cancelled = True
        logger.warning("Cancelling update batch", extra={"in_flight": len(self._tasks)})
        for task in self._tasks:
            task.cancel()

    async def dispatch(self, projects: Iterable[TrackedProject]) -> BatchRun:
        jobs = [UpdateJob(project=project, index=index) for index, project in enumerate(projects)]
        aggregator = ResultAggregator(jobs, started_at=datetime.now(timezone.utc))
        semaphore = asyncio.Semaphore(self._config.max_concurrency)
        logger.info(
            "Dispatching update batch",
            extra={"jobs": len(jobs), "max_concurrency": self._config.max_concurrency},
        )

        self._tasks = [
            asyncio.create_task(self._run_slot(job, semaphore, aggregator)) for job in jobs
        ]
        if self._cancelled:
            for task in self._tasks:
                task.cancel()

        try:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        except asyncio.CancelledError:
            # The dispatching task itself was cancelled: account for every job
            # before letting the cancellation through.
            self.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)
            aggregator.finalize(cancelled=True)
            raise
        finally:
            self._tasks = []

        batch = aggregator.finalize(cancelled=self._cancelled)
        logger.info(
            "Update batch finished",
            extra={"outcome": batch.outcome.value, "jobs": len(batch.jobs)},
        )
        return batch

    async def _run_slot(
        self,
        job: UpdateJob,
        semaphore: asyncio.Semaphore,
        aggregator: ResultAggregator,
    ) -> None:
        try:
            async with semaphore:
                await self._job_runner.run(job)
        except asyncio.CancelledError:
            if job.status is JobStatus.RUNNING:
                job.fail(FailureReason.CANCELLED, detail="batch cancelled")
            elif job.status is JobStatus.PENDING:
                job.skip(SkipReason.CANCELLED)
            aggregator.collect(job)
            if not self._cancelled:
                raise
            return
        except Exception as exc:
            logger.exception("Update job crashed", extra={"path": str(job.path)})
            if job.status is JobStatus.RUNNING:
                job.fail(FailureReason.LAUNCH_ERROR, detail=f"unexpected error: {exc}")
        # A job that crashed before starting stays pending and is reported as
        # not dispatched by the aggregator.
        if job.status.terminal:
            aggregator.collect(job)


__all__ = ["DEFAULT_TIMEOUT", "DispatchConfig", "UpdateDispatcher", "select_snapshot"]
