"""Batch orchestration of flake updates."""

from .dispatcher import DEFAULT_TIMEOUT, DispatchConfig, UpdateDispatcher, select_snapshot
from .jobs import FailureReason, InvalidTransition, JobRunner, JobStatus, SkipReason, UpdateJob
from .report import (
    BatchOutcome,
    BatchRun,
    ResultAggregator,
    classify,
    render_report,
    write_job_logs,
)

__all__ = [
    "BatchOutcome",
    "BatchRun",
    "DEFAULT_TIMEOUT",
    "DispatchConfig",
    "FailureReason",
    "InvalidTransition",
    "JobRunner",
    "JobStatus",
    "ResultAggregator",
    "SkipReason",
    "UpdateDispatcher",
    "UpdateJob",
    "classify",
    "render_report",
    "select_snapshot",
    "write_job_logs",
]
