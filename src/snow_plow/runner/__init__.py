"""Execution of the external flake update command."""

from .runner import (
    FakeUpdateRunner,
    UpdateExecutionResult,
    UpdateLaunchError,
    UpdateRunner,
    UpdateRunnerError,
)

__all__ = [
    "FakeUpdateRunner",
    "UpdateExecutionResult",
    "UpdateLaunchError",
    "UpdateRunner",
    "UpdateRunnerError",
]
