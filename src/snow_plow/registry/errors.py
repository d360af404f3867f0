"""Errors raised by the registry and path validation layers."""

from __future__ import annotations

from pathlib import Path


class RegistryError(RuntimeError):
    """Base class for registry errors."""


class AlreadyTrackedError(RegistryError):
    """Raised when adding a project whose canonical path is already tracked."""

    def __init__(self, path: Path) -> None:
        super().__init__(f"project `{path}` is already tracked")
        self.path = path


class NotTrackedError(RegistryError):
    """Raised when a command targets a path that is not tracked."""

    def __init__(self, path: Path) -> None:
        super().__init__(f"project `{path}` is not tracked")
        self.path = path


class CorruptedStateError(RegistryError):
    """Raised when the registry file exists but cannot be read back."""


class PersistenceError(RegistryError):
    """Raised when the registry cannot be durably written."""


class ProjectValidationError(RegistryError):
    """Base class for rejected project directories."""

    def __init__(self, path: Path, message: str) -> None:
        super().__init__(message)
        self.path = path


class ProjectNotADirectoryError(ProjectValidationError):
    def __init__(self, path: Path) -> None:
        super().__init__(path, f"`{path}` is not a directory")


class NotAProjectError(ProjectValidationError):
    def __init__(self, path: Path, descriptor: str) -> None:
        super().__init__(path, f"`{path}` does not contain a `{descriptor}`")
        self.descriptor = descriptor


__all__ = [
    "AlreadyTrackedError",
    "CorruptedStateError",
    "NotAProjectError",
    "NotTrackedError",
    "PersistenceError",
    "ProjectNotADirectoryError",
    "ProjectValidationError",
    "RegistryError",
]
