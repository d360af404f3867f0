"""Tracked-project registry: models, validation and persistence."""

from .errors import (
    AlreadyTrackedError,
    CorruptedStateError,
    NotAProjectError,
    NotTrackedError,
    PersistenceError,
    ProjectNotADirectoryError,
    ProjectValidationError,
    RegistryError,
)
from .models import Registry, TrackedProject
from .store import RegistryStore
from .validator import canonicalize, validate_project

__all__ = [
    "AlreadyTrackedError",
    "CorruptedStateError",
    "NotAProjectError",
    "NotTrackedError",
    "PersistenceError",
    "ProjectNotADirectoryError",
    "ProjectValidationError",
    "Registry",
    "RegistryError",
    "RegistryStore",
    "TrackedProject",
    "canonicalize",
    "validate_project",
]
