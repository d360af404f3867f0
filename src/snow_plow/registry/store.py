"""YAML-backed persistence for the tracked-project registry."""

from __future__ import annotations

import contextlib
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Mapping

import yaml
from pydantic import ValidationError

from .errors import AlreadyTrackedError, CorruptedStateError, NotTrackedError, PersistenceError
from .models import Registry, TrackedProject
from .validator import DEFAULT_DESCRIPTOR, canonicalize, validate_project

logger = logging.getLogger(__name__)


class RegistryStore:
    """Load, mutate and atomically persist the registry file.

    Every mutating call re-reads the file, applies one change and writes the
    whole registry back, so callers never hold a long-lived in-memory copy.
    """

    def __init__(
        self,
        path: Path,
        *,
        descriptor: str = DEFAULT_DESCRIPTOR,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(path)
        self._descriptor = descriptor
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Registry:
        """Read the registry, returning an empty one when no state file exists yet."""

        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return Registry()
        except OSError as exc:
            raise CorruptedStateError(f"cannot read registry {self._path}: {exc}") from exc

        try:
            document = yaml.safe_load(raw)
        except yaml.YAMLError as exc:
            raise CorruptedStateError(f"failed to parse registry {self._path}: {exc}") from exc

        if document is None:
            return Registry()
        if not isinstance(document, dict):
            raise CorruptedStateError(
                f"registry {self._path} must contain a mapping, got {type(document).__name__}"
            )

        try:
            return Registry.model_validate(document)
        except ValidationError as exc:
            raise CorruptedStateError(f"registry {self._path} is invalid: {exc}") from exc

    def save(self, registry: Registry) -> None:
        """Atomically replace the state file with ``registry``.

        The document is written to a temporary file next to the target,
        fsynced, then renamed over it, so readers see either the previous or
        the new registry in full.
        """

        payload = yaml.safe_dump(registry.to_document(), sort_keys=False)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            _atomic_write(self._path, payload)
        except OSError as exc:
            raise PersistenceError(f"cannot write registry {self._path}: {exc}") from exc
        logger.debug("Registry saved", extra={"path": str(self._path), "projects": len(registry)})

    def list(self) -> tuple[TrackedProject, ...]:
        return self.load().projects

    def get(self, path: str | os.PathLike[str]) -> TrackedProject:
        canonical = canonicalize(path)
        project = self.load().find(canonical)
        if project is None:
            raise NotTrackedError(canonical)
        return project

    def add(self, path: str | os.PathLike[str], *, label: str | None = None) -> TrackedProject:
        canonical = validate_project(path, descriptor=self._descriptor)
        registry = self.load()
        if canonical in registry:
            raise AlreadyTrackedError(canonical)

        project = TrackedProject(path=canonical, label=label, added_at=self._clock())
        self.save(registry.with_project(project))
        logger.info("Tracking project", extra={"path": str(canonical), "label": label})
        return project

    def remove(self, path: str | os.PathLike[str]) -> TrackedProject:
        canonical = canonicalize(path)
        registry = self.load()
        project = registry.find(canonical)
        if project is None:
            raise NotTrackedError(canonical)

        self.save(registry.without(canonical))
        logger.info("Stopped tracking project", extra={"path": str(canonical)})
        return project

    def set_enabled(
        self, path: str | os.PathLike[str], enabled: bool
    ) -> tuple[TrackedProject, bool]:
        """Enable or disable a project; returns the project and whether it changed."""

        canonical = canonicalize(path)
        registry = self.load()
        project = registry.find(canonical)
        if project is None:
            raise NotTrackedError(canonical)

        if project.enabled == enabled:
            logger.warning(
                "project `%s` is already %s", canonical, "enabled" if enabled else "disabled"
            )
            return project, False

        updated = project.model_copy(update={"enabled": enabled})
        self.save(registry.replace(updated))
        return updated, True

    def record_updates(self, lock_hashes: Mapping[Path, str | None]) -> int:
        """Store post-update lock hashes for projects that are still tracked.

        The registry is re-read first so entries added or removed while the
        batch ran are respected. Returns the number of entries touched.
        """

        if not lock_hashes:
            return 0

        registry = self.load()
        finished_at = self._clock()
        touched = 0
        for path, lock_hash in lock_hashes.items():
            project = registry.find(path)
            if project is None:
                logger.debug("Skipping metadata for untracked project", extra={"path": str(path)})
                continue
            registry = registry.replace(
                project.model_copy(update={"lock_hash": lock_hash, "last_updated_at": finished_at})
            )
            touched += 1

        if touched:
            self.save(registry)
        return touched


def _atomic_write(target: Path, data: str) -> None:
    fd, temp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=str(target.parent))
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, target)
    except BaseException:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise
    _fsync_directory(target.parent)


def _fsync_directory(path: Path) -> None:
    if os.name == "nt":
        return
    try:
        dir_fd = os.open(str(path), os.O_RDONLY)
    except OSError:
        return
    try:
        with contextlib.suppress(OSError):
            os.fsync(dir_fd)
    finally:
        os.close(dir_fd)


__all__ = ["RegistryStore"]
