"""Registry models persisted in the snow-plow state file."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

REGISTRY_VERSION = 1


class TrackedProject(BaseModel):
    """A flake directory registered for inclusion in update batches."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    path: Path = Field(..., description="Canonical absolute path of the project directory.")
    label: str | None = Field(default=None, description="Optional display label.")
    added_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        alias="addedAt",
        description="When the project was first tracked.",
    )
    enabled: bool = Field(
        default=True,
        description="Disabled projects are kept but left out of update batches.",
    )
    lock_hash: str | None = Field(
        default=None,
        alias="lockHash",
        description="SHA-256 of the lock file after the last successful update.",
    )
    last_updated_at: datetime | None = Field(
        default=None,
        alias="lastUpdatedAt",
        description="When the last successful update finished.",
    )

    @field_validator("path")
    @classmethod
    def _require_absolute(cls, value: Path) -> Path:
        if not value.is_absolute():
            raise ValueError(f"tracked path must be absolute, got {value}")
        return value

    @field_validator("label", mode="before")
    @classmethod
    def _normalize_label(cls, value: Any):  # type: ignore[override]
        if value is None:
            return None
        normalized = str(value).strip()
        return normalized or None

    @property
    def display_name(self) -> str:
        return self.label or self.path.name or str(self.path)


class Registry(BaseModel):
    """Ordered set of tracked projects, keyed by canonical path."""

    model_config = ConfigDict(frozen=True)

    version: int = Field(default=REGISTRY_VERSION)
    projects: tuple[TrackedProject, ...] = Field(default_factory=tuple)

    @field_validator("projects", mode="before")
    @classmethod
    def _ensure_sequence(cls, value: Any):  # type: ignore[override]
        if value is None:
            return ()
        return value

    @model_validator(mode="after")
    def _reject_duplicates(self) -> "Registry":
        seen: set[Path] = set()
        for project in self.projects:
            if project.path in seen:
                raise ValueError(f"project `{project.path}` is listed more than once")
            seen.add(project.path)
        return self

    def __len__(self) -> int:
        return len(self.projects)

    def __contains__(self, path: object) -> bool:
        return any(project.path == path for project in self.projects)

    def find(self, path: Path) -> TrackedProject | None:
        for project in self.projects:
            if project.path == path:
                return project
        return None

    def with_project(self, project: TrackedProject) -> "Registry":
        return self.model_copy(update={"projects": (*self.projects, project)})

    def without(self, path: Path) -> "Registry":
        remaining = tuple(project for project in self.projects if project.path != path)
        return self.model_copy(update={"projects": remaining})

    def replace(self, project: TrackedProject) -> "Registry":
        updated = tuple(
            project if existing.path == project.path else existing for existing in self.projects
        )
        return self.model_copy(update={"projects": updated})

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


__all__ = ["REGISTRY_VERSION", "Registry", "TrackedProject"]
