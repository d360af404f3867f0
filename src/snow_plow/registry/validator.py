"""Canonicalization and validation of candidate project directories."""

from __future__ import annotations

import os
from pathlib import Path

from .errors import NotAProjectError, ProjectNotADirectoryError

DEFAULT_DESCRIPTOR = "flake.nix"


def canonicalize(path: str | os.PathLike[str], *, cwd: Path | None = None) -> Path:
    """Return the absolute, symlink-free spelling of ``path``.

    Relative paths are anchored at ``cwd`` (the process working directory by
    default). The path does not need to exist.
    """

    candidate = Path(path).expanduser()
    if not candidate.is_absolute():
        candidate = (cwd or Path.cwd()) / candidate
    return candidate.resolve(strict=False)


def validate_project(
    path: str | os.PathLike[str],
    *,
    descriptor: str = DEFAULT_DESCRIPTOR,
    cwd: Path | None = None,
) -> Path:
    """Canonicalize ``path`` and check that it is a trackable project directory."""

    try:
        canonical = canonicalize(path, cwd=cwd)
    except RuntimeError as exc:
        # Symlink loops raise RuntimeError before Python 3.13.
        raise ProjectNotADirectoryError(Path(path)) from exc
    try:
        is_dir = canonical.is_dir()
    except OSError as exc:
        raise ProjectNotADirectoryError(canonical) from exc
    if not is_dir:
        raise ProjectNotADirectoryError(canonical)
    try:
        has_descriptor = (canonical / descriptor).is_file()
    except OSError as exc:
        raise NotAProjectError(canonical, descriptor) from exc
    if not has_descriptor:
        raise NotAProjectError(canonical, descriptor)
    return canonical


__all__ = ["DEFAULT_DESCRIPTOR", "canonicalize", "validate_project"]
