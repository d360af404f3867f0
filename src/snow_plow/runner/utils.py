"""Utility helpers for the update runner."""

from __future__ import annotations

import os
from typing import Mapping

# Captured output ends up in log files; keep it free of ANSI escapes.
_FORCED_VARS = {"NO_COLOR": "1"}


def sanitize_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return the inherited environment with colour output switched off."""

    env = dict(os.environ)
    env.update(_FORCED_VARS)
    if additional:
        env.update(additional)
    return env


def split_diagnostics(stderr: str) -> tuple[list[list[str]], list[str]]:
    """Group Nix stderr into error blocks and warning lines.

    Every line following an ``error:`` line belongs to that error until the
    next ``error:`` or ``warning:`` line starts. Lines outside any error are
    reported as warnings.
    """

    errors: list[list[str]] = []
    warnings: list[str] = []
    current: list[str] | None = None
    for raw_line in stderr.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        if line.startswith("error:"):
            current = [line]
            errors.append(current)
        elif line.startswith("warning:"):
            current = None
            warnings.append(line)
        elif current is not None:
            current.append(line)
        else:
            warnings.append(line)
    return errors, warnings


def first_error(stderr: str, *, limit: int = 200) -> str | None:
    """Return the first error block of ``stderr`` joined on one line."""

    errors, _ = split_diagnostics(stderr)
    if not errors:
        return None
    text = " ".join(errors[0])
    if len(text) > limit:
        text = text[: limit - 3] + "..."
    return text


__all__ = ["first_error", "sanitize_environment", "split_diagnostics"]
