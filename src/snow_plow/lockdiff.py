"""Compare pinned inputs of a flake lock file before and after an update."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

PinSnapshot = dict[str, str]


class LockParseError(ValueError):
    """Raised when a lock file cannot be read as key/version pins."""


@dataclass(frozen=True, slots=True)
class LockDiff:
    """Added, removed and changed pins between two snapshots."""

    added: dict[str, str] = field(default_factory=dict)
    removed: dict[str, str] = field(default_factory=dict)
    changed: dict[str, tuple[str, str]] = field(default_factory=dict)
    unavailable_reason: str | None = None

    @classmethod
    def unavailable(cls, reason: str) -> "LockDiff":
        return cls(unavailable_reason=reason)

    @property
    def available(self) -> bool:
        return self.unavailable_reason is None

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.changed)

    def summary(self) -> str:
        if not self.available:
            return f"diff unavailable: {self.unavailable_reason}"
        parts = []
        if self.changed:
            parts.append(f"{len(self.changed)} changed")
        if self.added:
            parts.append(f"{len(self.added)} added")
        if self.removed:
            parts.append(f"{len(self.removed)} removed")
        return ", ".join(parts) or "no changes"

    def details(self) -> list[str]:
        """One line per differing pin, suitable for verbose output."""

        lines = [f"~ {key}: {_short(old)} -> {_short(new)}" for key, (old, new) in self.changed.items()]
        lines.extend(f"+ {key}: {_short(version)}" for key, version in self.added.items())
        lines.extend(f"- {key}: {_short(version)}" for key, version in self.removed.items())
        return lines


def _short(version: str) -> str:
    # Git revisions are 40 hex chars; keep them readable.
    if len(version) == 40 and all(char in "0123456789abcdef" for char in version):
        return version[:7]
    return version


def _node_version(name: str, node: Any) -> str:
    if not isinstance(node, dict):
        raise LockParseError(f"node `{name}` is not an object")
    locked = node.get("locked")
    if locked is None:
        # Inputs that follow another input carry no lock of their own.
        return ""
    if not isinstance(locked, dict):
        raise LockParseError(f"node `{name}` has a malformed `locked` block")
    for key in ("rev", "narHash"):
        value = locked.get(key)
        if isinstance(value, str) and value:
            return value
    return json.dumps(locked, sort_keys=True)


def parse_pins(raw: str) -> PinSnapshot:
    """Parse the text of a ``flake.lock`` into an ordered key -> version mapping."""

    try:
        document = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise LockParseError(f"invalid JSON: {exc}") from exc

    if not isinstance(document, dict) or not isinstance(document.get("nodes"), dict):
        raise LockParseError("lock file has no `nodes` object")

    root = document.get("root", "root")
    pins: PinSnapshot = {}
    for name, node in document["nodes"].items():
        if name == root:
            continue
        pins[name] = _node_version(name, node)
    return pins


def read_pins(lock_path: Path) -> PinSnapshot | None:
    """Return the pins recorded in ``lock_path``, or ``None`` when it does not exist."""

    try:
        raw = lock_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise LockParseError(f"cannot read {lock_path}: {exc}") from exc
    except UnicodeDecodeError as exc:
        raise LockParseError(f"{lock_path} is not valid UTF-8: {exc}") from exc
    return parse_pins(raw)


def hash_lock(lock_path: Path) -> str | None:
    try:
        return hashlib.sha256(lock_path.read_bytes()).hexdigest()
    except OSError:
        return None


def diff_pins(before: Mapping[str, str] | None, after: Mapping[str, str] | None) -> LockDiff:
    """Diff two pin snapshots; a missing side yields an unavailable diff."""

    if before is None:
        return LockDiff.unavailable("no lock file before update")
    if after is None:
        return LockDiff.unavailable("no lock file after update")

    added = {key: after[key] for key in sorted(after.keys() - before.keys())}
    removed = {key: before[key] for key in sorted(before.keys() - after.keys())}
    changed = {
        key: (before[key], after[key])
        for key in sorted(before.keys() & after.keys())
        if before[key] != after[key]
    }
    return LockDiff(added=added, removed=removed, changed=changed)


__all__ = [
    "LockDiff",
    "LockParseError",
    "PinSnapshot",
    "diff_pins",
    "hash_lock",
    "parse_pins",
    "read_pins",
]
