"""Directory planning helpers for the data and certificate directories."""
from __future__ import annotations

import grp
import os
import pwd
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal


class FilesystemError(RuntimeError):
    """Raised when a directory cannot be created or handed to its owner."""


@dataclass(slots=True)
class DirectorySpec:
    """Desired state for a directory."""

    path: Path
    owner: str | None = None
    group: str | None = None
    mode: int = 0o755
    recursive_owner: bool = False


@dataclass(slots=True)
class DirectoryAction:
    """Single filesystem change."""

    kind: Literal["mkdir", "chmod", "chown"]
    path: Path
    description: str
    spec: DirectorySpec


@dataclass(slots=True)
class DirectoryPlan:
    """Ordered actions and warnings for a set of directories."""

    actions: list[DirectoryAction] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def _resolve_ids(spec: DirectorySpec) -> tuple[int, int]:
    try:
        uid = pwd.getpwnam(spec.owner).pw_uid if spec.owner else -1
        gid = grp.getgrnam(spec.group).gr_gid if spec.group else -1
    except KeyError as exc:
        raise FilesystemError(f"Unknown owner for {spec.path}: {exc}") from exc
    return uid, gid


def _owned_as_expected(path: Path, uid: int, gid: int) -> bool:
    stat = path.stat()
    return (uid == -1 or stat.st_uid == uid) and (gid == -1 or stat.st_gid == gid)


def plan_directories(specs: Iterable[DirectorySpec]) -> DirectoryPlan:
    """Return the actions needed to satisfy every spec."""
    plan = DirectoryPlan()
    for spec in specs:
        path = spec.path
        if path.exists() and not path.is_dir():
            plan.warnings.append(f"{path} exists but is not a directory.")
            continue

        wants_owner = spec.owner is not None or spec.group is not None
        if not path.exists():
            plan.actions.append(
                DirectoryAction("mkdir", path, f"Create directory {path}.", spec)
            )
            if wants_owner:
                plan.actions.append(
                    DirectoryAction("chown", path, f"Set ownership of {path}.", spec)
                )
            continue

        if (path.stat().st_mode & 0o777) != spec.mode:
            plan.actions.append(
                DirectoryAction("chmod", path, f"Set mode {spec.mode:o} on {path}.", spec)
            )
        if wants_owner:
            uid, gid = _resolve_ids(spec)
            if spec.recursive_owner or not _owned_as_expected(path, uid, gid):
                plan.actions.append(
                    DirectoryAction("chown", path, f"Set ownership of {path}.", spec)
                )
    return plan


def apply_directory_plan(plan: DirectoryPlan) -> None:
    """Execute *plan* in order."""
    for action in plan.actions:
        spec = action.spec
        try:
            if action.kind == "mkdir":
                action.path.mkdir(parents=True, exist_ok=True)
                os.chmod(action.path, spec.mode)
            elif action.kind == "chmod":
                os.chmod(action.path, spec.mode)
            else:
                uid, gid = _resolve_ids(spec)
                if spec.recursive_owner:
                    chown_tree(action.path, uid, gid)
                else:
                    os.chown(action.path, uid, gid)
        except OSError as exc:
            raise FilesystemError(f"{action.description} failed: {exc}") from exc


def chown_tree(root: Path, uid: int, gid: int) -> None:
    """Change ownership of *root* and everything below it."""
    os.chown(root, uid, gid)
    for dirpath, dirnames, filenames in os.walk(root):
        for name in (*dirnames, *filenames):
            os.chown(Path(dirpath) / name, uid, gid, follow_symlinks=False)


def ensure_directories(specs: Iterable[DirectorySpec]) -> DirectoryPlan:
    """Plan and apply *specs*, returning the executed plan."""
    plan = plan_directories(specs)
    apply_directory_plan(plan)
    return plan


__all__ = [
    "DirectoryAction",
    "DirectoryPlan",
    "DirectorySpec",
    "FilesystemError",
    "apply_directory_plan",
    "chown_tree",
    "ensure_directories",
    "plan_directories",
]
