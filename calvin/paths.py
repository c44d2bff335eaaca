from __future__ import annotations

import os
from pathlib import Path


LOCKFILE_NAME = "calvin.lock"
LEGACY_LOCKFILE_NAME = ".calvin.lock"
SOURCE_DIR_NAME = ".promptpack"


def work_root() -> Path:
    root = os.environ.get("CALVIN_ROOT") or str(Path.cwd())
    return Path(root).resolve()


def home_dir() -> Path:
    override = os.environ.get("CALVIN_HOME")
    if override:
        return Path(override).expanduser().resolve()
    return Path.home().resolve()


def source_dir(root: Path | None = None) -> Path:
    return (root or work_root()) / SOURCE_DIR_NAME


def project_lockfile_path(root: Path | None = None) -> Path:
    return (root or work_root()) / LOCKFILE_NAME


def legacy_lockfile_path(source: Path) -> Path:
    """Older releases kept the lockfile inside the source directory."""

    return source / LEGACY_LOCKFILE_NAME


def global_lockfile_path(home: Path | None = None) -> Path:
    """Lockfile for user-scope deployments: `<home>/.calvin/calvin.lock`."""

    return (home or home_dir()) / ".calvin" / LOCKFILE_NAME


def resolve_destination(destination_path: str, *, project_root: Path, home: Path) -> Path:
    """Map a ledger destination path to a concrete filesystem path."""

    if destination_path == "~":
        return home
    if destination_path.startswith("~/"):
        return home / destination_path[2:]
    p = Path(destination_path)
    if p.is_absolute():
        return p
    return project_root / p
