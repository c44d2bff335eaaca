from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path

from .engine import persist_lock
from .lock import load_lock
from .paths import legacy_lockfile_path, project_lockfile_path


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MigrateResult:
    # moved | current | conflict | none
    status: str
    lockfile: Path
    legacy: Path
    entries: int = 0
    message: str = ""


def migrate_lockfile(*, root: Path, source: Path) -> MigrateResult:
    """Move `<source>/.calvin.lock` to `<root>/calvin.lock`.

    The legacy ledger is fully validated first, so an incompatible format
    version raises LockfileVersionMismatchError and nothing is rewritten.
    An existing new-location lockfile is never overwritten.
    """

    new = project_lockfile_path(root)
    old = legacy_lockfile_path(source)

    if new.exists() and old.exists():
        return MigrateResult(
            status="conflict",
            lockfile=new,
            legacy=old,
            message=f"both {new} and {old} exist; remove the one you do not want to keep",
        )

    if new.exists():
        lock = load_lock(new)
        return MigrateResult(
            status="current", lockfile=new, legacy=old, entries=len(lock), message=f"{new} is up to date"
        )

    if not old.exists():
        return MigrateResult(status="none", lockfile=new, legacy=old, message="no lockfile to migrate")

    lock = load_lock(old)
    persist_lock(new, lock)
    old.unlink()
    logger.info("migrated lockfile %s -> %s", old, new)
    return MigrateResult(
        status="moved", lockfile=new, legacy=old, entries=len(lock), message=f"Migrated lockfile to {new}"
    )


def resolve_lockfile_path(*, root: Path, source: Path) -> Path:
    """Project lockfile path, migrating a legacy lockfile on first use."""

    new = project_lockfile_path(root)
    if not new.exists() and legacy_lockfile_path(source).exists():
        migrate_lockfile(root=root, source=source)
    return new
