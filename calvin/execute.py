from __future__ import annotations

from dataclasses import dataclass, field
import logging
import os
from pathlib import Path

from .errors import ExecutionError
from .events import DeployEvent, EventSink, NullEventSink
from .lock import Lockfile
from .paths import resolve_destination
from .plan import Action, PlannedFile, SyncPlan


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeployResult:
    written: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    errors: list[ExecutionError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def counts(self) -> dict[str, int]:
        return {
            "written": len(self.written),
            "skipped": len(self.skipped),
            "deleted": len(self.deleted),
            "errors": len(self.errors),
        }


def _atomic_write_bytes(dst: Path, data: bytes) -> None:
    dst.parent.mkdir(parents=True, exist_ok=True)
    tmp = dst.with_name(f".{dst.name}.tmp")
    try:
        tmp.write_bytes(data)
        os.replace(tmp, dst)
    finally:
        if tmp.exists():
            tmp.unlink()


def _apply(entry: PlannedFile, target: Path) -> None:
    if entry.action in (Action.CREATE, Action.UPDATE):
        assert entry.output is not None
        _atomic_write_bytes(target, entry.output.content_bytes)
    elif entry.action is Action.DELETE:
        target.unlink(missing_ok=True)


def execute_plan(
    plan: SyncPlan,
    lock: Lockfile,
    *,
    project_root: Path,
    home_dir: Path,
    sink: EventSink | None = None,
) -> tuple[DeployResult, Lockfile]:
    """Apply a resolved plan.

    Entries are applied in plan order. A failing entry is recorded in
    `DeployResult.errors` and execution moves on; the returned ledger only
    reflects operations that succeeded. The input `lock` is not mutated and
    nothing is persisted here.
    """
    sink = sink or NullEventSink()
    new_lock = lock.copy()
    result = DeployResult()

    for entry in plan.files:
        if entry.is_conflict:
            raise ValueError(f"unresolved conflict passed to the executor: {entry.key}")

        if entry.action is Action.SKIP:
            # Up to date: adopt the digest. Skipped by choice: keep the old entry.
            if entry.output is not None and entry.resolved_from is None:
                new_lock.record(entry.key, entry.output.content_digest, source=entry.output.source)
            result.skipped.append(entry.destination_path)
            sink.emit(DeployEvent("action", path=entry.destination_path, scope=entry.scope.value, action="skip"))
            continue

        target = resolve_destination(entry.destination_path, project_root=project_root, home=home_dir)
        try:
            _apply(entry, target)
        except OSError as e:
            err = ExecutionError(path=entry.destination_path, cause=str(e))
            logger.warning("failed to %s %s: %s", entry.action.value, target, e)
            result.errors.append(err)
            sink.emit(DeployEvent("error", path=entry.destination_path, scope=entry.scope.value, message=str(e)))
            continue

        if entry.action is Action.DELETE:
            new_lock.remove(entry.key)
            result.deleted.append(entry.destination_path)
        else:
            assert entry.output is not None
            new_lock.record(entry.key, entry.output.content_digest, source=entry.output.source)
            result.written.append(entry.destination_path)
        logger.debug("%s %s", entry.action.value, target)
        sink.emit(
            DeployEvent("action", path=entry.destination_path, scope=entry.scope.value, action=entry.action.value)
        )

    return result, new_lock
