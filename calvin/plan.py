"""Sync planning.

`plan_sync` is a pure function: desired outputs + ledger + live file states in,
an ordered `SyncPlan` out. It never touches the filesystem; callers read the
states beforehand (see `calvin.state`).
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field, replace
from enum import Enum
import logging
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Sequence

from .errors import DuplicateDestinationError
from .lock import Lockfile
from .models import DesiredOutput, Scope, make_key
from .state import TargetFileState

if TYPE_CHECKING:
    from .orphan import OrphanFile


logger = logging.getLogger(__name__)


class Action(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    SKIP = "skip"
    DELETE = "delete"
    CONFLICT = "conflict"


class ConflictReason(str, Enum):
    EXTERNALLY_MODIFIED = "externally_modified"
    DELETED_EXTERNALLY = "deleted_externally"
    TYPE_MISMATCH = "type_mismatch"

    @property
    def description(self) -> str:
        return _REASON_TEXT[self]


_REASON_TEXT = {
    ConflictReason.EXTERNALLY_MODIFIED: "was modified outside of Calvin",
    ConflictReason.DELETED_EXTERNALLY: "was deleted outside of Calvin",
    ConflictReason.TYPE_MISMATCH: "is not a regular file",
}


@dataclass(frozen=True)
class PlannedFile:
    destination_path: str
    scope: Scope
    action: Action
    reason: ConflictReason | None = None
    output: DesiredOutput | None = None
    orphan: "OrphanFile | None" = None
    ledger_digest: str | None = None
    live_digest: str | None = None
    # Set when a conflict was turned into a definite action.
    resolved_from: ConflictReason | None = None

    @property
    def key(self) -> str:
        return make_key(self.scope, self.destination_path)

    @property
    def is_conflict(self) -> bool:
        return self.action is Action.CONFLICT

    @property
    def sort_key(self) -> tuple[str, str]:
        return (self.destination_path, self.scope.value)

    def resolved(self, action: Action) -> "PlannedFile":
        if not self.is_conflict:
            return self
        return replace(self, action=action, reason=None, resolved_from=self.reason)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "path": self.destination_path,
            "scope": self.scope.value,
            "action": self.action.value,
        }
        if self.reason is not None:
            out["reason"] = self.reason.value
        if self.orphan is not None:
            out["orphan"] = self.orphan.reason.value
        return out


@dataclass(frozen=True)
class SyncPlan:
    files: tuple[PlannedFile, ...] = field(default_factory=tuple)

    def __iter__(self):
        return iter(self.files)

    def __len__(self) -> int:
        return len(self.files)

    @property
    def counts(self) -> dict[str, int]:
        c = Counter(f.action.value for f in self.files)
        return {a.value: c.get(a.value, 0) for a in Action}

    @property
    def conflicts(self) -> tuple[PlannedFile, ...]:
        return tuple(f for f in self.files if f.is_conflict)

    @property
    def has_conflicts(self) -> bool:
        return any(f.is_conflict for f in self.files)

    @property
    def has_changes(self) -> bool:
        return any(f.action is not Action.SKIP for f in self.files)

    def to_dict(self) -> dict[str, Any]:
        return {"files": [f.to_dict() for f in self.files], "counts": self.counts}


def plan_file(
    output: DesiredOutput,
    *,
    ledger_digest: str | None,
    state: TargetFileState,
) -> tuple[Action, ConflictReason | None]:
    """Decide the action for one desired output."""

    if state.type_mismatch:
        return Action.CONFLICT, ConflictReason.TYPE_MISMATCH

    if not state.exists:
        if ledger_digest is None:
            return Action.CREATE, None
        return Action.CONFLICT, ConflictReason.DELETED_EXTERNALLY

    # Digest equality with the desired output wins over any ledger state.
    if state.digest is not None and state.digest == output.content_digest:
        return Action.SKIP, None

    if ledger_digest is not None and state.digest is not None and state.digest == ledger_digest:
        return Action.UPDATE, None

    # Drifted since our last write, occupied by unrelated content, or unreadable.
    return Action.CONFLICT, ConflictReason.EXTERNALLY_MODIFIED


def plan_sync(
    outputs: Sequence[DesiredOutput],
    lock: Lockfile,
    states: Mapping[str, TargetFileState],
    *,
    scopes: Iterable[Scope] | None = None,
    marker_states: Mapping[str, TargetFileState] | None = None,
) -> SyncPlan:
    """Build the sync plan.

    Args:
        outputs: Desired outputs for this run (at most one per scope + path).
        lock: Ledger loaded for this run; not mutated.
        states: Live state per ledger key, covering every desired output and
            every ledger entry in `scopes`. Missing keys count as absent files.
        scopes: Ledger scopes that take part in orphan detection. Defaults to
            the scopes of `outputs` (or every scope when there are none).
        marker_states: Untracked files found carrying a provenance marker.

    Raises:
        DuplicateDestinationError: two outputs share a scope + path.
    """
    from .orphan import detect_orphans, plan_orphan

    by_key: dict[str, DesiredOutput] = {}
    for out in outputs:
        if out.key in by_key:
            raise DuplicateDestinationError(key=out.key)
        by_key[out.key] = out

    if scopes is None:
        scope_set = {o.scope for o in outputs} or set(Scope)
    else:
        scope_set = set(scopes)

    files: list[PlannedFile] = []
    for key, out in by_key.items():
        state = states.get(key, TargetFileState.missing())
        ledger_digest = lock.get(key)
        action, reason = plan_file(out, ledger_digest=ledger_digest, state=state)
        files.append(
            PlannedFile(
                destination_path=out.destination_path,
                scope=out.scope,
                action=action,
                reason=reason,
                output=out,
                ledger_digest=ledger_digest,
                live_digest=state.digest,
            )
        )

    orphans = detect_orphans(
        lock,
        by_key.keys(),
        scopes=scope_set,
        marker_states=marker_states or {},
    )
    for orphan in orphans:
        state = states.get(orphan.key) or (marker_states or {}).get(orphan.key) or TargetFileState.missing()
        files.append(plan_orphan(orphan, lock=lock, state=state))

    files.sort(key=lambda f: f.sort_key)
    plan = SyncPlan(files=tuple(files))
    logger.debug("planned %d file(s): %s", len(plan), plan.counts)
    return plan
