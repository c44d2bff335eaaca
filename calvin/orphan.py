"""Orphan detection.

An orphan is a file Calvin deployed earlier that the current configuration no
longer produces. Two signals are combined:

- tracked_but_undesired: the ledger has the key, this run does not.
- signature_but_untracked: a file under a managed directory carries the
  provenance marker but the ledger does not know it (e.g. the lockfile was
  lost). This is heuristic, so such files are only ever planned as conflicts.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Mapping

from .lock import Lockfile
from .models import Scope, make_key
from .plan import Action, ConflictReason, PlannedFile
from .state import TargetFileState


class OrphanReason(str, Enum):
    TRACKED_BUT_UNDESIRED = "tracked_but_undesired"
    SIGNATURE_BUT_UNTRACKED = "signature_but_untracked"


@dataclass(frozen=True)
class OrphanFile:
    destination_path: str
    scope: Scope
    reason: OrphanReason

    @property
    def key(self) -> str:
        return make_key(self.scope, self.destination_path)


def detect_orphans(
    lock: Lockfile,
    desired_keys: Iterable[str],
    *,
    scopes: Iterable[Scope],
    marker_states: Mapping[str, TargetFileState] | None = None,
) -> list[OrphanFile]:
    desired = set(desired_keys)
    scope_set = set(scopes)
    orphans: list[OrphanFile] = []

    for scope in sorted(scope_set, key=lambda s: s.value):
        for key in lock.keys_for_scope(scope):
            if key in desired:
                continue
            dest = key[len(scope.key_prefix):]
            orphans.append(OrphanFile(dest, scope, OrphanReason.TRACKED_BUT_UNDESIRED))

    for key, state in sorted((marker_states or {}).items()):
        if key in desired or key in lock or not state.carries_marker:
            continue
        scope = Scope.PROJECT if key.startswith(Scope.PROJECT.key_prefix) else Scope.USER
        if scope not in scope_set:
            continue
        dest = key[len(scope.key_prefix):]
        orphans.append(OrphanFile(dest, scope, OrphanReason.SIGNATURE_BUT_UNTRACKED))

    return orphans


def plan_orphan(orphan: OrphanFile, *, lock: Lockfile, state: TargetFileState) -> PlannedFile:
    """Turn an orphan into a `delete` or `conflict` plan entry."""

    ledger_digest = lock.get(orphan.key)
    action = Action.DELETE
    reason: ConflictReason | None = None

    if orphan.reason is OrphanReason.SIGNATURE_BUT_UNTRACKED:
        action, reason = Action.CONFLICT, ConflictReason.EXTERNALLY_MODIFIED
    elif state.type_mismatch:
        action, reason = Action.CONFLICT, ConflictReason.TYPE_MISMATCH
    elif state.exists and (state.digest is None or state.digest != ledger_digest):
        action, reason = Action.CONFLICT, ConflictReason.EXTERNALLY_MODIFIED

    return PlannedFile(
        destination_path=orphan.destination_path,
        scope=orphan.scope,
        action=action,
        reason=reason,
        orphan=orphan,
        ledger_digest=ledger_digest,
        live_digest=state.digest,
    )
