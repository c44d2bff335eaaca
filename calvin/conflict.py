"""Conflict resolution.

A resolver turns every `conflict` entry of a plan into a definite action. Two
implementations exist and one is picked when the engine is constructed:

- `InteractiveResolver`: asks the UI layer per conflicting path.
- `PolicyResolver`: applies one disposition to all conflicts
  (`force-overwrite`, `skip-all`, `fail-fast`).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
import logging
import sys
from typing import Callable

from .errors import ConflictUnresolvedError, SyncAbortedError
from .events import DeployEvent, EventSink, NullEventSink
from .models import CONFLICT_POLICIES
from .plan import Action, ConflictReason, PlannedFile, SyncPlan


logger = logging.getLogger(__name__)


class Choice(str, Enum):
    OVERWRITE = "overwrite"
    SKIP = "skip"
    ABORT = "abort"
    # Unresolved: left as a conflict (policies never resolve type mismatches).
    UNRESOLVED = "unresolved"


class ConflictResolver(ABC):
    @abstractmethod
    def resolve(self, entry: PlannedFile) -> Choice:
        """Return the choice for one conflicting entry."""


class PolicyResolver(ConflictResolver):
    """Non-interactive resolver driven by a single disposition."""

    def __init__(self, disposition: str = "fail-fast"):
        if disposition not in CONFLICT_POLICIES:
            raise ValueError(f"unknown conflict policy {disposition!r}; expected one of {list(CONFLICT_POLICIES)}")
        self.disposition = disposition

    def __repr__(self) -> str:
        return f"PolicyResolver({self.disposition!r})"

    def resolve(self, entry: PlannedFile) -> Choice:
        if entry.reason is ConflictReason.TYPE_MISMATCH:
            return Choice.UNRESOLVED
        if self.disposition == "force-overwrite":
            return Choice.OVERWRITE
        if self.disposition == "skip-all":
            return Choice.SKIP
        return Choice.UNRESOLVED


Prompt = Callable[[PlannedFile], str]


class InteractiveResolver(ConflictResolver):
    """Prompts per conflicting path.

    `prompt` is supplied by the UI layer and returns one of:
    `o` (overwrite), `s` (skip), `a` (abort), `d` (show diff, then ask again),
    `O` / `S` (overwrite / skip this and every remaining conflict).
    """

    def __init__(self, prompt: Prompt, *, show_diff: Callable[[PlannedFile], None] | None = None):
        self._prompt = prompt
        self._show_diff = show_diff
        self._apply_all: Choice | None = None

    def resolve(self, entry: PlannedFile) -> Choice:
        type_mismatch = entry.reason is ConflictReason.TYPE_MISMATCH
        if self._apply_all is not None and not type_mismatch:
            return self._apply_all

        while True:
            answer = self._prompt(entry).strip()
            if answer in ("o", "overwrite") and not type_mismatch:
                return Choice.OVERWRITE
            if answer in ("s", "skip"):
                return Choice.SKIP
            if answer in ("a", "abort"):
                return Choice.ABORT
            if answer == "O" and not type_mismatch:
                self._apply_all = Choice.OVERWRITE
                return Choice.OVERWRITE
            if answer == "S":
                self._apply_all = Choice.SKIP
                return Choice.SKIP
            if answer in ("d", "diff") and self._show_diff is not None:
                self._show_diff(entry)
            # Anything else: ask again.


def _overwrite_action(entry: PlannedFile) -> Action:
    if entry.orphan is not None:
        return Action.DELETE
    if entry.reason is ConflictReason.DELETED_EXTERNALLY:
        return Action.CREATE
    return Action.UPDATE


def resolve_plan(plan: SyncPlan, resolver: ConflictResolver, *, sink: EventSink | None = None) -> SyncPlan:
    """Return a plan containing only create/update/skip/delete entries.

    Raises:
        ConflictUnresolvedError: conflicts remain (fail-fast, or a type
            mismatch no policy may resolve). Lists every such path.
        SyncAbortedError: the interactive user aborted.
    """
    sink = sink or NullEventSink()
    resolved: list[PlannedFile] = []
    unresolved: list[str] = []

    for entry in plan.files:
        if not entry.is_conflict:
            resolved.append(entry)
            continue

        sink.emit(
            DeployEvent(
                "conflict",
                path=entry.destination_path,
                scope=entry.scope.value,
                reason=entry.reason.value if entry.reason else None,
            )
        )
        choice = resolver.resolve(entry)
        logger.debug("conflict %s (%s) -> %s", entry.key, entry.reason, choice.value)

        if choice is Choice.ABORT:
            raise SyncAbortedError(paths=(entry.destination_path,))
        if choice is Choice.UNRESOLVED:
            unresolved.append(entry.destination_path)
        elif choice is Choice.OVERWRITE:
            resolved.append(entry.resolved(_overwrite_action(entry)))
        else:
            resolved.append(entry.resolved(Action.SKIP))

    if unresolved:
        raise ConflictUnresolvedError(paths=tuple(unresolved))

    return SyncPlan(files=tuple(resolved))


def console_prompt(entry: PlannedFile) -> str:
    """Default interactive prompt on stdin/stderr."""

    reason = entry.reason.description if entry.reason else "is in conflict"
    what = "delete" if entry.orphan is not None else "overwrite"
    print(f"\nConflict: {entry.destination_path} {reason}", file=sys.stderr)
    if entry.reason is ConflictReason.TYPE_MISMATCH:
        print("[s]kip / [a]bort? ", end="", file=sys.stderr, flush=True)
    else:
        print(f"[o] {what} / [s]kip / [d]iff / [a]bort / [O]/[S] for all? ", end="", file=sys.stderr, flush=True)
    line = sys.stdin.readline()
    if not line:
        return "a"
    return line.rstrip("\n")


def console_diff(entry: PlannedFile, *, read_live: Callable[[PlannedFile], str]) -> None:
    import difflib

    old = read_live(entry).splitlines(keepends=True)
    new = entry.output.content_bytes.decode("utf-8", errors="replace").splitlines(keepends=True) if entry.output else []
    diff = difflib.unified_diff(old, new, fromfile=f"{entry.destination_path} (on disk)", tofile=f"{entry.destination_path} (calvin)")
    sys.stderr.write("".join(diff) or "(no textual differences)\n")
