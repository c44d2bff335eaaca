"""Sync engine: plan, resolve, execute.

The engine holds no state between runs. The caller loads the ledger, hands it
in, and persists the ledger value returned in `SyncOutcome.lock`.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Iterable, Mapping, Sequence

from .conflict import ConflictResolver, PolicyResolver, resolve_plan
from .errors import LedgerWriteError
from .events import DeployEvent, EventSink, NullEventSink
from .execute import DeployResult, execute_plan
from .lock import Lockfile, save_lock
from .models import DesiredOutput, Scope
from .plan import SyncPlan, plan_sync
from .state import read_target_states, scan_marked_files


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncOutcome:
    plan: SyncPlan
    resolved: SyncPlan
    # None for dry runs.
    result: DeployResult | None
    lock: Lockfile

    @property
    def dry_run(self) -> bool:
        return self.result is None


class SyncEngine:
    def __init__(
        self,
        *,
        project_root: Path,
        home: Path,
        resolver: ConflictResolver | None = None,
        marker_dirs: Mapping[Scope, Iterable[str]] | None = None,
        sink: EventSink | None = None,
        command: str = "deploy",
    ):
        self.project_root = project_root
        self.home = home
        self.resolver = resolver or PolicyResolver()
        self.marker_dirs = marker_dirs
        self.sink = sink or NullEventSink()
        self.command = command

    def plan(self, outputs: Sequence[DesiredOutput], lock: Lockfile, *, scopes: Iterable[Scope]) -> SyncPlan:
        """Read live state and build the (unresolved) plan."""

        scope_list = sorted(set(scopes), key=lambda s: s.value)
        keys = {o.key for o in outputs}
        for scope in scope_list:
            keys.update(lock.keys_for_scope(scope))
        states = read_target_states(keys, project_root=self.project_root, home=self.home)

        marker_states = {}
        if self.marker_dirs:
            marker_states = scan_marked_files(self.marker_dirs, project_root=self.project_root, home=self.home)

        return plan_sync(outputs, lock, states, scopes=scope_list, marker_states=marker_states)

    def sync(
        self,
        outputs: Sequence[DesiredOutput],
        lock: Lockfile,
        *,
        scopes: Iterable[Scope],
        dry_run: bool = False,
    ) -> SyncOutcome:
        """Plan, resolve and (unless `dry_run`) execute.

        Planning and resolution errors propagate before anything is written.
        """
        self.sink.emit(DeployEvent("start", command=self.command))
        plan = self.plan(outputs, lock, scopes=scopes)
        resolved = resolve_plan(plan, self.resolver, sink=self.sink)

        if dry_run:
            for f in resolved:
                self.sink.emit(
                    DeployEvent(
                        "action",
                        command=self.command,
                        path=f.destination_path,
                        scope=f.scope.value,
                        action=f.action.value,
                        reason=f.reason.value if f.reason is not None else None,
                        dry_run=True,
                    )
                )
            self.sink.emit(DeployEvent("complete", command=self.command, counts=resolved.counts, dry_run=True))
            logger.info("dry run: %s", resolved.counts)
            return SyncOutcome(plan=plan, resolved=resolved, result=None, lock=lock)

        result, new_lock = execute_plan(
            resolved, lock, project_root=self.project_root, home_dir=self.home, sink=self.sink
        )
        self.sink.emit(DeployEvent("complete", command=self.command, counts=result.counts))
        logger.info("%s finished: %s", self.command, result.counts)
        return SyncOutcome(plan=plan, resolved=resolved, result=result, lock=new_lock)


def persist_lock(path: Path, lock: Lockfile) -> None:
    """Save the ledger, reporting failure as LedgerWriteError."""

    try:
        save_lock(path, lock)
    except OSError as e:
        raise LedgerWriteError(path=path, cause=str(e)) from e
