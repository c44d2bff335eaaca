from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Sequence

from .adapters import managed_dirs, render_outputs
from .assets import PromptAsset, scan_assets
from .config import load_config
from .conflict import ConflictResolver, PolicyResolver
from .engine import SyncEngine, SyncOutcome, persist_lock
from .events import EventSink
from .lock import load_lock
from .migrate import resolve_lockfile_path
from .models import CalvinConfig, DesiredOutput, Scope
from .paths import global_lockfile_path, legacy_lockfile_path, project_lockfile_path
from .plan import SyncPlan


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeployContext:
    """Where a run reads from and writes to."""

    root: Path
    home: Path
    source: Path
    user_scope: bool = False

    def run_scope(self, cfg: CalvinConfig) -> Scope:
        return Scope.USER if self.user_scope else cfg.deploy.scope

    def lockfile(self, cfg: CalvinConfig, *, migrate: bool = True) -> Path:
        if self.run_scope(cfg) is Scope.USER:
            return global_lockfile_path(self.home)
        if migrate:
            return resolve_lockfile_path(root=self.root, source=self.source)
        # Read-only runs look at a legacy lockfile in place.
        new = project_lockfile_path(self.root)
        legacy = legacy_lockfile_path(self.source)
        return legacy if not new.exists() and legacy.exists() else new


def ledger_scopes(run_scope: Scope) -> tuple[Scope, ...]:
    """Scopes a run's ledger can hold (project ledgers also track `scope: user` assets)."""

    if run_scope is Scope.USER:
        return (Scope.USER,)
    return (Scope.PROJECT, Scope.USER)


def desired_outputs(assets: Sequence[PromptAsset], cfg: CalvinConfig, run_scope: Scope) -> list[DesiredOutput]:
    return render_outputs(assets, targets=cfg.deploy.targets, run_scope=run_scope)


def build_engine(
    ctx: DeployContext,
    cfg: CalvinConfig,
    *,
    resolver: ConflictResolver | None = None,
    sink: EventSink | None = None,
    command: str = "deploy",
) -> SyncEngine:
    run_scope = ctx.run_scope(cfg)
    return SyncEngine(
        project_root=ctx.root,
        home=ctx.home,
        resolver=resolver or PolicyResolver(cfg.sync.conflicts),
        marker_dirs=managed_dirs(cfg.deploy.targets, run_scope) if cfg.sync.marker_scan else None,
        sink=sink,
        command=command,
    )


def deploy(
    ctx: DeployContext,
    *,
    config: CalvinConfig | None = None,
    resolver: ConflictResolver | None = None,
    sink: EventSink | None = None,
    dry_run: bool = False,
    command: str = "deploy",
) -> SyncOutcome:
    """Deploy the source tree to every enabled target.

    The ledger is loaded once, and persisted once after execution (never on a
    dry run). Per-file failures are reported in `outcome.result.errors`.
    """
    cfg = config or load_config(ctx.source)
    run_scope = ctx.run_scope(cfg)
    lock_path = ctx.lockfile(cfg, migrate=not dry_run)
    lock = load_lock(lock_path)

    outputs = desired_outputs(scan_assets(ctx.source), cfg, run_scope)
    logger.debug("rendered %d output(s) for %s scope", len(outputs), run_scope.value)

    engine = build_engine(ctx, cfg, resolver=resolver, sink=sink, command=command)
    outcome = engine.sync(outputs, lock, scopes=ledger_scopes(run_scope), dry_run=dry_run)
    if not outcome.dry_run:
        persist_lock(lock_path, outcome.lock)
    return outcome


def diff(ctx: DeployContext, *, config: CalvinConfig | None = None) -> SyncPlan:
    """Plan without resolving or executing; conflicts stay in the plan."""

    cfg = config or load_config(ctx.source)
    run_scope = ctx.run_scope(cfg)
    lock = load_lock(ctx.lockfile(cfg, migrate=False))
    outputs = desired_outputs(scan_assets(ctx.source), cfg, run_scope)
    engine = build_engine(ctx, cfg, command="diff")
    return engine.plan(outputs, lock, scopes=ledger_scopes(run_scope))
