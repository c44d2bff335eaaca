from __future__ import annotations

import logging

from .config import load_config
from .conflict import ConflictResolver, PolicyResolver
from .deploy import DeployContext, build_engine, ledger_scopes
from .engine import SyncOutcome, persist_lock
from .events import EventSink
from .lock import load_lock
from .models import CalvinConfig


logger = logging.getLogger(__name__)


def clean(
    ctx: DeployContext,
    *,
    config: CalvinConfig | None = None,
    force: bool = False,
    resolver: ConflictResolver | None = None,
    sink: EventSink | None = None,
    dry_run: bool = False,
) -> SyncOutcome:
    """Remove every file the ledger tracks for this run's scope.

    Planned with an empty desired set, so the orphan rules apply: files that
    still match their ledger digest are deleted, modified ones are kept
    (and stay tracked) unless `force` is set.
    """
    cfg = config or load_config(ctx.source)
    lock_path = ctx.lockfile(cfg, migrate=not dry_run)
    lock = load_lock(lock_path)

    if resolver is None:
        resolver = PolicyResolver("force-overwrite" if force else "skip-all")
    engine = build_engine(ctx, cfg, resolver=resolver, sink=sink, command="clean")
    # Only ledger-tracked files are cleaned; marker heuristics stay out of it.
    engine.marker_dirs = None

    outcome = engine.sync([], lock, scopes=ledger_scopes(ctx.run_scope(cfg)), dry_run=dry_run)
    if not outcome.dry_run:
        persist_lock(lock_path, outcome.lock)
        logger.info("clean: %d file(s) removed, %d entr(ies) left in %s", len(outcome.result.deleted), len(outcome.lock), lock_path)
    return outcome
