from __future__ import annotations

import logging
from pathlib import Path
import queue
from typing import Iterable

from ..conflict import ConflictResolver, PolicyResolver
from ..deploy import DeployContext, build_engine, desired_outputs, ledger_scopes
from ..engine import SyncOutcome, persist_lock
from ..errors import CalvinError
from ..events import DeployEvent, EventSink, NullEventSink
from ..lock import load_lock
from ..models import CalvinConfig
from .cache import IncrementalCache
from .loop import CancelToken, QueueItem, WatchLoop, interrupt_cancels
from .source import WatchfilesSource


logger = logging.getLogger(__name__)


class WatchSession:
    """One `calvin watch` run: cache + adapters + engine + ledger per pass.

    Conflicts are settled by the configured policy only; the ledger is
    reloaded and persisted on every pass.
    """

    def __init__(
        self,
        ctx: DeployContext,
        cfg: CalvinConfig,
        *,
        sink: EventSink | None = None,
        resolver: ConflictResolver | None = None,
    ):
        self.ctx = ctx
        self.cfg = cfg
        self.sink = sink or NullEventSink()
        self.source_dir = ctx.source.resolve()
        self.cache = IncrementalCache(self.source_dir)
        self.run_scope = ctx.run_scope(cfg)
        self.lock_path = ctx.lockfile(cfg)
        self.engine = build_engine(
            ctx,
            cfg,
            resolver=resolver or PolicyResolver(cfg.sync.conflicts),
            sink=self.sink,
            command="watch",
        )

    def sync(self) -> SyncOutcome:
        self.sink.emit(DeployEvent("sync_started", command="watch"))
        lock = load_lock(self.lock_path)
        outputs = desired_outputs(self.cache.assets(), self.cfg, self.run_scope)
        outcome = self.engine.sync(outputs, lock, scopes=ledger_scopes(self.run_scope))
        persist_lock(self.lock_path, outcome.lock)
        assert outcome.result is not None
        self.sink.emit(DeployEvent("sync_complete", command="watch", counts=outcome.result.counts))
        return outcome

    def initial_sync(self) -> SyncOutcome:
        self.cache.prime()
        return self.sync()

    def process(self, paths: Iterable[Path]) -> SyncOutcome | None:
        update = self.cache.apply(Path(p).resolve() for p in paths)
        if not update.changed:
            logger.debug("no source content changed; skipping sync")
            return None
        return self.sync()

    def run(
        self,
        *,
        cancel: CancelToken | None = None,
        events: "queue.Queue[QueueItem] | None" = None,
        source: WatchfilesSource | None = None,
    ) -> None:
        """Initial sync, then watch until cancelled.

        Raises:
            NotifyBackendError: the notification backend failed.
        """
        cancel = cancel or CancelToken()
        events = events if events is not None else queue.Queue()
        self.sink.emit(DeployEvent("watch_started", command="watch", path=str(self.source_dir)))

        with interrupt_cancels(cancel):
            try:
                self.initial_sync()
            except CalvinError as e:
                logger.warning("initial sync failed: %s", e)
                self.sink.emit(DeployEvent("error", command="watch", message=str(e)))

            loop = WatchLoop(
                events,
                self.process,
                debounce_ms=self.cfg.watch.debounce_ms,
                cancel=cancel,
                sink=self.sink,
            )
            src = source or WatchfilesSource([self.source_dir], events, cancel=cancel)
            with src:
                loop.run()
