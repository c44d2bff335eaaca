"""File notification source backed by watchfiles."""

from __future__ import annotations

import logging
from pathlib import Path
import queue
import threading
from typing import Iterable

from watchfiles import Change, watch

from ..errors import NotifyBackendError
from .loop import CancelToken, ChangeEvent, QueueItem


logger = logging.getLogger(__name__)

_KINDS = {
    Change.added: "added",
    Change.modified: "modified",
    Change.deleted: "deleted",
}


class WatchfilesSource:
    """Runs `watchfiles.watch()` on a daemon thread and feeds a queue.

    A backend failure is put on the queue as `NotifyBackendError`, so the
    loop (on the main thread) raises it.
    """

    def __init__(
        self,
        paths: Iterable[Path],
        events: "queue.Queue[QueueItem]",
        *,
        cancel: CancelToken,
        step_ms: int = 50,
    ):
        self.paths = [Path(p) for p in paths]
        self.events = events
        self.cancel = cancel
        self.step_ms = step_ms
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            return
        missing = [p for p in self.paths if not p.exists()]
        if missing:
            raise NotifyBackendError(message=f"cannot watch missing path(s): {', '.join(map(str, missing))}")
        self._thread = threading.Thread(target=self._run, name="calvin-watch", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 2.0) -> None:
        self.cancel.cancel()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        try:
            for changes in watch(
                *self.paths,
                debounce=self.step_ms,
                step=self.step_ms,
                stop_event=self.cancel.event,
                raise_interrupt=False,
            ):
                for change, raw in sorted(changes, key=lambda c: c[1]):
                    self.events.put(ChangeEvent(path=Path(raw), kind=_KINDS.get(change, "modified")))
        except Exception as e:
            logger.error("file watcher stopped: %s", e)
            self.events.put(NotifyBackendError(message=str(e)))

    def __enter__(self) -> "WatchfilesSource":
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()
