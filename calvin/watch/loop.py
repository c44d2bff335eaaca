"""Debounced watch loop.

State machine::

    idle --event--> debouncing --quiet for debounce_ms--> processing --> idle
      \\______________________ cancel ______________________________/--> stopped

Events arrive on a `queue.Queue` fed by a notification thread; that queue is
the only handoff between threads. Everything else runs on the caller's
thread, one transition per `run_once()` call.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
import logging
from pathlib import Path
import queue
import signal
import threading
import time
from typing import Callable, Union

from ..errors import CalvinError, NotifyBackendError
from ..events import DeployEvent, EventSink, NullEventSink


logger = logging.getLogger(__name__)


class WatchState(str, Enum):
    IDLE = "idle"
    DEBOUNCING = "debouncing"
    PROCESSING = "processing"
    STOPPED = "stopped"


@dataclass(frozen=True)
class ChangeEvent:
    path: Path
    kind: str = "modified"  # added|modified|deleted


class CancelToken:
    """Thread-safe stop flag, checked by the loop at every transition."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def event(self) -> threading.Event:
        return self._event


@contextmanager
def interrupt_cancels(cancel: CancelToken):
    """Route SIGINT to `cancel` while the block runs.

    Ctrl-C then stops the loop at its next transition instead of raising
    KeyboardInterrupt in the middle of a pass. Only the main thread can own
    signal handlers; elsewhere this is a no-op.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    previous = signal.getsignal(signal.SIGINT)

    def _on_interrupt(signum, frame) -> None:
        logger.info("interrupt received; stopping after the current pass")
        cancel.cancel()

    signal.signal(signal.SIGINT, _on_interrupt)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous if previous is not None else signal.SIG_DFL)


# Queue items: change events, or an exception reported by the notification thread.
QueueItem = Union[ChangeEvent, BaseException]
ProcessFn = Callable[[frozenset], object]


class WatchLoop:
    def __init__(
        self,
        events: "queue.Queue[QueueItem]",
        process: ProcessFn,
        *,
        debounce_ms: int = 100,
        clock: Callable[[], float] = time.monotonic,
        cancel: CancelToken | None = None,
        sink: EventSink | None = None,
        poll_interval: float = 0.05,
    ):
        self.events = events
        self.process = process
        self.debounce = debounce_ms / 1000.0
        self.clock = clock
        self.cancel = cancel or CancelToken()
        self.sink = sink or NullEventSink()
        self.poll_interval = poll_interval

        self.state = WatchState.IDLE
        self.passes = 0
        self._pending: set[Path] = set()
        self._deadline = 0.0

    def _get(self, timeout: float) -> QueueItem | None:
        try:
            if timeout <= 0:
                return self.events.get_nowait()
            return self.events.get(timeout=timeout)
        except queue.Empty:
            return None

    def _accept(self, item: QueueItem) -> None:
        if isinstance(item, NotifyBackendError):
            raise item
        if isinstance(item, BaseException):
            raise NotifyBackendError(message=str(item)) from item
        self._pending.add(item.path)
        self.sink.emit(DeployEvent("file_changed", command="watch", path=str(item.path), action=item.kind))
        self._deadline = self.clock() + self.debounce

    def _stop(self) -> WatchState:
        if self._pending:
            logger.info("watch stopping; %d pending change(s) not synced", len(self._pending))
            self._pending.clear()
        self.state = WatchState.STOPPED
        self.sink.emit(DeployEvent("shutdown", command="watch"))
        return self.state

    def run_once(self) -> WatchState:
        """Perform one state transition and return the new state."""

        if self.state is WatchState.STOPPED:
            return self.state
        if self.cancel.cancelled:
            return self._stop()

        if self.state is WatchState.IDLE:
            item = self._get(self.poll_interval)
            if item is not None:
                self._accept(item)
                self.state = WatchState.DEBOUNCING

        elif self.state is WatchState.DEBOUNCING:
            remaining = self._deadline - self.clock()
            if remaining <= 0:
                # The burst is over: take whatever is already queued with it.
                while True:
                    item = self._get(0)
                    if item is None:
                        break
                    self._accept(item)
                self.state = WatchState.PROCESSING
            else:
                item = self._get(min(self.poll_interval, remaining))
                if item is not None:
                    self._accept(item)

        elif self.state is WatchState.PROCESSING:
            batch = frozenset(self._pending)
            self._pending.clear()
            self._run_pass(batch)
            self.state = WatchState.IDLE

        logger.debug("watch state -> %s", self.state.value)
        return self.state

    def _run_pass(self, batch: frozenset) -> None:
        self.passes += 1
        logger.debug("processing %d changed path(s)", len(batch))
        try:
            self.process(batch)
        except NotifyBackendError:
            raise
        except (CalvinError, OSError) as e:
            logger.warning("watch sync failed: %s", e)
            self.sink.emit(DeployEvent("error", command="watch", message=str(e)))

    def run(self) -> None:
        """Loop until cancelled.

        SIGINT cancels the loop; a pass in progress always completes first.
        """

        try:
            with interrupt_cancels(self.cancel):
                while self.run_once() is not WatchState.STOPPED:
                    pass
        except KeyboardInterrupt:
            # Interrupt delivered before the handler was installed.
            logger.debug("KeyboardInterrupt outside the SIGINT handler")
            self.cancel.cancel()
            self._stop()
