"""Structured engine events and the sinks that consume them.

Deploy events: start, action (one per applied plan entry), conflict, complete,
error. Dry runs report the resolved plan as action and complete events
flagged `dry_run`. Watch events: watch_started, file_changed, sync_started,
sync_complete, error, shutdown.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
import json
import sys
from typing import Any, TextIO


@dataclass(frozen=True)
class DeployEvent:
    event: str
    command: str | None = None
    path: str | None = None
    scope: str | None = None
    action: str | None = None
    reason: str | None = None
    message: str | None = None
    counts: dict[str, int] | None = None
    dry_run: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


class EventSink(ABC):
    @abstractmethod
    def emit(self, event: DeployEvent) -> None: ...


class NullEventSink(EventSink):
    def emit(self, event: DeployEvent) -> None:
        return None


class RecordingEventSink(EventSink):
    """Keeps events in memory (tests, embedding callers)."""

    def __init__(self) -> None:
        self.events: list[DeployEvent] = []

    def emit(self, event: DeployEvent) -> None:
        self.events.append(event)

    def kinds(self) -> list[str]:
        return [e.event for e in self.events]


class JsonEventSink(EventSink):
    """NDJSON event stream for CI/automation."""

    def __init__(self, stream: TextIO | None = None):
        self._stream = stream

    def emit(self, event: DeployEvent) -> None:
        stream = self._stream or sys.stdout
        stream.write(json.dumps(event.to_dict(), sort_keys=True) + "\n")
        stream.flush()


_ACTION_LABEL = {
    "create": "created",
    "update": "updated",
    "delete": "deleted",
    "skip": "skipped",
}


class ConsoleEventSink(EventSink):
    """Human-readable progress lines."""

    def __init__(self, stream: TextIO | None = None, *, verbose: bool = False):
        self._stream = stream
        self.verbose = verbose

    def _line(self, text: str) -> None:
        stream = self._stream or sys.stdout
        stream.write(text + "\n")

    def emit(self, event: DeployEvent) -> None:
        e = event.event
        if event.dry_run:
            # The CLI prints the plan itself.
            return
        if e == "action":
            if event.action == "skip" and not self.verbose:
                return
            label = _ACTION_LABEL.get(event.action or "", event.action or "")
            self._line(f"  {label:<8} {event.path}")
        elif e == "conflict":
            self._line(f"  conflict {event.path} ({event.reason})")
        elif e == "error":
            where = f"{event.path}: " if event.path else ""
            self._line(f"  error    {where}{event.message}")
        elif e == "complete":
            c = event.counts or {}
            self._line(
                f"{event.command}: {c.get('written', 0)} written, {c.get('skipped', 0)} skipped, "
                f"{c.get('deleted', 0)} deleted, {c.get('errors', 0)} error(s)"
            )
        elif e == "watch_started":
            self._line(f"Watching {event.path} (Ctrl-C to stop)")
        elif e == "file_changed":
            self._line(f"changed: {event.path}")
        elif e == "shutdown":
            self._line("Watch stopped.")
        elif e in ("start", "sync_started") and self.verbose:
            self._line(f"{event.command}: {e}")
