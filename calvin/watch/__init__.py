"""Watch mode: incremental source cache and the debounced sync loop."""

from .cache import CacheUpdate, IncrementalCache
from .loop import CancelToken, ChangeEvent, WatchLoop, WatchState
from .session import WatchSession
from .source import WatchfilesSource

__all__ = [
    "CacheUpdate",
    "CancelToken",
    "ChangeEvent",
    "IncrementalCache",
    "WatchLoop",
    "WatchSession",
    "WatchState",
    "WatchfilesSource",
]
