from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .hashing import sha256_bytes


class Scope(str, Enum):
    """Where a destination path lives.

    Project paths are relative to the project root; user paths are written
    with a `~/` prefix and resolve against the home directory.
    """

    PROJECT = "project"
    USER = "user"

    @property
    def key_prefix(self) -> str:
        return "project:" if self is Scope.PROJECT else "home:"


def make_key(scope: Scope, destination_path: str) -> str:
    """Ledger key for a deployment, e.g. `project:.claude/commands/x.md`."""

    return f"{scope.key_prefix}{destination_path}"


def parse_key(key: str) -> tuple[Scope, str] | None:
    for scope in Scope:
        if key.startswith(scope.key_prefix):
            return scope, key[len(scope.key_prefix):]
    return None


@dataclass(frozen=True)
class DesiredOutput:
    """A fully rendered artifact that should exist at `destination_path`."""

    destination_path: str
    scope: Scope
    content_bytes: bytes
    content_digest: str
    source: str | None = None

    @classmethod
    def from_text(
        cls, destination_path: str, text: str, *, scope: Scope = Scope.PROJECT, source: str | None = None
    ) -> "DesiredOutput":
        data = text.encode("utf-8")
        return cls(
            destination_path=destination_path,
            scope=scope,
            content_bytes=data,
            content_digest=sha256_bytes(data),
            source=source,
        )

    @property
    def key(self) -> str:
        return make_key(self.scope, self.destination_path)


# -------------------------
# .promptpack/config.toml


CONFLICT_POLICIES = ("force-overwrite", "skip-all", "fail-fast")
DEFAULT_TARGETS = ("claude", "agents", "factory")


@dataclass(frozen=True)
class DeployConfig:
    scope: Scope = Scope.PROJECT
    targets: tuple[str, ...] = DEFAULT_TARGETS


@dataclass(frozen=True)
class SyncConfig:
    conflicts: str = "fail-fast"  # force-overwrite|skip-all|fail-fast
    marker_scan: bool = True


@dataclass(frozen=True)
class WatchConfig:
    debounce_ms: int = 100


@dataclass(frozen=True)
class CalvinConfig:
    version: int = 1
    deploy: DeployConfig = field(default_factory=DeployConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    watch: WatchConfig = field(default_factory=WatchConfig)
