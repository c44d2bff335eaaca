from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path


MIGRATE_HINT = "run `calvin migrate` or remove the lockfile to start fresh"


class CalvinError(Exception):
    """Base exception for all errors surfaced by Calvin."""


# -------------------------
# config


class ConfigError(CalvinError):
    """Base exception for config parsing/validation errors."""


@dataclass(frozen=True)
class ConfigParseError(ConfigError):
    """Raised when a TOML file cannot be parsed."""

    path: Path
    message: str
    lineno: int | None = None
    colno: int | None = None

    def __str__(self) -> str:
        loc = ""
        if self.lineno is not None and self.colno is not None:
            loc = f" (line {self.lineno}, column {self.colno})"
        return f"Invalid TOML in {self.path}: {self.message}{loc}"


@dataclass(frozen=True)
class ConfigValidationError(ConfigError):
    """Raised when a parsed TOML file does not match the expected schema."""

    path: Path
    message: str

    def __str__(self) -> str:
        return f"Invalid config in {self.path}: {self.message}"


@dataclass(frozen=True)
class AssetParseError(CalvinError):
    """Raised when a source asset cannot be parsed."""

    path: Path
    message: str

    def __str__(self) -> str:
        return f"Invalid asset {self.path}: {self.message}"


# -------------------------
# lockfile


class LockfileError(CalvinError):
    """Raised when the lockfile cannot be loaded."""


@dataclass(frozen=True)
class LockfileCorruptedError(LockfileError):
    path: Path
    message: str

    def __str__(self) -> str:
        return f"lockfile {self.path} is corrupted: {self.message}; {MIGRATE_HINT}"


@dataclass(frozen=True)
class LockfileVersionMismatchError(LockfileError):
    path: Path
    found: object
    expected: int

    def __str__(self) -> str:
        return (
            f"lockfile format incompatible in {self.path} "
            f"(found version {self.found!r}, expected {self.expected}); {MIGRATE_HINT}"
        )


@dataclass(frozen=True)
class LedgerWriteError(CalvinError):
    """Raised when the lockfile itself cannot be persisted after execution."""

    path: Path
    cause: str

    def __str__(self) -> str:
        return f"unable to write lockfile {self.path}: {self.cause}"


# -------------------------
# planning / resolution / execution


class PlanningError(CalvinError):
    """Raised when desired outputs cannot be turned into a plan."""


@dataclass(frozen=True)
class DuplicateDestinationError(PlanningError):
    key: str

    def __str__(self) -> str:
        return f"duplicate destination in desired outputs: {self.key}"


@dataclass(frozen=True)
class ConflictUnresolvedError(CalvinError):
    """Raised when conflicting plan entries remain after resolution."""

    paths: tuple[str, ...] = field(default_factory=tuple)

    def __str__(self) -> str:
        listed = ", ".join(self.paths)
        return (
            f"{len(self.paths)} conflicting file(s) left unresolved: {listed}; "
            "re-run with --force to overwrite, --skip-conflicts to keep them, or --interactive"
        )


@dataclass(frozen=True)
class SyncAbortedError(ConflictUnresolvedError):
    """Raised when the user aborts during interactive conflict resolution."""

    def __str__(self) -> str:
        return f"aborted by user at {self.paths[0] if self.paths else 'conflict prompt'}"


@dataclass(frozen=True)
class ExecutionError(CalvinError):
    """A single failed write/delete. Collected in results rather than raised."""

    path: str
    cause: str

    def __str__(self) -> str:
        return f"{self.path}: {self.cause}"


# -------------------------
# watch


class WatchError(CalvinError):
    """Base exception for watch loop failures."""


@dataclass(frozen=True)
class NotifyBackendError(WatchError):
    message: str

    def __str__(self) -> str:
        return f"file notification backend failed: {self.message}"
