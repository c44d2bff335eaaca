from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
import logging
import os
from pathlib import Path
from typing import Iterable, Mapping

from .hashing import sha256_bytes
from .models import Scope, make_key, parse_key
from .paths import resolve_destination


# Signature strings embedded by the adapters into every managed file.
SIGNATURES = ("Generated by Calvin",)

# Markers live in the header; never read whole large files to find one.
MARKER_SCAN_BYTES = 4096

logger = logging.getLogger(__name__)


def has_signature(head: bytes | str) -> bool:
    text = head.decode("utf-8", errors="replace") if isinstance(head, bytes) else head
    return any(sig in text for sig in SIGNATURES)


@dataclass(frozen=True)
class TargetFileState:
    """Snapshot of one destination path, read fresh for each planning pass."""

    exists: bool
    digest: str | None = None
    carries_marker: bool = False
    is_file: bool = True

    @classmethod
    def missing(cls) -> "TargetFileState":
        return cls(exists=False, digest=None, carries_marker=False, is_file=False)

    @classmethod
    def of_content(cls, content: bytes) -> "TargetFileState":
        return cls(
            exists=True,
            digest=sha256_bytes(content),
            carries_marker=has_signature(content[:MARKER_SCAN_BYTES]),
        )

    @property
    def type_mismatch(self) -> bool:
        return self.exists and not self.is_file


def read_target_state(path: Path) -> TargetFileState:
    """Inspect `path` without following it into directories.

    A path that exists but cannot be read is reported with digest None; the
    planner treats an unknown digest as a conflict, never as safe.
    """
    if not path.exists() and not path.is_symlink():
        return TargetFileState.missing()
    if not path.is_file():
        return TargetFileState(exists=True, digest=None, carries_marker=False, is_file=False)
    try:
        content = path.read_bytes()
    except OSError as e:
        logger.warning("unable to read %s: %s", path, e)
        return TargetFileState(exists=True, digest=None, carries_marker=False, is_file=True)
    return TargetFileState.of_content(content)


def read_target_states(
    keys: Iterable[str],
    *,
    project_root: Path,
    home: Path,
    max_workers: int | None = None,
) -> dict[str, TargetFileState]:
    """Read the live state of many ledger keys.

    Reads are pure queries, so they run in parallel; the result is keyed by
    ledger key and carries no ordering.
    """
    targets: dict[str, Path] = {}
    for key in set(keys):
        parsed = parse_key(key)
        if parsed is None:
            continue
        _scope, dest = parsed
        targets[key] = resolve_destination(dest, project_root=project_root, home=home)

    if not targets:
        return {}

    workers = max_workers or min(16, (os.cpu_count() or 1) + 4)
    ordered = sorted(targets)
    with ThreadPoolExecutor(max_workers=workers) as pool:
        states = list(pool.map(lambda k: read_target_state(targets[k]), ordered))
    return dict(zip(ordered, states))


def scan_marked_files(
    roots: Mapping[Scope, Iterable[str]],
    *,
    project_root: Path,
    home: Path,
) -> dict[str, TargetFileState]:
    """Find files under managed directories that carry a provenance marker.

    `roots` maps a scope to destination-style directory paths (e.g.
    `.claude/commands` or `~/.claude/commands`). Best-effort: unreadable
    entries are ignored.
    """
    found: dict[str, TargetFileState] = {}
    for scope, dirs in roots.items():
        for d in sorted(set(dirs)):
            base = resolve_destination(d, project_root=project_root, home=home)
            if not base.is_dir():
                continue
            for p in sorted(base.rglob("*")):
                if p.name.startswith(".") or not p.is_file():
                    continue
                try:
                    with p.open("rb") as f:
                        head = f.read(MARKER_SCAN_BYTES)
                except OSError:
                    continue
                if not has_signature(head):
                    continue
                rel = p.relative_to(base).as_posix()
                dest = f"{d.rstrip('/')}/{rel}"
                found[make_key(scope, dest)] = read_target_state(p)
    return found
