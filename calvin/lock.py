"""Calvin lockfile (provenance ledger) I/O.

The ledger maps a deployment key (`project:<path>` / `home:<path>`) to the
digest Calvin last wrote there. It is the only durable state between runs.

Requirements:
- Stable TOML formatting (sorted keys, no timestamps)
- Missing file loads as an empty ledger; anything else unreadable is fatal
- Saves are all-or-nothing (temp file + fsync + atomic replace)
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from pathlib import Path
import tomllib
from typing import Any, Iterator, Mapping

from .errors import LockfileCorruptedError, LockfileVersionMismatchError
from .hashing import normalize_digest
from .models import Scope, parse_key
from .toml_write import toml_assignments, toml_int, toml_table_header


LOCKFILE_VERSION = 1

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LockEntry:
    digest: str
    source: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"hash": self.digest, "source": self.source}


class Lockfile:
    """In-memory ledger. Passed explicitly into planning/execution, never global."""

    def __init__(self, entries: Mapping[str, LockEntry] | None = None, *, version: int = LOCKFILE_VERSION):
        self.version = version
        self._entries: dict[str, LockEntry] = dict(entries or {})

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._entries))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Lockfile):
            return NotImplemented
        return self.version == other.version and self._entries == other._entries

    def __repr__(self) -> str:
        return f"Lockfile(version={self.version}, entries={len(self._entries)})"

    def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        return entry.digest if entry is not None else None

    def entry(self, key: str) -> LockEntry | None:
        return self._entries.get(key)

    def record(self, key: str, digest: str, *, source: str | None = None) -> None:
        self._entries[key] = LockEntry(digest=digest, source=source)

    def remove(self, key: str) -> LockEntry | None:
        return self._entries.pop(key, None)

    def items(self) -> list[tuple[str, LockEntry]]:
        return sorted(self._entries.items())

    def keys_for_scope(self, scope: Scope) -> list[str]:
        return sorted(k for k in self._entries if k.startswith(scope.key_prefix))

    def copy(self) -> "Lockfile":
        return Lockfile(self._entries, version=self.version)


def dumps_lock(lock: Lockfile) -> str:
    lines = [f"version = {toml_int(lock.version)}"]
    for key, entry in lock.items():
        lines.append("")
        lines.append(toml_table_header("files", key))
        lines.extend(toml_assignments(entry.to_dict()))
    return "\n".join(lines) + "\n"


def loads_lock(text: str, *, path: Path) -> Lockfile:
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise LockfileCorruptedError(path=path, message=f"invalid TOML: {e}") from e

    version = data.get("version")
    if not isinstance(version, int) or isinstance(version, bool):
        raise LockfileCorruptedError(path=path, message="version must be an integer")
    if version != LOCKFILE_VERSION:
        raise LockfileVersionMismatchError(path=path, found=version, expected=LOCKFILE_VERSION)

    unknown = sorted(set(data.keys()) - {"version", "files"})
    if unknown:
        raise LockfileCorruptedError(path=path, message=f"unknown top-level keys: {unknown}")

    files = data.get("files", {})
    if not isinstance(files, dict):
        raise LockfileCorruptedError(path=path, message="files must be a table")

    entries: dict[str, LockEntry] = {}
    for key, raw in files.items():
        if parse_key(key) is None:
            raise LockfileCorruptedError(path=path, message=f"invalid key {key!r} (expected project: or home: prefix)")
        if not isinstance(raw, dict):
            raise LockfileCorruptedError(path=path, message=f"files[{key!r}] must be a table")
        digest = raw.get("hash")
        if not isinstance(digest, str) or not digest:
            raise LockfileCorruptedError(path=path, message=f"files[{key!r}].hash must be a non-empty string")
        source = raw.get("source")
        if source is not None and not isinstance(source, str):
            raise LockfileCorruptedError(path=path, message=f"files[{key!r}].source must be a string")
        entries[key] = LockEntry(digest=normalize_digest(digest), source=source)

    return Lockfile(entries, version=version)


def load_lock(path: str | Path) -> Lockfile:
    """Load and validate a calvin.lock file.

    A missing file is an empty ledger. Parse/schema errors raise
    LockfileCorruptedError, a different format version raises
    LockfileVersionMismatchError; neither is ever downgraded to empty.
    """
    p = Path(path)
    try:
        raw = p.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.debug("no lockfile at %s; starting with an empty ledger", p)
        return Lockfile()
    except (OSError, UnicodeDecodeError) as e:
        raise LockfileCorruptedError(path=p, message=f"unable to read: {e}") from e
    return loads_lock(raw, path=p)


def save_lock(path: str | Path, lock: Lockfile) -> None:
    """Write a calvin.lock file atomically.

    The ledger is written to a sibling temp file, fsynced and swapped into
    place with os.replace, so readers see either the old or the new ledger.
    """
    p = Path(path)
    text = dumps_lock(lock)
    p.parent.mkdir(parents=True, exist_ok=True)
    tmp = p.with_name(p.name + ".tmp")
    try:
        with tmp.open("w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, p)
    finally:
        if tmp.exists():
            tmp.unlink()
    logger.debug("saved lockfile %s (%d entries)", p, len(lock))
