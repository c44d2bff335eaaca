from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .lock import Lockfile
from .models import parse_key


@dataclass(frozen=True)
class ProvenanceEntry:
    key: str
    scope: str
    path: str
    digest: str
    source: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "scope": self.scope,
            "path": self.path,
            "hash": self.digest,
            "source": self.source,
        }


def provenance_entries(lock: Lockfile, *, filter: str | None = None) -> list[ProvenanceEntry]:
    """Ledger entries, sorted by key; `filter` is a substring of path or source."""

    out: list[ProvenanceEntry] = []
    for key, entry in lock.items():
        parsed = parse_key(key)
        if parsed is None:
            continue
        scope, path = parsed
        if filter and filter not in path and filter not in (entry.source or ""):
            continue
        out.append(ProvenanceEntry(key=key, scope=scope.value, path=path, digest=entry.digest, source=entry.source))
    return out


def format_provenance(entries: list[ProvenanceEntry]) -> str:
    if not entries:
        return "No tracked files."
    lines = []
    for e in entries:
        src = e.source or "-"
        lines.append(f"{e.path}  <-  {src}  ({e.scope}, {e.digest[:19]})")
    return "\n".join(lines)
