"""Incremental source cache for watch mode.

Keeps the parsed asset and source digest per file, so a burst of change
events re-parses only the files whose bytes actually changed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import Callable, Iterable

from ..assets import PromptAsset, classify, iter_asset_paths, parse_asset_file
from ..hashing import sha256_bytes


logger = logging.getLogger(__name__)

ParseFn = Callable[[Path, Path], "PromptAsset | None"]


@dataclass(frozen=True)
class CacheUpdate:
    reparsed: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()
    unchanged: tuple[str, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.reparsed or self.removed)


@dataclass
class _Entry:
    digest: str
    asset: PromptAsset


@dataclass
class IncrementalCache:
    source_dir: Path
    parse: ParseFn = parse_asset_file
    _entries: dict[str, _Entry] = field(default_factory=dict, repr=False)

    def _key(self, path: Path) -> str | None:
        try:
            return path.relative_to(self.source_dir).as_posix()
        except ValueError:
            return None

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, rel_path: object) -> bool:
        return rel_path in self._entries

    def prime(self) -> list[PromptAsset]:
        """Parse the whole source tree. Parse errors propagate."""

        self._entries.clear()
        for p in iter_asset_paths(self.source_dir):
            self._load(p)
        logger.debug("watch cache primed with %d asset(s)", len(self._entries))
        return self.assets()

    def _load(self, path: Path) -> bool:
        key = self._key(path)
        if key is None:
            return False
        data = path.read_bytes()
        asset = self.parse(self.source_dir, path)
        if asset is None:
            self._entries.pop(key, None)
            return False
        self._entries[key] = _Entry(digest=sha256_bytes(data), asset=asset)
        return True

    def _expand(self, paths: Iterable[Path]) -> set[Path]:
        # A moved directory is reported as the directory path only.
        out: set[Path] = set()
        for path in paths:
            key = self._key(path)
            if key is None:
                continue
            out.add(path)
            prefix = "" if key == "." else key + "/"
            out.update(self.source_dir / k for k in self._entries if k.startswith(prefix))
            if path.is_dir():
                out.update(p for p in path.rglob("*") if p.is_file() and classify(self.source_dir, p) is not None)
        return out

    def apply(self, paths: Iterable[Path]) -> CacheUpdate:
        """Bring the cache up to date for a set of changed paths.

        A path that no longer exists (or is no longer an asset) is dropped;
        one whose bytes hash to the cached digest is left alone. A directory
        path covers the cached entries under it and the asset files it holds.
        """
        reparsed: list[str] = []
        removed: list[str] = []
        unchanged: list[str] = []

        for path in sorted(self._expand(paths)):
            key = self._key(path)
            if key is None or classify(self.source_dir, path) is None:
                continue

            if not path.is_file():
                if self._entries.pop(key, None) is not None:
                    removed.append(key)
                continue

            try:
                data = path.read_bytes()
            except FileNotFoundError:
                if self._entries.pop(key, None) is not None:
                    removed.append(key)
                continue

            cached = self._entries.get(key)
            if cached is not None and cached.digest == sha256_bytes(data):
                unchanged.append(key)
                continue

            asset = self.parse(self.source_dir, path)
            if asset is None:
                if self._entries.pop(key, None) is not None:
                    removed.append(key)
                continue
            self._entries[key] = _Entry(digest=sha256_bytes(data), asset=asset)
            reparsed.append(key)

        update = CacheUpdate(reparsed=tuple(reparsed), removed=tuple(removed), unchanged=tuple(unchanged))
        logger.debug("watch cache update: %s", update)
        return update

    def assets(self) -> list[PromptAsset]:
        return [self._entries[k].asset for k in sorted(self._entries)]
