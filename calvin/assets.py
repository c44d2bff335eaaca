from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from .errors import AssetParseError
from .models import DEFAULT_TARGETS, Scope


class AssetKind(str, Enum):
    POLICY = "policy"
    ACTION = "action"
    AGENT = "agent"
    SKILL = "skill"


# Flat asset directories under `.promptpack/`; skills are `skills/<id>/SKILL.md`.
KIND_DIRS = {
    "policies": AssetKind.POLICY,
    "actions": AssetKind.ACTION,
    "agents": AssetKind.AGENT,
}
SKILLS_DIR = "skills"
SKILL_FILE = "SKILL.md"

_FRONTMATTER_KEYS = {"description", "scope", "targets"}


@dataclass(frozen=True)
class PromptAsset:
    id: str
    kind: AssetKind
    source_path: str  # relative to the source dir, posix separators
    description: str = ""
    body: str = ""
    scope: Scope | None = None
    targets: tuple[str, ...] | None = None


def classify(source_dir: Path, path: Path) -> tuple[AssetKind, str] | None:
    """Return (kind, id) when `path` is an asset file inside `source_dir`."""

    try:
        rel = path.relative_to(source_dir)
    except ValueError:
        return None
    parts = rel.parts
    if any(p.startswith(".") for p in parts):
        return None
    if len(parts) == 2 and parts[0] in KIND_DIRS and parts[1].endswith(".md"):
        return KIND_DIRS[parts[0]], parts[1][: -len(".md")]
    if len(parts) == 3 and parts[0] == SKILLS_DIR and parts[2] == SKILL_FILE:
        return AssetKind.SKILL, parts[1]
    return None


def split_frontmatter(text: str, *, path: Path) -> tuple[dict[str, Any], str]:
    """Split a Markdown file into (frontmatter, body).

    Frontmatter is optional; when the first line is `---` it must be closed by
    another `---` line and hold a YAML mapping.
    """
    lines = text.splitlines()
    if not lines or lines[0].strip() != "---":
        return {}, text

    for i in range(1, len(lines)):
        if lines[i].strip() == "---":
            break
    else:
        raise AssetParseError(path=path, message="frontmatter is not closed (missing '---')")

    fm_text = "\n".join(lines[1:i])
    body = "\n".join(lines[i + 1 :])
    try:
        data = yaml.safe_load(fm_text)
    except yaml.YAMLError as e:
        raise AssetParseError(path=path, message=f"invalid YAML frontmatter: {e}") from e
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise AssetParseError(path=path, message="frontmatter must be a mapping")
    return data, body


def _frontmatter_fields(fm: dict[str, Any], *, path: Path) -> tuple[str, Scope | None, tuple[str, ...] | None]:
    unknown = sorted(str(k) for k in fm if k not in _FRONTMATTER_KEYS)
    if unknown:
        raise AssetParseError(path=path, message=f"unknown frontmatter keys: {unknown}")

    description = fm.get("description", "")
    if description is None:
        description = ""
    if not isinstance(description, str):
        raise AssetParseError(path=path, message="description must be a string")

    scope: Scope | None = None
    raw_scope = fm.get("scope")
    if raw_scope is not None:
        try:
            scope = Scope(raw_scope)
        except ValueError:
            raise AssetParseError(path=path, message=f"scope must be 'project' or 'user', got {raw_scope!r}") from None

    targets: tuple[str, ...] | None = None
    raw_targets = fm.get("targets")
    if raw_targets is not None:
        if not isinstance(raw_targets, list) or not all(isinstance(t, str) for t in raw_targets):
            raise AssetParseError(path=path, message="targets must be a list of strings")
        bad = sorted(set(raw_targets) - set(DEFAULT_TARGETS))
        if bad:
            raise AssetParseError(path=path, message=f"unknown targets {bad}; expected a subset of {list(DEFAULT_TARGETS)}")
        targets = tuple(raw_targets)

    return description.strip(), scope, targets


def parse_asset_file(source_dir: Path, path: Path) -> PromptAsset | None:
    """Parse one source file. Returns None for paths that are not assets."""

    kind_id = classify(source_dir, path)
    if kind_id is None:
        return None
    kind, asset_id = kind_id

    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise AssetParseError(path=path, message=f"not valid UTF-8: {e}") from e
    except OSError as e:
        raise AssetParseError(path=path, message=f"unable to read: {e}") from e

    fm, body = split_frontmatter(text, path=path)
    description, scope, targets = _frontmatter_fields(fm, path=path)

    return PromptAsset(
        id=asset_id,
        kind=kind,
        source_path=path.relative_to(source_dir).as_posix(),
        description=description,
        body=body.strip(),
        scope=scope,
        targets=targets,
    )


def iter_asset_paths(source_dir: Path) -> list[Path]:
    paths: list[Path] = []
    for dirname in sorted(KIND_DIRS):
        d = source_dir / dirname
        if not d.is_dir():
            continue
        for p in sorted(d.iterdir()):
            if p.is_file() and classify(source_dir, p) is not None:
                paths.append(p)

    skills = source_dir / SKILLS_DIR
    if skills.is_dir():
        for d in sorted(skills.iterdir()):
            skill_md = d / SKILL_FILE
            if d.is_dir() and skill_md.is_file() and classify(source_dir, skill_md) is not None:
                paths.append(skill_md)
    return paths


def scan_assets(source_dir: Path) -> list[PromptAsset]:
    assets: list[PromptAsset] = []
    for p in iter_asset_paths(source_dir):
        asset = parse_asset_file(source_dir, p)
        if asset is not None:
            assets.append(asset)
    return assets
