"""Target adapters: render source assets into desired outputs.

Every rendered file carries the provenance marker in its header (after any
frontmatter), so the bytes Calvin digests are exactly the bytes it writes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping

import yaml

from .assets import AssetKind, PromptAsset
from .errors import DuplicateDestinationError
from .models import DEFAULT_TARGETS, DesiredOutput, Scope


MARKER_TEMPLATE = "<!-- Generated by Calvin. Source: {source}. DO NOT EDIT. -->"

_KIND_SUBDIR = {
    AssetKind.POLICY: "rules",
    AssetKind.ACTION: "commands",
    AssetKind.AGENT: "agents",
    AssetKind.SKILL: "skills",
}


@dataclass(frozen=True)
class TargetAdapter:
    name: str
    base_dir: str

    def root(self, scope: Scope) -> str:
        return f"~/{self.base_dir}" if scope is Scope.USER else self.base_dir

    def destination(self, asset: PromptAsset, scope: Scope) -> str:
        sub = f"{self.root(scope)}/{_KIND_SUBDIR[asset.kind]}"
        if asset.kind is AssetKind.SKILL:
            return f"{sub}/{asset.id}/SKILL.md"
        return f"{sub}/{asset.id}.md"

    def managed_dirs(self, scope: Scope) -> list[str]:
        return [f"{self.root(scope)}/{sub}" for sub in sorted(_KIND_SUBDIR.values())]

    def render(self, asset: PromptAsset, scope: Scope) -> DesiredOutput:
        return DesiredOutput.from_text(
            self.destination(asset, scope),
            render_text(asset),
            scope=scope,
            source=asset.source_path,
        )


ADAPTERS: dict[str, TargetAdapter] = {
    "claude": TargetAdapter("claude", ".claude"),
    "agents": TargetAdapter("agents", ".agents"),
    "factory": TargetAdapter("factory", ".factory"),
}


def marker_line(source_path: str) -> str:
    return MARKER_TEMPLATE.format(source=source_path)


def _frontmatter(asset: PromptAsset) -> dict[str, str]:
    if asset.kind in (AssetKind.AGENT, AssetKind.SKILL):
        return {"name": asset.id, "description": asset.description}
    if asset.description:
        return {"description": asset.description}
    return {}


def render_text(asset: PromptAsset) -> str:
    parts: list[str] = []
    fm = _frontmatter(asset)
    if fm:
        dumped = yaml.safe_dump(fm, sort_keys=False, allow_unicode=True, default_flow_style=False)
        parts.append(f"---\n{dumped}---\n")
    parts.append(marker_line(asset.source_path) + "\n")
    if asset.body:
        parts.append("\n" + asset.body + "\n")
    return "".join(parts)


def effective_scope(asset: PromptAsset, run_scope: Scope) -> Scope:
    """User-level runs deploy everything to home; project runs honour `scope: user`."""

    if run_scope is Scope.USER:
        return Scope.USER
    return asset.scope or Scope.PROJECT


def render_outputs(
    assets: Iterable[PromptAsset],
    *,
    targets: Iterable[str] = DEFAULT_TARGETS,
    run_scope: Scope = Scope.PROJECT,
) -> list[DesiredOutput]:
    """Render every asset for every enabled target.

    Raises:
        DuplicateDestinationError: two assets render to the same path.
        KeyError: an unknown target name.
    """
    enabled = [ADAPTERS[t] for t in targets]
    outputs: dict[str, DesiredOutput] = {}
    for asset in assets:
        scope = effective_scope(asset, run_scope)
        for adapter in enabled:
            if asset.targets is not None and adapter.name not in asset.targets:
                continue
            out = adapter.render(asset, scope)
            if out.key in outputs:
                raise DuplicateDestinationError(key=out.key)
            outputs[out.key] = out
    return [outputs[k] for k in sorted(outputs)]


def managed_dirs(targets: Iterable[str], scope: Scope) -> Mapping[Scope, list[str]]:
    """Directories scanned for marker-carrying orphans in a run of `scope`."""

    dirs: list[str] = []
    for t in targets:
        dirs.extend(ADAPTERS[t].managed_dirs(scope))
    return {scope: sorted(dirs)}
