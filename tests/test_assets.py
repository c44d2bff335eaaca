from __future__ import annotations

from pathlib import Path

import pytest

from calvin.adapters import managed_dirs, marker_line, render_outputs, render_text
from calvin.assets import AssetKind, PromptAsset, parse_asset_file, scan_assets, split_frontmatter
from calvin.errors import AssetParseError, DuplicateDestinationError
from calvin.models import Scope
from calvin.state import has_signature


def _source(tmp_path: Path) -> Path:
    src = tmp_path / ".promptpack"
    for d in ("policies", "actions", "agents", "skills/lint"):
        (src / d).mkdir(parents=True)
    (src / "policies" / "style.md").write_text("---\ndescription: Style\n---\nBe terse.\n", encoding="utf-8")
    (src / "actions" / "review.md").write_text("Review it.\n", encoding="utf-8")
    (src / "agents" / "helper.md").write_text(
        "---\ndescription: Helps\ntargets: [claude]\n---\nYou help.\n", encoding="utf-8"
    )
    (src / "skills" / "lint" / "SKILL.md").write_text("---\ndescription: Lints\n---\nRun ruff.\n", encoding="utf-8")
    (src / "skills" / "lint" / "notes.txt").write_text("not an asset\n", encoding="utf-8")
    (src / "config.toml").write_text("version = 1\n", encoding="utf-8")
    return src


class TestAssets:
    def test_scan_finds_every_kind(self, tmp_path: Path):
        assets = scan_assets(_source(tmp_path))
        assert [(a.kind, a.id, a.source_path) for a in assets] == [
            (AssetKind.ACTION, "review", "actions/review.md"),
            (AssetKind.AGENT, "helper", "agents/helper.md"),
            (AssetKind.POLICY, "style", "policies/style.md"),
            (AssetKind.SKILL, "lint", "skills/lint/SKILL.md"),
        ]
        helper = assets[1]
        assert helper.description == "Helps"
        assert helper.targets == ("claude",)
        assert helper.body == "You help."

    def test_non_asset_paths_parse_to_none(self, tmp_path: Path):
        src = _source(tmp_path)
        assert parse_asset_file(src, src / "config.toml") is None
        assert parse_asset_file(src, src / "skills" / "lint" / "notes.txt") is None

    def test_unclosed_frontmatter(self, tmp_path: Path):
        with pytest.raises(AssetParseError, match="not closed"):
            split_frontmatter("---\ndescription: x\nbody\n", path=tmp_path / "x.md")

    def test_frontmatter_must_be_a_mapping(self, tmp_path: Path):
        with pytest.raises(AssetParseError, match="mapping"):
            split_frontmatter("---\n- a\n- b\n---\nbody\n", path=tmp_path / "x.md")

    @pytest.mark.parametrize(
        "fm, fragment",
        [
            ("scope: galaxy", "scope"),
            ("targets: [vim]", "unknown targets"),
            ("targets: claude", "list of strings"),
            ("colour: red", "unknown frontmatter keys"),
            ("description: [1, 2]", "description"),
        ],
    )
    def test_bad_frontmatter_fields(self, tmp_path: Path, fm: str, fragment: str):
        src = tmp_path / ".promptpack"
        (src / "actions").mkdir(parents=True)
        p = src / "actions" / "x.md"
        p.write_text(f"---\n{fm}\n---\nbody\n", encoding="utf-8")
        with pytest.raises(AssetParseError) as ei:
            parse_asset_file(src, p)
        assert fragment in str(ei.value)


class TestAdapters:
    def test_render_layout_per_target(self, tmp_path: Path):
        outputs = render_outputs(scan_assets(_source(tmp_path)))
        paths = [o.destination_path for o in outputs]
        assert ".claude/commands/review.md" in paths
        assert ".agents/rules/style.md" in paths
        assert ".factory/skills/lint/SKILL.md" in paths
        assert ".claude/agents/helper.md" in paths
        # helper is restricted to the claude target.
        assert ".agents/agents/helper.md" not in paths
        assert len(outputs) == 10

    def test_rendered_files_carry_marker_in_header(self, tmp_path: Path):
        for out in render_outputs(scan_assets(_source(tmp_path))):
            assert has_signature(out.content_bytes[:4096])

    def test_skill_frontmatter_has_name(self):
        asset = PromptAsset(id="lint", kind=AssetKind.SKILL, source_path="skills/lint/SKILL.md", description="Lints", body="Run ruff.")
        assert render_text(asset) == (
            "---\n"
            "name: lint\n"
            "description: Lints\n"
            "---\n"
            f"{marker_line('skills/lint/SKILL.md')}\n"
            "\n"
            "Run ruff.\n"
        )

    def test_user_run_renders_home_paths(self, tmp_path: Path):
        outputs = render_outputs(scan_assets(_source(tmp_path)), targets=["claude"], run_scope=Scope.USER)
        assert all(o.destination_path.startswith("~/.claude/") for o in outputs)
        assert all(o.scope is Scope.USER for o in outputs)

    def test_colliding_assets_are_rejected(self):
        a = PromptAsset(id="x", kind=AssetKind.ACTION, source_path="actions/x.md")
        b = PromptAsset(id="x", kind=AssetKind.ACTION, source_path="actions/x.md")
        with pytest.raises(DuplicateDestinationError):
            render_outputs([a, b], targets=["claude"])

    def test_managed_dirs(self):
        dirs = managed_dirs(["claude"], Scope.PROJECT)
        assert dirs == {
            Scope.PROJECT: [".claude/agents", ".claude/commands", ".claude/rules", ".claude/skills"]
        }
