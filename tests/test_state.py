from __future__ import annotations

from pathlib import Path

from calvin.hashing import sha256_bytes
from calvin.state import TargetFileState, read_target_state, read_target_states


def test_read_states_for_mixed_paths(tmp_path: Path) -> None:
    home = tmp_path / "home"
    (tmp_path / "file.md").write_bytes(b"content")
    (tmp_path / "dir.md").mkdir()
    (home / ".claude").mkdir(parents=True)
    (home / ".claude" / "u.md").write_bytes(b"<!-- Generated by Calvin. Source: x. DO NOT EDIT. -->\n")

    states = read_target_states(
        ["project:file.md", "project:dir.md", "project:gone.md", "home:~/.claude/u.md", "bogus"],
        project_root=tmp_path,
        home=home,
    )
    assert sorted(states) == ["home:~/.claude/u.md", "project:dir.md", "project:file.md", "project:gone.md"]
    assert states["project:file.md"] == TargetFileState(exists=True, digest=sha256_bytes(b"content"))
    assert states["project:dir.md"].type_mismatch
    assert not states["project:gone.md"].exists
    assert states["home:~/.claude/u.md"].carries_marker


def test_missing_state_is_not_a_type_mismatch(tmp_path: Path) -> None:
    state = read_target_state(tmp_path / "nope")
    assert not state.exists
    assert not state.type_mismatch
