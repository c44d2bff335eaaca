from __future__ import annotations

from pathlib import Path

import pytest

from calvin.conflict import PolicyResolver, resolve_plan
from calvin.events import RecordingEventSink
from calvin.execute import execute_plan
from calvin.lock import Lockfile
from calvin.models import DesiredOutput, Scope
from calvin.plan import plan_sync
from calvin.state import read_target_states, scan_marked_files


def _plan(tmp_path: Path, outputs, lock, *, scopes=(Scope.PROJECT,)):
    keys = {o.key for o in outputs} | set(lock.keys_for_scope(Scope.PROJECT)) | set(lock.keys_for_scope(Scope.USER))
    states = read_target_states(keys, project_root=tmp_path, home=tmp_path / "home")
    return plan_sync(outputs, lock, states, scopes=scopes)


def test_create_writes_exact_bytes_and_records_digest(tmp_path: Path) -> None:
    out = DesiredOutput.from_text(".claude/rules/a.md", "hello\n", source="policies/a.md")
    plan = _plan(tmp_path, [out], Lockfile())
    result, lock = execute_plan(plan, Lockfile(), project_root=tmp_path, home_dir=tmp_path / "home")

    target = tmp_path / ".claude" / "rules" / "a.md"
    assert target.read_bytes() == b"hello\n"
    assert result.written == [".claude/rules/a.md"]
    assert result.ok
    assert lock.get(out.key) == out.content_digest
    assert lock.entry(out.key).source == "policies/a.md"
    assert not (target.parent / ".a.md.tmp").exists()


def test_user_scope_writes_under_home(tmp_path: Path) -> None:
    out = DesiredOutput.from_text("~/.claude/rules/a.md", "u", scope=Scope.USER)
    plan = _plan(tmp_path, [out], Lockfile(), scopes=(Scope.USER,))
    result, lock = execute_plan(plan, Lockfile(), project_root=tmp_path, home_dir=tmp_path / "home")
    assert (tmp_path / "home" / ".claude" / "rules" / "a.md").read_text(encoding="utf-8") == "u"
    assert lock.get("home:~/.claude/rules/a.md") == out.content_digest


def test_delete_removes_file_and_ledger_entry(tmp_path: Path) -> None:
    out = DesiredOutput.from_text("b.md", "b")
    (tmp_path / "b.md").write_text("b", encoding="utf-8")
    lock = Lockfile()
    lock.record(out.key, out.content_digest)

    plan = _plan(tmp_path, [], lock)
    result, new_lock = execute_plan(plan, lock, project_root=tmp_path, home_dir=tmp_path)
    assert result.deleted == ["b.md"]
    assert not (tmp_path / "b.md").exists()
    assert out.key not in new_lock
    # The input ledger value is untouched.
    assert out.key in lock


def test_up_to_date_skip_adopts_digest(tmp_path: Path) -> None:
    out = DesiredOutput.from_text("a.md", "same")
    (tmp_path / "a.md").write_text("same", encoding="utf-8")
    plan = _plan(tmp_path, [out], Lockfile())
    result, lock = execute_plan(plan, Lockfile(), project_root=tmp_path, home_dir=tmp_path)
    assert result.skipped == ["a.md"]
    assert lock.get(out.key) == out.content_digest


def test_skip_chosen_for_conflict_keeps_ledger_entry(tmp_path: Path) -> None:
    old = DesiredOutput.from_text("a.md", "old")
    new = DesiredOutput.from_text("a.md", "new")
    (tmp_path / "a.md").write_text("hand edited", encoding="utf-8")
    lock = Lockfile()
    lock.record(old.key, old.content_digest)

    plan = resolve_plan(_plan(tmp_path, [new], lock), PolicyResolver("skip-all"))
    result, new_lock = execute_plan(plan, lock, project_root=tmp_path, home_dir=tmp_path)
    assert result.skipped == ["a.md"]
    assert new_lock.get(old.key) == old.content_digest
    assert (tmp_path / "a.md").read_text(encoding="utf-8") == "hand edited"


def test_per_file_failure_does_not_stop_the_run(tmp_path: Path) -> None:
    # A regular file where a parent directory is needed makes the write fail.
    (tmp_path / "blocked").write_text("not a dir", encoding="utf-8")
    bad = DesiredOutput.from_text("blocked/a.md", "x")
    good = DesiredOutput.from_text("ok/b.md", "y")
    sink = RecordingEventSink()

    plan = _plan(tmp_path, [bad, good], Lockfile())
    result, lock = execute_plan(plan, Lockfile(), project_root=tmp_path, home_dir=tmp_path, sink=sink)

    assert not result.ok
    assert [e.path for e in result.errors] == ["blocked/a.md"]
    assert result.written == ["ok/b.md"]
    assert bad.key not in lock
    assert lock.get(good.key) == good.content_digest
    assert "error" in sink.kinds()
    assert result.counts == {"written": 1, "skipped": 0, "deleted": 0, "errors": 1}


def test_unresolved_plan_is_refused(tmp_path: Path) -> None:
    out = DesiredOutput.from_text("a.md", "ours")
    (tmp_path / "a.md").write_text("theirs", encoding="utf-8")
    plan = _plan(tmp_path, [out], Lockfile())
    with pytest.raises(ValueError):
        execute_plan(plan, Lockfile(), project_root=tmp_path, home_dir=tmp_path)


def test_interrupted_write_leaves_no_marked_sibling(tmp_path: Path, monkeypatch) -> None:
    out = DesiredOutput.from_text(".claude/commands/a.md", "<!-- Generated by Calvin. Source: actions/a.md. DO NOT EDIT. -->\nA\n")
    plan = _plan(tmp_path, [out], Lockfile())
    staged: list[Path] = []

    def crash(src, dst):
        staged.append(Path(src))
        raise OSError("disk full")

    monkeypatch.setattr("calvin.execute.os.replace", crash)
    result, lock = execute_plan(plan, Lockfile(), project_root=tmp_path, home_dir=tmp_path)

    assert [e.path for e in result.errors] == [".claude/commands/a.md"]
    assert out.key not in lock
    assert [p.name for p in staged] == [".a.md.tmp"]
    assert not staged[0].exists()

    # A temp file left behind by a hard crash is a dotfile, which the marker scan ignores.
    staged[0].write_bytes(out.content_bytes)
    marked = scan_marked_files({Scope.PROJECT: [".claude/commands"]}, project_root=tmp_path, home=tmp_path)
    assert marked == {}
