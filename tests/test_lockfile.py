"""Tests for calvin.lock (provenance ledger) I/O."""

from __future__ import annotations

from pathlib import Path

import pytest

from calvin.errors import LockfileCorruptedError, LockfileError, LockfileVersionMismatchError
from calvin.lock import Lockfile, load_lock, loads_lock, save_lock
from calvin.models import Scope

HASH_A = "sha256:" + "a" * 64
HASH_B = "sha256:" + "b" * 64


def _sample_lock() -> Lockfile:
    lock = Lockfile()
    lock.record("project:.claude/commands/review.md", HASH_A, source="actions/review.md")
    lock.record("home:~/.claude/rules/style.md", HASH_B)
    return lock


class TestLockfile:
    def test_missing_file_is_empty_ledger(self, tmp_path: Path):
        lock = load_lock(tmp_path / "calvin.lock")
        assert len(lock) == 0
        assert lock.version == 1

    def test_roundtrip_write_then_read_preserves_entries(self, tmp_path: Path):
        lock = _sample_lock()
        p = tmp_path / "calvin.lock"
        save_lock(p, lock)
        assert load_lock(p) == lock

    def test_toml_output_is_stable_exact_fixture(self, tmp_path: Path):
        p = tmp_path / "calvin.lock"
        save_lock(p, _sample_lock())

        expected = (
            "version = 1\n"
            "\n"
            "[files.\"home:~/.claude/rules/style.md\"]\n"
            f"hash = \"{HASH_B}\"\n"
            "\n"
            "[files.\"project:.claude/commands/review.md\"]\n"
            f"hash = \"{HASH_A}\"\n"
            "source = \"actions/review.md\"\n"
        )
        assert p.read_text(encoding="utf-8") == expected

    def test_save_does_not_leave_temp_file(self, tmp_path: Path):
        p = tmp_path / "nested" / "calvin.lock"
        save_lock(p, _sample_lock())
        assert p.exists()
        assert not (tmp_path / "nested" / "calvin.lock.tmp").exists()

    def test_keys_for_scope(self):
        lock = _sample_lock()
        assert lock.keys_for_scope(Scope.PROJECT) == ["project:.claude/commands/review.md"]
        assert lock.keys_for_scope(Scope.USER) == ["home:~/.claude/rules/style.md"]

    def test_record_and_remove(self):
        lock = Lockfile()
        lock.record("project:a.md", HASH_A)
        assert lock.get("project:a.md") == HASH_A
        assert "project:a.md" in lock
        lock.remove("project:a.md")
        assert lock.get("project:a.md") is None
        assert lock.remove("project:a.md") is None

    def test_copy_is_independent(self):
        lock = _sample_lock()
        other = lock.copy()
        other.record("project:new.md", HASH_A)
        assert "project:new.md" not in lock

    def test_bare_hex_digests_are_normalized(self, tmp_path: Path):
        text = 'version = 1\n\n[files."project:a.md"]\nhash = "' + "c" * 64 + '"\n'
        lock = loads_lock(text, path=tmp_path / "calvin.lock")
        assert lock.get("project:a.md") == "sha256:" + "c" * 64


class TestLockfileErrors:
    def test_version_mismatch_is_hard_failure(self, tmp_path: Path):
        p = tmp_path / "calvin.lock"
        p.write_text('version = 2\n\n[files."project:a.md"]\nhash = "sha256:00"\n', encoding="utf-8")
        with pytest.raises(LockfileVersionMismatchError) as ei:
            load_lock(p)
        err = ei.value
        assert err.found == 2
        assert err.expected == 1
        msg = str(err)
        assert "lockfile format incompatible" in msg
        assert "calvin migrate" in msg
        assert str(p) in msg

    def test_invalid_toml_is_corrupted_not_empty(self, tmp_path: Path):
        p = tmp_path / "calvin.lock"
        p.write_text("version = \n[[[", encoding="utf-8")
        with pytest.raises(LockfileCorruptedError):
            load_lock(p)

    def test_missing_version_is_corrupted(self, tmp_path: Path):
        p = tmp_path / "calvin.lock"
        p.write_text('[files."project:a.md"]\nhash = "sha256:00"\n', encoding="utf-8")
        with pytest.raises(LockfileError):
            load_lock(p)

    def test_unknown_key_prefix_is_corrupted(self, tmp_path: Path):
        p = tmp_path / "calvin.lock"
        p.write_text('version = 1\n\n[files."elsewhere:a.md"]\nhash = "sha256:00"\n', encoding="utf-8")
        with pytest.raises(LockfileCorruptedError, match="invalid key"):
            load_lock(p)

    def test_missing_hash_is_corrupted(self, tmp_path: Path):
        p = tmp_path / "calvin.lock"
        p.write_text('version = 1\n\n[files."project:a.md"]\nsource = "x"\n', encoding="utf-8")
        with pytest.raises(LockfileCorruptedError, match="hash"):
            load_lock(p)

    def test_crash_before_swap_leaves_previous_ledger_loadable(self, tmp_path: Path, monkeypatch):
        p = tmp_path / "calvin.lock"
        original = _sample_lock()
        save_lock(p, original)

        def boom(src, dst):
            raise OSError("simulated crash")

        monkeypatch.setattr("calvin.lock.os.replace", boom)

        updated = original.copy()
        updated.record("project:other.md", HASH_B)
        with pytest.raises(OSError):
            save_lock(p, updated)

        assert load_lock(p) == original
        assert not (tmp_path / "calvin.lock.tmp").exists()
