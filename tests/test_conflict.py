from __future__ import annotations

import pytest

from calvin.conflict import Choice, InteractiveResolver, PolicyResolver, resolve_plan
from calvin.errors import ConflictUnresolvedError, SyncAbortedError
from calvin.events import RecordingEventSink
from calvin.lock import Lockfile
from calvin.models import DesiredOutput, Scope
from calvin.plan import Action, ConflictReason, plan_sync
from calvin.state import TargetFileState


def _conflicting_plan():
    """a.md: hand-edited; b.md: deleted externally; c.md: create; d.md: orphan edited."""

    a = DesiredOutput.from_text("a.md", "new a")
    b = DesiredOutput.from_text("b.md", "b")
    c = DesiredOutput.from_text("c.md", "c")
    lock = Lockfile()
    lock.record(a.key, DesiredOutput.from_text("a.md", "old a").content_digest)
    lock.record(b.key, b.content_digest)
    lock.record("project:d.md", DesiredOutput.from_text("d.md", "d").content_digest)
    states = {
        a.key: TargetFileState.of_content(b"edited a"),
        b.key: TargetFileState.missing(),
        "project:d.md": TargetFileState.of_content(b"edited d"),
    }
    return plan_sync([a, b, c], lock, states, scopes=[Scope.PROJECT])


def _actions(plan) -> dict[str, Action]:
    return {f.destination_path: f.action for f in plan}


class TestPolicyResolver:
    def test_fail_fast_lists_every_conflict_before_writing(self):
        plan = _conflicting_plan()
        with pytest.raises(ConflictUnresolvedError) as ei:
            resolve_plan(plan, PolicyResolver("fail-fast"))
        assert ei.value.paths == ("a.md", "b.md", "d.md")

    def test_force_overwrite_maps_to_update_create_delete(self):
        resolved = resolve_plan(_conflicting_plan(), PolicyResolver("force-overwrite"))
        assert _actions(resolved) == {
            "a.md": Action.UPDATE,
            "b.md": Action.CREATE,
            "c.md": Action.CREATE,
            "d.md": Action.DELETE,
        }
        assert not resolved.has_conflicts
        by_path = {f.destination_path: f for f in resolved}
        assert by_path["a.md"].resolved_from is ConflictReason.EXTERNALLY_MODIFIED

    def test_skip_all_maps_to_skip(self):
        resolved = resolve_plan(_conflicting_plan(), PolicyResolver("skip-all"))
        assert _actions(resolved) == {
            "a.md": Action.SKIP,
            "b.md": Action.SKIP,
            "c.md": Action.CREATE,
            "d.md": Action.SKIP,
        }

    def test_type_mismatch_is_never_auto_resolved(self):
        out = DesiredOutput.from_text("a.md", "x")
        plan = plan_sync([out], Lockfile(), {out.key: TargetFileState(exists=True, is_file=False)})
        for disposition in ("force-overwrite", "skip-all", "fail-fast"):
            with pytest.raises(ConflictUnresolvedError):
                resolve_plan(plan, PolicyResolver(disposition))

    def test_unknown_policy_is_rejected(self):
        with pytest.raises(ValueError):
            PolicyResolver("yolo")

    def test_conflict_events_are_emitted(self):
        sink = RecordingEventSink()
        resolve_plan(_conflicting_plan(), PolicyResolver("skip-all"), sink=sink)
        assert [(e.event, e.path) for e in sink.events] == [
            ("conflict", "a.md"),
            ("conflict", "b.md"),
            ("conflict", "d.md"),
        ]
        assert sink.events[1].reason == "deleted_externally"


class TestInteractiveResolver:
    def test_answers_per_conflict(self):
        answers = iter(["o", "s", "o"])
        resolved = resolve_plan(_conflicting_plan(), InteractiveResolver(lambda entry: next(answers)))
        assert _actions(resolved) == {
            "a.md": Action.UPDATE,
            "b.md": Action.SKIP,
            "c.md": Action.CREATE,
            "d.md": Action.DELETE,
        }

    def test_apply_to_all(self):
        asked: list[str] = []

        def prompt(entry):
            asked.append(entry.destination_path)
            return "S"

        resolved = resolve_plan(_conflicting_plan(), InteractiveResolver(prompt))
        assert asked == ["a.md"]
        assert _actions(resolved)["d.md"] is Action.SKIP

    def test_abort_raises(self):
        with pytest.raises(SyncAbortedError) as ei:
            resolve_plan(_conflicting_plan(), InteractiveResolver(lambda entry: "a"))
        assert ei.value.paths == ("a.md",)

    def test_diff_then_reprompt(self):
        answers = iter(["d", "?", "o"])
        shown: list[str] = []
        resolver = InteractiveResolver(lambda entry: next(answers), show_diff=lambda e: shown.append(e.destination_path))
        plan = _conflicting_plan()
        assert resolver.resolve(plan.conflicts[0]) is Choice.OVERWRITE
        assert shown == ["a.md"]

    def test_type_mismatch_cannot_be_overwritten(self):
        out = DesiredOutput.from_text("a.md", "x")
        plan = plan_sync([out], Lockfile(), {out.key: TargetFileState(exists=True, is_file=False)})
        answers = iter(["o", "O", "s"])
        resolved = resolve_plan(plan, InteractiveResolver(lambda entry: next(answers)))
        assert _actions(resolved) == {"a.md": Action.SKIP}
