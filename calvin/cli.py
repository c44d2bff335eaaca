from __future__ import annotations

import argparse
import json
import logging
import os
from pathlib import Path
import sys

from .errors import (
    AssetParseError,
    ConfigError,
    ConflictUnresolvedError,
    LedgerWriteError,
    LockfileError,
    PlanningError,
    WatchError,
)
from .events import ConsoleEventSink, EventSink, JsonEventSink
from .paths import SOURCE_DIR_NAME, home_dir, resolve_destination
from .plan import PlannedFile, SyncPlan


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(level=level, format=fmt, stream=sys.stderr, force=True)
    # watchfiles logs every batch of changes at INFO.
    logging.getLogger("watchfiles").setLevel(logging.WARNING)


def _resolve_root(explicit: Path | None) -> Path:
    """Project root: --root, then CALVIN_ROOT, then the current directory."""

    if explicit is not None:
        return Path(explicit).expanduser().resolve()
    env_root = os.environ.get("CALVIN_ROOT")
    if env_root:
        return Path(env_root).expanduser().resolve()
    return Path.cwd().resolve()


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="calvin")
    p.add_argument("--root", type=Path, default=None, help="Project root (default: CALVIN_ROOT or cwd)")
    p.add_argument("--source", type=Path, default=None, help=f"Source directory (default: <root>/{SOURCE_DIR_NAME})")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging and per-file skip lines")

    sub = p.add_subparsers(dest="cmd", required=True)

    dep = sub.add_parser("deploy", help="Deploy assets to their targets")
    dep.add_argument("--dry-run", action="store_true", help="Plan and resolve, write nothing")
    dep.add_argument("--home", action="store_true", help="Deploy to the home directory (user scope)")
    dep.add_argument("--json", dest="json_output", action="store_true", help="Emit NDJSON events")
    mode = dep.add_mutually_exclusive_group()
    mode.add_argument("--force", action="store_true", help="Overwrite conflicting files")
    mode.add_argument("--skip-conflicts", action="store_true", help="Leave conflicting files untouched")
    mode.add_argument("--interactive", action="store_true", help="Ask for each conflicting file")

    d = sub.add_parser("diff", help="Show what deploy would do")
    d.add_argument("--home", action="store_true")
    d.add_argument("--json", dest="json_output", action="store_true")

    w = sub.add_parser("watch", help="Re-deploy whenever the source changes")
    w.add_argument("--home", action="store_true")
    w.add_argument("--json", dest="json_output", action="store_true")

    c = sub.add_parser("clean", help="Remove deployed files tracked in the lockfile")
    c.add_argument("--home", action="store_true")
    c.add_argument("--force", action="store_true", help="Also remove files modified since deployment")
    c.add_argument("--dry-run", action="store_true")
    c.add_argument("--json", dest="json_output", action="store_true")

    pv = sub.add_parser("provenance", help="List tracked files and their sources")
    pv.add_argument("--home", action="store_true")
    pv.add_argument("--filter", default=None, help="Substring of a path or source")
    pv.add_argument("--json", dest="json_output", action="store_true")

    sub.add_parser("migrate", help="Move a legacy .promptpack/.calvin.lock to calvin.lock")

    return p


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(bool(args.verbose))

    try:
        return _run(args)
    except (ConfigError, AssetParseError, LockfileError, PlanningError) as e:
        print(f"error: {e}")
        return 2
    except ConflictUnresolvedError as e:
        print(f"error: {e}")
        return 3
    except LedgerWriteError as e:
        print(f"error: {e}")
        return 4
    except WatchError as e:
        print(f"error: {e}")
        return 5


def _sink(args: argparse.Namespace) -> EventSink:
    if getattr(args, "json_output", False):
        return JsonEventSink()
    return ConsoleEventSink(verbose=bool(args.verbose))


def _print_plan(plan: SyncPlan, *, verbose: bool) -> None:
    for f in plan:
        if f.action.value == "skip" and not verbose:
            continue
        line = f"  {f.action.value:<8} {f.destination_path}"
        if f.reason is not None:
            line += f" ({f.reason.description})"
        print(line)
    counts = plan.counts
    print(", ".join(f"{counts[k]} {k}" for k in ("create", "update", "delete", "skip", "conflict")))


def _interactive_resolver(root: Path, home: Path):
    from .conflict import InteractiveResolver, console_diff, console_prompt

    def read_live(entry: PlannedFile) -> str:
        p = resolve_destination(entry.destination_path, project_root=root, home=home)
        if not p.is_file():
            return ""
        return p.read_text(encoding="utf-8", errors="replace")

    return InteractiveResolver(console_prompt, show_diff=lambda e: console_diff(e, read_live=read_live))


def _run(args: argparse.Namespace) -> int:
    from .config import load_config
    from .deploy import DeployContext

    root = _resolve_root(args.root)
    source = Path(args.source).expanduser().resolve() if args.source else root / SOURCE_DIR_NAME
    ctx = DeployContext(root=root, home=home_dir(), source=source, user_scope=bool(getattr(args, "home", False)))

    if args.cmd == "migrate":
        from .migrate import migrate_lockfile

        res = migrate_lockfile(root=root, source=source)
        print(res.message)
        return 1 if res.status == "conflict" else 0

    if args.cmd == "provenance":
        from .lock import load_lock
        from .provenance import format_provenance, provenance_entries

        cfg = load_config(source)
        entries = provenance_entries(load_lock(ctx.lockfile(cfg, migrate=False)), filter=args.filter)
        if args.json_output:
            print(json.dumps([e.to_dict() for e in entries], indent=2, sort_keys=True))
        else:
            print(format_provenance(entries))
        return 0

    if args.cmd == "diff":
        from .deploy import diff

        plan = diff(ctx)
        if args.json_output:
            print(json.dumps(plan.to_dict(), indent=2, sort_keys=True))
        else:
            _print_plan(plan, verbose=bool(args.verbose))
        return 0

    if args.cmd == "deploy":
        from .conflict import PolicyResolver
        from .deploy import deploy

        cfg = load_config(source)
        resolver = None
        if args.force:
            resolver = PolicyResolver("force-overwrite")
        elif args.skip_conflicts:
            resolver = PolicyResolver("skip-all")
        elif args.interactive:
            resolver = _interactive_resolver(root, ctx.home)

        sink = _sink(args)
        outcome = deploy(ctx, config=cfg, resolver=resolver, sink=sink, dry_run=bool(args.dry_run))
        if outcome.result is None:
            if not args.json_output:
                _print_plan(outcome.resolved, verbose=bool(args.verbose))
            return 0
        return 0 if outcome.result.ok else 1

    if args.cmd == "clean":
        from .clean import clean

        outcome = clean(ctx, force=bool(args.force), sink=_sink(args), dry_run=bool(args.dry_run))
        if outcome.result is None:
            if not args.json_output:
                _print_plan(outcome.resolved, verbose=bool(args.verbose))
            return 0
        return 0 if outcome.result.ok else 1

    if args.cmd == "watch":
        from .watch import WatchSession

        cfg = load_config(source)
        session = WatchSession(ctx, cfg, sink=_sink(args))
        session.run()
        return 0

    raise AssertionError(f"unhandled command {args.cmd!r}")


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
