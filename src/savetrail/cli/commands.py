"""
CLI commands: argparse subcommands for savetrail.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Optional

from ..errors import SavetrailError
from ..workspace import Workspace
from . import formatter


def _get_workspace(args) -> Workspace:
    """Open the workspace for the project root given in args."""
    return Workspace(Path(args.project).resolve())


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def _confirm(prompt: str, assume_yes: bool) -> bool:
    if assume_yes:
        return True
    try:
        answer = input(f"{prompt} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def _confirmation_required(action: str) -> dict:
    return {
        "kind": "confirmation_required",
        "message": f"{action} needs --yes when output is JSON",
        "change_id": None,
    }


def cmd_init(args):
    """Create the history database and ignore it in git."""
    ws = _get_workspace(args)
    added = ws.ensure_gitignore()
    if args.json:
        _print_json({**ws.info(), "gitignore_updated": added})
    else:
        print(f"History database: {ws.store.db_path}")
        if added:
            print("Added .savetrail/ to .gitignore")
    ws.close()


def cmd_log(args):
    """List recent changes, or the history of one file."""
    ws = _get_workspace(args)
    if args.file:
        statuses = ws.controller.list_by_file(args.file, limit=args.limit)
    else:
        statuses = ws.controller.list_recent(limit=args.limit)

    if args.json:
        _print_json([s.to_dict() for s in statuses])
    else:
        print(formatter.format_records(statuses))
    ws.close()


def cmd_show(args):
    """Show one change with its diff."""
    ws = _get_workspace(args)
    status = ws.controller.get_change(args.id)
    if args.json:
        _print_json(status.to_dict(include_content=True))
    else:
        print(formatter.format_change(status))
    ws.close()


def cmd_preview(args):
    """Show what a rollback would supersede, without changing anything."""
    ws = _get_workspace(args)
    preview = ws.preview_rollback(args.id)
    if args.json:
        _print_json(preview.to_dict())
    else:
        print(formatter.format_preview(preview))
    ws.close()


def cmd_diff(args):
    """Compare the file as saved by two changes."""
    ws = _get_workspace(args)
    result = ws.controller.range_diff(args.from_id, args.to_id)
    if args.json:
        _print_json(result.to_dict())
    else:
        print(formatter.format_range_diff(result))
    ws.close()


def cmd_rollback(args):
    """Roll a file back to the content right after a change."""
    ws = _get_workspace(args)
    preview = ws.preview_rollback(args.id)
    if args.json and not args.yes:
        _print_json({"status": "preview", **preview.to_dict(), "error": _confirmation_required("Rollback")})
        ws.close()
        return 1
    if not args.json:
        print(formatter.format_preview(preview))

    if not _confirm(f"Rollback to version #{args.id}?", args.yes):
        print("Rollback cancelled.")
        ws.close()
        return

    result = ws.rollback(args.id)
    if args.json:
        _print_json(result.to_dict())
    else:
        print(formatter.format_rollback(result))
    ws.close()


def cmd_batch_rollback(args):
    """Roll back several files in one action (oldest given change per file)."""
    ws = _get_workspace(args)
    if args.json and not args.yes:
        _print_json({"error": _confirmation_required("Batch rollback")})
        ws.close()
        return 1
    prompt = f"Batch rollback {len(args.ids)} changes?"
    if not _confirm(prompt, args.yes):
        print("Rollback cancelled.")
        ws.close()
        return

    result = ws.batch_rollback(args.ids)
    if args.json:
        _print_json(result.to_dict())
    else:
        print(formatter.format_batch(result))
    ws.close()
    return 1 if result.failed else 0


def cmd_restore(args):
    """Undo the latest rollback of a file."""
    ws = _get_workspace(args)
    result = ws.restore(args.id)
    if args.json:
        _print_json(result.to_dict())
    else:
        print(formatter.format_restore(result))
    ws.close()


def cmd_prune(args):
    """Apply the retention policy."""
    ws = _get_workspace(args)
    result = ws.apply_retention(retention_days=args.days, max_records=args.max_records)
    if args.json:
        _print_json(result)
    else:
        print(formatter.format_retention(result))
    ws.close()


def cmd_clear(args):
    """Delete all history."""
    ws = _get_workspace(args)
    if args.json and not args.yes:
        _print_json({"error": _confirmation_required("Clear")})
        ws.close()
        return 1
    if not _confirm("Clear all history? This cannot be undone.", args.yes):
        print("Clear cancelled.")
        ws.close()
        return
    deleted = ws.store.clear_all()
    if args.json:
        _print_json({"deleted": deleted})
    else:
        print(f"Cleared {deleted} history records")
    ws.close()


def cmd_stats(args):
    """Show history statistics."""
    ws = _get_workspace(args)
    stats = ws.store.get_stats()
    if args.json:
        _print_json(asdict(stats))
    else:
        print(formatter.format_stats(stats))
    ws.close()


def cmd_watch(args):
    """Record saves until interrupted."""
    ws = _get_workspace(args)
    if not ws.config.enabled:
        print("Recording is disabled in .savetrail.yaml (enabled: false).")
        ws.close()
        return

    ws.apply_retention()
    watcher = ws.create_watcher()
    print(f"Watching {ws.project_root} (Ctrl+C to stop)", flush=True)
    try:
        watcher.run()
    except KeyboardInterrupt:
        pass
    finally:
        ws.close()


def cmd_serve(args):
    """Start the MCP server."""
    from ..server.mcp import MCPServer
    server = MCPServer(Path(args.project).resolve(), watch=args.watch)
    server.run()


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="savetrail",
        description="Local save history with rollback and restore",
    )
    parser.add_argument(
        "--project", "-p", default=".",
        help="Project root directory (default: current dir)",
    )
    parser.add_argument(
        "--json", "-j", action="store_true", default=False,
        help="Output as JSON",
    )
    parser.add_argument(
        "--verbose", "-v", action="count", default=0,
        help="Log to stderr (-v info, -vv debug)",
    )

    sub = parser.add_subparsers(dest="command", help="Available commands")

    # init
    sub.add_parser("init", help="Create the history database")

    # log
    p = sub.add_parser("log", help="List recorded changes")
    p.add_argument("--file", "-f", help="Workspace-relative file path")
    p.add_argument("--limit", type=int, default=50)

    # show
    p = sub.add_parser("show", help="Show one change with its diff")
    p.add_argument("id", type=int, help="Change id")

    # preview
    p = sub.add_parser("preview", help="Preview a rollback")
    p.add_argument("id", type=int, help="Target change id")

    # diff
    p = sub.add_parser("diff", help="Compare the file as saved by two changes")
    p.add_argument("from_id", type=int, help="Older change id")
    p.add_argument("to_id", type=int, help="Newer change id")

    # rollback
    p = sub.add_parser("rollback", help="Roll a file back to a change")
    p.add_argument("id", type=int, help="Target change id")
    p.add_argument("--yes", "-y", action="store_true", help="Skip confirmation")

    # batch-rollback
    p = sub.add_parser("batch-rollback", help="Roll back several files at once")
    p.add_argument("ids", type=int, nargs="+", help="Target change ids")
    p.add_argument("--yes", "-y", action="store_true", help="Skip confirmation")

    # restore
    p = sub.add_parser("restore", help="Undo the latest rollback of a file")
    p.add_argument("id", type=int, help="Rollback change id")

    # prune
    p = sub.add_parser("prune", help="Apply retention policy")
    p.add_argument("--days", type=int, help="Keep this many days (default: config)")
    p.add_argument("--max-records", type=int, help="Keep this many records (default: config)")

    # clear
    p = sub.add_parser("clear", help="Delete all history")
    p.add_argument("--yes", "-y", action="store_true", help="Skip confirmation")

    # stats
    sub.add_parser("stats", help="Show history statistics")

    # watch
    sub.add_parser("watch", help="Record saves until interrupted")

    # serve
    p = sub.add_parser("serve", help="Start MCP server")
    p.add_argument("--project", "-p", default=argparse.SUPPRESS, help="Project root (overrides global --project)")
    p.add_argument("--watch", action="store_true", help="Also record saves while serving")

    return parser


def _setup_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity > 1:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def run_cli(argv: Optional[list[str]] = None) -> int:
    """Main CLI entry point. Returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    if not args.command:
        parser.print_help()
        return 0

    commands = {
        "init": cmd_init,
        "log": cmd_log,
        "show": cmd_show,
        "preview": cmd_preview,
        "diff": cmd_diff,
        "rollback": cmd_rollback,
        "batch-rollback": cmd_batch_rollback,
        "restore": cmd_restore,
        "prune": cmd_prune,
        "clear": cmd_clear,
        "stats": cmd_stats,
        "watch": cmd_watch,
        "serve": cmd_serve,
    }

    cmd = commands.get(args.command)
    if not cmd:
        parser.print_help()
        return 0

    try:
        code = cmd(args)
    except SavetrailError as e:
        if args.json:
            _print_json({"error": e.to_dict()})
        else:
            print(f"Error [{e.kind}]: {e}", file=sys.stderr)
        return 1
    return code or 0
