"""
PlaylistMirror - Command Line

Runs sync, conversion and archived-file actions in the foreground. Ctrl-C
stops the run cleanly: queued jobs are cancelled, running tools are killed
and the catalog is saved.
"""

import argparse
import signal
import sys
from pathlib import Path
from typing import List, Optional

from audit import DECISION_DELETE, DECISION_KEEP, AuditRequest
from catalog import CatalogCorruptError
from constants import VERSION
from context import RunContext
from db import cleanup_stale_jobs, get_failed_item_ids, get_run_jobs, init_db
from orchestrator import manage_archived, run_convert, run_sync
from utils import spawn_daemon_thread
from youtube import SnapshotError, _sync_cookies_file

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_USAGE = 2
EXIT_FAILURES = 5
EXIT_STOPPED = 130


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="playlist-mirror",
        description="Mirror a YouTube playlist into a local Opus archive.",
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    p.add_argument(
        "--output-dir",
        default=None,
        help="Archive directory (default: OUTPUT_DIR).",
    )
    sub = p.add_subparsers(dest="command", required=True)

    sync = sub.add_parser("sync", help="Sync the playlist and download what is missing.")
    sync.add_argument("--url", default=None, help="Playlist URL (default: playlist_url setting).")
    sync.add_argument("--convert", action="store_true", help="Convert .webm/.m4a to Opus after downloading.")
    sync.add_argument(
        "--audit",
        choices=["ask", "keep", "delete"],
        default=None,
        help="How to treat orphaned/unavailable entries (default: ask on a terminal, keep otherwise).",
    )

    convert = sub.add_parser("convert", help="Convert .webm/.m4a files to Opus.")
    convert.add_argument("--source-dir", default=None, help="Directory to convert (default: output dir).")

    archived = sub.add_parser("archived", help="Manage archived files.")
    archived.add_argument("action", choices=["purge", "purge-unavailable", "recheck"])
    archived.add_argument("--yes", action="store_true", help="Skip the confirmation prompt for purges.")

    failed = sub.add_parser("failed", help="List failed item ids of a run.")
    failed.add_argument("--run-id", default=None, help="Run id (default: most recent finished run).")

    serve = sub.add_parser("serve", help="Run the HTTP API.")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8080)
    return p


def prompt_decision(request: AuditRequest) -> str:
    """Interactive audit: list the affected entries and ask delete or keep."""
    label = "removed from the playlist" if request.group == "orphaned" else "deleted or private upstream"
    print(f"\n{len(request.items)} item(s) {label}:")
    for item in request.items[:10]:
        print(f"   - {item['title'] or item['id']}")
    if len(request.items) > 10:
        print(f"   ... and {len(request.items) - 10} more")
    print(" [1] Delete (file and catalog entry)")
    print(" [2] Keep (archive)")
    try:
        answer = input("Choice: ").strip()
    except EOFError:
        answer = ""
    return DECISION_DELETE if answer == "1" else DECISION_KEEP


def _decision_callable(mode: Optional[str]):
    if mode is None:
        mode = "ask" if sys.stdin.isatty() else "keep"
    if mode == "ask":
        return prompt_decision
    return lambda request: mode


def _install_stop_handler(context: RunContext):
    """Route Ctrl-C to the run context. Returns the previous handler."""
    previous = signal.getsignal(signal.SIGINT)

    def handler(signum, frame):
        print("\nInterrupted, stopping (press Ctrl-C again to abort)...")
        signal.signal(signal.SIGINT, signal.default_int_handler)
        # Off the main thread: the stop listeners take locks the main thread may hold
        spawn_daemon_thread(context.request_stop)

    signal.signal(signal.SIGINT, handler)
    return previous


def _exit_code(summary) -> int:
    if summary.status == "stopped":
        return EXIT_STOPPED
    return EXIT_FAILURES if summary.status == "completed_with_errors" else EXIT_OK


def _confirm(question: str) -> bool:
    try:
        return input(f"{question} [y/N] ").strip().lower() in ("y", "yes")
    except EOFError:
        return False


def main(argv: Optional[List[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)
    output_dir = Path(args.output_dir) if args.output_dir else None

    if args.command == "serve":
        import uvicorn
        uvicorn.run("app:app", host=args.host, port=args.port)
        return EXIT_OK

    init_db()
    cleanup_stale_jobs()

    if args.command == "failed":
        ids = get_failed_item_ids(args.run_id)
        if args.run_id:
            errors = {job["item_id"]: job["error"] for job in get_run_jobs(args.run_id, "failed")}
        else:
            errors = {}
        for item_id in ids:
            detail = errors.get(item_id)
            print(f"{item_id}\t{detail}" if detail else item_id)
        return EXIT_OK

    _sync_cookies_file()
    context = RunContext()
    previous_handler = _install_stop_handler(context)

    try:
        if args.command == "sync":
            summary = run_sync(
                context,
                url=args.url,
                output_dir=output_dir,
                decide=_decision_callable(args.audit),
                convert=bool(args.convert),
            )
            return _exit_code(summary)

        if args.command == "convert":
            source_dir = Path(args.source_dir) if args.source_dir else None
            if source_dir is not None and not source_dir.is_dir():
                print(f"Source directory not found: {source_dir}", file=sys.stderr)
                return EXIT_USAGE
            return _exit_code(run_convert(context, source_dir, output_dir))

        if args.command == "archived":
            action = args.action.replace("-", "_")
            if action.startswith("purge") and not args.yes:
                which = "unavailable archived" if action == "purge_unavailable" else "ALL archived"
                if not _confirm(f"Delete the files of {which} entries?"):
                    print("Nothing deleted.")
                    return EXIT_OK
            result = manage_archived(context, action, output_dir)
            if action == "recheck":
                print(f"Reactivated {len(result['reactivated'])}, downloaded {result['downloaded']}")
            else:
                print(f"Deleted {result['deleted']} archived file(s)")
            return EXIT_STOPPED if context.stopping else EXIT_OK
    except (CatalogCorruptError, SnapshotError) as e:
        print(f"FATAL: {e}", file=sys.stderr)
        return EXIT_FATAL
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    return EXIT_USAGE


if __name__ == "__main__":
    sys.exit(main())
