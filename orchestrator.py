"""
PlaylistMirror - Sync Orchestrator

One synchronization cycle: load, clean, snapshot, reconcile, audit, rename,
safety gate, download, optionally convert, save. Front ends (CLI, API) supply
the run context and the audit decision callable; everything else is wired
here with injectable collaborators so the cycle can run without a network.
"""

from dataclasses import asdict, dataclass, field
from pathlib import Path

from audit import keep_all, purge_archived, recheck_unavailable_archived, run_audit
from catalog import CatalogStore
from context import RunContext
from db import finish_run, start_run
from downloads import acquire_entry, run_download_queue
from notifications import send_notification
from reconciler import harmonize
from reindex import rename_to_canonical
from settings import get_data_dir, get_output_dir, get_setting
from transcode import run_transcode_queue
from whitelist import remove_partial_downloads, run_whitelist
from youtube import fetch_remote_snapshot

ARCHIVED_ACTIONS = ("purge", "purge_unavailable", "recheck")


@dataclass
class SyncSummary:
    run_id: str | None = None
    url: str | None = None
    status: str = "running"
    new_items: int = 0
    updated: int = 0
    dead: int = 0
    orphaned: int = 0
    reactivated: int = 0
    audit_deleted: int = 0
    audit_kept: int = 0
    renamed: int = 0
    partials_removed: int = 0
    unknown_removed: int = 0
    downloaded: int = 0
    unavailable: int = 0
    failed: int = 0
    cancelled: int = 0
    converted: int = 0
    failed_ids: list[str] = field(default_factory=list)
    saved: bool = True
    error: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)

    def counts(self) -> dict[str, int]:
        return {
            "new_items": self.new_items,
            "orphaned": self.orphaned,
            "downloaded": self.downloaded,
            "converted": self.converted,
            "failed": self.failed,
        }


def _failed_ids(context: RunContext) -> list[str]:
    seen = []
    for failure in context.failures:
        if failure["id"] not in seen:
            seen.append(failure["id"])
    return seen


def _close_run(summary: SyncSummary, context: RunContext, kind: str) -> None:
    summary.failed_ids = _failed_ids(context)
    summary.failed = max(summary.failed, len(summary.failed_ids))
    if summary.status == "running":
        if context.stopping:
            summary.status = "stopped"
        elif summary.failed or not summary.saved:
            summary.status = "completed_with_errors"
        else:
            summary.status = "completed"
    if not summary.saved and not summary.error:
        summary.error = "Final catalog save failed"

    finish_run(summary.run_id, summary.status, error=summary.error, **summary.counts())
    print(
        f"Run {summary.run_id} {summary.status}: {summary.new_items} new, {summary.orphaned} orphaned, "
        f"{summary.downloaded} downloaded, {summary.converted} converted, {summary.failed} failed"
    )
    if summary.failed_ids:
        print(f"Failed ids: {', '.join(summary.failed_ids)}")
    send_notification(kind, summary.url or "", summary.status, summary.error, summary.counts(), summary.failed_ids)


def run_sync(
    context: RunContext,
    *,
    url: str | None = None,
    output_dir: Path | None = None,
    data_dir: Path | None = None,
    decide=keep_all,
    fetch_remote=fetch_remote_snapshot,
    acquire=acquire_entry,
    convert: bool = False,
) -> SyncSummary:
    """Run one full cycle. CatalogCorruptError and SnapshotError propagate after
    the run is recorded as failed; nothing is deleted before the catalog loads."""
    url = url or get_setting("playlist_url")
    output_dir = Path(output_dir or get_output_dir())
    data_dir = Path(data_dir or get_data_dir(output_dir))
    output_dir.mkdir(parents=True, exist_ok=True)

    if context.run_id is None:
        context.run_id = start_run("sync", url)
    summary = SyncSummary(run_id=context.run_id, url=url)
    print(f"Sync {summary.run_id} started: {url}")

    try:
        _sync_cycle(context, summary, url, output_dir, data_dir, decide, fetch_remote, acquire, convert)
    except Exception as e:
        summary.status = "failed"
        summary.error = str(e)
        _close_run(summary, context, "sync")
        raise

    _close_run(summary, context, "sync")
    return summary


def _sync_cycle(context, summary, url, output_dir, data_dir, decide, fetch_remote, acquire, convert) -> None:
    store = CatalogStore(data_dir, output_dir)
    # Load first: a corrupt catalog must stop the cycle before any file is touched
    catalog = store.load()
    summary.partials_removed = len(remove_partial_downloads(output_dir))

    remote_items = fetch_remote(url, context)
    result = harmonize(remote_items, catalog, output_dir)
    summary.new_items = len(result.new)
    summary.updated = len(result.updated)
    summary.dead = len(result.dead)
    summary.orphaned = len(result.orphaned)
    summary.reactivated = len(result.reactivated)
    summary.saved = store.save(catalog)
    if context.stopping:
        return

    audit = run_audit(catalog, output_dir, decide)
    summary.audit_deleted = audit["deleted"]
    summary.audit_kept = audit["kept"]
    summary.saved = store.save(catalog)
    if context.stopping:
        return

    summary.renamed = rename_to_canonical(catalog, output_dir)
    summary.saved = store.save(catalog)
    if context.stopping:
        return

    summary.unknown_removed = len(run_whitelist(catalog, output_dir, data_dir.name))

    downloads = run_download_queue(catalog, store, output_dir, context, run_id=summary.run_id, acquire=acquire)
    summary.downloaded = downloads["downloaded"]
    summary.unavailable = downloads["unavailable"]
    summary.failed = downloads["failed"] + downloads["unavailable"]
    summary.cancelled = downloads["cancelled"]

    if convert and not context.stopping:
        print("Starting conversion phase...")
        converted = run_transcode_queue(output_dir, context, catalog, store, run_id=summary.run_id)
        summary.converted = converted["converted"]

    # Runs after a stop as well, see run_download_queue
    summary.saved = store.save(catalog)


def run_convert(
    context: RunContext,
    source_dir: Path | None = None,
    output_dir: Path | None = None,
    data_dir: Path | None = None,
) -> SyncSummary:
    """Conversion-only run. Catalog entries are re-pointed when converting the output directory."""
    output_dir = Path(output_dir or get_output_dir())
    source_dir = Path(source_dir or output_dir)
    if context.run_id is None:
        context.run_id = start_run("convert", str(source_dir))
    summary = SyncSummary(run_id=context.run_id, url=str(source_dir))

    try:
        catalog = store = None
        if source_dir.resolve() == output_dir.resolve():
            store = CatalogStore(Path(data_dir or get_data_dir(output_dir)), output_dir)
            catalog = store.load()
        results = run_transcode_queue(source_dir, context, catalog, store, run_id=summary.run_id)
    except Exception as e:
        summary.status = "failed"
        summary.error = str(e)
        _close_run(summary, context, "convert")
        raise

    summary.converted = results["converted"]
    summary.failed = results["failed"]
    _close_run(summary, context, "convert")
    return summary


def manage_archived(
    context: RunContext,
    action: str,
    output_dir: Path | None = None,
    data_dir: Path | None = None,
    check=None,
    acquire=acquire_entry,
) -> dict:
    """Explicit archived-file actions: 'purge', 'purge_unavailable' or 'recheck'.

    Recheck re-downloads whatever became available again.
    """
    if action not in ARCHIVED_ACTIONS:
        raise ValueError(f"Unknown archived action: {action}")
    try:
        result = _archived_action(context, action, output_dir, data_dir, check, acquire)
    except Exception as e:
        if context.run_id:
            finish_run(context.run_id, "failed", error=str(e))
        raise
    if context.run_id:
        status = "stopped" if context.stopping else "completed"
        finish_run(context.run_id, status, downloaded=result["downloaded"], failed=len(_failed_ids(context)))
    return result


def _archived_action(context, action, output_dir, data_dir, check, acquire) -> dict:
    output_dir = Path(output_dir or get_output_dir())
    store = CatalogStore(Path(data_dir or get_data_dir(output_dir)), output_dir)
    catalog = store.load()
    result = {"action": action, "deleted": 0, "reactivated": [], "downloaded": 0}

    if action in ("purge", "purge_unavailable"):
        result["deleted"] = purge_archived(catalog, output_dir, only_unavailable=action == "purge_unavailable")
        store.save(catalog)
    elif action == "recheck":
        kwargs = {"check": check} if check else {}
        result["reactivated"] = recheck_unavailable_archived(catalog, context, **kwargs)
        store.save(catalog)
        if result["reactivated"] and not context.stopping:
            downloads = run_download_queue(catalog, store, output_dir, context, run_id=context.run_id, acquire=acquire)
            result["downloaded"] = downloads["downloaded"]
    return result
