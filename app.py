#!/usr/bin/env python3
"""
PlaylistMirror - A self-hosted playlist archive service
Mirrors a YouTube playlist into a local Opus archive, one sync run at a time
"""

import threading
from pathlib import Path

from fastapi import FastAPI, HTTPException

from audit import DecisionBroker
from catalog import CatalogCorruptError, CatalogStore
from constants import VERSION
from context import RunContext
from db import (
    cleanup_stale_jobs, get_failed_item_ids, get_run, get_run_jobs,
    init_db, list_runs, start_run,
)
from middleware import AuthMiddleware
from models import (
    ArchivedPurgeRequest, AuditDecisionRequest, ConvertRequest,
    SettingsUpdate, SyncRequest,
)
from orchestrator import manage_archived, run_convert, run_sync
from settings import (
    SENSITIVE_SETTINGS, SETTINGS_SCHEMA, _get_typed_setting, _is_env_override,
    get_data_dir, get_output_dir, get_setting, set_setting,
)
from utils import spawn_daemon_thread
from youtube import SnapshotError, _has_valid_cookie_entries, _sync_cookies_file

# =============================================================================
# Application Setup
# =============================================================================

app = FastAPI(title="PlaylistMirror", version=VERSION)

# Initialise database and recover from a previous crash
init_db()
cleanup_stale_jobs()

# Sync cookies file from settings at startup
_sync_cookies_file()

# Register middleware
app.add_middleware(AuthMiddleware)

# One run at a time: the catalog has a single writer
_run_lock = threading.Lock()
_run_state = {
    "kind": None,
    "context": None,
    "broker": None,
    "thread": None,
    "result": None,
    "error": None,
}


def _active_context() -> RunContext | None:
    with _run_lock:
        thread = _run_state["thread"]
        if thread is not None and thread.is_alive():
            return _run_state["context"]
    return None


def _start_run_thread(kind: str, context: RunContext, work, broker: DecisionBroker | None = None):
    """Run work() in a daemon thread, refusing if another run is still going."""
    def runner():
        try:
            result = work()
            outcome = result.to_dict() if hasattr(result, "to_dict") else result
            with _run_lock:
                _run_state["result"] = outcome
        except (CatalogCorruptError, SnapshotError) as e:
            print(f"FATAL: {e}")
            with _run_lock:
                _run_state["error"] = str(e)
        except Exception as e:
            print(f"{kind} run {context.run_id} failed: {e}")
            with _run_lock:
                _run_state["error"] = str(e)

    with _run_lock:
        thread = _run_state["thread"]
        if thread is not None and thread.is_alive():
            raise HTTPException(status_code=409, detail=f"A {_run_state['kind']} run is already in progress")
        _run_state.update(kind=kind, context=context, broker=broker, result=None, error=None)
        _run_state["thread"] = spawn_daemon_thread(runner)
        return _run_state["thread"]


def _load_catalog_or_500():
    output_dir = get_output_dir()
    store = CatalogStore(get_data_dir(output_dir), output_dir)
    try:
        return store.load()
    except CatalogCorruptError as e:
        raise HTTPException(status_code=500, detail=str(e))


# =============================================================================
# Basic Routes
# =============================================================================

@app.get("/api/config")
def get_config():
    """Expose server configuration and version"""
    output_dir = get_output_dir()
    return {
        "version": VERSION,
        "auth_required": bool(get_setting("api_key", "")),
        "output_dir": str(output_dir),
        "data_dir": str(get_data_dir(output_dir)),
        "playlist_configured": bool(get_setting("playlist_url", "")),
    }


@app.get("/api/catalog")
def get_catalog(status: str | None = None):
    """Catalog entries, optionally filtered by lifecycle status"""
    catalog = _load_catalog_or_500()
    entries = catalog.snapshot()
    if status:
        entries = {k: v for k, v in entries.items() if v.get("status") == status}
    return {"entries": entries, "counts": catalog.status_counts()}


# =============================================================================
# Settings
# =============================================================================

@app.get("/api/settings")
def get_settings():
    """Get all settings. Sensitive values are masked unless empty."""
    settings = {}
    env_overrides = []

    for key, schema in SETTINGS_SCHEMA.items():
        value = _get_typed_setting(key)

        # Track which settings are locked by env vars
        if _is_env_override(key):
            env_overrides.append(key)

        # Mask sensitive values (show that something is set, but not what)
        if schema.get("sensitive", False) and value:
            settings[key] = "••••••••"
        else:
            settings[key] = value

    return {
        "settings": settings,
        "env_overrides": env_overrides,
        "sensitive_fields": sorted(SENSITIVE_SETTINGS),
    }


@app.put("/api/settings")
def update_settings(updates: SettingsUpdate):
    """Update settings. Only non-None values are updated. Returns updated settings."""
    updated_keys = []

    for key, value in updates.model_dump(exclude_none=True).items():
        if key not in SETTINGS_SCHEMA or _is_env_override(key):
            continue

        # Convert booleans to string for storage
        if isinstance(value, bool):
            value = "true" if value else "false"
        else:
            value = str(value)

        # The catalog directory must stay a plain child of the output directory
        if key == "data_subdir":
            value = value.strip()
            if not value or "/" in value or "\\" in value or value in (".", ".."):
                raise HTTPException(status_code=400, detail="Invalid data subdir")

        # Validate cookie format before saving
        if key == "youtube_cookies" and value.strip() and not _has_valid_cookie_entries(value):
            raise HTTPException(
                status_code=400,
                detail="Invalid cookies format. Paste Netscape-format cookies.txt content."
            )

        set_setting(key, value)
        updated_keys.append(key)

    if "youtube_cookies" in updated_keys:
        _sync_cookies_file()

    return {
        "updated": updated_keys,
        "settings": get_settings()["settings"]
    }


# =============================================================================
# Sync Runs
# =============================================================================

@app.post("/api/sync")
def start_sync(request: SyncRequest):
    """Start a sync cycle in the background. Audit decisions arrive via /api/audit."""
    url = request.url or get_setting("playlist_url", "")
    if not url:
        raise HTTPException(status_code=400, detail="No playlist URL given or configured")
    if _active_context() is not None:
        raise HTTPException(status_code=409, detail="A run is already in progress")

    context = RunContext(start_run("sync", url))
    broker = DecisionBroker(context)
    _start_run_thread(
        "sync", context,
        lambda: run_sync(context, url=url, decide=broker, convert=request.convert),
        broker,
    )
    return {"run_id": context.run_id, "status": "started"}


@app.get("/api/sync/status")
def get_sync_status():
    """Progress of the current run, or the outcome of the last one"""
    with _run_lock:
        thread = _run_state["thread"]
        context = _run_state["context"]
        broker = _run_state["broker"]
        running = thread is not None and thread.is_alive()
        status = {
            "running": running,
            "kind": _run_state["kind"],
            "run_id": context.run_id if context else None,
            "stopping": bool(context and context.stopping),
            "counters": context.counters() if context else {},
            "active_processes": context.active_process_count() if context and running else 0,
            "pending_audits": [r.to_dict() for r in broker.pending()] if broker and running else [],
            "result": _run_state["result"],
            "error": _run_state["error"],
        }
    return status


@app.post("/api/sync/stop")
def stop_sync():
    """Stop the current run: queued jobs are cancelled and running tools killed"""
    context = _active_context()
    if context is None:
        raise HTTPException(status_code=409, detail="No run in progress")
    # request_stop kills processes; keep it off the request thread
    spawn_daemon_thread(context.request_stop)
    return {"run_id": context.run_id, "status": "stopping"}


# =============================================================================
# Audit Decisions
# =============================================================================

@app.get("/api/audit/pending")
def get_pending_audits():
    """Audit requests the running sync is waiting on"""
    with _run_lock:
        broker = _run_state["broker"]
    if broker is None or _active_context() is None:
        return {"requests": []}
    return {"requests": [r.to_dict() for r in broker.pending()]}


@app.post("/api/audit/{request_id}")
def resolve_audit(request_id: str, request: AuditDecisionRequest):
    """Answer a pending audit request with 'delete' or 'keep'"""
    with _run_lock:
        broker = _run_state["broker"]
    if broker is None or not broker.resolve(request_id, request.decision):
        raise HTTPException(status_code=404, detail="Audit request not found")
    return {"request_id": request_id, "decision": request.decision}


# =============================================================================
# Conversion & Archived Files
# =============================================================================

@app.post("/api/convert")
def start_convert(request: ConvertRequest):
    """Convert .webm/.m4a files to Opus in the background"""
    output_dir = get_output_dir()
    source_dir = Path(request.source_dir) if request.source_dir else output_dir
    if not source_dir.is_dir():
        raise HTTPException(status_code=400, detail=f"Source directory not found: {source_dir}")
    if _active_context() is not None:
        raise HTTPException(status_code=409, detail="A run is already in progress")

    context = RunContext(start_run("convert", str(source_dir)))
    _start_run_thread("convert", context, lambda: run_convert(context, source_dir, output_dir))
    return {"run_id": context.run_id, "status": "started"}


@app.post("/api/archived/purge")
def purge_archived_files(request: ArchivedPurgeRequest):
    """Delete archived files on explicit confirmation. Entries stay in the catalog."""
    if not request.confirm:
        raise HTTPException(status_code=400, detail="Confirmation required (set confirm to true)")
    if _active_context() is not None:
        raise HTTPException(status_code=409, detail="A run is already in progress")

    action = "purge_unavailable" if request.only_unavailable else "purge"
    context = RunContext()
    outcome = {}

    def purge():
        try:
            outcome["result"] = manage_archived(context, action)
        except CatalogCorruptError as e:
            outcome["error"] = str(e)
            raise
        return outcome["result"]

    # Holds the single-run slot until the purge is done
    _start_run_thread("purge", context, purge).join()
    if "result" not in outcome:
        raise HTTPException(status_code=500, detail=outcome.get("error", "Purge failed"))
    return outcome["result"]


@app.post("/api/archived/recheck")
def recheck_archived():
    """Recheck unavailable archived items in the background; re-download those back online"""
    if _active_context() is not None:
        raise HTTPException(status_code=409, detail="A run is already in progress")

    context = RunContext(start_run("recheck"))
    _start_run_thread("recheck", context, lambda: manage_archived(context, "recheck"))
    return {"run_id": context.run_id, "status": "started"}


# =============================================================================
# Run History
# =============================================================================

@app.get("/api/runs")
def get_runs(limit: int = 20):
    """Recent runs, newest first"""
    return {"runs": list_runs(limit)}


@app.get("/api/runs/{run_id}/failed")
def get_failed(run_id: str):
    """Failed item ids of one run, with the last error of each job"""
    if get_run(run_id) is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return {
        "run_id": run_id,
        "failed_ids": get_failed_item_ids(run_id),
        "jobs": get_run_jobs(run_id, "failed"),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8080)
