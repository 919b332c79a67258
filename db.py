"""
PlaylistMirror - Database Layer

SQLite connection management, schema creation, and sync run / job history.
The catalog itself lives in JSON (see catalog.py); this database only keeps
settings and the record of what each run did, including failed item ids.
"""

import sqlite3
import queue
import uuid
from contextlib import contextmanager

from constants import DB_PATH, STALE_JOB_TIMEOUT


def get_db() -> sqlite3.Connection:
    conn = sqlite3.connect(DB_PATH, timeout=10, check_same_thread=False)
    conn.execute("PRAGMA busy_timeout=10000")
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


_DB_POOL_SIZE = 5
_db_pool: "queue.LifoQueue[sqlite3.Connection]" = queue.LifoQueue(maxsize=_DB_POOL_SIZE)


def _get_pooled_conn() -> sqlite3.Connection:
    try:
        return _db_pool.get_nowait()
    except queue.Empty:
        return get_db()


def _return_pooled_conn(conn: sqlite3.Connection) -> None:
    try:
        _db_pool.put_nowait(conn)
    except queue.Full:
        conn.close()


@contextmanager
def db_conn() -> sqlite3.Connection:
    conn = _get_pooled_conn()
    try:
        yield conn
        if conn.in_transaction:
            try:
                conn.rollback()
            except sqlite3.Error:
                pass
    except Exception:
        try:
            conn.rollback()
        except sqlite3.Error:
            pass
        raise
    finally:
        conn.row_factory = None
        _return_pooled_conn(conn)


def init_db():
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    with db_conn() as conn:
        conn.execute("""
        CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)

        # One row per synchronization cycle (or standalone conversion run)
        conn.execute("""
        CREATE TABLE IF NOT EXISTS sync_runs (
            id TEXT PRIMARY KEY,
            kind TEXT DEFAULT 'sync',
            status TEXT DEFAULT 'running',
            playlist_url TEXT,
            new_items INTEGER DEFAULT 0,
            orphaned INTEGER DEFAULT 0,
            downloaded INTEGER DEFAULT 0,
            converted INTEGER DEFAULT 0,
            failed INTEGER DEFAULT 0,
            error TEXT,
            started_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            completed_at TIMESTAMP
        )
    """)

        # One row per pool task (acquisition or transcode)
        conn.execute("""
        CREATE TABLE IF NOT EXISTS jobs (
            id TEXT PRIMARY KEY,
            run_id TEXT,
            kind TEXT NOT NULL,
            item_id TEXT,
            title TEXT,
            status TEXT DEFAULT 'running',
            strategy TEXT,
            reason TEXT,
            error TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            completed_at TIMESTAMP,
            FOREIGN KEY (run_id) REFERENCES sync_runs(id)
        )
    """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_jobs_run_id ON jobs(run_id)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status)")

        conn.commit()


def cleanup_stale_jobs():
    """Mark runs/jobs still 'running' after STALE_JOB_TIMEOUT as failed.
    Handles the process being killed mid-batch."""
    with db_conn() as conn:
        cursor = conn.execute(
            """UPDATE jobs SET status = 'failed', reason = 'interrupted',
               error = 'Interrupted (process stopped before the job finished)',
               completed_at = datetime('now')
               WHERE status = 'running'
               AND created_at < datetime('now', ? || ' seconds')""",
            (str(-STALE_JOB_TIMEOUT),)
        )
        if cursor.rowcount > 0:
            print(f"Cleaned up {cursor.rowcount} stale job(s)")
        conn.execute(
            """UPDATE sync_runs SET status = 'failed', error = 'Interrupted',
               completed_at = datetime('now')
               WHERE status = 'running'
               AND started_at < datetime('now', ? || ' seconds')""",
            (str(-STALE_JOB_TIMEOUT),)
        )
        conn.commit()


# ---------------------------------------------------------------------------
# Run / job history
# ---------------------------------------------------------------------------

def start_run(kind: str = "sync", playlist_url: str | None = None) -> str:
    run_id = str(uuid.uuid4())[:8]
    with db_conn() as conn:
        conn.execute(
            "INSERT INTO sync_runs (id, kind, status, playlist_url) VALUES (?, ?, 'running', ?)",
            (run_id, kind, playlist_url)
        )
        conn.commit()
    return run_id


def finish_run(run_id: str, status: str, **counts) -> None:
    """Close a run. counts may carry new_items, orphaned, downloaded, converted, failed, error."""
    allowed = {"new_items", "orphaned", "downloaded", "converted", "failed", "error"}
    fields = {k: v for k, v in counts.items() if k in allowed}
    columns = ", ".join(f"{key} = ?" for key in fields)
    assignments = "status = ?, completed_at = datetime('now')" + (f", {columns}" if columns else "")
    with db_conn() as conn:
        conn.execute(
            f"UPDATE sync_runs SET {assignments} WHERE id = ?",
            (status, *fields.values(), run_id)
        )
        conn.commit()


def start_job(run_id: str | None, kind: str, item_id: str, title: str | None = None) -> str:
    job_id = str(uuid.uuid4())[:8]
    with db_conn() as conn:
        conn.execute(
            "INSERT INTO jobs (id, run_id, kind, item_id, title, status) VALUES (?, ?, ?, ?, ?, 'running')",
            (job_id, run_id, kind, item_id, title)
        )
        conn.commit()
    return job_id


def finish_job(job_id: str, status: str, strategy: str | None = None,
               reason: str | None = None, error: str | None = None) -> None:
    with db_conn() as conn:
        conn.execute(
            """UPDATE jobs SET status = ?, strategy = ?, reason = ?, error = ?,
               completed_at = datetime('now') WHERE id = ?""",
            (status, strategy, reason, error, job_id)
        )
        conn.commit()


def get_failed_item_ids(run_id: str | None = None) -> list[str]:
    """Item ids whose jobs failed, for the given run or the most recent finished run."""
    with db_conn() as conn:
        if run_id is None:
            row = conn.execute(
                "SELECT id FROM sync_runs WHERE status != 'running' ORDER BY started_at DESC, rowid DESC LIMIT 1"
            ).fetchone()
            if not row:
                return []
            run_id = row[0]
        rows = conn.execute(
            "SELECT DISTINCT item_id FROM jobs WHERE run_id = ? AND status = 'failed' ORDER BY item_id",
            (run_id,)
        ).fetchall()
    return [r[0] for r in rows]


def list_runs(limit: int = 20) -> list[dict]:
    with db_conn() as conn:
        conn.row_factory = sqlite3.Row
        rows = conn.execute(
            "SELECT * FROM sync_runs ORDER BY started_at DESC, rowid DESC LIMIT ?",
            (limit,)
        ).fetchall()
    return [dict(r) for r in rows]


def get_run_jobs(run_id: str, status: str | None = None) -> list[dict]:
    with db_conn() as conn:
        conn.row_factory = sqlite3.Row
        if status:
            rows = conn.execute(
                "SELECT * FROM jobs WHERE run_id = ? AND status = ? ORDER BY created_at",
                (run_id, status)
            ).fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM jobs WHERE run_id = ? ORDER BY created_at", (run_id,)
            ).fetchall()
    return [dict(r) for r in rows]


def get_run(run_id: str) -> dict | None:
    with db_conn() as conn:
        conn.row_factory = sqlite3.Row
        row = conn.execute("SELECT * FROM sync_runs WHERE id = ?", (run_id,)).fetchone()
    return dict(row) if row else None
