"""
PlaylistMirror - Download Processing

Per-item acquisition with ordered strategy fallback, and the bounded download
queue that applies outcomes to the catalog.
"""

import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from catalog import Catalog, CatalogStore
from constants import (
    DOWNLOAD_COMPLETED, DOWNLOAD_STRATEGIES, PARTIAL_DOWNLOAD_SUFFIXES,
    STATUS_ACTIVE, STATUS_UNAVAILABLE_PENDING, TIMEOUT_YTDLP_DOWNLOAD,
    UNAVAILABLE_MARKERS, YOUTUBE_WATCH_URL, YTDLP_BIN, YTDLP_TRIM_FILENAMES,
)
from context import RunContext, StopRequested
from db import finish_job, start_job
from models import CatalogEntry
from pool import JobPool
from settings import get_concurrency, get_setting_int
from utils import file_exists, set_file_permissions, short_title
from youtube import _ytdlp_base_args

OUTCOME_SUCCESS = "success"
OUTCOME_UNAVAILABLE = "unavailable"
OUTCOME_EXHAUSTED = "exhausted"


@dataclass
class AcquisitionOutcome:
    status: str
    filename: str | None = None
    strategy: str | None = None
    attempts: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == OUTCOME_SUCCESS


def _index_prefix(entry: CatalogEntry) -> str:
    return f"{entry.playlist_index:03d}"


def _is_partial_artifact(name: str) -> bool:
    return name.endswith(PARTIAL_DOWNLOAD_SUFFIXES) or ".temp." in name


def _is_unavailable_error(stderr: str) -> bool:
    return any(marker in (stderr or "") for marker in UNAVAILABLE_MARKERS)


def _build_ytdlp_download_cmd(entry: CatalogEntry, output_dir: Path, strategy: dict) -> list[str]:
    """Build yt-dlp args for one attempt: opus audio, embedded metadata/thumbnail,
    and the final path printed on stdout so the caller can verify it."""
    output_template = f"{_index_prefix(entry)} %(artist,uploader)s - %(title)s.%(ext)s"
    return [
        YTDLP_BIN,
        *_ytdlp_base_args(with_player_client=False),
        "--no-color",
        "-P", str(output_dir),
        "-f", "ba[acodec=opus]/ba",
        "-x",
        "--audio-format", "opus",
        "--audio-quality", "0",
        "--embed-thumbnail",
        "--embed-metadata",
        "--no-restrict-filenames",
        "--trim-filenames", str(YTDLP_TRIM_FILENAMES),
        "-o", output_template,
        "--no-overwrites",
        "--continue",
        "--no-cache-dir",
        "-S", "abr,asr",
        "--print", "after_move:filepath",
        "--no-simulate",
        *strategy["args"],
        YOUTUBE_WATCH_URL.format(id=entry.id),
    ]


def _reported_file(stdout: str, output_dir: Path) -> str | None:
    """Filename from yt-dlp's printed final path, only if it exists in output_dir."""
    lines = [line.strip() for line in (stdout or "").splitlines() if line.strip()]
    if not lines:
        return None
    path = Path(lines[-1])
    if not path.is_absolute():
        path = output_dir / path
    if path.is_file() and path.parent.resolve() == output_dir.resolve():
        return path.name
    return None


def _find_by_prefix(output_dir: Path, prefix: str) -> str | None:
    """Secondary check: a finished (non-temporary) file named 'NNN ...'."""
    try:
        for path in sorted(output_dir.iterdir()):
            name = path.name
            if path.is_file() and name.startswith(prefix + " ") and not _is_partial_artifact(name):
                return name
    except OSError as e:
        print(f"Could not scan {output_dir} for '{prefix} *': {e}")
    return None


def acquire_entry(
    entry: CatalogEntry,
    output_dir: Path,
    context: RunContext,
    strategies: list[dict] = DOWNLOAD_STRATEGIES,
    run=None,
) -> AcquisitionOutcome:
    """Try each strategy in order until one produces a verified file.

    run(cmd, timeout) defaults to context.run. An unavailable item stops the
    sequence at once; any other failure moves on to the next strategy.
    """
    if entry.playlist_index is None:
        return AcquisitionOutcome(OUTCOME_EXHAUSTED, error="entry has no playlist position")

    run = run or context.run
    output_dir = Path(output_dir)
    prefix = _index_prefix(entry)
    attempts = []
    last_error = None

    for strategy in strategies:
        name = strategy["name"]
        attempts.append(name)
        cmd = _build_ytdlp_download_cmd(entry, output_dir, strategy)
        try:
            result = run(cmd, timeout=TIMEOUT_YTDLP_DOWNLOAD)
        except StopRequested:
            return AcquisitionOutcome(OUTCOME_EXHAUSTED, attempts=attempts, error="stopped")
        except subprocess.TimeoutExpired:
            last_error = f"{name}: timed out after {TIMEOUT_YTDLP_DOWNLOAD}s"
            continue
        except OSError as e:
            last_error = f"{name}: could not start {YTDLP_BIN}: {e}"
            continue

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            if _is_unavailable_error(stderr):
                return AcquisitionOutcome(
                    OUTCOME_UNAVAILABLE, strategy=name, attempts=attempts, error=stderr[-200:]
                )
            last_error = f"{name}: exit {result.returncode}: {stderr[-200:]}"
            if context.stopping:
                break
            continue

        filename = _reported_file(result.stdout, output_dir) or _find_by_prefix(output_dir, prefix)
        if filename:
            set_file_permissions(output_dir / filename)
            return AcquisitionOutcome(OUTCOME_SUCCESS, filename=filename, strategy=name, attempts=attempts)
        last_error = f"{name}: yt-dlp reported success but no file was written"

    return AcquisitionOutcome(OUTCOME_EXHAUSTED, attempts=attempts, error=last_error)


def pending_downloads(catalog: Catalog, output_dir: Path) -> list[CatalogEntry]:
    """Active, positioned entries without a file on disk, in playlist order."""
    queue = [
        e for e in catalog.by_status(STATUS_ACTIVE)
        if e.playlist_index is not None and not file_exists(output_dir, e.local_filename)
    ]
    return sorted(queue, key=lambda e: e.playlist_index)


def run_download_queue(
    catalog: Catalog,
    store: CatalogStore,
    output_dir: Path,
    context: RunContext,
    run_id: str | None = None,
    concurrency: int | None = None,
    save_every: int | None = None,
    acquire=acquire_entry,
) -> dict:
    """Acquire every pending entry through a bounded pool. Returns outcome counts."""
    output_dir = Path(output_dir)
    queue = pending_downloads(catalog, output_dir)
    stats = {"queued": len(queue), "downloaded": 0, "unavailable": 0, "failed": 0, "cancelled": 0}
    if not queue:
        print("Nothing to download")
        return stats

    concurrency = concurrency or get_concurrency("download")
    save_every = max(1, save_every or get_setting_int("save_every", 5))
    total = len(queue)
    print(f"Downloading {total} item(s), {concurrency} at a time")

    def job(entry: CatalogEntry) -> AcquisitionOutcome:
        job_id = start_job(run_id, "download", entry.id, entry.title)
        outcome = acquire(entry, output_dir, context)

        if outcome.ok:
            catalog.update(entry.id, local_filename=outcome.filename, download_status=DOWNLOAD_COMPLETED)
            context.increment("downloaded")
            finish_job(job_id, "completed", strategy=outcome.strategy)
            label = "OK"
        elif outcome.status == OUTCOME_UNAVAILABLE:
            catalog.update(entry.id, status=STATUS_UNAVAILABLE_PENDING)
            context.increment("unavailable")
            context.record_failure(entry.id, entry.title, "download", OUTCOME_UNAVAILABLE, outcome.error)
            finish_job(job_id, "failed", strategy=outcome.strategy, reason=OUTCOME_UNAVAILABLE, error=outcome.error)
            label = "GONE"
        else:
            context.increment("download_failed")
            context.record_failure(entry.id, entry.title, "download", OUTCOME_EXHAUSTED, outcome.error)
            finish_job(job_id, "failed", reason=OUTCOME_EXHAUSTED, error=outcome.error)
            label = "FAIL"

        done = context.increment("download_jobs_done")
        print(f"[{done}/{total}] {label} {short_title(entry.title)}")
        if done % save_every == 0:
            store.save(catalog)
        return outcome

    pool = JobPool(concurrency, name="Download", context=context)
    futures = [pool.add(job, entry) for entry in queue]
    pool.join()

    for entry, future in zip(queue, futures):
        if future.cancelled():
            stats["cancelled"] += 1
            continue
        exc = future.exception()
        if exc is not None:
            stats["failed"] += 1
            context.record_failure(entry.id, entry.title, "download", "error", str(exc))
            continue
        outcome = future.result()
        if outcome.ok:
            stats["downloaded"] += 1
        elif outcome.status == OUTCOME_UNAVAILABLE:
            stats["unavailable"] += 1
        else:
            stats["failed"] += 1

    # Also after a stop: completions of jobs that were in flight must reach disk
    store.save(catalog)
    print(
        f"Downloads finished: {stats['downloaded']} ok, {stats['unavailable']} unavailable, "
        f"{stats['failed']} failed, {stats['cancelled']} cancelled"
    )
    return stats
