"""
PlaylistMirror - Reconciler

Folds a fresh remote snapshot into the catalog. Each entry moves through
active / unavailable_pending / orphaned / archived / unavailable_archived
according to whether it is still listed, whether it is dead upstream, and
whether its file is still on disk. local_filename and download_status are
local facts and always survive reconciliation.
"""

from dataclasses import dataclass, field
from pathlib import Path

from catalog import Catalog
from constants import (
    ARCHIVED_STATUSES, DEAD_TITLE_TAG, DEAD_TITLES, DOWNLOAD_PENDING,
    STATUS_ACTIVE, STATUS_ORPHANED, STATUS_UNAVAILABLE_PENDING,
)
from models import CatalogEntry, RemoteItem
from utils import file_exists, utc_now_iso


@dataclass
class ReconcileResult:
    live_ids: set[str] = field(default_factory=set)
    new: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    dead: list[str] = field(default_factory=list)
    orphaned: list[str] = field(default_factory=list)
    reactivated: list[str] = field(default_factory=list)


def tag_dead_title(title: str) -> str:
    """Prefix '[DEL] ' once."""
    if DEAD_TITLE_TAG in title:
        return title
    return f"{DEAD_TITLE_TAG} {title}"


def _next_status(entry: CatalogEntry, is_dead: bool, output_dir: Path) -> str:
    if is_dead:
        if entry.status == STATUS_ACTIVE:
            return STATUS_UNAVAILABLE_PENDING
        return entry.status
    if entry.status in ARCHIVED_STATUSES:
        # Back in the playlist: only re-acquire when the archived file is gone
        if file_exists(output_dir, entry.local_filename):
            return entry.status
        return STATUS_ACTIVE
    return STATUS_ACTIVE


def harmonize(
    remote_items: list[RemoteItem],
    catalog: Catalog,
    output_dir: Path,
    now: str | None = None,
) -> ReconcileResult:
    """Apply the snapshot to the catalog in place. Positions are 1-based snapshot order."""
    print("Harmonizing catalog with the playlist...")
    now = now or utc_now_iso()
    output_dir = Path(output_dir)
    result = ReconcileResult()

    with catalog.lock:
        for position, item in enumerate(remote_items, start=1):
            if item.id in result.live_ids:
                print(f"Duplicate id in snapshot, keeping first position: {item.id}")
                continue
            result.live_ids.add(item.id)
            is_dead = item.is_unavailable or item.title in DEAD_TITLES
            if is_dead:
                result.dead.append(item.id)

            existing = catalog.get(item.id)
            if existing is None:
                catalog.put(CatalogEntry(
                    id=item.id,
                    title=item.title,
                    uploader=item.uploader,
                    playlist_index=position,
                    local_filename=None,
                    download_status=DOWNLOAD_PENDING,
                    status=STATUS_UNAVAILABLE_PENDING if is_dead else STATUS_ACTIVE,
                    last_synced=now,
                ))
                result.new.append(item.id)
                print(f"NEW: {item.title}")
                continue

            if is_dead:
                # The snapshot only says "[Deleted video]"; keep the name we knew
                known = existing.title
                title = tag_dead_title(known) if known and known not in DEAD_TITLES else item.title
                uploader = existing.uploader
            else:
                title = item.title
                uploader = item.uploader or existing.uploader

            status = _next_status(existing, is_dead, output_dir)
            if status != existing.status:
                print(f"STATUS [{item.id}]: {existing.status} -> {status}")
                if existing.status in ARCHIVED_STATUSES:
                    result.reactivated.append(item.id)

            catalog.update(
                item.id,
                title=title,
                uploader=uploader,
                playlist_index=position,
                status=status,
                last_synced=now,
            )
            result.updated.append(item.id)

        for entry in catalog.entries():
            if entry.id in result.live_ids:
                continue
            fields = {"playlist_index": None}
            if entry.status in (STATUS_ACTIVE, STATUS_UNAVAILABLE_PENDING):
                fields["status"] = STATUS_ORPHANED
                result.orphaned.append(entry.id)
                print(f"ORPHAN [{entry.status}]: {entry.title}")
            catalog.update(entry.id, **fields)

    print(
        f"Harmonized: {len(result.new)} new, {len(result.updated)} updated, "
        f"{len(result.dead)} dead, {len(result.orphaned)} orphaned"
    )
    return result
