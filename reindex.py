"""
PlaylistMirror - Re-indexing

Renames files on disk so their names follow the current playlist order:
'NNN Title - Uploader.ext' for active entries, '[ARCHIVED] Title - Uploader.ext'
for archived ones and '[ARCHIVED] [DEL] Title - Uploader.ext' for archived
items that are gone upstream.
"""

from pathlib import Path

from catalog import Catalog
from constants import (
    ARCHIVED_NAME_TAG, DEAD_TITLE_TAG, STATUS_ACTIVE, STATUS_ARCHIVED,
    STATUS_UNAVAILABLE_ARCHIVED, TRANSCODE_TARGET_EXTENSION,
)
from models import CatalogEntry
from utils import sanitize_filename


def canonical_filename(entry: CatalogEntry, suffix: str = TRANSCODE_TARGET_EXTENSION) -> str | None:
    """The name an entry's file should have, or None when its status has no naming rule."""
    stem = f"{sanitize_filename(entry.title)} - {sanitize_filename(entry.uploader)}"
    if entry.status == STATUS_ACTIVE:
        if entry.playlist_index is None:
            return None
        return f"{entry.playlist_index:03d} {stem}{suffix}"
    if entry.status == STATUS_ARCHIVED:
        return f"{ARCHIVED_NAME_TAG} {stem}{suffix}"
    if entry.status == STATUS_UNAVAILABLE_ARCHIVED:
        # The title usually carries the tag already
        title = entry.title.replace(f"{DEAD_TITLE_TAG} ", "", 1) if entry.title.startswith(DEAD_TITLE_TAG) else entry.title
        stem = f"{sanitize_filename(title)} - {sanitize_filename(entry.uploader)}"
        return f"{ARCHIVED_NAME_TAG} {DEAD_TITLE_TAG} {stem}{suffix}"
    return None


def _rename(catalog: Catalog, entry: CatalogEntry, target: str, output_dir: Path, owners: dict[str, str]) -> bool:
    old_name = entry.local_filename
    if old_name == target:
        return False

    source = output_dir / old_name
    destination = output_dir / target
    same_file = old_name.lower() == target.lower()

    if destination.exists() and not same_file:
        owner = owners.get(target.lower())
        if owner and owner != entry.id:
            print(f"RENAME skipped, {target} belongs to {owner}")
            return False
        # Only the conflicting file goes, never the one being renamed
        try:
            destination.unlink()
            print(f"Removed name conflict: {target}")
        except OSError as e:
            print(f"Could not remove name conflict {target}: {e}")
            return False

    try:
        source.rename(destination)
    except OSError as e:
        print(f"RENAME failed {old_name}: {e}")
        return False

    catalog.update(entry.id, local_filename=target)
    owners.pop(old_name.lower(), None)
    owners[target.lower()] = entry.id
    print(f"RENAME {old_name} -> {target}")
    return True


def rename_to_canonical(catalog: Catalog, output_dir: Path) -> int:
    """Bring every active/archived file name in line with its entry. Returns the rename count."""
    print("Checking file names...")
    output_dir = Path(output_dir)
    renamed = 0

    with catalog.lock:
        owners = {e.local_filename.lower(): e.id for e in catalog.entries() if e.local_filename}
        statuses = (STATUS_ACTIVE, STATUS_ARCHIVED, STATUS_UNAVAILABLE_ARCHIVED)
        for entry in catalog.by_status(*statuses):
            if not entry.local_filename or not (output_dir / entry.local_filename).is_file():
                continue
            target = canonical_filename(entry, Path(entry.local_filename).suffix or TRANSCODE_TARGET_EXTENSION)
            if target and _rename(catalog, entry, target, output_dir, owners):
                renamed += 1

    if renamed:
        print(f"Renamed {renamed} file(s)")
    return renamed
