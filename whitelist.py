"""
PlaylistMirror - Safety Gate

The only place that deletes files the catalog does not know about. A file is
removed only if it looks like ours (a media extension or an 'NNN ' prefix)
AND no catalog entry claims it; anything else in the output directory is left
alone. Callers must have loaded a valid catalog first.
"""

import re
from pathlib import Path

from catalog import Catalog
from constants import (
    MEDIA_EXTENSIONS, PARTIAL_DOWNLOAD_SUFFIXES, POSITIONAL_PREFIX_PATTERN,
    SYSTEM_FILE_EXTENSIONS, SYSTEM_FILE_NAMES,
)

_POSITIONAL_PREFIX = re.compile(POSITIONAL_PREFIX_PATTERN)


def is_system_file(name: str, data_dir_name: str | None = None) -> bool:
    lower = name.lower()
    if data_dir_name and lower == data_dir_name.lower():
        return True
    return lower in SYSTEM_FILE_NAMES or lower.endswith(SYSTEM_FILE_EXTENSIONS)


def looks_managed(name: str) -> bool:
    """True for names this tool could have produced."""
    lower = name.lower()
    return any(lower.endswith(ext) for ext in MEDIA_EXTENSIONS) or bool(_POSITIONAL_PREFIX.match(name))


def run_whitelist(catalog: Catalog, output_dir: Path, data_dir_name: str | None = None) -> list[str]:
    """Delete unclaimed managed-looking files from output_dir. Returns the deleted names."""
    print("Running safety whitelist check...")
    output_dir = Path(output_dir)
    valid = {e.local_filename.lower() for e in catalog.entries() if e.local_filename}
    deleted = []

    for path in sorted(output_dir.iterdir()):
        name = path.name
        if path.is_dir() or is_system_file(name, data_dir_name):
            continue
        if name.lower() in valid or not looks_managed(name):
            continue
        try:
            path.unlink()
        except OSError as e:
            print(f"Could not delete {name}: {e}")
            continue
        deleted.append(name)
        print(f"Deleted unknown file: {name}")

    if deleted:
        print(f"Safety gate removed {len(deleted)} file(s)")
    return deleted


def remove_partial_downloads(output_dir: Path) -> list[str]:
    """Delete yt-dlp leftovers (.part, .ytdl, .temp, *.temp.*) from an interrupted run."""
    output_dir = Path(output_dir)
    if not output_dir.is_dir():
        return []

    removed = []
    for path in output_dir.iterdir():
        name = path.name
        if not path.is_file() or name.lower().endswith(".py"):
            continue
        if name.endswith(PARTIAL_DOWNLOAD_SUFFIXES) or ".temp." in name:
            try:
                path.unlink()
                removed.append(name)
            except OSError as e:
                print(f"Could not remove partial download {name}: {e}")
    if removed:
        print(f"Removed {len(removed)} partial download(s)")
    return removed
