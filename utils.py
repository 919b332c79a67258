"""
PlaylistMirror - Common Utilities

Filename sanitisation, timestamps, and background threads.
"""

import os
import re
import threading
from datetime import datetime, timezone
from pathlib import Path

from constants import MAX_FILENAME_LENGTH


def sanitize_filename(name: str) -> str:
    """Remove/replace characters that are problematic in filenames"""
    if not name:
        return ""
    name = re.sub(r'[<>:"/\\|?*]', '', name)
    name = re.sub(r'\s+', ' ', name).strip()
    return name[:MAX_FILENAME_LENGTH]


def is_valid_youtube_id(video_id: str) -> bool:
    """Basic validation for YouTube video/playlist IDs."""
    return bool(re.match(r'^[A-Za-z0-9_-]+$', video_id or ""))


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def short_title(title: str, limit: int = 30) -> str:
    """Trim a title for one-line progress output."""
    title = title or ""
    return title if len(title) <= limit else title[:limit - 3] + "..."


def file_exists(output_dir: Path, filename: str | None) -> bool:
    """True when a catalog filename points at an existing file in output_dir."""
    return bool(filename) and (output_dir / filename).is_file()


def set_file_permissions(file_path: Path):
    """Set file permissions to 666 (rw for all) for NAS/SMB compatibility"""
    try:
        os.chmod(file_path, 0o666)
    except OSError:
        pass  # Silently ignore permission errors (may not have rights)


def spawn_daemon_thread(target, *args, **kwargs) -> threading.Thread:
    """Start a daemon thread for background work."""
    thread = threading.Thread(target=target, args=args, kwargs=kwargs, daemon=True)
    thread.start()
    return thread
