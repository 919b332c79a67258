"""
PlaylistMirror - YouTube / yt-dlp Operations

Cookie handling, flat playlist snapshots, and single-item availability checks.
"""

import json
import subprocess

from constants import (
    COOKIES_FILE, DEAD_TITLES, TIMEOUT_YTDLP_CHECK, TIMEOUT_YTDLP_PLAYLIST,
    YOUTUBE_WATCH_URL, YTDLP_BIN, YTDLP_PLAYER_CLIENT,
)
from context import RunContext
from models import RemoteItem
from settings import get_setting
from utils import is_valid_youtube_id


class SnapshotError(Exception):
    """The remote playlist could not be fetched at all. Fatal for the cycle."""


def _has_valid_cookie_entries(cookies_text: str) -> bool:
    """Check for at least one Netscape-format cookie entry (tabs-separated)."""
    for raw_line in cookies_text.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        # Netscape format can prefix HttpOnly entries with "#HttpOnly_"
        if line.startswith("#HttpOnly_"):
            if line.count("\t") >= 6:
                return True
            continue
        # Skip comments
        if line.startswith("#"):
            continue
        if line.count("\t") >= 6:
            return True
    return False


def _sync_cookies_file():
    """Write YouTube cookies from settings to the cookies file on disk.
    Called when settings are saved and at startup."""
    cookies = get_setting("youtube_cookies", "")
    if cookies.strip():
        if not _has_valid_cookie_entries(cookies):
            # Avoid writing invalid cookie data that can break yt-dlp
            if COOKIES_FILE.exists():
                COOKIES_FILE.unlink()
            return
        COOKIES_FILE.parent.mkdir(parents=True, exist_ok=True)
        COOKIES_FILE.write_text(cookies)
    elif COOKIES_FILE.exists():
        COOKIES_FILE.unlink()


def _ytdlp_base_args(with_player_client: bool = True):
    """Return common yt-dlp arguments (cookies, optional player-client override).

    Acquisition passes with_player_client=False because each strategy picks
    its own client.
    """
    args = []
    if COOKIES_FILE.exists() and COOKIES_FILE.stat().st_size > 0:
        args.extend(["--cookies", str(COOKIES_FILE)])
    if with_player_client and YTDLP_PLAYER_CLIENT:
        args.extend(["--extractor-args", f"youtube:player_client={YTDLP_PLAYER_CLIENT}"])
    return args


def is_dead_title(title: str | None) -> bool:
    return (title or "").strip() in DEAD_TITLES


def parse_snapshot_lines(stdout: str) -> list[RemoteItem]:
    """Turn yt-dlp --dump-json output into RemoteItems. Malformed lines are dropped."""
    items = []
    dropped = 0
    for line in stdout.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            dropped += 1
            continue
        if not isinstance(data, dict) or not is_valid_youtube_id(str(data.get("id") or "")):
            dropped += 1
            continue

        title = data.get("title") or ""
        items.append(RemoteItem(
            id=str(data["id"]),
            title=title,
            uploader=data.get("uploader") or data.get("channel") or "",
            is_unavailable=is_dead_title(title),
        ))
    if dropped:
        print(f"Snapshot: dropped {dropped} malformed line(s)")
    return items


def fetch_remote_snapshot(url: str, context: RunContext) -> list[RemoteItem]:
    """Fetch the playlist in order. Raises SnapshotError if yt-dlp fails outright."""
    if not url:
        raise SnapshotError("No playlist URL configured (set PLAYLIST_URL)")

    print("Fetching playlist snapshot...")
    cmd = [
        YTDLP_BIN,
        *_ytdlp_base_args(),
        "--flat-playlist",
        "--dump-json",
        "--no-clean-info",
        "--no-warnings",
        url,
    ]
    try:
        result = context.run(cmd, timeout=TIMEOUT_YTDLP_PLAYLIST)
    except subprocess.TimeoutExpired:
        raise SnapshotError("Timeout fetching playlist snapshot")
    except OSError as e:
        raise SnapshotError(f"Could not start {YTDLP_BIN}: {e}")

    if result.returncode != 0:
        tail = (result.stderr or "").strip()[-300:]
        raise SnapshotError(f"yt-dlp exited with {result.returncode} fetching the playlist: {tail}")

    items = parse_snapshot_lines(result.stdout)
    print(f"Snapshot complete: {len(items)} items")
    return items


def check_item_available(item_id: str, context: RunContext) -> str | None:
    """Return the live title when the item is public again, else None."""
    cmd = [
        YTDLP_BIN,
        *_ytdlp_base_args(),
        "--skip-download",
        "--no-warnings",
        "--print", "title",
        YOUTUBE_WATCH_URL.format(id=item_id),
    ]
    try:
        result = context.run(cmd, timeout=TIMEOUT_YTDLP_CHECK)
    except (subprocess.TimeoutExpired, OSError):
        return None

    title = (result.stdout or "").strip()
    if result.returncode != 0 or not title or is_dead_title(title):
        return None
    return title
