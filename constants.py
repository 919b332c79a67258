"""
PlaylistMirror - Application Constants

All shared constants in one place for easy tuning.
"""

import os
from pathlib import Path

VERSION = "1.4.0"

# Timeout values (in seconds)
TIMEOUT_YTDLP_PLAYLIST = 300     # Flat snapshot of a large playlist
TIMEOUT_YTDLP_DOWNLOAD = 600     # One acquisition attempt (one strategy)
TIMEOUT_YTDLP_CHECK = 15         # Availability recheck of a single item
TIMEOUT_FFPROBE = 30             # Probing one source file
TIMEOUT_FFMPEG_CONVERT = 900     # Transcoding one source file
TIMEOUT_HTTP_REQUEST = 10        # Notification webhooks
STALE_JOB_TIMEOUT = 3600         # Jobs still 'running' after this long died with the process
DECISION_WAIT_TIMEOUT = 3600     # Audit decisions left unanswered fall back to keep

# External tools (override with full paths when they are not on PATH)
YTDLP_BIN = os.getenv("YTDLP_BIN", "yt-dlp")
FFMPEG_BIN = os.getenv("FFMPEG_BIN", "ffmpeg")
FFPROBE_BIN = os.getenv("FFPROBE_BIN", "ffprobe")

# Configuration from environment - structural paths
OUTPUT_DIR = Path(os.getenv("OUTPUT_DIR", "/music/playlist"))
DB_PATH = Path(os.getenv("DB_PATH", "/data/playlist_mirror.db"))
COOKIES_FILE = Path(os.getenv("COOKIES_FILE", "/data/cookies.txt"))  # yt-dlp cookies file path

# Catalog files (live inside the data directory under OUTPUT_DIR)
CATALOG_FILE = "catalog.json"
CATALOG_BACKUP_SUFFIX = ".bak"
ARCHIVE_FILE = "archive.txt"
ARCHIVE_NAMESPACE = "youtube"

# Catalog lifecycle states
STATUS_ACTIVE = "active"
STATUS_UNAVAILABLE_PENDING = "unavailable_pending"
STATUS_ORPHANED = "orphaned"
STATUS_ARCHIVED = "archived"
STATUS_UNAVAILABLE_ARCHIVED = "unavailable_archived"
ARCHIVED_STATUSES = {STATUS_ARCHIVED, STATUS_UNAVAILABLE_ARCHIVED}

DOWNLOAD_PENDING = "pending"
DOWNLOAD_COMPLETED = "completed"

# Snapshot markers for items that are gone upstream
DEAD_TITLES = {"[Deleted video]", "[Private video]"}
DEAD_TITLE_TAG = "[DEL]"
ARCHIVED_NAME_TAG = "[ARCHIVED]"

# yt-dlp stderr markers for a permanently unavailable item
UNAVAILABLE_MARKERS = ("Video unavailable", "Private video", "This video has been removed")

# Acquisition strategies, tried strictly in this order
DOWNLOAD_STRATEGIES = [
    {"name": "NITRO", "args": ["--extractor-args", "youtube:player-client=android_vr", "-N", "8"]},
    {"name": "SAFE", "args": ["--extractor-args", "youtube:player-client=android", "-N", "2"]},
    {"name": "IOS", "args": ["--extractor-args", "youtube:player-client=ios"]},
]
YTDLP_TRIM_FILENAMES = 160
YOUTUBE_WATCH_URL = "https://www.youtube.com/watch?v={id}"

# File handling
MAX_FILENAME_LENGTH = 200        # Maximum characters in sanitised filenames
MEDIA_EXTENSIONS = [".opus", ".webm", ".m4a", ".mp3", ".flac", ".wav"]
TRANSCODE_SOURCE_EXTENSIONS = [".webm", ".m4a"]   # YouTube's original audio containers
TRANSCODE_TARGET_EXTENSION = ".opus"
PARTIAL_DOWNLOAD_SUFFIXES = (".part", ".ytdl", ".temp")
POSITIONAL_PREFIX_PATTERN = r"^\d{3}\s"

# Never touched by the safety gate, whatever the catalog says
SYSTEM_FILE_NAMES = {
    "yt-dlp", "yt-dlp.exe", "ffmpeg", "ffmpeg.exe", "ffprobe", "ffprobe.exe",
    "pyproject.toml", ".git", ".gitignore", ".env", "cookies.txt",
}
SYSTEM_FILE_EXTENSIONS = (".py", ".json", ".log", ".bat", ".sh", ".toml", ".db")

# Codecs that carry no lossy generation loss
LOSSLESS_CODECS = {"flac", "alac", "wav", "pcm_s16le", "pcm_s24le", "pcm_s32le", "aiff"}

# Bitrate policy thresholds (kbps), evaluated top to bottom after the
# lossless and sample-rate checks. Each maps onto a named tier.
HIGH_RES_SAMPLE_RATE = 48000
BITRATE_TIER_THRESHOLDS = [
    (256, "high"),
    (160, "standard"),
    (128, "standard"),
    (96, "low"),
]
DEFAULT_QUALITY_TIERS = {
    "lossless": "256k",
    "high": "192k",
    "standard": "128k",
    "low": "96k",
    "minimum": "64k",
}
DEFAULT_FALLBACK_BITRATE = "128k"

# Pool sizing defaults
DEFAULT_DOWNLOAD_CONCURRENCY = 3
DEFAULT_TRANSCODE_CONCURRENCY = max(2, (os.cpu_count() or 4) - 2)
DEFAULT_SAVE_EVERY = 5

# Rate limiting
RATE_LIMIT_REQUESTS = 60         # Max requests per IP per window
RATE_LIMIT_WINDOW = 60           # Window size in seconds

# YouTube player client override for snapshot/recheck calls (empty = yt-dlp default)
YTDLP_PLAYER_CLIENT = os.getenv("YTDLP_PLAYER_CLIENT", "")
