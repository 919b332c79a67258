"""
PlaylistMirror - Settings Management

Environment variable > DB value > default hierarchy.
"""

import os
from pathlib import Path

from constants import (
    DEFAULT_DOWNLOAD_CONCURRENCY, DEFAULT_FALLBACK_BITRATE, DEFAULT_QUALITY_TIERS,
    DEFAULT_SAVE_EVERY, DEFAULT_TRANSCODE_CONCURRENCY, OUTPUT_DIR,
)
from db import db_conn


def get_setting(key: str, default: str = "") -> str:
    """Get a setting value. Environment variable takes precedence over DB value."""
    # Check environment variable first (uppercase, with underscores)
    env_key = key.upper().replace(".", "_")
    env_value = os.getenv(env_key)
    if env_value is not None:
        return env_value

    # Fall back to database
    try:
        with db_conn() as conn:
            cursor = conn.execute("SELECT value FROM settings WHERE key = ?", (key,))
            row = cursor.fetchone()
        if row and row[0] is not None:
            return row[0]
    except Exception:
        pass

    return default


def get_setting_bool(key: str, default: bool = False) -> bool:
    """Get a boolean setting value."""
    value = get_setting(key, str(default).lower())
    return value.lower() in ("true", "1", "yes", "on")


def get_setting_int(key: str, default: int = 0) -> int:
    """Get an integer setting value."""
    value = get_setting(key, str(default))
    try:
        return int(value)
    except (ValueError, TypeError):
        return default


def set_setting(key: str, value: str) -> None:
    """Set a setting value in the database."""
    with db_conn() as conn:
        conn.execute("""
            INSERT INTO settings (key, value, updated_at)
            VALUES (?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(key) DO UPDATE SET value = ?, updated_at = CURRENT_TIMESTAMP
        """, (key, value, value))
        conn.commit()


# Define which settings are sensitive (should be masked in GET response)
SENSITIVE_SETTINGS = {"telegram_webhook_url", "api_key", "youtube_cookies"}

# Define all configurable settings with their types and defaults
SETTINGS_SCHEMA = {
    # Sync
    "playlist_url": {"type": "str", "default": "", "env": "PLAYLIST_URL"},
    "data_subdir": {"type": "str", "default": "data", "env": "DATA_SUBDIR"},
    "save_every": {"type": "int", "default": DEFAULT_SAVE_EVERY, "env": "SAVE_EVERY"},
    # Pools
    "download_concurrency": {"type": "int", "default": DEFAULT_DOWNLOAD_CONCURRENCY, "env": "DOWNLOAD_CONCURRENCY"},
    "transcode_concurrency": {"type": "int", "default": DEFAULT_TRANSCODE_CONCURRENCY, "env": "TRANSCODE_CONCURRENCY"},
    "ffmpeg_threads_per_job": {"type": "int", "default": 2, "env": "FFMPEG_THREADS_PER_JOB"},
    # Quality
    "dynamic_quality": {"type": "bool", "default": True, "env": "DYNAMIC_QUALITY"},
    "fallback_bitrate": {"type": "str", "default": DEFAULT_FALLBACK_BITRATE, "env": "FALLBACK_BITRATE"},
    "quality_lossless": {"type": "str", "default": DEFAULT_QUALITY_TIERS["lossless"], "env": "QUALITY_LOSSLESS"},
    "quality_high": {"type": "str", "default": DEFAULT_QUALITY_TIERS["high"], "env": "QUALITY_HIGH"},
    "quality_standard": {"type": "str", "default": DEFAULT_QUALITY_TIERS["standard"], "env": "QUALITY_STANDARD"},
    "quality_low": {"type": "str", "default": DEFAULT_QUALITY_TIERS["low"], "env": "QUALITY_LOW"},
    "quality_minimum": {"type": "str", "default": DEFAULT_QUALITY_TIERS["minimum"], "env": "QUALITY_MINIMUM"},
    "delete_source_after_convert": {"type": "bool", "default": True, "env": "DELETE_SOURCE_AFTER_CONVERT"},
    # YouTube
    "youtube_cookies": {"type": "str", "default": "", "env": "YOUTUBE_COOKIES", "sensitive": True},
    # Notifications
    "notify_on": {"type": "str", "default": "sync,errors", "env": "NOTIFY_ON"},
    "telegram_webhook_url": {"type": "str", "default": "", "env": "TELEGRAM_WEBHOOK_URL", "sensitive": True},
    "webhook_url": {"type": "str", "default": "", "env": "WEBHOOK_URL"},
    # Security
    "api_key": {"type": "str", "default": "", "env": "API_KEY", "sensitive": True},
}


def _get_typed_setting(key: str):
    """Get a setting with proper type conversion based on schema."""
    schema = SETTINGS_SCHEMA.get(key, {"type": "str", "default": ""})
    default = schema["default"]
    if schema["type"] == "bool":
        return get_setting_bool(key, default)
    elif schema["type"] == "int":
        return get_setting_int(key, default)
    return get_setting(key, default)


def _is_env_override(key: str) -> bool:
    """Check if a setting is being overridden by an environment variable."""
    schema = SETTINGS_SCHEMA.get(key, {})
    env_key = schema.get("env", key.upper())
    return os.getenv(env_key) is not None


def get_output_dir() -> Path:
    """The acquisition directory. Structural, so it only comes from the environment."""
    return OUTPUT_DIR


def get_data_dir(output_dir: Path | None = None) -> Path:
    """Directory holding the catalog, its backup and the archive listing.

    Lives inside the output directory so the safety gate can recognise it.
    """
    subdir = get_setting("data_subdir", "data").strip() or "data"
    return (output_dir or get_output_dir()) / subdir


def get_quality_tiers() -> dict[str, str]:
    """Tier name -> nominal ffmpeg bitrate, e.g. {"standard": "128k"}."""
    return {
        tier: get_setting(f"quality_{tier}", default)
        for tier, default in DEFAULT_QUALITY_TIERS.items()
    }


def get_fallback_bitrate() -> str:
    return get_setting("fallback_bitrate", DEFAULT_FALLBACK_BITRATE)


def get_concurrency(kind: str) -> int:
    """Worker slots for the 'download' or 'transcode' pool (never below 1)."""
    default = DEFAULT_DOWNLOAD_CONCURRENCY if kind == "download" else DEFAULT_TRANSCODE_CONCURRENCY
    return max(1, get_setting_int(f"{kind}_concurrency", default))
