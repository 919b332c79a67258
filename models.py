"""
PlaylistMirror - Pydantic Models

Catalog entries, remote snapshot items, and API request bodies.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

EntryStatus = Literal["active", "unavailable_pending", "orphaned", "archived", "unavailable_archived"]
DownloadStatus = Literal["pending", "completed"]
AuditDecision = Literal["delete", "keep"]


class CatalogEntry(BaseModel):
    """One remote item as the archive knows it. Keyed by id in the catalog file."""
    # Older catalogs carry extra yt-dlp fields; keep them on round trip
    model_config = ConfigDict(extra="allow")

    id: str
    title: str = ""
    uploader: str = ""
    playlist_index: Optional[int] = None
    local_filename: Optional[str] = None  # Owned by acquisition/rename, never by the snapshot
    download_status: DownloadStatus = "pending"
    status: EntryStatus = "active"
    last_synced: Optional[str] = None


class RemoteItem(BaseModel):
    """One line of the flat playlist snapshot."""
    id: str = Field(..., min_length=1)
    title: str = ""
    uploader: str = ""
    is_unavailable: bool = False


class SyncRequest(BaseModel):
    url: Optional[str] = None  # Defaults to the playlist_url setting
    convert: bool = False      # Run the transcode phase after downloads


class AuditDecisionRequest(BaseModel):
    decision: AuditDecision


class ConvertRequest(BaseModel):
    source_dir: Optional[str] = None  # Defaults to the output directory


class ArchivedPurgeRequest(BaseModel):
    only_unavailable: bool = False
    confirm: bool = False


class SettingsUpdate(BaseModel):
    """Settings that can be updated via the API"""
    playlist_url: Optional[str] = None
    data_subdir: Optional[str] = None
    save_every: Optional[int] = Field(None, ge=1)
    download_concurrency: Optional[int] = Field(None, ge=1, le=10)
    transcode_concurrency: Optional[int] = Field(None, ge=1, le=16)
    ffmpeg_threads_per_job: Optional[int] = Field(None, ge=1, le=16)
    dynamic_quality: Optional[bool] = None
    fallback_bitrate: Optional[str] = Field(None, pattern=r"^\d+k$")
    quality_lossless: Optional[str] = Field(None, pattern=r"^\d+k$")
    quality_high: Optional[str] = Field(None, pattern=r"^\d+k$")
    quality_standard: Optional[str] = Field(None, pattern=r"^\d+k$")
    quality_low: Optional[str] = Field(None, pattern=r"^\d+k$")
    quality_minimum: Optional[str] = Field(None, pattern=r"^\d+k$")
    delete_source_after_convert: Optional[bool] = None
    youtube_cookies: Optional[str] = None
    notify_on: Optional[str] = None
    telegram_webhook_url: Optional[str] = None
    webhook_url: Optional[str] = None
    api_key: Optional[str] = None
