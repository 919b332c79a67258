"""
PlaylistMirror - Notification System

Telegram and generic webhook dispatch of run summaries.
"""

import httpx

from constants import TIMEOUT_HTTP_REQUEST
from settings import get_setting


def _build_notification_message(
    notification_type: str,
    title: str,
    status: str = "completed",
    error: str = None,
    counts: dict = None,
    failed_ids: list = None,
) -> str:
    """Build the plain-text message body."""
    if status == "failed":
        status_text = "[FAILED]"
    elif status == "completed_with_errors":
        status_text = "[PARTIAL]"
    elif status == "stopped":
        status_text = "[STOPPED]"
    else:
        status_text = "[OK]"

    label = "Sync" if notification_type == "sync" else notification_type.capitalize()
    lines = [f"PlaylistMirror {status_text}", f"{label}: {title}"]

    if counts:
        summary_parts = [f"{value} {name.replace('_', ' ')}" for name, value in counts.items() if value]
        if summary_parts:
            lines.append(", ".join(summary_parts))
    if failed_ids:
        shown = ", ".join(failed_ids[:10])
        more = f" (+{len(failed_ids) - 10} more)" if len(failed_ids) > 10 else ""
        lines.append(f"Failed: {shown}{more}")
    if error:
        lines.append(f"Error: {error}")

    return "\n".join(lines)


def _should_notify(notification_type: str, status: str, error: str = None) -> bool:
    """Check if notifications should be sent for this type."""
    notify_on = get_setting("notify_on", "sync,errors")
    enabled_types = [t.strip().lower() for t in notify_on.split(",")]

    type_map = {
        "sync": "sync",
        "convert": "convert",
        "error": "errors",
    }

    config_type = type_map.get(notification_type, notification_type)
    is_error = status in ("failed", "completed_with_errors") or error

    return config_type in enabled_types or bool(is_error and "errors" in enabled_types)


def _post(url: str, payload: dict) -> None:
    try:
        with httpx.Client(timeout=TIMEOUT_HTTP_REQUEST) as client:
            client.post(url, json=payload)
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        print(f"Notification failed: {e}")  # Non-critical


def _send_telegram(message: str):
    """Send notification via Telegram webhook."""
    telegram_url = get_setting("telegram_webhook_url")
    if not telegram_url:
        return
    _post(telegram_url, {"text": message})


def _send_webhook(
    notification_type: str,
    title: str,
    status: str = "completed",
    error: str = None,
    counts: dict = None,
    failed_ids: list = None,
):
    """Send notification via generic webhook POST."""
    webhook_url = get_setting("webhook_url")
    if not webhook_url:
        return

    payload = {
        "event": f"{notification_type}.{status}",
        "type": notification_type,
        "title": title,
        "status": status,
    }
    if error:
        payload["error"] = error
    if counts:
        payload["counts"] = counts
    if failed_ids:
        payload["failed_ids"] = failed_ids
    _post(webhook_url, payload)


def send_notification(
    notification_type: str,
    title: str,
    status: str = "completed",
    error: str = None,
    counts: dict = None,
    failed_ids: list = None,
):
    """Send notifications to all configured channels (Telegram, webhook).

    Args:
        notification_type: One of 'sync', 'convert', 'error'
        title: Playlist URL or source directory the run worked on
        status: Run status (completed/completed_with_errors/failed/stopped)
        error: Error message if failed
        counts: Summary counters, e.g. {"new_items": 3, "downloaded": 2}
        failed_ids: Item ids that failed in this run
    """
    if not _should_notify(notification_type, status, error):
        return

    message = _build_notification_message(notification_type, title, status, error, counts, failed_ids)
    _send_telegram(message)
    _send_webhook(notification_type, title, status, error, counts, failed_ids)
