import os
import subprocess
import tempfile
from pathlib import Path

# constants.py reads these at import time, so they must be set before any
# project module is imported.
_TEST_ROOT = Path(tempfile.mkdtemp(prefix="playlist-mirror-tests-"))
os.environ["DB_PATH"] = str(_TEST_ROOT / "test.db")
os.environ["OUTPUT_DIR"] = str(_TEST_ROOT / "music")
os.environ["COOKIES_FILE"] = str(_TEST_ROOT / "cookies.txt")

import pytest  # noqa: E402

from context import RunContext  # noqa: E402
from db import db_conn, init_db  # noqa: E402

init_db()

_SETTING_ENV_KEYS = (
    "PLAYLIST_URL", "DATA_SUBDIR", "SAVE_EVERY", "DOWNLOAD_CONCURRENCY",
    "TRANSCODE_CONCURRENCY", "FFMPEG_THREADS_PER_JOB", "DYNAMIC_QUALITY",
    "FALLBACK_BITRATE", "DELETE_SOURCE_AFTER_CONVERT", "YOUTUBE_COOKIES",
    "NOTIFY_ON", "TELEGRAM_WEBHOOK_URL", "WEBHOOK_URL", "API_KEY",
)


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    """Every test starts from schema defaults: no env overrides, no stored settings."""
    for key in _SETTING_ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    with db_conn() as conn:
        conn.execute("DELETE FROM settings")
        conn.commit()
    yield


class ScriptedContext(RunContext):
    """RunContext whose external tools are replaced by a scripted list of results.

    Each result is a CompletedProcess, an exception to raise, or a
    callable(cmd) returning a CompletedProcess.
    """

    def __init__(self, results=(), run_id=None):
        super().__init__(run_id)
        self.results = list(results)
        self.calls = []

    def run(self, cmd, timeout=None):
        self.calls.append(cmd)
        result = self.results.pop(0)
        if isinstance(result, BaseException):
            raise result
        if callable(result):
            return result(cmd)
        return result


def completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(["tool"], returncode, stdout, stderr)


@pytest.fixture
def scripted_context():
    return ScriptedContext


@pytest.fixture
def make_completed():
    return completed
