import json
import subprocess

import pytest

import youtube
from youtube import SnapshotError, check_item_available, fetch_remote_snapshot, parse_snapshot_lines


def snapshot_line(**data):
    return json.dumps(data)


def test_snapshot_parsing_keeps_order_and_flags_dead_items():
    stdout = "\n".join([
        snapshot_line(id="a1", title="First", uploader="Band"),
        "{not json",
        snapshot_line(title="no id"),
        snapshot_line(id="../escape", title="bad id"),
        snapshot_line(id="b2", title="[Private video]", uploader=None),
        "",
        snapshot_line(id="c3", title="Third", channel="Channel Name"),
    ])

    items = parse_snapshot_lines(stdout)

    assert [i.id for i in items] == ["a1", "b2", "c3"]
    assert items[0].is_unavailable is False
    assert items[1].is_unavailable is True
    assert items[1].uploader == ""
    assert items[2].uploader == "Channel Name"


def test_fetch_builds_flat_playlist_command(scripted_context, make_completed):
    context = scripted_context([make_completed(stdout=snapshot_line(id="a", title="A"))])

    items = fetch_remote_snapshot("https://www.youtube.com/playlist?list=PL1", context)

    assert [i.id for i in items] == ["a"]
    cmd = context.calls[0]
    assert cmd[0] == youtube.YTDLP_BIN
    assert {"--flat-playlist", "--dump-json", "--no-warnings"} <= set(cmd)
    assert cmd[-1] == "https://www.youtube.com/playlist?list=PL1"


@pytest.mark.parametrize(
    "result",
    [
        subprocess.CompletedProcess(["yt-dlp"], 1, "", "ERROR: The playlist does not exist"),
        subprocess.TimeoutExpired(["yt-dlp"], 300),
        FileNotFoundError("yt-dlp"),
    ],
)
def test_fetch_failures_are_fatal(scripted_context, result):
    with pytest.raises(SnapshotError):
        fetch_remote_snapshot("https://example.invalid/list", scripted_context([result]))


def test_fetch_without_url_is_fatal(scripted_context):
    context = scripted_context([])

    with pytest.raises(SnapshotError):
        fetch_remote_snapshot("", context)
    assert context.calls == []


def test_availability_check(scripted_context, make_completed):
    context = scripted_context([
        make_completed(stdout="Back Online\n"),
        make_completed(returncode=1, stderr="ERROR: Video unavailable"),
        make_completed(stdout="[Private video]\n"),
        subprocess.TimeoutExpired(["yt-dlp"], 15),
    ])

    assert check_item_available("abc", context) == "Back Online"
    assert check_item_available("abc", context) is None
    assert check_item_available("abc", context) is None
    assert check_item_available("abc", context) is None
    assert context.calls[0][-1] == "https://www.youtube.com/watch?v=abc"


def test_cookie_sync_writes_only_valid_netscape_data(monkeypatch, tmp_path):
    cookies_file = tmp_path / "cookies.txt"
    monkeypatch.setattr(youtube, "COOKIES_FILE", cookies_file)
    valid = "# Netscape HTTP Cookie File\n.youtube.com\tTRUE\t/\tTRUE\t0\tSID\tvalue\n"

    monkeypatch.setattr(youtube, "get_setting", lambda key, default=None: valid)
    youtube._sync_cookies_file()
    assert cookies_file.read_text() == valid
    assert youtube._ytdlp_base_args()[:2] == ["--cookies", str(cookies_file)]

    monkeypatch.setattr(youtube, "get_setting", lambda key, default=None: "garbage")
    youtube._sync_cookies_file()
    assert not cookies_file.exists()
