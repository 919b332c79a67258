import json

import pytest

import orchestrator
from catalog import CatalogCorruptError, CatalogStore
from context import RunContext
from db import get_failed_item_ids, get_run
from downloads import OUTCOME_SUCCESS, OUTCOME_UNAVAILABLE, AcquisitionOutcome
from models import CatalogEntry, RemoteItem
from orchestrator import manage_archived, run_convert, run_sync
from youtube import SnapshotError

URL = "https://www.youtube.com/playlist?list=PLtest"


def snapshot(*ids):
    def fetch(url, context):
        assert url == URL
        return [RemoteItem(id=i, title=f"Song {i.upper()}", uploader="Band") for i in ids]
    return fetch


def fake_acquire(entry, output_dir, context):
    name = f"{entry.playlist_index:03d} {entry.title} - {entry.uploader}.opus"
    (output_dir / name).write_bytes(b"audio")
    return AcquisitionOutcome(OUTCOME_SUCCESS, filename=name, strategy="default", attempts=["default"])


def must_not_run(*args, **kwargs):
    raise AssertionError("should not be reached")


@pytest.fixture
def dirs(tmp_path):
    return tmp_path, tmp_path / "data"


def test_full_cycle_downloads_new_items_and_cleans_up(dirs):
    output_dir, data_dir = dirs
    (output_dir / "099 Stray - Someone.opus").write_bytes(b"x")
    (output_dir / "half.webm.part").write_bytes(b"x")
    (output_dir / "notes.txt").write_text("mine")

    summary = run_sync(RunContext(), url=URL, output_dir=output_dir, data_dir=data_dir,
                       fetch_remote=snapshot("a", "b"), acquire=fake_acquire)

    assert summary.status == "completed"
    assert (summary.new_items, summary.downloaded, summary.failed) == (2, 2, 0)
    assert summary.partials_removed == 1
    assert summary.unknown_removed == 1
    assert sorted(p.name for p in output_dir.iterdir() if p.is_file()) == [
        "001 Song A - Band.opus", "002 Song B - Band.opus", "notes.txt",
    ]
    saved = json.loads((data_dir / "catalog.json").read_text())
    assert saved["a"]["download_status"] == "completed"
    assert saved["b"]["local_filename"] == "002 Song B - Band.opus"
    assert (data_dir / "archive.txt").read_text().splitlines() == ["youtube a", "youtube b"]
    assert get_run(summary.run_id)["status"] == "completed"


def test_second_cycle_audits_orphans_and_reindexes(dirs):
    output_dir, data_dir = dirs
    run_sync(RunContext(), url=URL, output_dir=output_dir, data_dir=data_dir,
             fetch_remote=snapshot("a", "b"), acquire=fake_acquire)
    asked = []

    def decide(request):
        asked.append(request.item_ids)
        return "delete"

    summary = run_sync(RunContext(), url=URL, output_dir=output_dir, data_dir=data_dir,
                       fetch_remote=snapshot("b"), acquire=must_not_run, decide=decide)

    assert asked == [["a"]]
    assert (summary.orphaned, summary.audit_deleted, summary.renamed) == (1, 1, 1)
    assert sorted(p.name for p in output_dir.iterdir() if p.is_file()) == ["001 Song B - Band.opus"]
    catalog = CatalogStore(data_dir, output_dir).load()
    assert catalog.ids() == ["b"]
    assert catalog.get("b").local_filename == "001 Song B - Band.opus"


def test_corrupt_catalog_stops_before_touching_files(dirs, monkeypatch):
    output_dir, data_dir = dirs
    data_dir.mkdir()
    (data_dir / "catalog.json").write_text("{broken")
    (output_dir / "042 Precious - Band.opus").write_bytes(b"x")
    (output_dir / "leftover.part").write_bytes(b"x")
    monkeypatch.setattr(orchestrator, "run_whitelist", must_not_run)
    monkeypatch.setattr(orchestrator, "remove_partial_downloads", must_not_run)
    context = RunContext()

    with pytest.raises(CatalogCorruptError):
        run_sync(context, url=URL, output_dir=output_dir, data_dir=data_dir,
                 fetch_remote=must_not_run, acquire=must_not_run)

    assert (output_dir / "042 Precious - Band.opus").exists()
    assert (output_dir / "leftover.part").exists()
    assert (data_dir / "catalog.json").read_text() == "{broken"
    assert get_run(context.run_id)["status"] == "failed"


def test_snapshot_failure_is_fatal_and_recorded(dirs):
    output_dir, data_dir = dirs
    context = RunContext()

    def broken(url, context):
        raise SnapshotError("yt-dlp exited with 1")

    with pytest.raises(SnapshotError):
        run_sync(context, url=URL, output_dir=output_dir, data_dir=data_dir,
                 fetch_remote=broken, acquire=must_not_run)

    run = get_run(context.run_id)
    assert run["status"] == "failed"
    assert "yt-dlp exited" in run["error"]


def test_stop_after_snapshot_saves_and_skips_downloads(dirs):
    output_dir, data_dir = dirs
    context = RunContext()

    def fetch_then_stop(url, ctx):
        items = snapshot("a")(url, ctx)
        ctx.request_stop()
        return items

    summary = run_sync(context, url=URL, output_dir=output_dir, data_dir=data_dir,
                       fetch_remote=fetch_then_stop, acquire=must_not_run)

    assert summary.status == "stopped"
    assert CatalogStore(data_dir, output_dir).load().get("a").status == "active"


def test_failed_items_are_reported(dirs):
    output_dir, data_dir = dirs

    def acquire(entry, output_dir, context):
        if entry.id == "b":
            return AcquisitionOutcome(OUTCOME_UNAVAILABLE, strategy="default", error="Video unavailable")
        return fake_acquire(entry, output_dir, context)

    summary = run_sync(RunContext(), url=URL, output_dir=output_dir, data_dir=data_dir,
                       fetch_remote=snapshot("a", "b"), acquire=acquire)

    assert summary.status == "completed_with_errors"
    assert summary.failed_ids == ["b"]
    assert get_failed_item_ids(summary.run_id) == ["b"]
    assert CatalogStore(data_dir, output_dir).load().get("b").status == "unavailable_pending"


def test_convert_run_without_sources(dirs):
    output_dir, data_dir = dirs

    summary = run_convert(RunContext(), output_dir=output_dir, data_dir=data_dir)

    assert summary.status == "completed"
    assert summary.converted == 0


def test_unknown_archived_action_is_rejected(dirs):
    output_dir, data_dir = dirs

    with pytest.raises(ValueError):
        manage_archived(RunContext(), "shred", output_dir, data_dir)


def test_recheck_downloads_reactivated_items(dirs):
    output_dir, data_dir = dirs
    store = CatalogStore(data_dir, output_dir)
    catalog = store.load()
    catalog.put(CatalogEntry(id="z", title="[DEL] Song Z", uploader="Band",
                             status="unavailable_archived", playlist_index=1))
    store.save(catalog)

    result = manage_archived(RunContext(), "recheck", output_dir, data_dir,
                             check=lambda item_id, ctx: "Song Z", acquire=fake_acquire)

    assert result["reactivated"] == ["z"]
    assert result["downloaded"] == 1
    assert (output_dir / "001 Song Z - Band.opus").exists()
