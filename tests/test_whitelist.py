from catalog import Catalog
from models import CatalogEntry
from whitelist import remove_partial_downloads, run_whitelist


def test_safety_gate_deletes_only_unclaimed_managed_files(tmp_path):
    names = [
        "042 Some Title - Artist.opus",   # prefix + media, unclaimed
        "song.mp3",                        # media, unclaimed
        "123 readme.txt",                  # prefix, unclaimed
        "001 Kept - Band.opus",            # claimed
        "notes.txt",                       # not ours
        "cover.jpg",                       # not ours
        "helper.py",                       # system extension
        "settings.json",                   # system extension
        "cookies.txt",                     # system name
        ".env",                            # system name
        "yt-dlp",                          # system name
    ]
    for name in names:
        (tmp_path / name).write_bytes(b"x")
    (tmp_path / "data").mkdir()
    (tmp_path / "999 folder.opus").mkdir()

    catalog = Catalog()
    catalog.put(CatalogEntry(id="k", local_filename="001 KEPT - band.opus"))

    deleted = run_whitelist(catalog, tmp_path, "data")

    assert sorted(deleted) == ["042 Some Title - Artist.opus", "123 readme.txt", "song.mp3"]
    remaining = {p.name for p in tmp_path.iterdir()}
    assert "001 Kept - Band.opus" in remaining
    assert {"notes.txt", "cover.jpg", "helper.py", "settings.json", "cookies.txt", ".env", "yt-dlp"} <= remaining
    assert (tmp_path / "data").is_dir()
    assert (tmp_path / "999 folder.opus").is_dir()


def test_every_claimed_file_survives(tmp_path):
    catalog = Catalog()
    for i in range(1, 6):
        name = f"{i:03d} Track {i} - Band.opus"
        (tmp_path / name).write_bytes(b"x")
        catalog.put(CatalogEntry(id=str(i), local_filename=name, status="active" if i % 2 else "archived"))

    assert run_whitelist(catalog, tmp_path, "data") == []
    assert len(list(tmp_path.iterdir())) == 5


def test_partial_downloads_are_removed(tmp_path):
    for name in ["a.opus.part", "a.ytdl", "b.temp", "c.temp.webm", "keep.opus", "script.temp.py"]:
        (tmp_path / name).write_bytes(b"x")

    removed = remove_partial_downloads(tmp_path)

    assert sorted(removed) == ["a.opus.part", "a.ytdl", "b.temp", "c.temp.webm"]
    assert sorted(p.name for p in tmp_path.iterdir()) == ["keep.opus", "script.temp.py"]


def test_partial_cleanup_on_missing_dir_is_noop(tmp_path):
    assert remove_partial_downloads(tmp_path / "nope") == []
