from catalog import Catalog
from models import CatalogEntry, RemoteItem
from reconciler import harmonize

NOW = "2026-01-01T00:00:00+00:00"


def remote(item_id, title=None, uploader="Band"):
    title = title if title is not None else f"Song {item_id}"
    return RemoteItem(id=item_id, title=title, uploader=uploader, is_unavailable=title in ("[Deleted video]", "[Private video]"))


def catalog_with(*entries) -> Catalog:
    catalog = Catalog()
    for entry in entries:
        catalog.put(entry)
    return catalog


def test_new_items_are_created_with_positions(tmp_path):
    catalog = Catalog()

    result = harmonize([remote("a"), remote("b", "[Private video]")], catalog, tmp_path, now=NOW)

    a, b = catalog.get("a"), catalog.get("b")
    assert result.new == ["a", "b"]
    assert (a.status, a.playlist_index, a.local_filename, a.download_status) == ("active", 1, None, "pending")
    assert (b.status, b.playlist_index) == ("unavailable_pending", 2)
    assert a.last_synced == NOW


def test_dead_known_item_keeps_its_title_with_tag_once(tmp_path):
    catalog = catalog_with(CatalogEntry(id="a", title="Real Name", uploader="Band", status="active"))

    harmonize([remote("a", "[Deleted video]", uploader="")], catalog, tmp_path)
    harmonize([remote("a", "[Deleted video]", uploader="")], catalog, tmp_path)

    entry = catalog.get("a")
    assert entry.status == "unavailable_pending"
    assert entry.title == "[DEL] Real Name"
    assert entry.uploader == "Band"


def test_dead_item_in_other_states_keeps_status(tmp_path):
    catalog = catalog_with(
        CatalogEntry(id="o", title="O", status="orphaned"),
        CatalogEntry(id="k", title="K", status="unavailable_archived"),
    )

    harmonize([remote("o", "[Deleted video]"), remote("k", "[Private video]")], catalog, tmp_path)

    assert catalog.get("o").status == "orphaned"
    assert catalog.get("k").status == "unavailable_archived"


def test_alive_item_becomes_active_and_takes_remote_metadata(tmp_path):
    catalog = catalog_with(
        CatalogEntry(id="o", title="Old", status="orphaned"),
        CatalogEntry(id="u", title="[DEL] Back", status="unavailable_pending"),
    )

    harmonize([remote("o", "New"), remote("u", "Back")], catalog, tmp_path)

    assert (catalog.get("o").status, catalog.get("o").title) == ("active", "New")
    assert (catalog.get("u").status, catalog.get("u").title) == ("active", "Back")


def test_archived_item_back_in_playlist_reactivates_only_without_file(tmp_path):
    (tmp_path / "[ARCHIVED] Kept - Band.opus").write_bytes(b"x")
    catalog = catalog_with(
        CatalogEntry(id="kept", title="Kept", status="archived", local_filename="[ARCHIVED] Kept - Band.opus"),
        CatalogEntry(id="lost", title="Lost", status="archived", local_filename="[ARCHIVED] Lost - Band.opus"),
    )

    result = harmonize([remote("kept"), remote("lost")], catalog, tmp_path)

    assert catalog.get("kept").status == "archived"
    assert catalog.get("kept").playlist_index == 1
    assert catalog.get("lost").status == "active"
    assert result.reactivated == ["lost"]


def test_absent_items_are_orphaned_or_left_archived(tmp_path):
    catalog = catalog_with(
        CatalogEntry(id="act", status="active", playlist_index=1),
        CatalogEntry(id="pend", status="unavailable_pending", playlist_index=2),
        CatalogEntry(id="arch", status="archived", playlist_index=3),
        CatalogEntry(id="uarch", status="unavailable_archived", playlist_index=4),
        CatalogEntry(id="orph", status="orphaned"),
    )

    result = harmonize([], catalog, tmp_path)

    assert sorted(result.orphaned) == ["act", "pend"]
    statuses = {e.id: e.status for e in catalog.entries()}
    assert statuses == {
        "act": "orphaned", "pend": "orphaned", "arch": "archived",
        "uarch": "unavailable_archived", "orph": "orphaned",
    }
    assert all(e.playlist_index is None for e in catalog.entries())


def test_local_fields_are_never_overwritten(tmp_path):
    catalog = catalog_with(CatalogEntry(
        id="a", title="A", status="active", playlist_index=5,
        local_filename="005 A - Band.opus", download_status="completed",
    ))

    harmonize([remote("z"), remote("a", "A (Remastered)")], catalog, tmp_path)

    entry = catalog.get("a")
    assert entry.playlist_index == 2
    assert entry.local_filename == "005 A - Band.opus"
    assert entry.download_status == "completed"
    assert entry.title == "A (Remastered)"


def test_catalog_keys_match_entry_ids_after_reconcile(tmp_path):
    catalog = catalog_with(CatalogEntry(id="x", status="active"))

    harmonize([remote("a"), remote("b"), remote("x")], catalog, tmp_path)

    assert all(key == value["id"] for key, value in catalog.snapshot().items())
