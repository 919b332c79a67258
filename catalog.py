"""
PlaylistMirror - Catalog Store

The catalog (id -> CatalogEntry) is the only durable state and the sole
authority on which files in the output directory belong to us. Loading fails
closed: a corrupt catalog with no valid backup is fatal, never "empty", since
an empty catalog would make the safety gate treat every real file as an orphan.
"""

import json
import threading
from pathlib import Path

from pydantic import ValidationError

from constants import ARCHIVE_FILE, ARCHIVE_NAMESPACE, CATALOG_BACKUP_SUFFIX, CATALOG_FILE
from models import CatalogEntry
from utils import file_exists


class CatalogCorruptError(Exception):
    """The catalog file and its backup are both unreadable. Nothing destructive may run."""


class Catalog:
    """In-memory catalog. Every read-modify-write goes through the lock."""

    def __init__(self, entries: dict[str, CatalogEntry] | None = None):
        self.lock = threading.RLock()
        self._entries: dict[str, CatalogEntry] = {}
        for entry in (entries or {}).values():
            self._entries[entry.id] = entry

    def __len__(self) -> int:
        with self.lock:
            return len(self._entries)

    def __contains__(self, item_id: str) -> bool:
        with self.lock:
            return item_id in self._entries

    def get(self, item_id: str) -> CatalogEntry | None:
        with self.lock:
            return self._entries.get(item_id)

    def ids(self) -> list[str]:
        with self.lock:
            return list(self._entries)

    def entries(self) -> list[CatalogEntry]:
        with self.lock:
            return list(self._entries.values())

    def by_status(self, *statuses: str) -> list[CatalogEntry]:
        with self.lock:
            return [e for e in self._entries.values() if e.status in statuses]

    def put(self, entry: CatalogEntry) -> None:
        with self.lock:
            self._entries[entry.id] = entry

    def remove(self, item_id: str) -> CatalogEntry | None:
        with self.lock:
            return self._entries.pop(item_id, None)

    def update(self, item_id: str, **fields) -> CatalogEntry | None:
        """Replace fields of one entry atomically. Returns the new entry, or None if unknown."""
        with self.lock:
            entry = self._entries.get(item_id)
            if entry is None:
                return None
            updated = entry.model_copy(update=fields)
            self._entries[item_id] = updated
            return updated

    def snapshot(self) -> dict[str, dict]:
        with self.lock:
            return {item_id: e.model_dump(mode="json") for item_id, e in self._entries.items()}

    def status_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        with self.lock:
            for entry in self._entries.values():
                counts[entry.status] = counts.get(entry.status, 0) + 1
        return counts


def parse_catalog(raw: str) -> dict[str, CatalogEntry] | None:
    """Parse catalog JSON. Returns None for anything that isn't a valid catalog."""
    if not raw or not raw.strip():
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None

    entries = {}
    try:
        for key, value in data.items():
            if not isinstance(value, dict):
                return None
            # The mapping key is authoritative for the id
            entries[key] = CatalogEntry(**{**value, "id": key})
    except ValidationError:
        return None
    return entries


def _read_catalog_file(path: Path) -> dict[str, CatalogEntry] | None:
    try:
        return parse_catalog(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError):
        return None


def _write_atomic(path: Path, data: bytes) -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_bytes(data)
    tmp.replace(path)


class CatalogStore:
    """Load/save the catalog with a last-known-good backup beside it."""

    def __init__(self, data_dir: Path, output_dir: Path):
        self.data_dir = Path(data_dir)
        self.output_dir = Path(output_dir)
        self.path = self.data_dir / CATALOG_FILE
        self.backup_path = self.data_dir / (CATALOG_FILE + CATALOG_BACKUP_SUFFIX)
        self.archive_path = self.data_dir / ARCHIVE_FILE
        self._lock = threading.Lock()

    def load(self) -> Catalog:
        self.data_dir.mkdir(parents=True, exist_ok=True)

        if not self.path.exists():
            # The only case where an empty catalog is safe
            print(f"Catalog not found, starting a new one: {self.path}")
            return Catalog()

        entries = _read_catalog_file(self.path)
        if entries is None:
            print(f"Catalog is corrupt or empty: {self.path}")
            if self.backup_path.exists():
                print("Trying the backup catalog...")
                entries = _read_catalog_file(self.backup_path)
                if entries is not None:
                    print("Backup loaded, restoring it as the main catalog")
                    _write_atomic(self.path, self.backup_path.read_bytes())

        if entries is None:
            raise CatalogCorruptError(
                f"Catalog {self.path} is corrupt and no valid backup exists. "
                "Stopping before anything is deleted."
            )

        print(f"Loaded {len(entries)} catalog entries")
        return Catalog(entries)

    def save(self, catalog: Catalog) -> bool:
        """Back up the current file (only if valid), write the new one, refresh archive.txt."""
        snapshot = catalog.snapshot()
        payload = (json.dumps(snapshot, indent=2, ensure_ascii=False) + "\n").encode("utf-8")

        with self._lock:
            try:
                self.data_dir.mkdir(parents=True, exist_ok=True)

                if self.path.exists():
                    current = self.path.read_bytes()
                    try:
                        current_valid = parse_catalog(current.decode("utf-8")) is not None
                    except UnicodeDecodeError:
                        current_valid = False
                    if current_valid:
                        _write_atomic(self.backup_path, current)
                    else:
                        print("Catalog on disk is corrupt, keeping the previous backup")

                _write_atomic(self.path, payload)
                self._write_archive_listing(snapshot)
            except OSError as e:
                print(f"Failed to save catalog {self.path}: {e}")
                return False
        return True

    def _write_archive_listing(self, snapshot: dict[str, dict]) -> None:
        """One '<namespace> <id>' line per entry whose file is on disk."""
        lines = [
            f"{ARCHIVE_NAMESPACE} {item_id}"
            for item_id, entry in snapshot.items()
            if file_exists(self.output_dir, entry.get("local_filename"))
        ]
        self.archive_path.write_text("\n".join(lines), encoding="utf-8")
