"""
PlaylistMirror - Audit & Archived Files

Decisions about entries that left the playlist or died upstream. The engine
never prompts: it builds AuditRequests and asks an injected decide() callable,
so the CLI can prompt on stdin, the API can park the request in a
DecisionBroker, and tests can pass a lambda.
"""

import threading
import uuid
from dataclasses import dataclass, field
from pathlib import Path

from catalog import Catalog
from constants import (
    DEAD_TITLE_TAG, DECISION_WAIT_TIMEOUT, STATUS_ACTIVE, STATUS_ARCHIVED,
    STATUS_ORPHANED, STATUS_UNAVAILABLE_ARCHIVED, STATUS_UNAVAILABLE_PENDING,
)
from context import RunContext
from utils import utc_now_iso
from youtube import check_item_available

DECISION_DELETE = "delete"
DECISION_KEEP = "keep"

# group -> (status under audit, status when kept)
AUDIT_GROUPS = {
    "orphaned": (STATUS_ORPHANED, STATUS_ARCHIVED),
    "unavailable": (STATUS_UNAVAILABLE_PENDING, STATUS_UNAVAILABLE_ARCHIVED),
}


@dataclass
class AuditRequest:
    group: str
    items: list[dict]
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    created_at: str = field(default_factory=utc_now_iso)

    @property
    def item_ids(self) -> list[str]:
        return [item["id"] for item in self.items]

    def to_dict(self) -> dict:
        return {"id": self.id, "group": self.group, "items": self.items, "created_at": self.created_at}


def _audit_request(catalog: Catalog, group: str) -> AuditRequest | None:
    status, _ = AUDIT_GROUPS[group]
    entries = catalog.by_status(status)
    if not entries:
        return None
    return AuditRequest(group=group, items=[{"id": e.id, "title": e.title} for e in entries])


def pending_audit_requests(catalog: Catalog) -> list[AuditRequest]:
    """One request per non-empty group, orphaned first."""
    requests = []
    for group in AUDIT_GROUPS:
        request = _audit_request(catalog, group)
        if request:
            requests.append(request)
    return requests


def _delete_file(output_dir: Path, filename: str | None, label: str = "Deleted") -> bool:
    if not filename:
        return False
    path = output_dir / filename
    if not path.is_file():
        return False
    try:
        path.unlink()
    except OSError as e:
        print(f"Could not delete {filename}: {e}")
        return False
    print(f"{label}: {filename}")
    return True


def apply_audit_decision(catalog: Catalog, request: AuditRequest, decision: str, output_dir: Path) -> list[str]:
    """Delete (file + entry) or keep (archived variant) every entry of a request.

    Entries whose status moved on since the request was built are left alone.
    Returns the ids that were changed.
    """
    status, kept_status = AUDIT_GROUPS[request.group]
    if decision != DECISION_DELETE:
        decision = DECISION_KEEP
    output_dir = Path(output_dir)
    changed = []

    with catalog.lock:
        for item_id in request.item_ids:
            entry = catalog.get(item_id)
            if entry is None or entry.status != status:
                continue
            if decision == DECISION_DELETE:
                _delete_file(output_dir, entry.local_filename)
                catalog.remove(item_id)
                print(f"AUDIT [DEL] {entry.title}")
            else:
                catalog.update(item_id, status=kept_status)
                print(f"AUDIT [KEEP] {entry.title}")
            changed.append(item_id)
    return changed


def run_audit(catalog: Catalog, output_dir: Path, decide) -> dict:
    """Ask decide(request) once per group and apply the answer. Unknown answers keep."""
    results = {"deleted": 0, "kept": 0}
    # Groups hold disjoint statuses
    for request in pending_audit_requests(catalog):
        print(f"AUDIT: {len(request.items)} {request.group} item(s) need a decision")
        decision = decide(request)
        if decision not in (DECISION_DELETE, DECISION_KEEP):
            print(f"AUDIT: unknown decision {decision!r}, keeping")
            decision = DECISION_KEEP
        changed = apply_audit_decision(catalog, request, decision, output_dir)
        results["deleted" if decision == DECISION_DELETE else "kept"] += len(changed)
    return results


def keep_all(request: AuditRequest) -> str:
    return DECISION_KEEP


class DecisionBroker:
    """Parks audit requests until a front end answers them.

    Usable as the decide() callable: the calling worker thread blocks until
    resolve() is called, the run is stopped, or the timeout elapses. The last
    two fall back to keep, which never deletes anything.
    """

    def __init__(self, context: RunContext | None = None, timeout: float = DECISION_WAIT_TIMEOUT):
        self.timeout = timeout
        self._lock = threading.Lock()
        self._pending: dict[str, tuple[AuditRequest, threading.Event]] = {}
        self._answers: dict[str, str] = {}
        if context is not None:
            context.add_stop_listener(self.release_all)

    def __call__(self, request: AuditRequest) -> str:
        event = threading.Event()
        with self._lock:
            self._pending[request.id] = (request, event)
        print(f"AUDIT: waiting for a decision on request {request.id} ({request.group})")
        event.wait(self.timeout)
        with self._lock:
            self._pending.pop(request.id, None)
            decision = self._answers.pop(request.id, None)
        if decision is None:
            print(f"AUDIT: no decision for {request.id}, keeping")
            return DECISION_KEEP
        return decision

    def pending(self) -> list[AuditRequest]:
        with self._lock:
            return [request for request, _ in self._pending.values()]

    def resolve(self, request_id: str, decision: str) -> bool:
        with self._lock:
            pending = self._pending.get(request_id)
            if pending is None:
                return False
            self._answers[request_id] = decision
        pending[1].set()
        return True

    def release_all(self) -> None:
        with self._lock:
            events = [event for _, event in self._pending.values()]
        for event in events:
            event.set()


# ---------------------------------------------------------------------------
# Archived files
# ---------------------------------------------------------------------------

def archived_entries(catalog: Catalog, only_unavailable: bool = False):
    statuses = (STATUS_UNAVAILABLE_ARCHIVED,) if only_unavailable else (STATUS_ARCHIVED, STATUS_UNAVAILABLE_ARCHIVED)
    return [e for e in catalog.by_status(*statuses) if e.local_filename]


def purge_archived(catalog: Catalog, output_dir: Path, only_unavailable: bool = False) -> int:
    """Delete the files of archived entries on explicit request. Entries stay, without a file."""
    output_dir = Path(output_dir)
    deleted = 0
    with catalog.lock:
        for entry in archived_entries(catalog, only_unavailable):
            if _delete_file(output_dir, entry.local_filename, label="Deleted archived"):
                deleted += 1
            catalog.update(entry.id, local_filename=None)
    print(f"Archived purge: {deleted} file(s) deleted")
    return deleted


def recheck_unavailable_archived(catalog: Catalog, context: RunContext, check=check_item_available) -> list[str]:
    """Reactivate unavailable_archived items that are public again. Returns their ids."""
    candidates = catalog.by_status(STATUS_UNAVAILABLE_ARCHIVED)
    if not candidates:
        print("No unavailable archived items to recheck")
        return []

    print(f"Rechecking {len(candidates)} unavailable archived item(s)...")
    reactivated = []
    for entry in candidates:
        if context.stopping:
            break
        live_title = check(entry.id, context)
        if not live_title:
            print(f"Still unavailable: {entry.title}")
            continue
        title = live_title.replace(f"{DEAD_TITLE_TAG} ", "")
        catalog.update(entry.id, status=STATUS_ACTIVE, title=title)
        reactivated.append(entry.id)
        print(f"Available again: {title}")
    return reactivated
