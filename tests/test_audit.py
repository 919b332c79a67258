import threading
import time

from audit import (
    AuditRequest, DecisionBroker, pending_audit_requests, purge_archived,
    recheck_unavailable_archived, run_audit,
)
from catalog import Catalog
from context import RunContext
from models import CatalogEntry


def build_catalog(tmp_path) -> Catalog:
    (tmp_path / "gone.opus").write_bytes(b"x")
    (tmp_path / "dead.opus").write_bytes(b"x")
    catalog = Catalog()
    catalog.put(CatalogEntry(id="gone", title="Gone", status="orphaned", local_filename="gone.opus"))
    catalog.put(CatalogEntry(id="dead", title="[DEL] Dead", status="unavailable_pending", local_filename="dead.opus"))
    catalog.put(CatalogEntry(id="live", title="Live", status="active"))
    return catalog


def test_pending_requests_one_per_group(tmp_path):
    requests = pending_audit_requests(build_catalog(tmp_path))

    assert [r.group for r in requests] == ["orphaned", "unavailable"]
    assert requests[0].item_ids == ["gone"]
    assert requests[1].items == [{"id": "dead", "title": "[DEL] Dead"}]


def test_delete_removes_file_and_entry_keep_archives(tmp_path):
    catalog = build_catalog(tmp_path)
    seen = []

    def decide(request):
        seen.append(request.group)
        return "delete" if request.group == "orphaned" else "keep"

    results = run_audit(catalog, tmp_path, decide)

    assert seen == ["orphaned", "unavailable"]
    assert results == {"deleted": 1, "kept": 1}
    assert "gone" not in catalog
    assert not (tmp_path / "gone.opus").exists()
    assert catalog.get("dead").status == "unavailable_archived"
    assert (tmp_path / "dead.opus").exists()
    assert catalog.get("live").status == "active"


def test_unknown_decision_keeps(tmp_path):
    catalog = build_catalog(tmp_path)

    run_audit(catalog, tmp_path, lambda request: "maybe")

    assert catalog.get("gone").status == "archived"
    assert (tmp_path / "gone.opus").exists()


def test_no_candidates_means_no_questions(tmp_path):
    catalog = Catalog()
    catalog.put(CatalogEntry(id="a", status="active"))

    def decide(request):
        raise AssertionError("nothing to decide")

    assert run_audit(catalog, tmp_path, decide) == {"deleted": 0, "kept": 0}


def _wait_for_pending(broker, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        pending = broker.pending()
        if pending:
            return pending[0]
        time.sleep(0.01)
    raise AssertionError("no pending request")


def test_broker_resumes_worker_with_front_end_decision():
    broker = DecisionBroker(timeout=5)
    request = AuditRequest(group="orphaned", items=[{"id": "a", "title": "A"}])
    answer = {}

    worker = threading.Thread(target=lambda: answer.setdefault("decision", broker(request)))
    worker.start()
    pending = _wait_for_pending(broker)

    assert pending.id == request.id
    assert broker.resolve(request.id, "delete") is True
    worker.join(5)
    assert answer["decision"] == "delete"
    assert broker.pending() == []
    assert broker.resolve(request.id, "keep") is False


def test_broker_falls_back_to_keep_on_stop_and_timeout():
    context = RunContext()
    broker = DecisionBroker(context, timeout=5)
    request = AuditRequest(group="unavailable", items=[])
    answer = {}

    worker = threading.Thread(target=lambda: answer.setdefault("decision", broker(request)))
    worker.start()
    _wait_for_pending(broker)
    context.request_stop()
    worker.join(5)
    assert answer["decision"] == "keep"

    assert DecisionBroker(timeout=0.01)(request) == "keep"


def test_purge_only_unavailable_archived(tmp_path):
    (tmp_path / "a.opus").write_bytes(b"x")
    (tmp_path / "u.opus").write_bytes(b"x")
    catalog = Catalog()
    catalog.put(CatalogEntry(id="a", status="archived", local_filename="a.opus"))
    catalog.put(CatalogEntry(id="u", status="unavailable_archived", local_filename="u.opus"))

    assert purge_archived(catalog, tmp_path, only_unavailable=True) == 1

    assert (tmp_path / "a.opus").exists()
    assert not (tmp_path / "u.opus").exists()
    assert catalog.get("u").local_filename is None
    assert catalog.get("u").status == "unavailable_archived"


def test_recheck_reactivates_items_that_are_public_again(tmp_path):
    catalog = Catalog()
    catalog.put(CatalogEntry(id="back", title="[DEL] Back", status="unavailable_archived"))
    catalog.put(CatalogEntry(id="still", title="[DEL] Still", status="unavailable_archived"))
    titles = {"back": "Back Again"}

    reactivated = recheck_unavailable_archived(catalog, RunContext(), check=lambda item_id, ctx: titles.get(item_id))

    assert reactivated == ["back"]
    assert catalog.get("back").status == "active"
    assert catalog.get("back").title == "Back Again"
    assert catalog.get("still").status == "unavailable_archived"
