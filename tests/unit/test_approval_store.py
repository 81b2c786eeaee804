from dataclasses import replace

import pytest

from content_compliance.services.errors import ConflictError, NotFoundError
from content_compliance.services.types import ApprovalRequest, AuditEntry
from content_compliance.storage.approvals import ApprovalStore, JsonApprovalStore
from content_compliance.storage.audit import AuditTrail


@pytest.fixture
def request_record(make_item, clean_report, t0):
    return ApprovalRequest(
        id="apr-1",
        content_id="post-1",
        version=1,
        state="submitted",
        approval_level="junior_review",
        content=make_item(),
        compliance_report=clean_report,
        submitted_at=t0,
        lineage_id="lineage-1",
        practice_id="practice-1",
        submitter_id="author-1",
        sla_deadline_at=t0,
    )


def audit_entry(entry_id, request, t0):
    return AuditEntry(
        id=entry_id,
        request_id=request.id,
        content_id=request.content_id,
        actor_id="author-1",
        action="submitted",
        before_state="draft",
        after_state=request.state,
        timestamp=t0,
    )


def test_create_requires_revision_zero(request_record, t0):
    store, audit = ApprovalStore(), AuditTrail()
    stored, sealed = store.commit(request_record, 0, [audit_entry("aud-1", request_record, t0)], audit)

    assert stored == store.get("apr-1")
    assert sealed[0].digest is not None
    with pytest.raises(ConflictError) as excinfo:
        store.commit(request_record, 0, [], audit)
    assert excinfo.value.current_revision == 1


def test_stale_revision_leaves_store_and_audit_untouched(request_record, t0):
    store, audit = ApprovalStore(), AuditTrail()
    store.commit(request_record, 0, [audit_entry("aud-1", request_record, t0)], audit)
    updated = replace(request_record, state="under_review", revision=2)
    store.commit(updated, 1, [audit_entry("aud-2", updated, t0)], audit)

    stale = replace(request_record, state="requires_changes", revision=2)
    with pytest.raises(ConflictError) as excinfo:
        store.commit(stale, 1, [audit_entry("aud-3", stale, t0)], audit)

    assert excinfo.value.current_revision == 2
    assert store.get("apr-1").state == "under_review"
    assert len(audit) == 2


def test_unknown_request_raises_not_found():
    with pytest.raises(NotFoundError):
        ApprovalStore().get("apr-missing")


def test_active_request_lookup(request_record, t0):
    store, audit = ApprovalStore(), AuditTrail()
    store.commit(replace(request_record, state="rejected"), 0, [], audit)
    second = replace(request_record, id="apr-2", version=2, lineage_id="lineage-2")
    store.commit(second, 0, [], audit)

    assert [request.id for request in store.for_content("post-1")] == ["apr-1", "apr-2"]
    assert store.active_for_content("post-1").id == "apr-2"
    assert store.active_for_content("post-9") is None


def test_json_store_reloads_requests(tmp_path, request_record, t0):
    path = tmp_path / "store" / "approvals.json"
    store, audit = JsonApprovalStore(path), AuditTrail()
    store.commit(request_record, 0, [audit_entry("aud-1", request_record, t0)], audit)

    reloaded = JsonApprovalStore(path)
    assert reloaded.get("apr-1") == request_record
    assert not path.with_suffix(".json.tmp").exists()


class FailingSnapshotStore(JsonApprovalStore):
    fail = False

    def _persist(self, requests):
        if self.fail:
            raise OSError("disk full")
        super()._persist(requests)


class FailingAuditTrail(AuditTrail):
    def _persist(self, entries):
        raise OSError("disk full")


def test_failed_snapshot_writes_no_audit(tmp_path, request_record, t0):
    store, audit = FailingSnapshotStore(tmp_path / "approvals.json"), AuditTrail()
    store.commit(request_record, 0, [audit_entry("aud-1", request_record, t0)], audit)
    claimed = replace(request_record, state="under_review", revision=2)

    store.fail = True
    with pytest.raises(OSError):
        store.commit(claimed, 1, [audit_entry("aud-2", claimed, t0)], audit)

    assert store.get("apr-1").state == "submitted"
    assert [entry.id for entry in audit.entries()] == ["aud-1"]


def test_failed_audit_write_restores_snapshot(tmp_path, request_record, t0):
    path = tmp_path / "approvals.json"
    store = JsonApprovalStore(path)
    store.commit(request_record, 0, [audit_entry("aud-1", request_record, t0)], AuditTrail())
    claimed = replace(request_record, state="under_review", revision=2)

    with pytest.raises(OSError):
        store.commit(claimed, 1, [audit_entry("aud-2", claimed, t0)], FailingAuditTrail())

    assert store.get("apr-1").state == "submitted"
    assert JsonApprovalStore(path).get("apr-1").state == "submitted"


def test_same_timestamp_keeps_insertion_order(tmp_path, request_record):
    path = tmp_path / "approvals.json"
    store, audit = JsonApprovalStore(path), AuditTrail()
    for request_id in ("apr-z", "apr-a", "apr-m"):
        store.commit(replace(request_record, id=request_id), 0, [], audit)

    assert [request.id for request in store.list()] == ["apr-z", "apr-a", "apr-m"]
    assert [request.id for request in JsonApprovalStore(path).list()] == ["apr-z", "apr-a", "apr-m"]
