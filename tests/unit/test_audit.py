import json
from datetime import timedelta

import pytest

from content_compliance.services.errors import ConflictError
from content_compliance.services.types import AuditEntry
from content_compliance.storage.audit import AuditTrail, JsonlAuditTrail


def make_entry(entry_id, t0, *, minutes=0, content_id="post-1", practice_id="practice-1", action="submitted"):
    return AuditEntry(
        id=entry_id,
        request_id="apr-1",
        content_id=content_id,
        actor_id="author-1",
        action=action,
        before_state="draft",
        after_state="submitted",
        timestamp=t0 + timedelta(minutes=minutes),
        practice_id=practice_id,
        version=1,
        details={"note": entry_id},
    )


def test_append_seals_entries_into_a_chain(t0):
    trail = AuditTrail()
    first = trail.append(make_entry("aud-1", t0))
    second = trail.append(make_entry("aud-2", t0, minutes=1))

    assert first.previous_digest is None
    assert second.previous_digest == first.digest
    assert trail.last_digest == second.digest
    assert trail.verify_chain() == (True, [])


def test_append_is_idempotent_by_id(t0):
    trail = AuditTrail()
    stored = trail.append(make_entry("aud-1", t0))
    again = trail.append(make_entry("aud-1", t0))

    assert again == stored
    assert len(trail) == 1


def test_same_id_with_different_content_conflicts(t0):
    trail = AuditTrail()
    trail.append(make_entry("aud-1", t0))
    with pytest.raises(ConflictError):
        trail.append(make_entry("aud-1", t0, action="claimed"))
    assert len(trail) == 1


def test_query_by_content_as_of(t0):
    trail = AuditTrail()
    for index in range(3):
        trail.append(make_entry(f"aud-{index}", t0, minutes=index * 10))
    trail.append(make_entry("aud-other", t0, content_id="post-2"))

    assert [entry.id for entry in trail.query_by_content("post-1")] == ["aud-0", "aud-1", "aud-2"]
    as_of = trail.query_by_content("post-1", as_of=t0 + timedelta(minutes=10))
    assert [entry.id for entry in as_of] == ["aud-0", "aud-1"]


def test_query_by_practice_range_is_inclusive(t0):
    trail = AuditTrail()
    for index in range(4):
        trail.append(make_entry(f"aud-{index}", t0, minutes=index * 60))
    trail.append(make_entry("aud-elsewhere", t0, practice_id="practice-2"))

    window = trail.query_by_practice("practice-1", start=t0 + timedelta(hours=1), end=t0 + timedelta(hours=2))
    assert [entry.id for entry in window] == ["aud-1", "aud-2"]
    assert len(trail.query_by_practice("practice-2")) == 1


def test_jsonl_trail_survives_reload(tmp_path, t0):
    path = tmp_path / "audit" / "audit.jsonl"
    trail = JsonlAuditTrail(path)
    trail.append(make_entry("aud-1", t0))
    trail.append(make_entry("aud-2", t0, minutes=5))

    reloaded = JsonlAuditTrail(path)
    assert reloaded.entries() == trail.entries()
    assert reloaded.verify_chain() == (True, [])

    appended = reloaded.append(make_entry("aud-3", t0, minutes=6))
    assert appended.previous_digest == trail.last_digest


def test_tampered_line_breaks_the_chain(tmp_path, t0):
    path = tmp_path / "audit.jsonl"
    trail = JsonlAuditTrail(path)
    for index in range(3):
        trail.append(make_entry(f"aud-{index}", t0, minutes=index))

    lines = path.read_text(encoding="utf-8").splitlines()
    record = json.loads(lines[1])
    record["actor_id"] = "someone-else"
    lines[1] = json.dumps(record)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    ok, broken = JsonlAuditTrail(path).verify_chain()
    assert not ok
    assert broken == ["aud-1"]


def test_unreadable_lines_are_skipped(tmp_path, t0):
    path = tmp_path / "audit.jsonl"
    trail = JsonlAuditTrail(path)
    trail.append(make_entry("aud-1", t0))
    with path.open("a", encoding="utf-8") as fh:
        fh.write("{truncated\n")

    assert [entry.id for entry in JsonlAuditTrail(path).entries()] == ["aud-1"]


class FailingJsonlAuditTrail(JsonlAuditTrail):
    def _persist(self, entries):
        raise OSError("disk full")


def test_batch_is_written_together(tmp_path, t0):
    path = tmp_path / "audit.jsonl"
    trail = JsonlAuditTrail(path)
    sealed = trail.extend([make_entry("aud-1", t0), make_entry("aud-2", t0, minutes=1, action="escalated")])

    assert sealed[1].previous_digest == sealed[0].digest
    assert len(path.read_text(encoding="utf-8").splitlines()) == 2
    assert JsonlAuditTrail(path).verify_chain() == (True, [])


def test_failed_batch_leaves_nothing_visible(tmp_path, t0):
    trail = FailingJsonlAuditTrail(tmp_path / "audit.jsonl")
    with pytest.raises(OSError):
        trail.extend([make_entry("aud-1", t0), make_entry("aud-2", t0, minutes=1)])

    assert len(trail) == 0
    assert trail.get("aud-1") is None
