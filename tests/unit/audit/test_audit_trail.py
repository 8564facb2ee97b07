"""Tests for the audit trail and sequence gap detection."""

from unittest.mock import MagicMock

from firm_governance.governance.audit.store import InMemoryAuditStore
from firm_governance.governance.audit.trail import AuditTrail, find_sequence_gaps
from firm_governance.governance.schemas import AuditEvent


def _event(resource_id, sequence):
    return AuditEvent(
        action="qc_submitted",
        actor_id="agent_tax_mt",
        resource_type="qc_review",
        resource_id=resource_id,
        sequence=sequence,
    )


class TestAuditTrail:

    def test_sequences_per_resource(self, audit_trail):
        audit_trail.record("a", "agent_guardian", "qc_review", "qc_1")
        audit_trail.record("b", "agent_guardian", "qc_review", "qc_2")
        audit_trail.record("c", "agent_guardian", "qc_review", "qc_1")

        assert [e.sequence for e in audit_trail.history("qc_1")] == [1, 2]
        assert [e.sequence for e in audit_trail.history("qc_2")] == [1]

    def test_record_returns_stored_event(self, audit_trail):
        event = audit_trail.record(
            "release_decided", "agent_governor", "release_request", "rel_1",
            details={"decision": "AUTHORIZE"}, previous_state="PENDING", new_state="AUTHORIZED",
        )
        assert event.details == {"decision": "AUTHORIZE"}
        assert event.ordering_key == ("rel_1", 1)

    def test_resumes_from_existing_store(self):
        store = InMemoryAuditStore()
        AuditTrail(store).record("a", "agent_guardian", "qc_review", "qc_1")
        AuditTrail(store).record("b", "agent_guardian", "qc_review", "qc_1")
        assert [e.sequence for e in store.get_events(resource_id="qc_1")] == [1, 2]

    def test_keeps_empty_store(self):
        store = InMemoryAuditStore()
        trail = AuditTrail(store)
        assert trail.store is store
        assert trail.sink is store

        trail.record("a", "agent_guardian", "qc_review", "qc_1")
        assert len(store) == 1

    def test_unreadable_store_does_not_raise(self):
        store = MagicMock()
        store.get_events.side_effect = IOError("audit backend unreachable")
        store.append_event.side_effect = lambda event: event
        trail = AuditTrail(store)

        event = trail.record("a", "agent_guardian", "qc_review", "qc_1")
        assert event.sequence == 1
        assert trail.failure_count == 1

    def test_failed_write_is_counted_not_raised(self):
        sink = MagicMock()
        sink.append_event.side_effect = IOError("disk full")
        trail = AuditTrail(sink=sink)

        assert trail.record("a", "agent_guardian", "qc_review", "qc_1") is None
        assert trail.failure_count == 1
        assert trail.failed_events[0].action == "a"

    def test_lost_write_leaves_detectable_gap(self):
        store = InMemoryAuditStore()
        sink = MagicMock()
        sink.append_event.side_effect = _flaky(store, fail_on={2})
        trail = AuditTrail(store, sink=sink)

        for action in ("a", "b", "c"):
            trail.record(action, "agent_guardian", "qc_review", "qc_1")

        assert find_sequence_gaps(store.get_events()) == {"qc_1": [2]}

    def test_failed_events_bounded(self):
        sink = MagicMock()
        sink.append_event.side_effect = IOError("down")
        trail = AuditTrail(sink=sink, max_failed_events=2)
        for i in range(5):
            trail.record(f"action_{i}", "agent_guardian", "qc_review", "qc_1")
        assert trail.failure_count == 5
        assert [e.action for e in trail.failed_events] == ["action_3", "action_4"]


def _flaky(store, fail_on):
    calls = {"n": 0}

    def append(event):
        calls["n"] += 1
        if calls["n"] in fail_on:
            raise IOError("timeout")
        return store.append_event(event)
    return append


class TestFindSequenceGaps:

    def test_no_gaps(self):
        assert find_sequence_gaps([_event("qc_1", 2), _event("qc_1", 1)]) == {}

    def test_gaps_per_resource(self):
        events = [_event("qc_1", 1), _event("qc_1", 4), _event("rel_1", 2)]
        assert find_sequence_gaps(events) == {"qc_1": [2, 3], "rel_1": [1]}

    def test_empty(self):
        assert find_sequence_gaps([]) == {}
