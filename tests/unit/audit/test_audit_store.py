"""Tests for audit stores and the background writer."""

import json

import pytest

from firm_governance.common.config import Config
from firm_governance.governance.audit.background_writer import BackgroundAuditWriter
from firm_governance.governance.audit.store import (
    AuditLogIntegrityError,
    FileAuditStore,
    InMemoryAuditStore,
    create_audit_store,
)
from firm_governance.governance.audit.trail import AuditTrail
from firm_governance.governance.schemas import AuditEvent


def _event(action="qc_submitted", resource_id="qc_1", sequence=1, actor_id="agent_tax_mt"):
    return AuditEvent(
        action=action,
        actor_id=actor_id,
        resource_type="qc_review",
        resource_id=resource_id,
        sequence=sequence,
    )


class TestInMemoryAuditStore:

    def test_filters(self):
        store = InMemoryAuditStore()
        store.append_event(_event())
        store.append_event(_event(action="qc_transitioned_to_pass", actor_id="agent_guardian", sequence=2))
        store.append_event(_event(resource_id="qc_2"))

        assert len(store) == 3
        assert len(list(store.get_events(resource_id="qc_1"))) == 2
        assert [e.sequence for e in store.get_events(actor_id="agent_guardian")] == [2]
        assert store.verify_integrity() is True


class TestFileAuditStore:

    @pytest.fixture
    def store(self, tmp_path):
        return FileAuditStore(log_dir=str(tmp_path))

    def test_hash_chain(self, store):
        first = store.append_event(_event(sequence=1))
        second = store.append_event(_event(sequence=2))

        assert first.previous_hash is None
        assert second.previous_hash == first.entry_hash
        assert store.get_last_hash() == second.entry_hash
        assert store.get_entry_count() == 2
        assert store.verify_integrity() is True

    def test_reads_back_events(self, store):
        store.append_event(_event(sequence=1))
        store.append_event(_event(resource_id="qc_2"))
        events = list(store.get_events(resource_id="qc_1"))
        assert [e.sequence for e in events] == [1]

    def test_reopen_continues_chain(self, store, tmp_path):
        last = store.append_event(_event(sequence=1))
        reopened = FileAuditStore(log_dir=str(tmp_path))
        assert reopened.get_last_hash() == last.entry_hash
        reopened.append_event(_event(sequence=2))
        assert reopened.verify_integrity() is True

    def test_tampered_entry_detected(self, store):
        for seq in (1, 2, 3):
            store.append_event(_event(sequence=seq))

        lines = store.log_path.read_text().splitlines()
        entry = json.loads(lines[1])
        entry["actor_id"] = "agent_intruder"
        lines[1] = json.dumps(entry)
        store.log_path.write_text("\n".join(lines) + "\n")

        with pytest.raises(AuditLogIntegrityError, match="line 2"):
            store.verify_integrity()

    def test_deleted_entry_breaks_chain(self, store):
        for seq in (1, 2, 3):
            store.append_event(_event(sequence=seq))

        lines = store.log_path.read_text().splitlines()
        store.log_path.write_text("\n".join([lines[0], lines[2]]) + "\n")

        with pytest.raises(AuditLogIntegrityError, match="Hash chain broken"):
            store.verify_integrity()

    def test_trail_over_file_store(self, store):
        trail = AuditTrail(store)
        trail.record("release_requested", "agent_tax_mt", "release_request", "rel_1")
        trail.record("release_decided", "agent_governor", "release_request", "rel_1")
        assert [e.action for e in trail.history("rel_1")] == ["release_requested", "release_decided"]


class TestBackgroundAuditWriter:

    def test_flush_writes_queued_events(self):
        store = InMemoryAuditStore()
        writer = BackgroundAuditWriter(store)
        try:
            for seq in range(1, 6):
                writer.append_event(_event(sequence=seq))
            writer.flush()
            assert len(store) == 5
            assert writer.get_stats()["events_written"] == 5
        finally:
            writer.shutdown()

    def test_writes_after_shutdown_are_synchronous(self):
        store = InMemoryAuditStore()
        writer = BackgroundAuditWriter(store)
        writer.shutdown()

        assert writer.is_running is False
        writer.append_event(_event())
        assert len(store) == 1

    def test_as_trail_sink(self):
        store = InMemoryAuditStore()
        writer = BackgroundAuditWriter(store)
        trail = AuditTrail(store, sink=writer)
        try:
            assert trail.store is store
            trail.record("qc_submitted", "agent_tax_mt", "qc_review", "qc_1")
            trail.record("qc_transitioned_to_in_review", "agent_guardian", "qc_review", "qc_1")
            writer.flush()
            assert [e.sequence for e in trail.history("qc_1")] == [1, 2]
        finally:
            writer.shutdown()

        resumed = AuditTrail(store)
        resumed.record("qc_transitioned_to_pass", "agent_guardian", "qc_review", "qc_1")
        assert [e.sequence for e in resumed.history("qc_1")] == [1, 2, 3]

    def test_store_failures_counted(self):
        class BrokenStore(InMemoryAuditStore):
            def append_event(self, event):
                raise IOError("disk full")

        writer = BackgroundAuditWriter(BrokenStore())
        try:
            writer.append_event(_event())
            writer.flush()
            assert writer.get_stats()["write_failures"] == 1
        finally:
            writer.shutdown()


class TestCreateAuditStore:

    def test_memory_by_default(self):
        assert isinstance(create_audit_store(Config()), InMemoryAuditStore)

    def test_file_store_from_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("FIRMGOV_AUDIT_STORAGE_TYPE", "file")
        monkeypatch.setenv("FIRMGOV_AUDIT_LOG_DIR", str(tmp_path))
        store = create_audit_store(Config())
        assert isinstance(store, FileAuditStore)
        assert store.log_dir == tmp_path
