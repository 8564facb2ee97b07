"""Audit trail, stores and background writer."""

from firm_governance.governance.audit.background_writer import BackgroundAuditWriter
from firm_governance.governance.audit.store import (
    AuditLogIntegrityError,
    AuditStore,
    FileAuditStore,
    InMemoryAuditStore,
    create_audit_store,
)
from firm_governance.governance.audit.trail import AuditTrail, find_sequence_gaps

__all__ = [
    "AuditLogIntegrityError",
    "AuditStore",
    "AuditTrail",
    "BackgroundAuditWriter",
    "FileAuditStore",
    "InMemoryAuditStore",
    "create_audit_store",
    "find_sequence_gaps",
]
