"""Centralized constants for the governance engine."""


# ===== AUDIT & LOGGING =====
class AuditConstants:
    QUEUE_SIZE = 10000
    FLUSH_TIMEOUT_SECONDS = 5.0
    QUEUE_GET_TIMEOUT = 1.0
    HASH_ALGORITHM = "sha256"
    FAILED_EVENTS_RETAINED = 1000


# ===== IDENTIFIER PREFIXES =====
class IdPrefixes:
    QC_REVIEW = "qc_"
    RELEASE_REQUEST = "rel_"
    POLICY_DECISION = "pdr_"
    AUDIT_EVENT = "aud_"
    TEMPLATE = "tmpl_"
    INSTANCE = "inst_"
    DEVIATION = "dev_"
    EVIDENCE = "ev_"


# ===== TEMPLATE LIFECYCLE =====
class TemplateConstants:
    INITIAL_DRAFT_VERSION = "0.1.0"
    FIRST_PUBLISHED_VERSION = "1.0.0"
    MIN_PURPOSE_LENGTH = 20
