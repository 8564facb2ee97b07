"""Closed enumerations shared across the governance engine.

Every status value below is persisted and serialized as-is, so the
string values are part of the external contract.
"""

from enum import Enum


class JurisdictionPack(str, Enum):
    """Jurisdiction-scoped permission boundary."""
    GLOBAL = "GLOBAL"
    MT_TAX = "MT_TAX"
    MT_CSP = "MT_CSP"
    RW_TAX = "RW_TAX"
    RW_NOTARY = "RW_NOTARY"


class AgentDomain(str, Enum):
    """Jurisdiction an agent works in. GLOBAL agents may use every pack."""
    GLOBAL = "GLOBAL"
    MT = "MT"
    RW = "RW"


class GovernanceRole(str, Enum):
    """Role an acting id resolves to."""
    GOVERNOR = "GOVERNOR"
    GUARDIAN = "GUARDIAN"
    ORCHESTRATOR = "ORCHESTRATOR"
    ENGINE = "ENGINE"


class AutonomyTier(str, Enum):
    """A = fully autonomous, B = auto with later check, C = human first."""
    A = "A"
    B = "B"
    C = "C"


class QCState(str, Enum):
    """QC review lifecycle states."""
    DRAFT = "draft"
    PENDING = "pending"
    IN_REVIEW = "in_review"
    PASS = "pass"
    REVISE = "revise"
    ESCALATE = "escalate"
    RELEASED = "released"


class WorkstreamStatus(str, Enum):
    """Externally visible status of the subject a review attaches to."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    PENDING_QC = "pending_qc"
    QC_REVISION = "qc_revision"
    PENDING_APPROVAL = "pending_approval"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ReleaseActionType(str, Enum):
    """Externally visible actions that must pass the release gate."""
    FILING = "FILING"
    SUBMISSION = "SUBMISSION"
    DELIVERY = "DELIVERY"
    NOTIFICATION = "NOTIFICATION"


class ReleaseDecisionType(str, Enum):
    AUTHORIZE = "AUTHORIZE"
    DENY = "DENY"
    HOLD = "HOLD"


class ExecutionOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


class ReleaseStatus(str, Enum):
    """Derived from the presence of decision/execution records."""
    PENDING = "PENDING"
    AUTHORIZED = "AUTHORIZED"
    DENIED = "DENIED"
    EXECUTED = "EXECUTED"
    ROLLED_BACK = "ROLLED_BACK"


class ToolGroup(str, Enum):
    """Closed set of tool groups an agent may be granted."""
    CORE_CASE_MGMT = "CORE_CASE_MGMT"
    DOC_FACTORY = "DOC_FACTORY"
    EVIDENCE = "EVIDENCE"
    QC_GATES = "QC_GATES"
    RELEASE_GATED = "RELEASE_GATED"


class EscalationTarget(str, Enum):
    GOVERNOR = "governor"
    GUARDIAN = "guardian"
    OPERATOR = "operator"
    ORCHESTRATOR = "orchestrator"


class RiskClass(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class TemplateStatus(str, Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    RETIRED = "RETIRED"


class InstanceStatus(str, Enum):
    DRAFT = "DRAFT"
    FINAL = "FINAL"


class ApprovalType(str, Enum):
    """Approval kinds that can gate a template publish."""
    GUARDIAN_PASS = "GUARDIAN_PASS"
    GOVERNOR_POLICY_REVIEW = "GOVERNOR_POLICY_REVIEW"
    OPERATOR_ACK = "OPERATOR_ACK"


class CheckStatus(str, Enum):
    """Outcome of a single template QC check."""
    PASS = "PASS"
    WARN = "WARN"
    FAIL = "FAIL"


class PublishRecommendation(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"
