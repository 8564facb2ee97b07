"""Governance schemas - persisted records for QC, release, templates and audit.

Every mutable record carries a ``revision`` counter. Stores use it as the
optimistic concurrency token: a write succeeds only if the stored revision
still equals the one the caller read.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from firm_governance.common.constants import IdPrefixes
from firm_governance.core.types import (
    ApprovalType,
    ExecutionOutcome,
    GovernanceRole,
    InstanceStatus,
    JurisdictionPack,
    QCState,
    ReleaseActionType,
    ReleaseDecisionType,
    ReleaseStatus,
    RiskClass,
    TemplateStatus,
)
from firm_governance.evidence.taxonomy import EvidenceType


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}{uuid4().hex[:12]}"


# ===== QC =====

class QCReview(BaseModel):
    """A quality review attached to a workstream or workpaper.

    Created on submission, mutated only through validated transitions,
    never deleted.
    """
    review_id: str = Field(
        default_factory=lambda: new_id(IdPrefixes.QC_REVIEW),
        description="Unique review identifier"
    )
    subject_id: str = Field(
        ...,
        min_length=1,
        description="Workstream/workpaper the review attaches to"
    )
    submitted_by: str = Field(
        ...,
        min_length=1,
        description="Engine agent that submitted the work"
    )
    reviewer_role: GovernanceRole = Field(
        default=GovernanceRole.GUARDIAN,
        description="Role that owns the review"
    )
    task_type: Optional[str] = Field(
        default=None,
        description="Task type used to select the checklist"
    )
    status: QCState = Field(
        default=QCState.PENDING,
        description="Current QC state"
    )
    outcome: Optional[QCState] = Field(
        default=None,
        description="Last review outcome (pass, revise or escalate)"
    )
    comments: Optional[str] = Field(
        default=None,
        description="Reviewer comments"
    )
    checklist_score: Optional[float] = Field(
        default=None,
        ge=0.0,
        le=100.0,
        description="Checklist score recorded at pass"
    )
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    reviewed_at: Optional[datetime] = Field(
        default=None,
        description="When the last outcome was stamped"
    )
    revision: int = Field(default=0, ge=0)


class PolicyDecisionRecord(BaseModel):
    """Append-only record of a decision routed to a governance role."""

    model_config = {"frozen": True}

    decision_id: str = Field(default_factory=lambda: new_id(IdPrefixes.POLICY_DECISION))
    policy_id: str = Field(..., description="Policy that produced the record")
    policy_name: str = Field(..., description="Human-readable policy name")
    directed_to: GovernanceRole = Field(
        ...,
        description="Role expected to act on the record"
    )
    decided_by: Optional[str] = Field(
        default=None,
        description="Acting id that decided; None while the record awaits the directed role"
    )
    decision: str = Field(..., description="Decision kind, e.g. escalate")
    reasoning: str = Field(..., description="Why the record was created")
    requested_by: str = Field(..., description="Actor that triggered it")
    subject_id: Optional[str] = Field(default=None)
    inputs: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


# ===== RELEASE =====

class ReleaseRequest(BaseModel):
    """Request by an engine agent to take an externally visible action."""
    request_id: str = Field(
        default_factory=lambda: new_id(IdPrefixes.RELEASE_REQUEST),
        description="Unique release request identifier"
    )
    workstream_id: str = Field(..., min_length=1)
    requesting_agent: str = Field(..., min_length=1)
    action_type: ReleaseActionType
    evidence_map_ref: str = Field(..., min_length=1)
    description: str = Field(default="")
    target_system: Optional[str] = Field(
        default=None,
        description="External system, e.g. tax authority or client portal"
    )
    jurisdiction_pack: Optional[JurisdictionPack] = None
    guardian_pass_ref: Optional[str] = Field(
        default=None,
        description="QC review id whose PASS gates this release"
    )
    guardian_pass_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    revision: int = Field(default=0, ge=0)


class ReleaseDecision(BaseModel):
    """Governor decision on a release request. Written once, never updated."""

    model_config = {"frozen": True}

    request_id: str
    decision: ReleaseDecisionType
    authorized_by: str
    rule_basis: List[str] = Field(default_factory=list)
    evidence_basis: List[str] = Field(default_factory=list)
    risk_rationale: str
    conditions: List[str] = Field(default_factory=list)
    decided_at: datetime = Field(default_factory=utcnow)


class ReleaseExecution(BaseModel):
    """Record of the external action. Written once, never updated."""

    model_config = {"frozen": True}

    request_id: str
    executed_by: str
    outcome: ExecutionOutcome
    external_ref: Optional[str] = Field(
        default=None,
        description="External receipt, e.g. filing reference"
    )
    notes: Optional[str] = None
    executed_at: datetime = Field(default_factory=utcnow)


class ReleaseRecord(BaseModel):
    """Request with its decision and execution, if any."""
    request: ReleaseRequest
    decision: Optional[ReleaseDecision] = None
    execution: Optional[ReleaseExecution] = None

    @property
    def status(self) -> ReleaseStatus:
        if self.execution is not None:
            if self.execution.outcome == ExecutionOutcome.SUCCESS:
                return ReleaseStatus.EXECUTED
            return ReleaseStatus.ROLLED_BACK
        if self.decision is not None:
            if self.decision.decision == ReleaseDecisionType.AUTHORIZE:
                return ReleaseStatus.AUTHORIZED
            return ReleaseStatus.DENIED
        return ReleaseStatus.PENDING


# ===== TEMPLATES =====

class TemplatePlaceholder(BaseModel):
    """Structured placeholder in a template."""
    field_id: str
    label: str
    type: str = Field(
        default="text",
        pattern="^(text|number|date|boolean|select|multi_select)$"
    )
    required: bool = True
    options: List[str] = Field(default_factory=list)
    validation_rule: Optional[str] = None
    default_value: Any = None


class ChangeLogEntry(BaseModel):
    model_config = {"frozen": True}

    version: str
    date: datetime = Field(default_factory=utcnow)
    author: str
    changes: List[str] = Field(default_factory=list)


class TemplateApproval(BaseModel):
    """Approval presented when publishing a template."""
    type: ApprovalType
    approved_by: str
    approved_at: datetime = Field(default_factory=utcnow)
    notes: Optional[str] = None


class Template(BaseModel):
    """Deterministic shell for workpapers, checklists and precedents.

    PUBLISHED content is only changed through publish, which bumps the
    version and appends to the change log.
    """
    template_id: str = Field(default_factory=lambda: new_id(IdPrefixes.TEMPLATE))
    name: str = Field(..., min_length=1)
    service_id: str = Field(..., min_length=1)
    jurisdiction_pack: JurisdictionPack
    owner_agent: str = Field(..., min_length=1)
    status: TemplateStatus = TemplateStatus.DRAFT
    version: str = Field(default="0.1.0", pattern=r"^\d+\.\d+\.\d+$")
    purpose: str = ""
    risk_class: RiskClass = RiskClass.LOW
    required_inputs: List[str] = Field(default_factory=list)
    produced_outputs: List[str] = Field(default_factory=list)
    evidence_requirements: List[EvidenceType] = Field(default_factory=list)
    escalation_triggers: List[str] = Field(default_factory=list)
    placeholders: List[TemplatePlaceholder] = Field(default_factory=list)
    generation_instructions: List[str] = Field(default_factory=list)
    quality_checks: List[str] = Field(default_factory=list)
    change_log: List[ChangeLogEntry] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    revision: int = Field(default=0, ge=0)


class DeviationNote(BaseModel):
    """Logged when an agent diverges from the template it instantiated."""

    model_config = {"frozen": True}

    deviation_id: str = Field(default_factory=lambda: new_id(IdPrefixes.DEVIATION))
    instance_id: str
    field_id: Optional[str] = None
    description: str = Field(..., min_length=1)
    reason: str = Field(..., min_length=1)
    logged_by: str
    logged_at: datetime = Field(default_factory=utcnow)


class TemplateInstance(BaseModel):
    """Populated template for a specific case and task."""
    instance_id: str = Field(default_factory=lambda: new_id(IdPrefixes.INSTANCE))
    template_id: str
    template_version: str = Field(
        ...,
        description="Version snapshot taken at instantiation"
    )
    jurisdiction_pack: JurisdictionPack
    case_id: str
    task_id: str
    status: InstanceStatus = InstanceStatus.DRAFT
    populated_fields: Dict[str, Any] = Field(default_factory=dict)
    evidence_map: Dict[str, str] = Field(default_factory=dict)
    deviation_notes: List[DeviationNote] = Field(default_factory=list)
    approvals: List[TemplateApproval] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    revision: int = Field(default=0, ge=0)


# ===== AUDIT =====

class AuditEvent(BaseModel):
    """Append-only audit record.

    ``(resource_id, sequence)`` is the ordering key: sequence numbers are
    contiguous per resource, so a consumer can detect lost writes.
    """
    event_id: str = Field(default_factory=lambda: new_id(IdPrefixes.AUDIT_EVENT))
    timestamp: datetime = Field(default_factory=utcnow)
    action: str = Field(..., min_length=1)
    actor_id: str
    resource_type: str
    resource_id: str
    sequence: int = Field(default=0, ge=0)
    details: Dict[str, Any] = Field(default_factory=dict)
    previous_state: Optional[str] = None
    new_state: Optional[str] = None

    # Integrity
    previous_hash: Optional[str] = Field(
        default=None,
        description="Hash of previous entry (for chain integrity)"
    )
    entry_hash: Optional[str] = Field(
        default=None,
        description="Hash of this entry"
    )

    @property
    def ordering_key(self) -> tuple:
        return (self.resource_id, self.sequence)

    def to_jsonl(self) -> str:
        """Serialize event to JSONL format."""
        return json.dumps(self.model_dump(mode="json"), default=str)

    @classmethod
    def from_jsonl(cls, line: str) -> "AuditEvent":
        """Deserialize event from JSONL format."""
        return cls.model_validate(json.loads(line))
