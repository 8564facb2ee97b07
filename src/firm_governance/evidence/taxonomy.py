"""Evidence taxonomy - the closed set of acceptable evidence categories.

The Guardian uses this taxonomy to judge whether the evidence linked to a
workpaper is sufficient before QC can pass. Everything here is pure and
side-effect free.
"""

from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Set

from pydantic import BaseModel, Field
from uuid import uuid4

from firm_governance.common.constants import IdPrefixes
from firm_governance.core.packs import check_pack_compatibility
from firm_governance.core.types import JurisdictionPack


class EvidenceType(str, Enum):
    """Evidence categories recognised across the firm."""
    CLIENT_INSTRUCTION = "CLIENT_INSTRUCTION"
    IDENTITY_AUTHORITY = "IDENTITY_AUTHORITY"
    FINANCIAL_RECORDS = "FINANCIAL_RECORDS"
    SOURCE_DOCUMENTS = "SOURCE_DOCUMENTS"
    REGISTRY_EXTRACTS = "REGISTRY_EXTRACTS"
    LEGAL_SOURCES = "LEGAL_SOURCES"
    WORKPAPER_TRAIL = "WORKPAPER_TRAIL"


class EvidenceDefinition(BaseModel):
    """Reference data describing one evidence category."""

    model_config = {"frozen": True}

    evidence_type: EvidenceType
    name: str
    description: str
    examples: List[str] = Field(default_factory=list)


EVIDENCE_TAXONOMY: Dict[EvidenceType, EvidenceDefinition] = {
    EvidenceType.CLIENT_INSTRUCTION: EvidenceDefinition(
        evidence_type=EvidenceType.CLIENT_INSTRUCTION,
        name="Client Instruction",
        description="Authorization and instructions from the client",
        examples=[
            "email/letter",
            "signed engagement letter",
            "call notes approved by client",
        ],
    ),
    EvidenceType.IDENTITY_AUTHORITY: EvidenceDefinition(
        evidence_type=EvidenceType.IDENTITY_AUTHORITY,
        name="Identity & Authority",
        description="Evidence of identity and authority to act",
        examples=[
            "IDs/passports",
            "board resolutions",
            "powers of attorney",
            "signatory lists",
        ],
    ),
    EvidenceType.FINANCIAL_RECORDS: EvidenceDefinition(
        evidence_type=EvidenceType.FINANCIAL_RECORDS,
        name="Financial Records",
        description="Core accounting records",
        examples=[
            "trial balance",
            "general ledger",
            "bank statements",
            "reconciliation schedules",
        ],
    ),
    EvidenceType.SOURCE_DOCUMENTS: EvidenceDefinition(
        evidence_type=EvidenceType.SOURCE_DOCUMENTS,
        name="Source Documents",
        description="Original transaction evidence",
        examples=[
            "invoices",
            "contracts",
            "delivery notes",
            "payroll summaries",
            "lease agreements",
        ],
    ),
    EvidenceType.REGISTRY_EXTRACTS: EvidenceDefinition(
        evidence_type=EvidenceType.REGISTRY_EXTRACTS,
        name="Registry Extracts",
        description="Official registry and filing evidence",
        examples=[
            "registry extracts/receipts",
            "corporate registers",
            "official filings outcomes",
        ],
    ),
    EvidenceType.LEGAL_SOURCES: EvidenceDefinition(
        evidence_type=EvidenceType.LEGAL_SOURCES,
        name="Legal Sources",
        description="Authoritative legal and regulatory references",
        examples=[
            "applicable laws/regulations",
            "official guidance",
            "standard references from library",
        ],
    ),
    EvidenceType.WORKPAPER_TRAIL: EvidenceDefinition(
        evidence_type=EvidenceType.WORKPAPER_TRAIL,
        name="Workpaper Trail",
        description="Working papers and audit trail",
        examples=[
            "calculation sheets",
            "sampling logs",
            "testing results",
            "review notes + closure",
        ],
    ),
}


def get_evidence_definition(evidence_type: EvidenceType) -> EvidenceDefinition:
    """Get the reference definition for an evidence type."""
    return EVIDENCE_TAXONOMY[EvidenceType(evidence_type)]


class EvidenceItem(BaseModel):
    """A single piece of evidence linked to a workpaper."""
    evidence_id: str = Field(
        default_factory=lambda: f"{IdPrefixes.EVIDENCE}{uuid4().hex[:12]}",
        description="Unique evidence identifier"
    )
    evidence_type: EvidenceType = Field(
        ...,
        description="Evidence category"
    )
    jurisdiction_pack: JurisdictionPack = Field(
        default=JurisdictionPack.GLOBAL,
        description="Pack the evidence was collected under"
    )
    filename: Optional[str] = Field(
        default=None,
        description="Source file name"
    )
    score: Optional[float] = Field(
        default=None,
        ge=0.0,
        le=100.0,
        description="Quality score assigned at ingestion (0-100)"
    )

    def usable_for(self, target_pack: JurisdictionPack) -> bool:
        """Check whether this item may support a task in ``target_pack``."""
        return check_pack_compatibility(self.jurisdiction_pack, target_pack)


class EvidenceRequirement(BaseModel):
    """Minimum evidence attached to a service or task type."""
    required_types: Set[EvidenceType] = Field(
        default_factory=set,
        description="Evidence categories that must be present"
    )
    min_items: int = Field(
        default=1,
        ge=0,
        description="Minimum number of linked evidence items"
    )


class MinimumCheckResult(BaseModel):
    satisfied: bool
    missing: List[EvidenceType] = Field(default_factory=list)


class SufficiencyResult(BaseModel):
    """Outcome of validate_evidence_sufficiency."""
    sufficient: bool
    missing: List[EvidenceType] = Field(default_factory=list)
    score: float = Field(ge=0.0, le=100.0)


def _missing_types(
    linked: Iterable[EvidenceType],
    required: Iterable[EvidenceType],
) -> List[EvidenceType]:
    linked_set = {EvidenceType(t) for t in linked}
    missing: List[EvidenceType] = []
    for evidence_type in required:
        evidence_type = EvidenceType(evidence_type)
        if evidence_type not in linked_set and evidence_type not in missing:
            missing.append(evidence_type)
    return missing


def evidence_satisfies_minimum(
    linked: Iterable[EvidenceType],
    required: Iterable[EvidenceType],
) -> MinimumCheckResult:
    """Check whether linked evidence types cover a required minimum.

    Args:
        linked: Evidence types already linked
        required: Evidence types that must be present

    Returns:
        MinimumCheckResult with ``missing = required - linked``
    """
    missing = _missing_types(linked, required)
    return MinimumCheckResult(satisfied=not missing, missing=missing)


def validate_agent_evidence_minimum(
    agent_id: str,
    linked: Iterable[EvidenceType],
    minimums: Mapping[str, Iterable[EvidenceType]],
) -> MinimumCheckResult:
    """Check linked evidence against the minimum configured for an agent.

    Args:
        agent_id: Engine or governance agent that produced the work
        linked: Evidence types already linked
        minimums: Agent id to required evidence types, normally
            ``GovernanceRules.agent_evidence_minimum``

    Returns:
        MinimumCheckResult; an agent without a configured minimum is
        always satisfied
    """
    return evidence_satisfies_minimum(linked, minimums.get(agent_id, ()))


def validate_evidence_sufficiency(
    items: List[EvidenceItem],
    requirement: EvidenceRequirement,
) -> SufficiencyResult:
    """Validate a set of evidence items against a requirement and score it.

    The score weighs type coverage and item count equally:
    ``50 * present/required + 50 * min(count/min_items, 1)``.
    An empty requirement counts as fully covered on that half.

    Args:
        items: Evidence items linked to the workpaper
        requirement: Requirement for the service or task type

    Returns:
        SufficiencyResult; sufficient only if no type is missing and
        the item count reaches ``min_items``
    """
    required = sorted(requirement.required_types, key=lambda t: t.value)
    missing = _missing_types((item.evidence_type for item in items), required)

    if required:
        type_ratio = (len(required) - len(missing)) / len(required)
    else:
        type_ratio = 1.0

    if requirement.min_items > 0:
        count_ratio = min(len(items) / requirement.min_items, 1.0)
    else:
        count_ratio = 1.0

    score = round(50 * type_ratio + 50 * count_ratio, 2)
    sufficient = not missing and len(items) >= requirement.min_items

    return SufficiencyResult(sufficient=sufficient, missing=missing, score=score)


def score_evidence(items: List[EvidenceItem]) -> float:
    """Mean quality score across scored items (0 when none are scored)."""
    scores = [item.score for item in items if item.score is not None]
    if not scores:
        return 0.0
    return sum(scores) / len(scores)
