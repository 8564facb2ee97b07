"""Evidence taxonomy and sufficiency checks."""

from firm_governance.evidence.taxonomy import (
    EVIDENCE_TAXONOMY,
    EvidenceDefinition,
    EvidenceItem,
    EvidenceRequirement,
    EvidenceType,
    MinimumCheckResult,
    SufficiencyResult,
    evidence_satisfies_minimum,
    get_evidence_definition,
    score_evidence,
    validate_agent_evidence_minimum,
    validate_evidence_sufficiency,
)

__all__ = [
    "EVIDENCE_TAXONOMY",
    "EvidenceDefinition",
    "EvidenceItem",
    "EvidenceRequirement",
    "EvidenceType",
    "MinimumCheckResult",
    "SufficiencyResult",
    "evidence_satisfies_minimum",
    "get_evidence_definition",
    "score_evidence",
    "validate_agent_evidence_minimum",
    "validate_evidence_sufficiency",
]
