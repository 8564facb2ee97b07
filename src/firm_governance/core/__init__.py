"""Core types and pack model."""

from firm_governance.core.packs import (
    as_pack,
    check_agent_pack_permission,
    check_pack_compatibility,
    pack_jurisdiction,
)
from firm_governance.core.types import (
    AgentDomain,
    ApprovalType,
    AutonomyTier,
    CheckStatus,
    EscalationTarget,
    ExecutionOutcome,
    GovernanceRole,
    InstanceStatus,
    JurisdictionPack,
    PublishRecommendation,
    QCState,
    ReleaseActionType,
    ReleaseDecisionType,
    ReleaseStatus,
    RiskClass,
    TemplateStatus,
    ToolGroup,
    WorkstreamStatus,
)

__all__ = [
    "as_pack",
    "check_agent_pack_permission",
    "check_pack_compatibility",
    "pack_jurisdiction",
    "AgentDomain",
    "ApprovalType",
    "AutonomyTier",
    "CheckStatus",
    "EscalationTarget",
    "ExecutionOutcome",
    "GovernanceRole",
    "InstanceStatus",
    "JurisdictionPack",
    "PublishRecommendation",
    "QCState",
    "ReleaseActionType",
    "ReleaseDecisionType",
    "ReleaseStatus",
    "RiskClass",
    "TemplateStatus",
    "ToolGroup",
    "WorkstreamStatus",
]
