"""Governance rules document - parsed from governance_rules.yaml.

This is the in-memory representation of the rules file. Role ids,
autonomy thresholds, tool access and template gates are all read from
here so operators can tune them without a code change.
"""

from pathlib import Path
from typing import Dict, List, Literal, Optional, Union

import pydantic
import yaml
from pydantic import BaseModel, Field

from firm_governance.common.config import get_config
from firm_governance.common.exceptions import ConfigurationError
from firm_governance.common.logging import get_logger
from firm_governance.core.types import AgentDomain, ApprovalType, RiskClass, ToolGroup
from firm_governance.evidence.taxonomy import EvidenceType

logger = get_logger(__name__)

DEFAULT_RULES_FILE = Path(__file__).parent / "governance_rules.yaml"


class TierCRules(BaseModel):
    novelty_above: float = Field(ge=0, le=100)
    evidence_below: float = Field(ge=0, le=100)


class TierARules(BaseModel):
    novelty_max: float = Field(ge=0, le=100)
    evidence_min: float = Field(ge=0, le=100)


class TierBRules(BaseModel):
    template_novelty_min: float = Field(ge=0, le=100)
    template_novelty_max: float = Field(ge=0, le=100)
    standard_novelty_max: float = Field(ge=0, le=100)
    standard_evidence_min: float = Field(ge=0, le=100)


class TriggerRules(BaseModel):
    high_deviation_rate_threshold: float = Field(ge=0, le=100)
    repeat_defects_threshold: int = Field(ge=1)


class GovernanceRules(BaseModel):
    """Parsed governance rules from YAML configuration."""

    class Metadata(BaseModel):
        version: str
        last_updated: str
        author: str
        description: str

    class Roles(BaseModel):
        governor: str = Field(..., min_length=1)
        guardian: str = Field(..., min_length=1)
        orchestrator: str = Field(..., min_length=1)

    class AutonomyRules(BaseModel):
        tier_c: TierCRules
        tier_a: TierARules
        tier_b: TierBRules
        unmatched_policy: Literal["DEFAULT_ESCALATE", "DEFAULT_AUTO_WITH_CHECK"] = (
            "DEFAULT_ESCALATE"
        )

    class ToolPolicyRules(BaseModel):
        novelty_threshold: float = Field(ge=0.0, le=1.0)

    class ToolGroupDefinition(BaseModel):
        name: str
        description: str
        tools: List[str]
        requires_gating: bool = False

    class TemplateRules(BaseModel):
        publish_gates: Dict[RiskClass, List[ApprovalType]]
        triggers: TriggerRules
        min_escalation_triggers: Dict[RiskClass, int] = Field(
            default_factory=lambda: {
                RiskClass.LOW: 1,
                RiskClass.MEDIUM: 2,
                RiskClass.HIGH: 3,
            }
        )

    class ValidityRules(BaseModel):
        guardian_pass_ttl_hours: Optional[float] = Field(default=None, gt=0)
        pending_release_ttl_hours: Optional[float] = Field(default=None, gt=0)

    metadata: Metadata
    roles: Roles
    autonomy: AutonomyRules
    tool_policy: ToolPolicyRules
    tool_groups: Dict[ToolGroup, ToolGroupDefinition]
    agent_tool_access: Dict[str, List[ToolGroup]]
    agent_domains: Dict[str, AgentDomain] = Field(default_factory=dict)
    agent_evidence_minimum: Dict[str, List[EvidenceType]] = Field(default_factory=dict)
    templates: TemplateRules
    validity: ValidityRules = Field(default_factory=ValidityRules)

    @property
    def version(self) -> str:
        return self.metadata.version

    def publish_gate(self, risk_class: RiskClass) -> List[ApprovalType]:
        """Approvals required to publish a template of ``risk_class``.

        A risk class missing from the document falls back to the HIGH gate.
        """
        gates = self.templates.publish_gates
        if risk_class in gates:
            return list(gates[risk_class])
        return list(gates.get(RiskClass.HIGH, [ApprovalType.GUARDIAN_PASS]))


def load_governance_rules(
    rules_file: Optional[Union[str, Path]] = None,
) -> GovernanceRules:
    """Load and validate the governance rules document.

    Args:
        rules_file: Path to a rules YAML. Falls back to FIRMGOV_RULES_FILE,
            then to the packaged default.

    Returns:
        Parsed GovernanceRules

    Raises:
        FileNotFoundError: If the rules file does not exist
        ConfigurationError: If the file is not valid YAML or fails validation
    """
    if rules_file is None:
        rules_file = get_config().rules_file or DEFAULT_RULES_FILE
    path = Path(rules_file)

    if not path.exists():
        raise FileNotFoundError(f"Governance rules file not found: {path}")

    try:
        with open(path, "r") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Governance rules file is not valid YAML: {path}",
            details={"error": str(e)},
        ) from e

    if not isinstance(raw_config, dict):
        raise ConfigurationError(
            f"Governance rules file must contain a mapping: {path}"
        )

    try:
        rules = GovernanceRules.model_validate(raw_config)
    except pydantic.ValidationError as e:
        raise ConfigurationError(
            f"Governance rules failed validation: {path}",
            details={"errors": e.errors(include_url=False)},
        ) from e

    logger.info(f"Loaded governance rules v{rules.version} from {path}")
    return rules
