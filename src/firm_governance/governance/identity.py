"""Identity source - resolves acting ids to governance roles and tool access.

Resolution always reads the current rules document, never a cached
per-actor answer, so a role change takes effect on the next call.
"""

from typing import List, Optional, Union

from firm_governance.core.packs import check_agent_pack_permission
from firm_governance.core.types import AgentDomain, GovernanceRole, JurisdictionPack, ToolGroup
from firm_governance.evidence.taxonomy import EvidenceType
from firm_governance.governance.rules import GovernanceRules, load_governance_rules


class IdentitySource:
    """Maps actor ids to roles and statically configured tool groups."""

    def __init__(self, rules: Optional[GovernanceRules] = None):
        self.rules = rules or load_governance_rules()

    def resolve_role(self, actor_id: str) -> GovernanceRole:
        roles = self.rules.roles
        if actor_id == roles.governor:
            return GovernanceRole.GOVERNOR
        if actor_id == roles.guardian:
            return GovernanceRole.GUARDIAN
        if actor_id == roles.orchestrator:
            return GovernanceRole.ORCHESTRATOR
        return GovernanceRole.ENGINE

    def is_governor(self, actor_id: str) -> bool:
        return self.resolve_role(actor_id) == GovernanceRole.GOVERNOR

    def is_guardian(self, actor_id: str) -> bool:
        return self.resolve_role(actor_id) == GovernanceRole.GUARDIAN

    def is_known_agent(self, agent_id: str) -> bool:
        return agent_id in self.rules.agent_tool_access

    def allowed_tool_groups(self, agent_id: str) -> List[ToolGroup]:
        """Tool groups granted to ``agent_id`` (empty for unknown agents)."""
        return list(self.rules.agent_tool_access.get(agent_id, []))

    def agent_domain(self, agent_id: str) -> AgentDomain:
        return self.rules.agent_domains.get(agent_id, AgentDomain.GLOBAL)

    def can_agent_use_pack(self, agent_id: str, pack: Union[JurisdictionPack, str]) -> bool:
        """Jurisdiction agents may only use their own packs and GLOBAL.

        Raises:
            ValidationError: ``pack`` is not a known pack
        """
        return check_agent_pack_permission(self.agent_domain(agent_id), pack)

    def evidence_minimum(self, agent_id: str) -> List[EvidenceType]:
        """Evidence types ``agent_id`` must have linked (empty when unlisted)."""
        return list(self.rules.agent_evidence_minimum.get(agent_id, []))

    @property
    def governor_id(self) -> str:
        return self.rules.roles.governor

    @property
    def guardian_id(self) -> str:
        return self.rules.roles.guardian

    @property
    def orchestrator_id(self) -> str:
        return self.rules.roles.orchestrator
