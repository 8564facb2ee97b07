"""Tool Policy Engine - decides whether an agent may invoke a tool.

Two layers:
    1. Static allowlist: the agent's configured tool groups must include
       the tool's group. Unknown agents and unknown tools are denied.
    2. Dynamic rule chain, evaluated in order; the first denial wins.

Jurisdiction isolation is enforced upstream: by the agent pack permission
check in ``authorize_invocation`` and by the template pack check in the
template factory. The ``jurisdiction_isolation`` rule here always allows,
so callers must not skip those checks.
"""

from typing import Callable, List, Mapping, Optional, Tuple

import pydantic
from pydantic import BaseModel, Field

from firm_governance.common.exceptions import PolicyViolation, SecurityViolation, ValidationError
from firm_governance.common.logging import get_logger
from firm_governance.core.packs import as_pack
from firm_governance.core.types import EscalationTarget, JurisdictionPack, ToolGroup
from firm_governance.governance.audit.trail import AuditTrail
from firm_governance.governance.identity import IdentitySource
from firm_governance.governance.policies.tools import ToolRegistry
from firm_governance.governance.rules import GovernanceRules

logger = get_logger(__name__)


class PolicyContext(BaseModel):
    """Invocation context for a single tool call."""
    agent_id: str = Field(..., min_length=1)
    tool_name: str = Field(..., min_length=1)
    tool_group: ToolGroup
    jurisdiction: Optional[JurisdictionPack] = None
    has_governor_approval: bool = False
    has_guardian_pass: bool = False
    novelty_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    is_external_action: bool = False


class PolicyDecision(BaseModel):
    allowed: bool
    reason: str
    requires_escalation: bool = False
    escalation_target: Optional[EscalationTarget] = None
    rule_id: Optional[str] = None


def _allow(reason: str) -> PolicyDecision:
    return PolicyDecision(allowed=True, reason=reason)


def _escalate(reason: str, target: EscalationTarget) -> PolicyDecision:
    return PolicyDecision(
        allowed=False,
        reason=reason,
        requires_escalation=True,
        escalation_target=target,
    )


def _build_context(data) -> PolicyContext:
    if isinstance(data, PolicyContext):
        return data
    try:
        return PolicyContext.model_validate(data)
    except pydantic.ValidationError as e:
        raise ValidationError(
            "Invalid policy context",
            details={"errors": e.errors(include_url=False)},
        ) from e


class ToolPolicyEngine:
    """Evaluates tool invocations before they execute."""

    def __init__(
        self,
        rules: Optional[GovernanceRules] = None,
        identity: Optional[IdentitySource] = None,
        audit_trail: Optional[AuditTrail] = None,
    ):
        self.identity = identity or IdentitySource(rules)
        self.rules = rules or self.identity.rules
        self.registry = ToolRegistry(self.rules)
        self.audit_trail = audit_trail or AuditTrail()

    @property
    def policy_version(self) -> str:
        return self.rules.version

    @property
    def rule_chain(self) -> List[Tuple[str, Callable[[PolicyContext], PolicyDecision]]]:
        return [
            ("no_direct_mutation", self._check_no_direct_mutation),
            ("release_dual_gate", self._check_release_dual_gate),
            ("jurisdiction_isolation", self._check_jurisdiction_isolation),
            ("novelty_escalation", self._check_novelty),
            ("external_action_hold", self._check_external_action),
        ]

    # ========== STATIC ==========

    def get_tool_group(self, tool_name: str) -> Optional[ToolGroup]:
        return self.registry.get_tool_group(tool_name)

    def requires_release_gating(self, tool_name: str) -> bool:
        return self.registry.requires_release_gating(tool_name)

    def can_agent_access_tool(self, agent_id: str, tool_name: str) -> bool:
        """Static pre-check against the agent's configured tool groups."""
        group = self.get_tool_group(tool_name)
        if group is None:
            return False
        return group in self.identity.allowed_tool_groups(agent_id)

    # ========== RULE CHAIN ==========

    def _check_no_direct_mutation(self, ctx: PolicyContext) -> PolicyDecision:
        return _allow("All mutations go through audited tool layer")

    def _check_release_dual_gate(self, ctx: PolicyContext) -> PolicyDecision:
        if ctx.tool_group != ToolGroup.RELEASE_GATED:
            return _allow("Not a release-gated tool")
        if not ctx.has_governor_approval:
            return _escalate("Release requires Governor authorization", EscalationTarget.GOVERNOR)
        if not ctx.has_guardian_pass:
            return _escalate("Release requires Guardian quality PASS", EscalationTarget.GUARDIAN)
        return _allow("Dual gate satisfied")

    def _check_jurisdiction_isolation(self, ctx: PolicyContext) -> PolicyDecision:
        return _allow("Jurisdiction check delegated to pack enforcement")

    def _check_novelty(self, ctx: PolicyContext) -> PolicyDecision:
        threshold = self.rules.tool_policy.novelty_threshold
        if ctx.novelty_score is not None and ctx.novelty_score > threshold:
            return _escalate("High novelty score requires operator review", EscalationTarget.OPERATOR)
        return _allow("Novelty within acceptable range")

    def _check_external_action(self, ctx: PolicyContext) -> PolicyDecision:
        if ctx.is_external_action and not ctx.has_governor_approval:
            return _escalate("External actions require explicit authorization", EscalationTarget.GOVERNOR)
        return _allow("Internal action or authorized")

    def evaluate_policy(self, context) -> PolicyDecision:
        """Run the rule chain; the first denial short-circuits.

        Args:
            context: PolicyContext or a dict of its fields

        Returns:
            PolicyDecision naming the denying rule, or an allow with
            reason "All policy rules passed"

        Raises:
            ValidationError: Malformed context
        """
        context = _build_context(context)

        for rule_id, check in self.rule_chain:
            decision = check(context)
            if not decision.allowed:
                return decision.model_copy(update={"rule_id": rule_id})

        return _allow("All policy rules passed")

    # ========== ENFORCEMENT ==========

    def _audit(self, agent_id: str, tool_name: str, group: Optional[ToolGroup], decision: PolicyDecision) -> None:
        self.audit_trail.record(
            action="tool_invocation_allowed" if decision.allowed else "tool_invocation_denied",
            actor_id=agent_id,
            resource_type="tool",
            resource_id=tool_name,
            details={
                "tool_group": group.value if group else None,
                "reason": decision.reason,
                "rule_id": decision.rule_id,
                "escalation_target": (
                    decision.escalation_target.value if decision.escalation_target else None
                ),
                "policy_version": self.policy_version,
            },
        )

    def _reject(self, agent_id: str, tool_name: str, group: Optional[ToolGroup], error: ValidationError) -> None:
        self._audit(
            agent_id, tool_name, group,
            PolicyDecision(allowed=False, reason=error.message, rule_id="invocation_context"),
        )
        logger.warning(f"Tool {tool_name} rejected for {agent_id}: {error.message}")

    def authorize_invocation(
        self,
        agent_id: str,
        tool_name: str,
        jurisdiction: Optional[JurisdictionPack] = None,
        has_governor_approval: bool = False,
        has_guardian_pass: bool = False,
        novelty_score: Optional[float] = None,
        is_external_action: bool = False,
        inputs: Optional[Mapping[str, object]] = None,
    ) -> PolicyDecision:
        """Static allowlist check plus rule chain, with the outcome audited.

        Args:
            jurisdiction: Pack the call acts in. The agent must be allowed
                that pack; this is the upstream check the
                ``jurisdiction_isolation`` rule relies on.
            inputs: Tool arguments. When given, every required input name
                for the tool must be present before the rule chain runs.

        Raises:
            ValidationError: Malformed invocation context (audited as a
                denial before raising)
        """
        group = self.get_tool_group(tool_name)

        if jurisdiction is not None:
            try:
                jurisdiction = as_pack(jurisdiction)
            except ValidationError as e:
                self._reject(agent_id, tool_name, group, e)
                raise

        missing = self.registry.missing_inputs(tool_name, inputs) if inputs is not None else []

        if group is None:
            decision = PolicyDecision(
                allowed=False, reason=f"Unknown tool: {tool_name}", rule_id="tool_allowlist"
            )
        elif not self.can_agent_access_tool(agent_id, tool_name):
            decision = PolicyDecision(
                allowed=False,
                reason=f"Agent {agent_id} is not permitted to use {group.value} tools",
                rule_id="tool_allowlist",
            )
        elif jurisdiction is not None and not self.identity.can_agent_use_pack(agent_id, jurisdiction):
            decision = PolicyDecision(
                allowed=False,
                reason=f"Agent {agent_id} may not act in pack {jurisdiction.value}",
                rule_id="pack_permission",
            )
        elif missing:
            decision = PolicyDecision(
                allowed=False,
                reason=f"Missing required inputs for {tool_name}: {', '.join(missing)}",
                rule_id="tool_inputs",
            )
        else:
            try:
                context = _build_context({
                    "agent_id": agent_id,
                    "tool_name": tool_name,
                    "tool_group": group,
                    "jurisdiction": jurisdiction,
                    "has_governor_approval": has_governor_approval,
                    "has_guardian_pass": has_guardian_pass,
                    "novelty_score": novelty_score,
                    "is_external_action": is_external_action,
                })
            except ValidationError as e:
                self._reject(agent_id, tool_name, group, e)
                raise
            decision = self.evaluate_policy(context)

        self._audit(agent_id, tool_name, group, decision)

        if decision.allowed:
            logger.info(f"Tool {tool_name} allowed for {agent_id}")
        else:
            logger.warning(f"Tool {tool_name} denied for {agent_id}: {decision.reason}")
        return decision

    def enforce(self, agent_id: str, tool_name: str, **context) -> PolicyDecision:
        """Like authorize_invocation, but raises on denial.

        Raises:
            SecurityViolation: Agent is not allowed the tool, or not the
                jurisdiction pack
            ValidationError: Required tool inputs missing, or malformed context
            PolicyViolation: A rule in the chain denied the call
        """
        decision = self.authorize_invocation(agent_id, tool_name, **context)
        if decision.allowed:
            return decision

        details = {
            "tool_name": tool_name,
            "escalation_target": (
                decision.escalation_target.value if decision.escalation_target else None
            ),
        }
        if decision.rule_id in ("tool_allowlist", "pack_permission"):
            raise SecurityViolation(
                f"SECURITY_VIOLATION: {decision.reason}", actor_id=agent_id, details=details
            )
        if decision.rule_id == "tool_inputs":
            raise ValidationError(decision.reason, details=details)
        raise PolicyViolation(decision.reason, policy_name=decision.rule_id, details=details)
