"""Autonomy classifier - decides whether an action may proceed unattended.

Rules are evaluated in priority order and the first match wins:

1. Tier C triggers (any one is sufficient): external impact, dispute or
   regulatory signal, high novelty, first-time execution, low evidence.
2. Tier A: routine internal work with low novelty, high evidence and an
   approved template.
3. Tier B: approved template with medium novelty, or a standard workflow
   with adequate evidence and moderate novelty.
4. Anything else falls to the named unmatched-scenario policy
   (DEFAULT_ESCALATE by default).

Thresholds come from the ``autonomy`` section of the rules document.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional

import pydantic
from pydantic import BaseModel, Field

from firm_governance.common.exceptions import ValidationError
from firm_governance.common.logging import get_logger
from firm_governance.core.types import AutonomyTier
from firm_governance.governance.rules import GovernanceRules, load_governance_rules

logger = get_logger(__name__)

DEFAULT_ESCALATE = "DEFAULT_ESCALATE"
DEFAULT_AUTO_WITH_CHECK = "DEFAULT_AUTO_WITH_CHECK"


class AutonomyDecisionInput(BaseModel):
    """Workflow context evaluated at a decision point."""
    jurisdiction: Optional[str] = None
    service: Optional[str] = None
    workflow_type: Optional[str] = None
    document_type: Optional[str] = None
    external_impact: bool = False
    dispute_or_regulatory_signal: bool = False
    is_first_time_execution: bool = False
    has_approved_template: bool = False
    novelty_score: float = Field(
        default=0.0,
        ge=0.0,
        le=100.0,
        description="0 = routine, 100 = never seen"
    )
    evidence_completeness_score: float = Field(
        default=100.0,
        ge=0.0,
        le=100.0,
        description="Percent of required evidence present"
    )


class AutonomyDecision(BaseModel):
    """Derived decision. Recomputed at every decision point, never stored."""
    tier: AutonomyTier
    requires_human: bool
    reasoning: str
    rules_applied: List[str] = Field(default_factory=list)


@dataclass(frozen=True)
class _AutonomyRule:
    rule_id: str
    description: str
    tier: AutonomyTier
    priority: int
    condition: Callable[[AutonomyDecisionInput], bool]


class AutonomyClassifier:
    """Maps a workflow context to an autonomy tier."""

    def __init__(self, rules: Optional[GovernanceRules] = None):
        self.rules = rules or load_governance_rules()
        self._autonomy_rules = self._build_rules()

    def _build_rules(self) -> List[_AutonomyRule]:
        c = self.rules.autonomy.tier_c
        a = self.rules.autonomy.tier_a
        b = self.rules.autonomy.tier_b

        rules = [
            # Tier C: escalate
            _AutonomyRule(
                "C_EXTERNAL", "External impact requires escalation",
                AutonomyTier.C, 1, lambda i: i.external_impact,
            ),
            _AutonomyRule(
                "C_DISPUTE", "Dispute or regulatory signals require escalation",
                AutonomyTier.C, 2, lambda i: i.dispute_or_regulatory_signal,
            ),
            _AutonomyRule(
                "C_HIGH_NOVELTY", "High novelty actions require escalation",
                AutonomyTier.C, 3, lambda i: i.novelty_score > c.novelty_above,
            ),
            _AutonomyRule(
                "C_FIRST_TIME", "First-time workflow execution requires escalation",
                AutonomyTier.C, 4, lambda i: i.is_first_time_execution,
            ),
            _AutonomyRule(
                "C_INCOMPLETE_EVIDENCE", "Low evidence completeness requires escalation",
                AutonomyTier.C, 5, lambda i: i.evidence_completeness_score < c.evidence_below,
            ),
            # Tier A: full auto
            _AutonomyRule(
                "A_ROUTINE", "Routine internal operation with approved template",
                AutonomyTier.A, 9,
                lambda i: (
                    not i.external_impact
                    and not i.dispute_or_regulatory_signal
                    and i.novelty_score <= a.novelty_max
                    and i.evidence_completeness_score >= a.evidence_min
                    and i.has_approved_template
                ),
            ),
            # Tier B: auto with later check
            _AutonomyRule(
                "B_TEMPLATE_WITH_REVIEW", "Approved template with medium novelty",
                AutonomyTier.B, 10,
                lambda i: (
                    i.has_approved_template
                    and b.template_novelty_min < i.novelty_score <= b.template_novelty_max
                ),
            ),
            _AutonomyRule(
                "B_STANDARD_WORKFLOW", "Standard workflow with adequate evidence",
                AutonomyTier.B, 11,
                lambda i: (
                    not i.external_impact
                    and not i.dispute_or_regulatory_signal
                    and i.evidence_completeness_score >= b.standard_evidence_min
                    and i.novelty_score <= b.standard_novelty_max
                ),
            ),
        ]
        return sorted(rules, key=lambda r: r.priority)

    def evaluate(self, decision_input) -> AutonomyDecision:
        """Evaluate the autonomy tier for an action.

        Args:
            decision_input: AutonomyDecisionInput or a mapping of its fields

        Returns:
            AutonomyDecision naming the applied rule and every matching rule

        Raises:
            ValidationError: If the input is malformed
        """
        if not isinstance(decision_input, AutonomyDecisionInput):
            try:
                decision_input = AutonomyDecisionInput.model_validate(decision_input)
            except pydantic.ValidationError as e:
                raise ValidationError(
                    "Invalid autonomy decision input",
                    details={"errors": e.errors(include_url=False)},
                ) from e

        matching = [r for r in self._autonomy_rules if r.condition(decision_input)]

        if not matching:
            decision = self._unmatched_decision()
        else:
            applied = matching[0]
            decision = AutonomyDecision(
                tier=applied.tier,
                requires_human=applied.tier == AutonomyTier.C,
                reasoning=applied.description,
                rules_applied=[r.rule_id for r in matching],
            )

        logger.info(
            f"Autonomy tier {decision.tier.value} "
            f"(workflow={decision_input.workflow_type}, rules={decision.rules_applied})"
        )
        return decision

    def _unmatched_decision(self) -> AutonomyDecision:
        if self.rules.autonomy.unmatched_policy == DEFAULT_AUTO_WITH_CHECK:
            return AutonomyDecision(
                tier=AutonomyTier.B,
                requires_human=False,
                reasoning="No matching policy rules; proceeding with a later check",
                rules_applied=[DEFAULT_AUTO_WITH_CHECK],
            )
        return AutonomyDecision(
            tier=AutonomyTier.C,
            requires_human=True,
            reasoning="No matching policy rules; defaulting to escalation",
            rules_applied=[DEFAULT_ESCALATE],
        )

    def is_fully_autonomous(self, decision_input) -> bool:
        return self.evaluate(decision_input).tier == AutonomyTier.A

    def requires_human(self, decision_input) -> bool:
        return self.evaluate(decision_input).requires_human


_default_classifier: Optional[AutonomyClassifier] = None


def get_autonomy_classifier() -> AutonomyClassifier:
    """Classifier built from the configured rules document."""
    global _default_classifier
    if _default_classifier is None:
        _default_classifier = AutonomyClassifier()
    return _default_classifier


def reset_autonomy_classifier() -> None:
    """Drop the cached classifier (for testing or after a rules change)."""
    global _default_classifier
    _default_classifier = None


def evaluate_autonomy(decision_input) -> AutonomyDecision:
    return get_autonomy_classifier().evaluate(decision_input)


def is_fully_autonomous(decision_input) -> bool:
    return get_autonomy_classifier().is_fully_autonomous(decision_input)


def requires_human(decision_input) -> bool:
    return get_autonomy_classifier().requires_human(decision_input)
