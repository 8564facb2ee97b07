#!/usr/bin/env python3
"""Main entry point for Firm Governance.

Walks one workstream through the dual gate: autonomy check, Guardian QC
pass, release request and Governor authorization.
"""

from firm_governance.common.config import get_config
from firm_governance.common.logging import get_logger
from firm_governance.core.types import ExecutionOutcome, QCState, ReleaseActionType
from firm_governance.governance.audit.store import create_audit_store
from firm_governance.governance.audit.trail import AuditTrail
from firm_governance.governance.autonomy import AutonomyClassifier
from firm_governance.governance.identity import IdentitySource
from firm_governance.governance.qc.state_machine import QCWorkflow
from firm_governance.governance.release.gate import ReleaseGate
from firm_governance.persistence import create_repository

logger = get_logger(__name__)


def main():
    """Main entry point."""
    config = get_config()
    logger.info(f"Firm Governance initialized in {config.environment.value} mode")

    identity = IdentitySource()
    repository = create_repository(config)
    trail = AuditTrail(create_audit_store(config))
    qc = QCWorkflow(repository, trail, identity)
    gate = ReleaseGate(repository, trail, identity)

    decision = AutonomyClassifier(identity.rules).evaluate({
        "workflow_type": "vat_return",
        "external_impact": True,
        "novelty_score": 15,
        "evidence_completeness_score": 92,
        "has_approved_template": True,
    })
    logger.info(f"Autonomy: tier {decision.tier.value} ({decision.reasoning})")

    workstream_id = "ws_demo_vat_q3"
    repository.register_workstream(workstream_id)

    review = qc.submit_for_qc(workstream_id, "agent_tax_mt", task_type="vat_return")
    qc.transition_qc(review.review_id, QCState.IN_REVIEW, identity.guardian_id)
    qc.transition_qc(
        review.review_id,
        QCState.PASS,
        identity.guardian_id,
        comments="Figures agree to ledger",
        checklist_responses={
            "data_complete": True,
            "calculations_verified": True,
            "deadline_checked": True,
        },
    )

    request = gate.request_release(
        workstream_id=workstream_id,
        requesting_agent="agent_tax_mt",
        action_type=ReleaseActionType.FILING,
        evidence_map_ref="evm_demo_vat_q3",
        description="Q3 VAT return",
        target_system="tax_portal",
        guardian_pass_ref=review.review_id,
    )
    gate.authorize_release(
        request.request_id,
        identity.governor_id,
        "AUTHORIZE",
        rule_basis=["release_dual_gate"],
        evidence_basis=["evm_demo_vat_q3"],
        risk_rationale="Routine filing with Guardian pass",
    )
    gate.execute_release(request.request_id, "agent_tax_mt", ExecutionOutcome.SUCCESS, external_ref="portal-receipt")

    logger.info(f"Release {request.request_id}: {gate.get_release_status(request.request_id).value}")
    logger.info(f"Audit events for release: {len(trail.history(request.request_id))}")


if __name__ == "__main__":
    main()
