"""QC review state machine.

    draft -> pending
    pending -> in_review | revise
    in_review -> pass | revise | escalate
    pass -> released
    revise -> pending
    escalate -> in_review | released
    released -> (terminal)

The Guardian owns every transition. The Governor may only resolve an
escalated review. The submitting engine agent may only resubmit a review
sent back for revision.
"""

from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional

from firm_governance.common.exceptions import (
    NotFoundError,
    PolicyViolation,
    SecurityViolation,
    StateError,
    ValidationError,
)
from firm_governance.common.logging import get_logger
from firm_governance.core.types import GovernanceRole, QCState, WorkstreamStatus
from firm_governance.evidence.taxonomy import EvidenceType, validate_agent_evidence_minimum
from firm_governance.governance.audit.trail import AuditTrail
from firm_governance.governance.identity import IdentitySource
from firm_governance.governance.qc.checklists import evaluate_checklist, get_checklist
from firm_governance.governance.schemas import (
    AuditEvent,
    PolicyDecisionRecord,
    QCReview,
    utcnow,
)
from firm_governance.persistence.repository import GovernanceRepository

logger = get_logger(__name__)

ALLOWED_TRANSITIONS: Dict[QCState, FrozenSet[QCState]] = {
    QCState.DRAFT: frozenset({QCState.PENDING}),
    QCState.PENDING: frozenset({QCState.IN_REVIEW, QCState.REVISE}),
    QCState.IN_REVIEW: frozenset({QCState.PASS, QCState.REVISE, QCState.ESCALATE}),
    QCState.PASS: frozenset({QCState.RELEASED}),
    QCState.REVISE: frozenset({QCState.PENDING}),
    QCState.ESCALATE: frozenset({QCState.IN_REVIEW, QCState.RELEASED}),
    QCState.RELEASED: frozenset(),
}

OUTCOME_STATES = frozenset({QCState.PASS, QCState.REVISE, QCState.ESCALATE})

WORKSTREAM_STATUS_ON_ENTRY: Dict[QCState, WorkstreamStatus] = {
    QCState.PASS: WorkstreamStatus.PENDING_APPROVAL,
    QCState.REVISE: WorkstreamStatus.QC_REVISION,
    QCState.RELEASED: WorkstreamStatus.COMPLETED,
}

RESOURCE_TYPE = "qc_review"


def _as_state(value) -> QCState:
    try:
        return QCState(value)
    except ValueError as e:
        raise ValidationError(f"Unknown QC state: {value}") from e


def can_transition(from_state, to_state) -> bool:
    """Strict adjacency check. Unknown states are never valid."""
    try:
        return QCState(to_state) in ALLOWED_TRANSITIONS[QCState(from_state)]
    except ValueError:
        return False


class QCWorkflow:
    """Manages QC reviews against an injected repository."""

    def __init__(
        self,
        repository: GovernanceRepository,
        audit_trail: Optional[AuditTrail] = None,
        identity: Optional[IdentitySource] = None,
    ):
        self.repository = repository
        self.audit_trail = audit_trail or AuditTrail()
        self.identity = identity or IdentitySource()

    can_transition = staticmethod(can_transition)

    def submit_for_qc(
        self,
        subject_id: str,
        submitting_agent: str,
        task_type: Optional[str] = None,
        linked_evidence: Optional[Iterable[EvidenceType]] = None,
    ) -> QCReview:
        """Submit a workstream for QC review.

        Args:
            subject_id: Workstream/workpaper id
            submitting_agent: Engine agent submitting the work
            task_type: Task type used to pick the checklist
            linked_evidence: When given, must cover the evidence minimum
                configured for ``submitting_agent``

        Returns:
            The new review in ``pending``

        Raises:
            NotFoundError: If the workstream is unknown
            PolicyViolation: Linked evidence misses the agent's minimum
        """
        if self.repository.get_workstream_status(subject_id) is None:
            raise NotFoundError("Workstream", subject_id)

        if linked_evidence is not None:
            check = validate_agent_evidence_minimum(
                submitting_agent, linked_evidence, self.identity.rules.agent_evidence_minimum
            )
            if not check.satisfied:
                missing = [t.value for t in check.missing]
                logger.warning(f"QC submission for {subject_id} blocked: missing evidence {missing}")
                raise PolicyViolation(
                    f"Evidence minimum for {submitting_agent} not met: {', '.join(missing)}",
                    policy_name="agent_evidence_minimum",
                    details={"workstream_id": subject_id, "missing": missing},
                )

        review = self.repository.create_qc_review(
            QCReview(
                subject_id=subject_id,
                submitted_by=submitting_agent,
                task_type=task_type,
                status=QCState.PENDING,
            )
        )
        self.repository.set_workstream_status(subject_id, WorkstreamStatus.PENDING_QC)

        self.audit_trail.record(
            action="qc_submitted",
            actor_id=submitting_agent,
            resource_type=RESOURCE_TYPE,
            resource_id=review.review_id,
            details={"workstream_id": subject_id, "task_type": task_type},
            new_state=review.status.value,
        )
        logger.info(f"QC review {review.review_id} opened for {subject_id} by {submitting_agent}")
        return review

    def _authorize_transition(self, actor: str) -> GovernanceRole:
        role = self.identity.resolve_role(actor)
        if role not in (GovernanceRole.GUARDIAN, GovernanceRole.GOVERNOR):
            logger.warning(f"QC transition rejected: {actor} holds no QC authority")
            raise SecurityViolation(
                f"SECURITY_VIOLATION: Only the Guardian can transition QC reviews. "
                f"Attempted by: {actor}",
                actor_id=actor,
            )
        return role

    def _load(self, review_id: str) -> QCReview:
        review = self.repository.get_qc_review(review_id)
        if review is None:
            raise NotFoundError("QCReview", review_id)
        return review

    def transition_qc(
        self,
        review_id: str,
        target,
        actor: str,
        comments: Optional[str] = None,
        checklist_responses: Optional[Mapping[str, bool]] = None,
    ) -> QCReview:
        """Move a review to ``target``.

        Args:
            review_id: Review to transition
            target: Target QCState (or its string value)
            actor: Acting id; must resolve to the Guardian, or to the
                Governor when resolving an escalated review
            comments: Reviewer comments (also the escalation reason)
            checklist_responses: When given on a move to ``pass``, the
                checklist for the review's task type must have no failed
                required item

        Returns:
            The updated review

        Raises:
            SecurityViolation: Actor lacks QC authority
            NotFoundError: Unknown review
            StateError: Transition not in the adjacency map
            PolicyViolation: Checklist has failed required items
            ConcurrencyConflict: Review changed since it was read
        """
        role = self._authorize_transition(actor)
        target = _as_state(target)
        current = self._load(review_id)
        from_state = current.status

        if role == GovernanceRole.GOVERNOR and from_state != QCState.ESCALATE:
            logger.warning(f"Governor {actor} attempted QC transition outside escalation")
            raise SecurityViolation(
                "SECURITY_VIOLATION: The Governor may only resolve escalated QC reviews",
                actor_id=actor,
            )

        if not can_transition(from_state, target):
            logger.warning(f"Invalid QC transition for {review_id}: {from_state.value} -> {target.value}")
            raise StateError(
                f"Invalid transition: {from_state.value} -> {target.value}",
                details={"review_id": review_id, "from": from_state.value, "to": target.value},
            )

        updates = {
            "status": target,
            "comments": comments or current.comments,
            "updated_at": utcnow(),
        }

        if target == QCState.PASS and checklist_responses is not None:
            result = evaluate_checklist(get_checklist(current.task_type or ""), checklist_responses)
            if not result.passed:
                failed = [r.item_id for r in result.results if not r.passed]
                raise PolicyViolation(
                    f"QC checklist incomplete: {result.failed_items} required item(s) failed",
                    policy_name="qc_checklist",
                    details={"review_id": review_id, "failed": failed},
                )
            updates["checklist_score"] = result.score

        if target in OUTCOME_STATES:
            updates["outcome"] = target
            updates["reviewed_at"] = utcnow()

        updated = self.repository.update_qc_review(current.model_copy(update=updates))

        workstream_status = WORKSTREAM_STATUS_ON_ENTRY.get(target)
        if workstream_status is not None:
            self.repository.set_workstream_status(current.subject_id, workstream_status)

        self.audit_trail.record(
            action=f"qc_transitioned_to_{target.value}",
            actor_id=actor,
            resource_type=RESOURCE_TYPE,
            resource_id=review_id,
            details={"from": from_state.value, "to": target.value, "comments": comments},
            previous_state=from_state.value,
            new_state=target.value,
        )

        if target == QCState.ESCALATE:
            self._escalate_to_governor(updated, actor, comments)

        logger.info(f"QC review {review_id}: {from_state.value} -> {target.value} by {actor}")
        return updated

    def _escalate_to_governor(self, review: QCReview, escalated_by: str, reason: Optional[str]) -> None:
        record = self.repository.add_policy_decision(
            PolicyDecisionRecord(
                policy_id="qc_escalation",
                policy_name="QC Escalation Review",
                directed_to=GovernanceRole.GOVERNOR,
                decision="escalate",
                reasoning=reason or "Escalated from QC review",
                requested_by=escalated_by,
                subject_id=review.subject_id,
                inputs={"review_id": review.review_id},
            )
        )
        logger.info(f"QC review {review.review_id} escalated to Governor ({record.decision_id})")

    def resubmit_for_qc(self, review_id: str, actor: str, comments: Optional[str] = None) -> QCReview:
        """Return a revised review to the queue (revise -> pending).

        Only the agent that submitted the work may resubmit it.
        """
        current = self._load(review_id)

        if actor != current.submitted_by:
            logger.warning(f"Resubmission of {review_id} rejected for {actor}")
            raise SecurityViolation(
                f"SECURITY_VIOLATION: Only {current.submitted_by} can resubmit review {review_id}",
                actor_id=actor,
            )

        if current.status != QCState.REVISE:
            raise StateError(
                f"Invalid transition: {current.status.value} -> {QCState.PENDING.value}",
                details={"review_id": review_id},
            )

        updated = self.repository.update_qc_review(
            current.model_copy(update={
                "status": QCState.PENDING,
                "comments": comments or current.comments,
                "updated_at": utcnow(),
            })
        )
        self.repository.set_workstream_status(current.subject_id, WorkstreamStatus.PENDING_QC)

        self.audit_trail.record(
            action="qc_resubmitted",
            actor_id=actor,
            resource_type=RESOURCE_TYPE,
            resource_id=review_id,
            details={"comments": comments},
            previous_state=QCState.REVISE.value,
            new_state=QCState.PENDING.value,
        )
        return updated

    def get_qc_review(self, review_id: str) -> Optional[QCReview]:
        return self.repository.get_qc_review(review_id)

    def list_pending_qc_reviews(self) -> List[QCReview]:
        """Reviews waiting on the Guardian, oldest first."""
        return self.repository.list_qc_reviews([QCState.PENDING, QCState.IN_REVIEW])

    def get_qc_history(self, review_id: str) -> List[AuditEvent]:
        return self.audit_trail.history(review_id)

    def get_escalations(self, subject_id: Optional[str] = None) -> List[PolicyDecisionRecord]:
        return [
            r for r in self.repository.list_policy_decisions(subject_id)
            if r.policy_id == "qc_escalation"
        ]
