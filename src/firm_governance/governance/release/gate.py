"""Release gate - dual authorization before any externally visible action.

    request_release       engine agent asks to file, submit, deliver or notify
    record_guardian_pass  Guardian attaches a QC PASS to the request
    authorize_release     Governor decides AUTHORIZE / DENY / HOLD
    execute_release       the external action is recorded, exactly once

Release status is derived from which records exist, so it cannot drift
out of sync with them. A HOLD decision is final for the request and
reports as DENIED; the agent opens a new request to try again.
"""

from datetime import timedelta
from typing import List, Optional

import pydantic

from firm_governance.common.exceptions import (
    NotFoundError,
    PolicyViolation,
    SecurityViolation,
    StateError,
    ValidationError,
)
from firm_governance.common.logging import get_logger
from firm_governance.core.types import (
    ExecutionOutcome,
    QCState,
    ReleaseDecisionType,
    ReleaseStatus,
)
from firm_governance.governance.audit.trail import AuditTrail
from firm_governance.governance.identity import IdentitySource
from firm_governance.governance.rules import GovernanceRules
from firm_governance.governance.schemas import (
    QCReview,
    ReleaseDecision,
    ReleaseExecution,
    ReleaseRecord,
    ReleaseRequest,
    utcnow,
)
from firm_governance.persistence.repository import GovernanceRepository

logger = get_logger(__name__)

RESOURCE_TYPE = "release_request"

GUARDIAN_PASS_STATES = frozenset({QCState.PASS, QCState.RELEASED})


class ReleaseGate:
    """Dual-gate release workflow over an injected repository."""

    def __init__(
        self,
        repository: GovernanceRepository,
        audit_trail: Optional[AuditTrail] = None,
        identity: Optional[IdentitySource] = None,
    ):
        self.repository = repository
        self.audit_trail = audit_trail or AuditTrail()
        self.identity = identity or IdentitySource()

    @property
    def rules(self) -> GovernanceRules:
        return self.identity.rules

    # ========== REQUEST ==========

    def _validate_guardian_pass(self, review_id: str, workstream_id: str) -> QCReview:
        review = self.repository.get_qc_review(review_id)
        if review is None:
            raise NotFoundError("QCReview", review_id)
        # An escalated review can reach released without the Guardian passing it
        outcome = review.outcome.value if review.outcome else None
        if review.status not in GUARDIAN_PASS_STATES or review.outcome != QCState.PASS:
            raise PolicyViolation(
                f"GUARDIAN_REQUIRED: QC review {review_id} has not passed "
                f"(status: {review.status.value}, outcome: {outcome})",
                policy_name="guardian_pass_required",
            )
        if review.subject_id != workstream_id:
            raise PolicyViolation(
                f"GUARDIAN_REQUIRED: QC review {review_id} covers {review.subject_id}, "
                f"not {workstream_id}",
                policy_name="guardian_pass_required",
            )
        return review

    def request_release(self, **fields) -> ReleaseRequest:
        """Create a release request in PENDING.

        Keyword Args:
            workstream_id, requesting_agent, action_type, evidence_map_ref:
                required
            description, target_system, jurisdiction_pack: optional
            guardian_pass_ref: optional QC review id, validated if given

        Raises:
            ValidationError: Missing or malformed fields
            PolicyViolation: guardian_pass_ref does not point at a PASS
                for this workstream
        """
        for generated in ("request_id", "created_at", "revision", "guardian_pass_at"):
            fields.pop(generated, None)

        try:
            request = ReleaseRequest.model_validate(fields)
        except pydantic.ValidationError as e:
            raise ValidationError(
                "Invalid release request",
                details={"errors": e.errors(include_url=False)},
            ) from e

        if request.guardian_pass_ref:
            self._validate_guardian_pass(request.guardian_pass_ref, request.workstream_id)
            request = request.model_copy(update={"guardian_pass_at": utcnow()})

        request = self.repository.create_release_request(request)

        self.audit_trail.record(
            action="release_requested",
            actor_id=request.requesting_agent,
            resource_type=RESOURCE_TYPE,
            resource_id=request.request_id,
            details={
                "workstream_id": request.workstream_id,
                "action_type": request.action_type.value,
                "evidence_map_ref": request.evidence_map_ref,
                "guardian_pass_ref": request.guardian_pass_ref,
            },
            new_state=ReleaseStatus.PENDING.value,
        )
        logger.info(
            f"Release {request.request_id} requested by {request.requesting_agent} "
            f"({request.action_type.value} for {request.workstream_id})"
        )
        return request

    def record_guardian_pass(self, request_id: str, review_id: str, actor: str) -> ReleaseRequest:
        """Attach a Guardian QC PASS to a pending request.

        Raises:
            SecurityViolation: Actor is not the Guardian
            NotFoundError: Unknown request or review
            StateError: Request already decided
            PolicyViolation: Review is not a PASS for the request's workstream
        """
        if not self.identity.is_guardian(actor):
            logger.warning(f"Guardian pass rejected: {actor} is not the Guardian")
            raise SecurityViolation(
                f"SECURITY_VIOLATION: Only the Guardian can record a QC pass. Attempted by: {actor}",
                actor_id=actor,
            )

        request = self._load_request(request_id)
        if self.repository.get_release_decision(request_id) is not None:
            raise StateError(f"Release request {request_id} has already been decided")

        self._validate_guardian_pass(review_id, request.workstream_id)

        updated = self.repository.update_release_request(
            request.model_copy(update={"guardian_pass_ref": review_id, "guardian_pass_at": utcnow()})
        )
        self.audit_trail.record(
            action="release_guardian_pass_recorded",
            actor_id=actor,
            resource_type=RESOURCE_TYPE,
            resource_id=request_id,
            details={"review_id": review_id},
        )
        logger.info(f"Guardian pass {review_id} recorded on release {request_id}")
        return updated

    # ========== DECISION ==========

    def _check_validity_windows(self, request: ReleaseRequest) -> None:
        validity = self.rules.validity
        now = utcnow()

        if validity.pending_release_ttl_hours is not None:
            if now - request.created_at > timedelta(hours=validity.pending_release_ttl_hours):
                raise StateError(
                    f"Release request {request.request_id} expired before a decision",
                    details={"ttl_hours": validity.pending_release_ttl_hours},
                )

        if validity.guardian_pass_ttl_hours is not None and request.guardian_pass_at is not None:
            if now - request.guardian_pass_at > timedelta(hours=validity.guardian_pass_ttl_hours):
                raise PolicyViolation(
                    f"GUARDIAN_REQUIRED: Guardian pass on {request.request_id} has expired",
                    policy_name="guardian_pass_required",
                    details={"ttl_hours": validity.guardian_pass_ttl_hours},
                )

    def authorize_release(
        self,
        request_id: str,
        authorizing_role_id: str,
        decision,
        rule_basis: List[str],
        evidence_basis: List[str],
        risk_rationale: str,
        conditions: Optional[List[str]] = None,
    ) -> ReleaseDecision:
        """Record the Governor's decision on a release request.

        Checks run in a fixed order and nothing is written unless all pass.

        Raises:
            SecurityViolation: Caller is not the Governor (checked first,
                even for unknown ids)
            NotFoundError: Unknown request
            PolicyViolation: No Guardian pass recorded ("guardian pass required"),
                or the referenced review no longer holds a PASS outcome
            StateError: Request already decided, or expired
            ValidationError: Malformed decision fields
        """
        if not self.identity.is_governor(authorizing_role_id):
            logger.warning(f"Release authorization rejected for {authorizing_role_id}")
            raise SecurityViolation(
                f"SECURITY_VIOLATION: Only the Governor can authorize releases. "
                f"Attempted by: {authorizing_role_id}",
                actor_id=authorizing_role_id,
            )

        request = self._load_request(request_id)

        if not request.guardian_pass_ref:
            logger.warning(f"Release {request_id} authorization blocked: no Guardian pass")
            raise PolicyViolation(
                f"GUARDIAN_REQUIRED: guardian pass required before authorizing release {request_id}",
                policy_name="guardian_pass_required",
            )

        self._validate_guardian_pass(request.guardian_pass_ref, request.workstream_id)

        if self.repository.get_release_decision(request_id) is not None:
            raise StateError(
                f"Release request {request_id} already has a decision",
                details={"request_id": request_id},
            )

        self._check_validity_windows(request)

        try:
            release_decision = ReleaseDecision(
                request_id=request_id,
                decision=decision,
                authorized_by=authorizing_role_id,
                rule_basis=rule_basis,
                evidence_basis=evidence_basis,
                risk_rationale=risk_rationale,
                conditions=conditions or [],
            )
        except pydantic.ValidationError as e:
            raise ValidationError(
                "Invalid release decision",
                details={"errors": e.errors(include_url=False)},
            ) from e

        release_decision = self.repository.create_release_decision(release_decision)

        self.audit_trail.record(
            action="release_decided",
            actor_id=authorizing_role_id,
            resource_type=RESOURCE_TYPE,
            resource_id=request_id,
            details={
                "decision": release_decision.decision.value,
                "rule_basis": rule_basis,
                "evidence_basis": evidence_basis,
                "risk_rationale": risk_rationale,
                "conditions": release_decision.conditions,
            },
            previous_state=ReleaseStatus.PENDING.value,
            new_state=self._status_for(release_decision, None).value,
        )
        logger.info(f"Release {request_id} decided: {release_decision.decision.value}")
        return release_decision

    # ========== EXECUTION ==========

    def execute_release(
        self,
        request_id: str,
        executed_by: str,
        outcome,
        external_ref: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ReleaseExecution:
        """Record the external action for an authorized request.

        Raises:
            NotFoundError: Unknown request
            StateError: No decision, decision is not AUTHORIZE, or the
                request was already executed
        """
        self._load_request(request_id)

        decision = self.repository.get_release_decision(request_id)
        if decision is None:
            raise StateError(f"No release decision found for: {request_id}")
        if decision.decision != ReleaseDecisionType.AUTHORIZE:
            logger.warning(f"Execution of non-authorized release {request_id} rejected")
            raise StateError(
                f"Cannot execute non-authorized release. Decision: {decision.decision.value}"
            )
        if self.repository.get_release_execution(request_id) is not None:
            raise StateError(f"Release {request_id} has already been executed")

        try:
            execution = ReleaseExecution(
                request_id=request_id,
                executed_by=executed_by,
                outcome=outcome,
                external_ref=external_ref,
                notes=notes,
            )
        except pydantic.ValidationError as e:
            raise ValidationError(
                "Invalid release execution",
                details={"errors": e.errors(include_url=False)},
            ) from e

        execution = self.repository.create_release_execution(execution)
        new_status = self._status_for(decision, execution)

        self.audit_trail.record(
            action="release_executed",
            actor_id=executed_by,
            resource_type=RESOURCE_TYPE,
            resource_id=request_id,
            details={"outcome": execution.outcome.value, "external_ref": external_ref},
            previous_state=ReleaseStatus.AUTHORIZED.value,
            new_state=new_status.value,
        )
        logger.info(f"Release {request_id} executed: {new_status.value}")
        return execution

    # ========== QUERIES ==========

    def _load_request(self, request_id: str) -> ReleaseRequest:
        request = self.repository.get_release_request(request_id)
        if request is None:
            raise NotFoundError("ReleaseRequest", request_id)
        return request

    @staticmethod
    def _status_for(
        decision: Optional[ReleaseDecision],
        execution: Optional[ReleaseExecution],
    ) -> ReleaseStatus:
        if execution is not None:
            if execution.outcome == ExecutionOutcome.SUCCESS:
                return ReleaseStatus.EXECUTED
            return ReleaseStatus.ROLLED_BACK
        if decision is not None:
            if decision.decision == ReleaseDecisionType.AUTHORIZE:
                return ReleaseStatus.AUTHORIZED
            return ReleaseStatus.DENIED
        return ReleaseStatus.PENDING

    def get_release(self, request_id: str) -> ReleaseRecord:
        return ReleaseRecord(
            request=self._load_request(request_id),
            decision=self.repository.get_release_decision(request_id),
            execution=self.repository.get_release_execution(request_id),
        )

    def get_release_status(self, request_id: str) -> ReleaseStatus:
        """Derived status of a request.

        Raises:
            NotFoundError: Unknown request, as for get_release
        """
        self._load_request(request_id)
        return self._status_for(
            self.repository.get_release_decision(request_id),
            self.repository.get_release_execution(request_id),
        )

    def can_execute_release(self, request_id: str) -> bool:
        """True only between an AUTHORIZE decision and its execution."""
        decision = self.repository.get_release_decision(request_id)
        return (
            decision is not None
            and decision.decision == ReleaseDecisionType.AUTHORIZE
            and self.repository.get_release_execution(request_id) is None
        )

    def get_pending_releases(self) -> List[ReleaseRequest]:
        return [
            r for r in self.repository.list_release_requests()
            if self.repository.get_release_decision(r.request_id) is None
        ]

    def get_releases_by_workstream(self, workstream_id: str) -> List[ReleaseRequest]:
        return self.repository.list_release_requests(workstream_id)
