"""Governance repository - injected persistent store for governed records.

Every mutating governance operation reads current state, validates it and
writes the new state. The repository is the point of concurrency control:

- ``create_*`` fails with ConcurrencyConflict if the id already exists
  (release decisions and executions are create-once).
- ``update_*`` takes the record as it was read; the write succeeds only if
  the stored revision still matches, and stores it with revision + 1.
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, TypeVar
import threading

from firm_governance.common.exceptions import ConcurrencyConflict
from firm_governance.core.types import QCState, WorkstreamStatus
from firm_governance.governance.schemas import (
    PolicyDecisionRecord,
    QCReview,
    ReleaseDecision,
    ReleaseExecution,
    ReleaseRequest,
    Template,
    TemplateInstance,
)

Record = TypeVar("Record", QCReview, ReleaseRequest, Template, TemplateInstance)


class GovernanceRepository(ABC):
    """Abstract store for QC reviews, releases, templates and workstreams."""

    # ========== WORKSTREAMS ==========

    @abstractmethod
    def register_workstream(
        self, workstream_id: str, status: WorkstreamStatus = WorkstreamStatus.PENDING
    ) -> None:
        """Make a workstream known to the engine (no-op if it already exists)."""

    @abstractmethod
    def get_workstream_status(self, workstream_id: str) -> Optional[WorkstreamStatus]:
        """Current status, or None if the workstream is unknown."""

    @abstractmethod
    def set_workstream_status(self, workstream_id: str, status: WorkstreamStatus) -> None:
        pass

    # ========== QC REVIEWS ==========

    @abstractmethod
    def create_qc_review(self, review: QCReview) -> QCReview:
        pass

    @abstractmethod
    def get_qc_review(self, review_id: str) -> Optional[QCReview]:
        pass

    @abstractmethod
    def update_qc_review(self, review: QCReview) -> QCReview:
        pass

    @abstractmethod
    def list_qc_reviews(self, statuses: Optional[Iterable[QCState]] = None) -> List[QCReview]:
        """Reviews in the given states (all when None), oldest first."""

    # ========== POLICY DECISIONS ==========

    @abstractmethod
    def add_policy_decision(self, record: PolicyDecisionRecord) -> PolicyDecisionRecord:
        pass

    @abstractmethod
    def list_policy_decisions(self, subject_id: Optional[str] = None) -> List[PolicyDecisionRecord]:
        pass

    # ========== RELEASES ==========

    @abstractmethod
    def create_release_request(self, request: ReleaseRequest) -> ReleaseRequest:
        pass

    @abstractmethod
    def get_release_request(self, request_id: str) -> Optional[ReleaseRequest]:
        pass

    @abstractmethod
    def update_release_request(self, request: ReleaseRequest) -> ReleaseRequest:
        pass

    @abstractmethod
    def list_release_requests(self, workstream_id: Optional[str] = None) -> List[ReleaseRequest]:
        pass

    @abstractmethod
    def create_release_decision(self, decision: ReleaseDecision) -> ReleaseDecision:
        pass

    @abstractmethod
    def get_release_decision(self, request_id: str) -> Optional[ReleaseDecision]:
        pass

    @abstractmethod
    def create_release_execution(self, execution: ReleaseExecution) -> ReleaseExecution:
        pass

    @abstractmethod
    def get_release_execution(self, request_id: str) -> Optional[ReleaseExecution]:
        pass

    # ========== TEMPLATES ==========

    @abstractmethod
    def create_template(self, template: Template) -> Template:
        pass

    @abstractmethod
    def get_template(self, template_id: str) -> Optional[Template]:
        pass

    @abstractmethod
    def update_template(self, template: Template) -> Template:
        pass

    @abstractmethod
    def list_templates(self) -> List[Template]:
        pass

    @abstractmethod
    def create_instance(self, instance: TemplateInstance) -> TemplateInstance:
        pass

    @abstractmethod
    def get_instance(self, instance_id: str) -> Optional[TemplateInstance]:
        pass

    @abstractmethod
    def update_instance(self, instance: TemplateInstance) -> TemplateInstance:
        pass

    @abstractmethod
    def list_instances(self, template_id: Optional[str] = None) -> List[TemplateInstance]:
        pass


class InMemoryGovernanceRepository(GovernanceRepository):
    """Lock-guarded in-process repository for tests and single-process use.

    Records are copied on the way in and out, so callers never share
    mutable state with the store.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._workstreams: Dict[str, WorkstreamStatus] = {}
        self._qc_reviews: Dict[str, QCReview] = {}
        self._policy_decisions: List[PolicyDecisionRecord] = []
        self._release_requests: Dict[str, ReleaseRequest] = {}
        self._release_decisions: Dict[str, ReleaseDecision] = {}
        self._release_executions: Dict[str, ReleaseExecution] = {}
        self._templates: Dict[str, Template] = {}
        self._instances: Dict[str, TemplateInstance] = {}

    # ----- helpers -----

    def _create(self, table: Dict[str, Record], key: str, record: Record, kind: str) -> Record:
        with self._lock:
            if key in table:
                raise ConcurrencyConflict(
                    f"{kind} already exists: {key}",
                    details={"resource_type": kind, "resource_id": key},
                )
            table[key] = record.model_copy(deep=True)
            return record.model_copy(deep=True)

    def _update(self, table: Dict[str, Record], key: str, record: Record, kind: str) -> Record:
        with self._lock:
            current = table.get(key)
            if current is None or current.revision != record.revision:
                raise ConcurrencyConflict(
                    f"{kind} {key} was modified concurrently",
                    details={
                        "resource_type": kind,
                        "resource_id": key,
                        "expected_revision": record.revision,
                        "stored_revision": current.revision if current else None,
                    },
                )
            stored = record.model_copy(update={"revision": record.revision + 1}, deep=True)
            table[key] = stored
            return stored.model_copy(deep=True)

    @staticmethod
    def _get(table: Dict[str, Record], key: str) -> Optional[Record]:
        record = table.get(key)
        return record.model_copy(deep=True) if record is not None else None

    # ----- workstreams -----

    def register_workstream(
        self, workstream_id: str, status: WorkstreamStatus = WorkstreamStatus.PENDING
    ) -> None:
        with self._lock:
            self._workstreams.setdefault(workstream_id, status)

    def get_workstream_status(self, workstream_id: str) -> Optional[WorkstreamStatus]:
        return self._workstreams.get(workstream_id)

    def set_workstream_status(self, workstream_id: str, status: WorkstreamStatus) -> None:
        with self._lock:
            self._workstreams[workstream_id] = status

    # ----- QC reviews -----

    def create_qc_review(self, review: QCReview) -> QCReview:
        return self._create(self._qc_reviews, review.review_id, review, "QCReview")

    def get_qc_review(self, review_id: str) -> Optional[QCReview]:
        return self._get(self._qc_reviews, review_id)

    def update_qc_review(self, review: QCReview) -> QCReview:
        return self._update(self._qc_reviews, review.review_id, review, "QCReview")

    def list_qc_reviews(self, statuses: Optional[Iterable[QCState]] = None) -> List[QCReview]:
        wanted = set(statuses) if statuses is not None else None
        with self._lock:
            reviews = [
                r.model_copy(deep=True) for r in self._qc_reviews.values()
                if wanted is None or r.status in wanted
            ]
        return sorted(reviews, key=lambda r: r.created_at)

    # ----- policy decisions -----

    def add_policy_decision(self, record: PolicyDecisionRecord) -> PolicyDecisionRecord:
        with self._lock:
            self._policy_decisions.append(record)
        return record

    def list_policy_decisions(self, subject_id: Optional[str] = None) -> List[PolicyDecisionRecord]:
        with self._lock:
            return [
                r for r in self._policy_decisions
                if subject_id is None or r.subject_id == subject_id
            ]

    # ----- releases -----

    def create_release_request(self, request: ReleaseRequest) -> ReleaseRequest:
        return self._create(self._release_requests, request.request_id, request, "ReleaseRequest")

    def get_release_request(self, request_id: str) -> Optional[ReleaseRequest]:
        return self._get(self._release_requests, request_id)

    def update_release_request(self, request: ReleaseRequest) -> ReleaseRequest:
        return self._update(self._release_requests, request.request_id, request, "ReleaseRequest")

    def list_release_requests(self, workstream_id: Optional[str] = None) -> List[ReleaseRequest]:
        with self._lock:
            requests = [
                r.model_copy(deep=True) for r in self._release_requests.values()
                if workstream_id is None or r.workstream_id == workstream_id
            ]
        return sorted(requests, key=lambda r: r.created_at)

    def create_release_decision(self, decision: ReleaseDecision) -> ReleaseDecision:
        with self._lock:
            if decision.request_id in self._release_decisions:
                raise ConcurrencyConflict(
                    f"Release request {decision.request_id} already has a decision",
                    details={"resource_id": decision.request_id},
                )
            self._release_decisions[decision.request_id] = decision
        return decision

    def get_release_decision(self, request_id: str) -> Optional[ReleaseDecision]:
        return self._release_decisions.get(request_id)

    def create_release_execution(self, execution: ReleaseExecution) -> ReleaseExecution:
        with self._lock:
            if execution.request_id in self._release_executions:
                raise ConcurrencyConflict(
                    f"Release request {execution.request_id} was already executed",
                    details={"resource_id": execution.request_id},
                )
            self._release_executions[execution.request_id] = execution
        return execution

    def get_release_execution(self, request_id: str) -> Optional[ReleaseExecution]:
        return self._release_executions.get(request_id)

    # ----- templates -----

    def create_template(self, template: Template) -> Template:
        return self._create(self._templates, template.template_id, template, "Template")

    def get_template(self, template_id: str) -> Optional[Template]:
        return self._get(self._templates, template_id)

    def update_template(self, template: Template) -> Template:
        return self._update(self._templates, template.template_id, template, "Template")

    def list_templates(self) -> List[Template]:
        with self._lock:
            return [t.model_copy(deep=True) for t in self._templates.values()]

    def create_instance(self, instance: TemplateInstance) -> TemplateInstance:
        return self._create(self._instances, instance.instance_id, instance, "TemplateInstance")

    def get_instance(self, instance_id: str) -> Optional[TemplateInstance]:
        return self._get(self._instances, instance_id)

    def update_instance(self, instance: TemplateInstance) -> TemplateInstance:
        return self._update(self._instances, instance.instance_id, instance, "TemplateInstance")

    def list_instances(self, template_id: Optional[str] = None) -> List[TemplateInstance]:
        with self._lock:
            return [
                i.model_copy(deep=True) for i in self._instances.values()
                if template_id is None or i.template_id == template_id
            ]
