"""DynamoDB governance repository - single-table store with conditional writes."""

import logging
import os
from typing import Any, Dict, Iterable, List, Optional, Type, TypeVar

import boto3
from botocore.exceptions import ClientError
from pydantic import BaseModel

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
    utcnow,
)
from firm_governance.persistence.repository import GovernanceRepository

logger = logging.getLogger(__name__)

Model = TypeVar("Model", bound=BaseModel)

GSI1 = "gsi1_pk-gsi1_sk-index"
GSI2 = "gsi2_pk-gsi2_sk-index"


class DynamoDBGovernanceRepository(GovernanceRepository):
    """DynamoDB store for QC reviews, releases, templates and workstreams.

    Item layout:
        pk / sk          ``PK#<ENTITY>#<id>`` / ``SK#<ENTITY>#``
        gsi1_pk/gsi1_sk  listing by entity (QC reviews by status)
        gsi2_pk/gsi2_sk  listing by parent (workstream, template, subject)
        payload          the record as JSON
        revision         optimistic concurrency token
    """

    DEFAULT_REGION = "us-east-1"

    def __init__(
        self,
        table_name: Optional[str] = None,
        region: Optional[str] = None,
        aws_profile: Optional[str] = None,
    ):
        self.table_name = table_name or os.environ.get("FIRMGOV_DYNAMODB_TABLE")
        if not self.table_name:
            raise ValueError("FIRMGOV_DYNAMODB_TABLE required")

        self.region = region or os.environ.get("AWS_DEFAULT_REGION", self.DEFAULT_REGION)

        if aws_profile:
            session = boto3.Session(profile_name=aws_profile)
            self.dynamodb = session.resource("dynamodb", region_name=self.region)
        else:
            self.dynamodb = boto3.resource("dynamodb", region_name=self.region)

        self.table = self.dynamodb.Table(self.table_name)
        logger.info(f"DynamoDB governance store initialized: {self.table_name} ({self.region})")

    # ========== ITEM HELPERS ==========

    @staticmethod
    def _key(entity_type: str, primary_id: str) -> Dict[str, str]:
        return {"pk": f"PK#{entity_type}#{primary_id}", "sk": f"SK#{entity_type}#"}

    def _build_item(
        self,
        entity_type: str,
        primary_id: str,
        record: BaseModel,
        revision: int = 0,
        gsi_keys: Optional[Dict[str, tuple]] = None,
    ) -> Dict[str, Any]:
        """Build DynamoDB item with standard structure.

        Args:
            entity_type: QC_REVIEW|RELEASE_REQUEST|TEMPLATE|...
            primary_id: Primary identifier
            record: Record serialized into ``payload``
            revision: Revision stored alongside the payload
            gsi_keys: GSI key pairs {gsi1: (pk, sk), gsi2: (pk, sk)}
        """
        item = {
            **self._key(entity_type, primary_id),
            "entity_type": entity_type,
            "payload": record.model_dump_json(),
            "revision": revision,
        }
        if gsi_keys:
            if "gsi1" in gsi_keys:
                item["gsi1_pk"], item["gsi1_sk"] = gsi_keys["gsi1"]
            if "gsi2" in gsi_keys:
                item["gsi2_pk"], item["gsi2_sk"] = gsi_keys["gsi2"]
        return item

    @staticmethod
    def _is_conditional_failure(error: ClientError) -> bool:
        return error.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"

    def _put_new(self, item: Dict[str, Any], description: str) -> None:
        """Put an item that must not exist yet."""
        try:
            self.table.put_item(
                Item=item,
                ConditionExpression="attribute_not_exists(pk)",
            )
        except ClientError as e:
            if self._is_conditional_failure(e):
                raise ConcurrencyConflict(
                    f"{description} already exists",
                    details={"pk": item["pk"]},
                ) from e
            logger.error(f"put failed ({description}): {e}")
            raise

    def _put_versioned(self, item: Dict[str, Any], expected_revision: int, description: str) -> None:
        """Replace an item only if its stored revision is still ``expected_revision``."""
        try:
            self.table.put_item(
                Item=item,
                ConditionExpression="#revision = :expected",
                ExpressionAttributeNames={"#revision": "revision"},
                ExpressionAttributeValues={":expected": expected_revision},
            )
        except ClientError as e:
            if self._is_conditional_failure(e):
                raise ConcurrencyConflict(
                    f"{description} was modified concurrently",
                    details={"pk": item["pk"], "expected_revision": expected_revision},
                ) from e
            logger.error(f"conditional put failed ({description}): {e}")
            raise

    def _get_item(self, entity_type: str, primary_id: str) -> Optional[Dict[str, Any]]:
        try:
            resp = self.table.get_item(Key=self._key(entity_type, primary_id))
        except ClientError as e:
            logger.error(f"get_item failed ({entity_type} {primary_id}): {e}")
            raise
        return resp.get("Item")

    @staticmethod
    def _to_model(item: Dict[str, Any], model: Type[Model]) -> Model:
        record = model.model_validate_json(item["payload"])
        if "revision" in model.model_fields:
            record = record.model_copy(update={"revision": int(item["revision"])})
        return record

    def _get_model(self, entity_type: str, primary_id: str, model: Type[Model]) -> Optional[Model]:
        item = self._get_item(entity_type, primary_id)
        return self._to_model(item, model) if item else None

    def _query_index(self, index: str, pk_value: str) -> List[Dict[str, Any]]:
        """Query a GSI, following pagination."""
        pk_attr = index.split("-")[0]
        kwargs: Dict[str, Any] = {
            "IndexName": index,
            "KeyConditionExpression": f"{pk_attr} = :pk",
            "ExpressionAttributeValues": {":pk": pk_value},
            "ScanIndexForward": True,
        }
        items: List[Dict[str, Any]] = []
        try:
            while True:
                response = self.table.query(**kwargs)
                items.extend(response.get("Items", []))
                last_key = response.get("LastEvaluatedKey")
                if not last_key:
                    break
                kwargs["ExclusiveStartKey"] = last_key
        except ClientError as e:
            logger.error(f"Query failed ({index} {pk_value}): {e}")
            raise
        return items

    # ========== WORKSTREAMS ==========

    def register_workstream(
        self, workstream_id: str, status: WorkstreamStatus = WorkstreamStatus.PENDING
    ) -> None:
        try:
            self.table.put_item(
                Item={
                    **self._key("WORKSTREAM", workstream_id),
                    "entity_type": "WORKSTREAM",
                    "status": WorkstreamStatus(status).value,
                },
                ConditionExpression="attribute_not_exists(pk)",
            )
        except ClientError as e:
            if not self._is_conditional_failure(e):
                logger.error(f"register_workstream failed: {e}")
                raise

    def get_workstream_status(self, workstream_id: str) -> Optional[WorkstreamStatus]:
        item = self._get_item("WORKSTREAM", workstream_id)
        return WorkstreamStatus(item["status"]) if item else None

    def set_workstream_status(self, workstream_id: str, status: WorkstreamStatus) -> None:
        try:
            self.table.update_item(
                Key=self._key("WORKSTREAM", workstream_id),
                UpdateExpression="SET #status = :status, updated_at = :updated",
                ExpressionAttributeNames={"#status": "status"},
                ExpressionAttributeValues={
                    ":status": WorkstreamStatus(status).value,
                    ":updated": utcnow().isoformat(),
                },
            )
        except ClientError as e:
            logger.error(f"set_workstream_status failed: {e}")
            raise

    # ========== QC REVIEWS ==========

    def _qc_item(self, review: QCReview, revision: int) -> Dict[str, Any]:
        created = review.created_at.isoformat()
        return self._build_item(
            "QC_REVIEW", review.review_id, review, revision,
            {"gsi1": (f"QC_REVIEW#{review.status.value}", created),
             "gsi2": (f"WORKSTREAM#{review.subject_id}", created)},
        )

    def create_qc_review(self, review: QCReview) -> QCReview:
        self._put_new(self._qc_item(review, review.revision), f"QCReview {review.review_id}")
        return review

    def get_qc_review(self, review_id: str) -> Optional[QCReview]:
        return self._get_model("QC_REVIEW", review_id, QCReview)

    def update_qc_review(self, review: QCReview) -> QCReview:
        stored = review.model_copy(update={"revision": review.revision + 1})
        self._put_versioned(
            self._qc_item(stored, stored.revision), review.revision,
            f"QCReview {review.review_id}",
        )
        return stored

    def list_qc_reviews(self, statuses: Optional[Iterable[QCState]] = None) -> List[QCReview]:
        wanted = list(statuses) if statuses is not None else list(QCState)
        reviews: List[QCReview] = []
        for status in wanted:
            items = self._query_index(GSI1, f"QC_REVIEW#{QCState(status).value}")
            reviews.extend(self._to_model(i, QCReview) for i in items)
        return sorted(reviews, key=lambda r: r.created_at)

    # ========== POLICY DECISIONS ==========

    def add_policy_decision(self, record: PolicyDecisionRecord) -> PolicyDecisionRecord:
        created = record.created_at.isoformat()
        item = self._build_item(
            "POLICY_DECISION", record.decision_id, record,
            gsi_keys={"gsi1": ("POLICY_DECISION", created),
                      "gsi2": (f"SUBJECT#{record.subject_id}", created)},
        )
        self._put_new(item, f"PolicyDecision {record.decision_id}")
        return record

    def list_policy_decisions(self, subject_id: Optional[str] = None) -> List[PolicyDecisionRecord]:
        if subject_id is None:
            items = self._query_index(GSI1, "POLICY_DECISION")
        else:
            items = self._query_index(GSI2, f"SUBJECT#{subject_id}")
        return [self._to_model(i, PolicyDecisionRecord) for i in items]

    # ========== RELEASES ==========

    def _request_item(self, request: ReleaseRequest, revision: int) -> Dict[str, Any]:
        created = request.created_at.isoformat()
        return self._build_item(
            "RELEASE_REQUEST", request.request_id, request, revision,
            {"gsi1": ("RELEASE_REQUEST", created),
             "gsi2": (f"WORKSTREAM#{request.workstream_id}", created)},
        )

    def create_release_request(self, request: ReleaseRequest) -> ReleaseRequest:
        self._put_new(self._request_item(request, request.revision), f"ReleaseRequest {request.request_id}")
        return request

    def get_release_request(self, request_id: str) -> Optional[ReleaseRequest]:
        return self._get_model("RELEASE_REQUEST", request_id, ReleaseRequest)

    def update_release_request(self, request: ReleaseRequest) -> ReleaseRequest:
        stored = request.model_copy(update={"revision": request.revision + 1})
        self._put_versioned(
            self._request_item(stored, stored.revision), request.revision,
            f"ReleaseRequest {request.request_id}",
        )
        return stored

    def list_release_requests(self, workstream_id: Optional[str] = None) -> List[ReleaseRequest]:
        if workstream_id is None:
            items = self._query_index(GSI1, "RELEASE_REQUEST")
        else:
            items = [
                i for i in self._query_index(GSI2, f"WORKSTREAM#{workstream_id}")
                if i.get("entity_type") == "RELEASE_REQUEST"
            ]
        return [self._to_model(i, ReleaseRequest) for i in items]

    def create_release_decision(self, decision: ReleaseDecision) -> ReleaseDecision:
        item = self._build_item("RELEASE_DECISION", decision.request_id, decision)
        self._put_new(item, f"Decision for release {decision.request_id}")
        return decision

    def get_release_decision(self, request_id: str) -> Optional[ReleaseDecision]:
        return self._get_model("RELEASE_DECISION", request_id, ReleaseDecision)

    def create_release_execution(self, execution: ReleaseExecution) -> ReleaseExecution:
        item = self._build_item("RELEASE_EXECUTION", execution.request_id, execution)
        self._put_new(item, f"Execution for release {execution.request_id}")
        return execution

    def get_release_execution(self, request_id: str) -> Optional[ReleaseExecution]:
        return self._get_model("RELEASE_EXECUTION", request_id, ReleaseExecution)

    # ========== TEMPLATES ==========

    def _template_item(self, template: Template, revision: int) -> Dict[str, Any]:
        created = template.created_at.isoformat()
        return self._build_item(
            "TEMPLATE", template.template_id, template, revision,
            {"gsi1": ("TEMPLATE", created),
             "gsi2": (f"SERVICE#{template.service_id}", created)},
        )

    def create_template(self, template: Template) -> Template:
        self._put_new(self._template_item(template, template.revision), f"Template {template.template_id}")
        return template

    def get_template(self, template_id: str) -> Optional[Template]:
        return self._get_model("TEMPLATE", template_id, Template)

    def update_template(self, template: Template) -> Template:
        stored = template.model_copy(update={"revision": template.revision + 1})
        self._put_versioned(
            self._template_item(stored, stored.revision), template.revision,
            f"Template {template.template_id}",
        )
        return stored

    def list_templates(self) -> List[Template]:
        return [self._to_model(i, Template) for i in self._query_index(GSI1, "TEMPLATE")]

    def _instance_item(self, instance: TemplateInstance, revision: int) -> Dict[str, Any]:
        created = instance.created_at.isoformat()
        return self._build_item(
            "TEMPLATE_INSTANCE", instance.instance_id, instance, revision,
            {"gsi1": ("TEMPLATE_INSTANCE", created),
             "gsi2": (f"TEMPLATE#{instance.template_id}", created)},
        )

    def create_instance(self, instance: TemplateInstance) -> TemplateInstance:
        self._put_new(self._instance_item(instance, instance.revision), f"TemplateInstance {instance.instance_id}")
        return instance

    def get_instance(self, instance_id: str) -> Optional[TemplateInstance]:
        return self._get_model("TEMPLATE_INSTANCE", instance_id, TemplateInstance)

    def update_instance(self, instance: TemplateInstance) -> TemplateInstance:
        stored = instance.model_copy(update={"revision": instance.revision + 1})
        self._put_versioned(
            self._instance_item(stored, stored.revision), instance.revision,
            f"TemplateInstance {instance.instance_id}",
        )
        return stored

    def list_instances(self, template_id: Optional[str] = None) -> List[TemplateInstance]:
        if template_id is None:
            items = self._query_index(GSI1, "TEMPLATE_INSTANCE")
        else:
            items = self._query_index(GSI2, f"TEMPLATE#{template_id}")
        return [self._to_model(i, TemplateInstance) for i in items]

    def health_check(self) -> bool:
        try:
            self.table.table_status
            return True
        except ClientError as e:
            logger.error(f"Health check failed: {e}")
            return False
