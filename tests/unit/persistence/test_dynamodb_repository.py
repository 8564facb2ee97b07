"""Tests for the DynamoDB governance repository against a mocked table."""

from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from firm_governance.common.exceptions import ConcurrencyConflict
from firm_governance.core.types import (
    QCState,
    ReleaseDecisionType,
    WorkstreamStatus,
)
from firm_governance.governance.schemas import QCReview, ReleaseDecision
from firm_governance.persistence.dynamodb import DynamoDBGovernanceRepository


def _client_error(code, operation="PutItem"):
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


@pytest.fixture
def table():
    return MagicMock()


@pytest.fixture
def repo(table):
    with patch("firm_governance.persistence.dynamodb.boto3") as mock_boto3:
        mock_boto3.resource.return_value.Table.return_value = table
        repository = DynamoDBGovernanceRepository(table_name="governance-test", region="eu-west-1")
        mock_boto3.resource.assert_called_once_with("dynamodb", region_name="eu-west-1")
    return repository


def _review():
    return QCReview(subject_id="ws_001", submitted_by="agent_tax_mt")


class TestConfiguration:

    def test_table_name_required(self):
        with patch("firm_governance.persistence.dynamodb.boto3"):
            with pytest.raises(ValueError, match="FIRMGOV_DYNAMODB_TABLE"):
                DynamoDBGovernanceRepository()

    def test_table_name_from_environment(self, monkeypatch):
        monkeypatch.setenv("FIRMGOV_DYNAMODB_TABLE", "governance-env")
        with patch("firm_governance.persistence.dynamodb.boto3") as mock_boto3:
            repository = DynamoDBGovernanceRepository()
            mock_boto3.resource.return_value.Table.assert_called_once_with("governance-env")
        assert repository.table_name == "governance-env"


class TestWrites:

    def test_create_is_conditional(self, repo, table):
        review = _review()
        repo.create_qc_review(review)

        kwargs = table.put_item.call_args.kwargs
        assert kwargs["ConditionExpression"] == "attribute_not_exists(pk)"
        item = kwargs["Item"]
        assert item["pk"] == f"PK#QC_REVIEW#{review.review_id}"
        assert item["gsi1_pk"] == "QC_REVIEW#pending"
        assert item["gsi2_pk"] == "WORKSTREAM#ws_001"
        assert item["revision"] == 0

    def test_update_checks_revision(self, repo, table):
        review = _review().model_copy(update={"revision": 3, "status": QCState.IN_REVIEW})
        stored = repo.update_qc_review(review)

        kwargs = table.put_item.call_args.kwargs
        assert kwargs["ExpressionAttributeValues"] == {":expected": 3}
        assert kwargs["Item"]["revision"] == 4
        assert stored.revision == 4

    def test_conditional_failure_is_conflict(self, repo, table):
        table.put_item.side_effect = _client_error("ConditionalCheckFailedException")
        with pytest.raises(ConcurrencyConflict):
            repo.update_qc_review(_review())

    def test_second_decision_is_conflict(self, repo, table):
        table.put_item.side_effect = _client_error("ConditionalCheckFailedException")
        decision = ReleaseDecision(
            request_id="rel_1",
            decision=ReleaseDecisionType.DENY,
            authorized_by="agent_governor",
            risk_rationale="Evidence incomplete",
        )
        with pytest.raises(ConcurrencyConflict):
            repo.create_release_decision(decision)

    def test_other_errors_propagate(self, repo, table):
        table.put_item.side_effect = _client_error("ProvisionedThroughputExceededException")
        with pytest.raises(ClientError):
            repo.create_qc_review(_review())

    def test_register_existing_workstream_is_noop(self, repo, table):
        table.put_item.side_effect = _client_error("ConditionalCheckFailedException")
        repo.register_workstream("ws_001")


class TestReads:

    def test_get_restores_revision(self, repo, table):
        review = _review()
        table.get_item.return_value = {
            "Item": {"payload": review.model_dump_json(), "revision": 5}
        }
        fetched = repo.get_qc_review(review.review_id)
        assert fetched.review_id == review.review_id
        assert fetched.revision == 5

    def test_get_missing(self, repo, table):
        table.get_item.return_value = {}
        assert repo.get_release_decision("rel_missing") is None
        assert repo.get_workstream_status("ws_missing") is None

    def test_workstream_status(self, repo, table):
        table.get_item.return_value = {"Item": {"status": "pending_qc"}}
        assert repo.get_workstream_status("ws_001") == WorkstreamStatus.PENDING_QC

    def test_query_follows_pagination(self, repo, table):
        first, second = _review(), _review()
        table.query.side_effect = [
            {"Items": [{"payload": first.model_dump_json(), "revision": 0}], "LastEvaluatedKey": {"pk": "x"}},
            {"Items": [{"payload": second.model_dump_json(), "revision": 0}]},
        ]
        reviews = repo.list_qc_reviews([QCState.PENDING])

        assert {r.review_id for r in reviews} == {first.review_id, second.review_id}
        assert table.query.call_count == 2
        assert table.query.call_args.kwargs["ExclusiveStartKey"] == {"pk": "x"}
        assert table.query.call_args.kwargs["IndexName"] == "gsi1_pk-gsi1_sk-index"
