"""Shared fixtures for the governance test suite."""

import pytest
import yaml

from firm_governance.common.config import reset_config
from firm_governance.governance.audit.trail import AuditTrail
from firm_governance.governance.autonomy import reset_autonomy_classifier
from firm_governance.governance.identity import IdentitySource
from firm_governance.governance.policies.engine import ToolPolicyEngine
from firm_governance.governance.qc.state_machine import QCWorkflow
from firm_governance.governance.release.gate import ReleaseGate
from firm_governance.governance.rules import DEFAULT_RULES_FILE, load_governance_rules
from firm_governance.persistence.repository import InMemoryGovernanceRepository
from firm_governance.templates.factory import TemplateFactory

GOVERNOR = "agent_governor"
GUARDIAN = "agent_guardian"
ORCHESTRATOR = "agent_orchestrator"
ENGINE = "agent_tax_mt"


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Isolate every test from FIRMGOV_* settings and cached singletons."""
    for var in (
        "FIRMGOV_RULES_FILE",
        "FIRMGOV_STORE_TYPE",
        "FIRMGOV_DYNAMODB_TABLE",
        "FIRMGOV_ENVIRONMENT",
        "FIRMGOV_DEBUG",
        "FIRMGOV_AUDIT_STORAGE_TYPE",
        "FIRMGOV_AUDIT_LOG_DIR",
    ):
        monkeypatch.delenv(var, raising=False)
    reset_config()
    reset_autonomy_classifier()
    yield
    reset_config()
    reset_autonomy_classifier()


@pytest.fixture
def raw_rules():
    """The packaged rules document as a plain dict."""
    with open(DEFAULT_RULES_FILE, "r") as f:
        return yaml.safe_load(f)


@pytest.fixture
def write_rules(tmp_path):
    """Write a rules dict to a temp YAML file and return its path."""
    def _write(document, name="governance_rules.yaml"):
        path = tmp_path / name
        with open(path, "w") as f:
            yaml.safe_dump(document, f)
        return path
    return _write


@pytest.fixture
def rules():
    return load_governance_rules(DEFAULT_RULES_FILE)


@pytest.fixture
def identity(rules):
    return IdentitySource(rules)


@pytest.fixture
def repository():
    return InMemoryGovernanceRepository()


@pytest.fixture
def audit_trail():
    return AuditTrail()


@pytest.fixture
def qc_workflow(repository, audit_trail, identity):
    return QCWorkflow(repository, audit_trail, identity)


@pytest.fixture
def release_gate(repository, audit_trail, identity):
    return ReleaseGate(repository, audit_trail, identity)


@pytest.fixture
def policy_engine(rules, identity, audit_trail):
    return ToolPolicyEngine(rules, identity, audit_trail)


@pytest.fixture
def template_factory(repository, audit_trail, identity):
    return TemplateFactory(repository, audit_trail, identity)


@pytest.fixture
def workstream(repository):
    """A registered workstream id."""
    repository.register_workstream("ws_001")
    return "ws_001"


@pytest.fixture
def passed_review(qc_workflow, workstream):
    """A QC review for ``workstream`` that the Guardian has passed."""
    review = qc_workflow.submit_for_qc(workstream, ENGINE, task_type="vat_return")
    qc_workflow.transition_qc(review.review_id, "in_review", GUARDIAN)
    return qc_workflow.transition_qc(review.review_id, "pass", GUARDIAN, comments="ok")
