"""Tests for the template lifecycle, pack enforcement and triggers."""

from datetime import timedelta

import pytest

from firm_governance.common.exceptions import (
    NotFoundError,
    PackMismatchError,
    PolicyViolation,
    SecurityViolation,
    StateError,
    ValidationError,
)
from firm_governance.core.types import (
    ApprovalType,
    EscalationTarget,
    JurisdictionPack,
    RiskClass,
    TemplateStatus,
)
from firm_governance.governance.schemas import TemplateApproval, TemplateInstance, utcnow
from firm_governance.templates.factory import (
    can_publish,
    check_deviation_rate,
    check_pack_enforcement,
    check_repeat_defects,
    create_template_draft,
    instantiate_template,
    log_deviation,
    publish_template,
    retire_template,
    search_templates,
)

GUARDIAN = "agent_guardian"
GOVERNOR = "agent_governor"
OWNER = "agent_tax_mt"

GUARDIAN_PASS = TemplateApproval(type=ApprovalType.GUARDIAN_PASS, approved_by=GUARDIAN)
POLICY_REVIEW = TemplateApproval(type=ApprovalType.GOVERNOR_POLICY_REVIEW, approved_by=GOVERNOR)


def _draft(pack=JurisdictionPack.MT_TAX, risk_class=RiskClass.LOW, service_id="svc_vat_return"):
    return create_template_draft(
        owner_agent=OWNER,
        service_id=service_id,
        jurisdiction_pack=pack,
        name="VAT return workpaper",
        purpose="Prepare the quarterly VAT return workpaper",
        risk_class=risk_class,
    )


def _published(rules, **kwargs):
    return publish_template(_draft(**kwargs), [GUARDIAN_PASS, POLICY_REVIEW], ["Initial release"], rules=rules)


def _instance(created_minutes_ago, deviating=False):
    instance = TemplateInstance(
        template_id="tmpl_1",
        template_version="1.0.0",
        jurisdiction_pack=JurisdictionPack.MT_TAX,
        case_id="case_1",
        task_id="task_1",
        created_at=utcnow() - timedelta(minutes=created_minutes_ago),
    )
    if deviating:
        instance = log_deviation(instance, "Added a box", "Client-specific scheme", OWNER)
    return instance


class TestDraft:

    def test_initial_draft(self):
        template = _draft()
        assert template.status == TemplateStatus.DRAFT
        assert template.version == "0.1.0"
        assert template.change_log[0].changes == ["Initial draft created"]
        assert template.template_id.startswith("tmpl_")

    def test_invalid_pack(self):
        with pytest.raises(ValidationError):
            _draft(pack="FR_TAX")


class TestPublish:

    def test_high_risk_needs_policy_review(self, rules):
        check = can_publish(_draft(risk_class=RiskClass.HIGH), [GUARDIAN_PASS], rules)
        assert check.allowed is False
        assert check.first_missing == ApprovalType.GOVERNOR_POLICY_REVIEW

        with pytest.raises(PolicyViolation) as exc_info:
            publish_template(_draft(risk_class=RiskClass.HIGH), [GUARDIAN_PASS], ["v1"], rules=rules)
        assert "GOVERNOR_POLICY_REVIEW" in str(exc_info.value)

    def test_medium_uses_high_gate(self, rules):
        assert can_publish(_draft(risk_class=RiskClass.MEDIUM), [GUARDIAN_PASS], rules).allowed is False

    def test_low_needs_guardian_only(self, rules):
        assert can_publish(_draft(), [GUARDIAN_PASS], rules).allowed is True
        assert can_publish(_draft(), [], rules).missing == [ApprovalType.GUARDIAN_PASS]

    def test_version_progression(self, rules):
        first = publish_template(_draft(), [GUARDIAN_PASS], ["Initial release"], rules=rules)
        second = publish_template(first, [GUARDIAN_PASS], ["Clarified box 12"], rules=rules)
        assert first.status == TemplateStatus.PUBLISHED
        assert first.version == "1.0.0"
        assert second.version == "1.0.1"
        assert [entry.version for entry in second.change_log] == ["0.1.0", "1.0.0", "1.0.1"]
        assert second.change_log[-1].changes == ["Clarified box 12"]

    def test_retired_cannot_publish(self, rules):
        retired = retire_template(_published(rules), GUARDIAN, "Superseded")
        assert retired.status == TemplateStatus.RETIRED
        assert retired.version == "1.0.0"
        with pytest.raises(StateError):
            publish_template(retired, [GUARDIAN_PASS], ["revive"], rules=rules)

    def test_only_published_can_retire(self):
        with pytest.raises(StateError):
            retire_template(_draft(), GUARDIAN, "Never used")


class TestPackEnforcement:

    def test_same_pack(self):
        assert check_pack_enforcement(_draft(), JurisdictionPack.MT_TAX).allowed is True

    def test_cross_pack_blocked(self, rules):
        result = check_pack_enforcement(_draft(), "RW_TAX")
        assert result.allowed is False
        assert isinstance(result.error, PackMismatchError)

        with pytest.raises(PackMismatchError) as exc_info:
            instantiate_template(_published(rules), "case_1", "task_1", JurisdictionPack.RW_TAX)
        assert exc_info.value.template_pack == "MT_TAX"
        assert exc_info.value.target_pack == "RW_TAX"

    def test_global_fits_any_pack(self, rules):
        template = _published(rules, pack=JurisdictionPack.GLOBAL)
        instance = instantiate_template(template, "case_1", "task_1", "RW_NOTARY")
        assert instance.jurisdiction_pack == JurisdictionPack.RW_NOTARY
        assert instance.template_version == "1.0.0"

    def test_unknown_target_pack_rejected(self, rules):
        template = _published(rules, pack=JurisdictionPack.GLOBAL)
        with pytest.raises(ValidationError):
            check_pack_enforcement(template, "NOT_A_PACK")
        with pytest.raises(ValidationError):
            check_pack_enforcement(_draft(), "NOT_A_PACK")
        with pytest.raises(ValidationError):
            instantiate_template(template, "case_1", "task_1", "NOT_A_PACK")

    def test_pack_checked_before_status(self, rules):
        retired = retire_template(_published(rules), GUARDIAN, "Superseded")
        with pytest.raises(PackMismatchError):
            instantiate_template(retired, "case_1", "task_1", JurisdictionPack.RW_TAX)
        with pytest.raises(StateError):
            instantiate_template(retired, "case_1", "task_1", JurisdictionPack.MT_TAX)


class TestDeviations:

    def test_append_only(self):
        original = _instance(0)
        first = log_deviation(original, "Added a box", "Client-specific scheme", OWNER, field_id="box_12")
        second = log_deviation(first, "Skipped a step", "Not applicable", OWNER)

        assert original.deviation_notes == []
        assert len(second.deviation_notes) == 2
        assert second.deviation_notes[0] == first.deviation_notes[0]

    def test_reason_required(self):
        with pytest.raises(ValidationError):
            log_deviation(_instance(0), "Added a box", "", OWNER)


class TestSearch:

    def test_published_only_highest_version_first(self, rules):
        older = _published(rules)
        newer = older
        for _ in range(10):
            newer = publish_template(newer, [GUARDIAN_PASS], ["fix"], rules=rules)
        draft = _draft()

        result = search_templates([older, newer, draft], "svc_vat_return", "MT_TAX")
        assert result.found is True
        assert newer.version == "1.0.10"
        assert [t.version for t in result.templates] == ["1.0.10", "1.0.0"]
        assert result.best_match.version == "1.0.10"

    def test_exact_pack_match(self, rules):
        global_template = _published(rules, pack=JurisdictionPack.GLOBAL)
        result = search_templates([global_template], "svc_vat_return", JurisdictionPack.MT_TAX)
        assert result.found is False

    def test_unknown_pack_rejected(self, rules):
        with pytest.raises(ValidationError):
            search_templates([_published(rules)], "svc_vat_return", "NOT_A_PACK")

    def test_no_match_fires_trigger(self):
        result = search_templates([], "svc_payroll", JurisdictionPack.RW_TAX)
        assert result.found is False
        assert result.best_match is None
        assert result.trigger.trigger_id == "TRG_NO_TEMPLATE_FOUND"
        assert result.trigger.route_to == EscalationTarget.ORCHESTRATOR


class TestTriggers:

    def test_deviation_rate_must_exceed_threshold(self):
        at_threshold = [_instance(i, deviating=i < 3) for i in range(10)]
        above = [_instance(i, deviating=i < 4) for i in range(10)]
        assert check_deviation_rate(at_threshold, threshold=30) is None
        trigger = check_deviation_rate(above, threshold=30)
        assert trigger.trigger_id == "TRG_HIGH_DEVIATION_RATE"

    def test_deviation_rate_uses_recent_window(self):
        # 10 old deviating instances fall outside the 30 most recent
        instances = [_instance(100 + i, deviating=True) for i in range(10)]
        instances += [_instance(i) for i in range(30)]
        assert check_deviation_rate(instances, threshold=30) is None

    def test_no_instances(self):
        assert check_deviation_rate([]) is None

    def test_repeat_defects(self):
        assert check_repeat_defects({"vat_workpaper": 5}, threshold=5) is None
        trigger = check_repeat_defects({"vat_workpaper": 6, "cover_letter": 1}, threshold=5)
        assert trigger.route_to == EscalationTarget.GUARDIAN


class TestTemplateFactory:

    @pytest.fixture
    def draft(self, template_factory):
        return template_factory.create_draft(
            OWNER, "svc_vat_return", "MT_TAX", "VAT return workpaper",
            "Prepare the quarterly VAT return workpaper", RiskClass.HIGH,
        )

    def test_create_is_audited(self, template_factory, audit_trail, draft):
        assert template_factory.get_template(draft.template_id) == draft
        assert audit_trail.history(draft.template_id)[0].action == "template_created"

    def test_owner_edits_draft(self, template_factory, draft):
        edited = template_factory.update_draft(
            draft.template_id, OWNER, required_inputs=["sales_ledger"], escalation_triggers=["Novel scheme"]
        )
        assert edited.required_inputs == ["sales_ledger"]
        assert edited.revision == draft.revision + 1

    def test_non_owner_cannot_edit(self, template_factory, draft):
        with pytest.raises(SecurityViolation):
            template_factory.update_draft(draft.template_id, "agent_tax_rw", purpose="changed")

    def test_status_not_editable(self, template_factory, draft):
        with pytest.raises(ValidationError):
            template_factory.update_draft(draft.template_id, OWNER, status="PUBLISHED")

    def test_publish_requires_real_approvers(self, template_factory, draft):
        forged = TemplateApproval(type=ApprovalType.GOVERNOR_POLICY_REVIEW, approved_by=OWNER)
        with pytest.raises(SecurityViolation):
            template_factory.publish(draft.template_id, [GUARDIAN_PASS, forged], ["v1"], GUARDIAN)
        assert template_factory.get_template(draft.template_id).status == TemplateStatus.DRAFT

    def test_publish_missing_gate(self, template_factory, draft):
        with pytest.raises(PolicyViolation):
            template_factory.publish(draft.template_id, [GUARDIAN_PASS], ["v1"], GUARDIAN)

    def test_publish_then_edit_rejected(self, template_factory, audit_trail, draft):
        published = template_factory.publish(
            draft.template_id, [GUARDIAN_PASS, POLICY_REVIEW], ["v1"], GUARDIAN
        )
        assert published.version == "1.0.0"
        assert audit_trail.history(draft.template_id)[-1].action == "template_published"
        with pytest.raises(StateError):
            template_factory.update_draft(draft.template_id, OWNER, purpose="changed")

    def test_instantiate_and_deviate(self, template_factory, audit_trail, draft):
        template_factory.publish(draft.template_id, [GUARDIAN_PASS, POLICY_REVIEW], ["v1"], GUARDIAN)
        instance = template_factory.instantiate(draft.template_id, "case_9", "task_3", "MT_TAX", OWNER)
        updated = template_factory.log_deviation(
            instance.instance_id, "Added a box", "Client-specific scheme", OWNER
        )
        assert len(updated.deviation_notes) == 1
        assert [e.action for e in audit_trail.history(instance.instance_id)] == [
            "template_instantiated",
            "template_deviation_logged",
        ]
        # one instance, one deviation: 100% > 30%
        assert template_factory.deviation_trigger(draft.template_id).trigger_id == "TRG_HIGH_DEVIATION_RATE"

    def test_agent_pack_permission_checked_first(self, template_factory, repository, draft):
        with pytest.raises(SecurityViolation):
            template_factory.instantiate("tmpl_missing", "case_9", "task_3", "MT_TAX", "agent_tax_rw")
        with pytest.raises(SecurityViolation):
            template_factory.instantiate(draft.template_id, "case_9", "task_3", "MT_TAX", "agent_notary_rw")
        assert repository.list_instances(draft.template_id) == []

    def test_global_agent_may_instantiate(self, template_factory, draft):
        template_factory.publish(draft.template_id, [GUARDIAN_PASS, POLICY_REVIEW], ["v1"], GUARDIAN)
        instance = template_factory.instantiate(draft.template_id, "case_9", "task_3", "MT_TAX", "agent_audit")
        assert instance.jurisdiction_pack == JurisdictionPack.MT_TAX

    def test_search_and_qc(self, template_factory, draft):
        assert template_factory.search("svc_vat_return", "MT_TAX").found is False
        template_factory.publish(draft.template_id, [GUARDIAN_PASS, POLICY_REVIEW], ["v1"], GUARDIAN)
        assert template_factory.search("svc_vat_return", "MT_TAX").best_match.template_id == draft.template_id
        assert template_factory.run_qc(draft.template_id).template_id == draft.template_id

    def test_unknown_ids(self, template_factory):
        with pytest.raises(NotFoundError):
            template_factory.retire("tmpl_missing", GUARDIAN, "gone")
        with pytest.raises(NotFoundError):
            template_factory.log_deviation("inst_missing", "x", "y", OWNER)

    def test_defect_trigger_uses_rules_threshold(self, template_factory):
        assert template_factory.defect_trigger({"vat_workpaper": 6}).trigger_id == "TRG_REPEAT_DEFECTS"
        assert template_factory.defect_trigger({"vat_workpaper": 5}) is None
