"""Tests for QC checklists."""

from firm_governance.governance.qc.checklists import (
    checklist_category,
    evaluate_checklist,
    get_checklist,
)


class TestChecklistSelection:

    def test_category_by_task_type(self):
        assert checklist_category("statutory_audit") == "audit"
        assert checklist_category("VAT_return") == "tax"
        assert checklist_category("bank_reconciliation") == "accounting"
        assert checklist_category("board_minutes") == "default"
        assert checklist_category("") == "default"

    def test_get_checklist_returns_copy(self):
        checklist = get_checklist("audit")
        checklist.clear()
        assert len(get_checklist("audit")) == 5


class TestEvaluateChecklist:

    def test_all_passed(self):
        checklist = get_checklist("")
        result = evaluate_checklist(checklist, {item.item_id: True for item in checklist})
        assert result.passed is True
        assert result.score == 100.0
        assert result.failed_items == 0

    def test_unanswered_counts_as_failed(self):
        result = evaluate_checklist(get_checklist(""), {"complete": True})
        assert result.passed is False
        assert result.failed_items == 2

    def test_optional_item_does_not_block(self):
        result = evaluate_checklist(get_checklist("tax"), {
            "data_complete": True,
            "calculations_verified": True,
            "deadline_checked": True,
        })
        assert result.passed is True
        assert result.passed_items == 3
        assert result.score == 75.0

    def test_empty_checklist(self):
        result = evaluate_checklist([], {})
        assert result.passed is True
        assert result.score == 0.0
