"""QC checklists - fixed per task category, evaluated before a review passes."""

from typing import Dict, List, Mapping

from pydantic import BaseModel, Field


class ChecklistItem(BaseModel):
    model_config = {"frozen": True}

    item_id: str
    description: str
    required: bool = True


class ChecklistItemResult(BaseModel):
    item_id: str
    passed: bool


class ChecklistResult(BaseModel):
    """Outcome of evaluate_checklist.

    ``score`` is computed over all items; ``passed`` and ``failed_items``
    only consider required items.
    """
    passed: bool
    score: float = Field(ge=0.0, le=100.0)
    total_items: int
    passed_items: int
    failed_items: int
    results: List[ChecklistItemResult] = Field(default_factory=list)


CHECKLISTS: Dict[str, List[ChecklistItem]] = {
    "audit": [
        ChecklistItem(item_id="scope_defined", description="Audit scope is clearly defined"),
        ChecklistItem(item_id="risk_assessed", description="Risk assessment completed"),
        ChecklistItem(item_id="evidence_documented", description="All evidence properly documented"),
        ChecklistItem(item_id="findings_supported", description="Findings supported by evidence"),
        ChecklistItem(item_id="review_complete", description="Partner review completed"),
    ],
    "tax": [
        ChecklistItem(item_id="data_complete", description="All tax data gathered"),
        ChecklistItem(item_id="calculations_verified", description="Tax calculations verified"),
        ChecklistItem(item_id="deadline_checked", description="Filing deadline confirmed"),
        ChecklistItem(item_id="client_approved", description="Client approval obtained", required=False),
    ],
    "accounting": [
        ChecklistItem(item_id="entries_balanced", description="All entries balance"),
        ChecklistItem(item_id="reconciled", description="Accounts reconciled"),
        ChecklistItem(item_id="supporting_docs", description="Supporting documents attached"),
        ChecklistItem(item_id="period_correct", description="Correct accounting period"),
    ],
    "default": [
        ChecklistItem(item_id="complete", description="Work is complete"),
        ChecklistItem(item_id="documented", description="Work is documented"),
        ChecklistItem(item_id="reviewed", description="Self-review completed"),
    ],
}


def checklist_category(task_type: str) -> str:
    """Map a task type to a checklist category by substring match."""
    task_type = (task_type or "").lower()
    if "audit" in task_type:
        return "audit"
    if "tax" in task_type or "vat" in task_type:
        return "tax"
    if "journal" in task_type or "reconcil" in task_type:
        return "accounting"
    return "default"


def get_checklist(task_type: str) -> List[ChecklistItem]:
    return list(CHECKLISTS[checklist_category(task_type)])


def evaluate_checklist(
    checklist: List[ChecklistItem],
    responses: Mapping[str, bool],
) -> ChecklistResult:
    """Evaluate reviewer responses against a checklist.

    An unanswered item counts as failed.

    Args:
        checklist: Items to evaluate
        responses: item_id -> passed

    Returns:
        ChecklistResult
    """
    passed_items = 0
    failed_items = 0
    results: List[ChecklistItemResult] = []

    for item in checklist:
        passed = bool(responses.get(item.item_id, False))
        results.append(ChecklistItemResult(item_id=item.item_id, passed=passed))
        if passed:
            passed_items += 1
        elif item.required:
            failed_items += 1

    score = (passed_items / len(checklist)) * 100 if checklist else 0.0

    return ChecklistResult(
        passed=failed_items == 0,
        score=score,
        total_items=len(checklist),
        passed_items=passed_items,
        failed_items=failed_items,
        results=results,
    )
