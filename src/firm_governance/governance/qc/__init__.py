"""QC review state machine and checklists."""

from firm_governance.governance.qc.checklists import (
    CHECKLISTS,
    ChecklistItem,
    ChecklistResult,
    evaluate_checklist,
    get_checklist,
)
from firm_governance.governance.qc.state_machine import (
    ALLOWED_TRANSITIONS,
    QCWorkflow,
    can_transition,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "CHECKLISTS",
    "ChecklistItem",
    "ChecklistResult",
    "QCWorkflow",
    "can_transition",
    "evaluate_checklist",
    "get_checklist",
]
