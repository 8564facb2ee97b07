"""Template QC - checks the Guardian runs on a template before it is published.

Five governing checks decide the publish recommendation: determinism,
evidence_discipline, safe_language, pack_correctness and
no_client_leakage. APPROVE requires all five to PASS.

Two advisory checks, completeness and escalation_triggers, count toward
the overall score and the fix list but never block publication.
"""

import re
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from firm_governance.common.constants import TemplateConstants
from firm_governance.core.packs import pack_jurisdiction
from firm_governance.core.types import CheckStatus, PublishRecommendation, RiskClass
from firm_governance.governance.schemas import Template

GOVERNING_CHECKS = (
    "determinism",
    "evidence_discipline",
    "safe_language",
    "pack_correctness",
    "no_client_leakage",
)
ADVISORY_CHECKS = ("completeness", "escalation_triggers")

AMBIGUOUS_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"the usual",
        r"do the usual",
        r"as appropriate",
        r"if needed",
        r"as necessary",
        r"standard approach",
        r"normal process",
        r"common practice",
        r"generally accepted",
        r"as per practice",
        r"use judgment",
        r"discretion applies",
    )
]

UNSAFE_LANGUAGE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bguarantee[sd]?\b",
        r"\bdefinitely\b",
        r"\bcertainly\b",
        r"\babsolutely\b",
        r"\bnever fail",
        r"100%",
        r"\bno risk\b",
        r"\brisk-free\b",
        r"\bassured\b",
    )
]

CLIENT_DATA_PATTERNS = [
    re.compile(r"\b[A-Z][a-z]+ (Ltd|Limited|LLC|Inc|Corp|Company|SA|Srl|GmbH)\b"),
    re.compile(r"\b[A-Z]{2}\d{6,12}\b"),
    re.compile(r"\b\d{3}[-.\s]?\d{3}[-.\s]?\d{4}\b"),
    re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
    re.compile(r"€\s?\d{1,3}(?:,\d{3})*(?:\.\d{2})?"),
    re.compile(r"\$\s?\d{1,3}(?:,\d{3})*(?:\.\d{2})?"),
]

# Jurisdiction prefix -> terms that identify its rules
JURISDICTION_TERMS: Dict[str, List[re.Pattern]] = {
    "MT": [re.compile(r"\bmalta\b", re.IGNORECASE), re.compile(r"\bmt_", re.IGNORECASE)],
    "RW": [re.compile(r"\brwanda\b", re.IGNORECASE), re.compile(r"\brw_", re.IGNORECASE)],
}

DEFAULT_MIN_ESCALATION_TRIGGERS = {RiskClass.LOW: 1, RiskClass.MEDIUM: 2, RiskClass.HIGH: 3}

CHECK_SCORES = {CheckStatus.PASS: 100, CheckStatus.WARN: 50, CheckStatus.FAIL: 0}


class CheckResult(BaseModel):
    check_id: str
    name: str
    status: CheckStatus
    message: str
    details: List[str] = Field(default_factory=list)


class TemplateQCResult(BaseModel):
    """Outcome of run_template_qc.

    ``passed`` is True when no governing check failed. ``overall_score``
    averages every check, advisory ones included.
    """
    template_id: str
    passed: bool
    overall_score: int = Field(ge=0, le=100)
    checks: Dict[str, CheckResult]
    fix_list: List[str] = Field(default_factory=list)
    publish_recommendation: PublishRecommendation


def _result(check_id: str, name: str, issues: List[str], ok: str, status: Optional[CheckStatus] = None) -> CheckResult:
    if status is None:
        status = CheckStatus.PASS if not issues else CheckStatus.FAIL
    return CheckResult(
        check_id=check_id,
        name=name,
        status=status,
        message=ok if not issues else f"Found {len(issues)} {name.lower()} issue(s)",
        details=issues,
    )


def check_determinism(template: Template) -> CheckResult:
    """Instructions must be concrete steps; selects need options."""
    issues: List[str] = []

    for instruction in template.generation_instructions:
        if any(p.search(instruction) for p in AMBIGUOUS_PATTERNS):
            issues.append(f'Ambiguous instruction found: "{instruction[:50]}"')

    for placeholder in template.placeholders:
        if not placeholder.field_id.strip():
            issues.append("Placeholder missing field_id")
        if not placeholder.label.strip():
            issues.append(f"Placeholder {placeholder.field_id} missing label")
        if placeholder.type in ("select", "multi_select") and not placeholder.options:
            issues.append(f"Placeholder {placeholder.field_id} is {placeholder.type} but has no options")

    return _result("QC_DETERMINISM", "Determinism", issues,
                   "Template has clear, unambiguous instructions and placeholders")


def check_completeness(template: Template) -> CheckResult:
    issues: List[str] = []
    if not template.required_inputs:
        issues.append("No required_inputs defined")
    if not template.produced_outputs:
        issues.append("No produced_outputs defined")
    if not template.placeholders:
        issues.append("No placeholders defined (template appears to be static)")
    if not template.generation_instructions:
        issues.append("No generation_instructions defined")
    if len(template.purpose or "") < TemplateConstants.MIN_PURPOSE_LENGTH:
        issues.append("Purpose is missing or too brief")

    return _result("QC_COMPLETENESS", "Completeness", issues,
                   "Template has all required sections defined")


def check_evidence_discipline(template: Template) -> CheckResult:
    """One issue is a WARN, two a FAIL. An empty requirement list always yields two."""
    issues: List[str] = []
    if not template.evidence_requirements:
        issues.append("No evidence_requirements defined")

    ratio = len(template.evidence_requirements) / max(len(template.produced_outputs), 1)
    if ratio < 0.5:
        issues.append("Evidence requirements seem insufficient for the number of outputs")

    status = None
    if len(issues) == 1:
        status = CheckStatus.WARN
    return _result("QC_EVIDENCE_DISCIPLINE", "Evidence Discipline", issues,
                   "Evidence requirements properly defined", status)


def check_safe_language(template: Template) -> CheckResult:
    """No overclaiming. Up to two issues is a WARN, more is a FAIL."""
    issues: List[str] = []
    text = " ".join([template.purpose, *template.generation_instructions, *template.quality_checks])

    for pattern in UNSAFE_LANGUAGE_PATTERNS:
        match = pattern.search(text)
        if match:
            issues.append(f'Unsafe language found: "{match.group(0)}"')

    has_assumptions = any(
        "assumption" in p.field_id.lower() or "assumption" in p.label.lower()
        for p in template.placeholders
    )
    if not has_assumptions and template.risk_class != RiskClass.LOW:
        issues.append("Templates of MEDIUM/HIGH risk should have an assumptions field")

    status = None
    if 0 < len(issues) <= 2:
        status = CheckStatus.WARN
    return _result("QC_SAFE_LANGUAGE", "Safe Language", issues,
                   "Language is appropriately cautious and professional", status)


def check_pack_correctness(template: Template) -> CheckResult:
    """Instructions may only reference the template's own jurisdiction."""
    issues: List[str] = []
    own = pack_jurisdiction(template.jurisdiction_pack)
    text = " ".join(template.generation_instructions)

    if own is not None:
        for jurisdiction, patterns in JURISDICTION_TERMS.items():
            if jurisdiction == own:
                continue
            if any(p.search(text) for p in patterns):
                issues.append(
                    f"{template.jurisdiction_pack.value} template references {jurisdiction} content"
                )

    return _result("QC_PACK_CORRECTNESS", "Pack Correctness", issues,
                   "Template properly scoped to its jurisdiction pack")


def check_escalation_triggers(
    template: Template,
    min_triggers: Optional[Dict[RiskClass, int]] = None,
) -> CheckResult:
    issues: List[str] = []
    minimum = (min_triggers or DEFAULT_MIN_ESCALATION_TRIGGERS).get(template.risk_class, 1)

    if not template.escalation_triggers:
        issues.append("No escalation_triggers defined")
    if len(template.escalation_triggers) < minimum:
        issues.append(
            f"{template.risk_class.value} risk templates should have at least {minimum} escalation triggers"
        )

    return _result("QC_ESCALATION_TRIGGERS", "Escalation Triggers", issues,
                   "Escalation triggers properly defined for risk level")


def check_no_client_leakage(template: Template) -> CheckResult:
    """Template text must stay generic: no company names, ids, contacts or amounts."""
    issues: List[str] = []
    text = " ".join([
        template.name,
        template.purpose,
        *template.generation_instructions,
        *template.quality_checks,
        *(p.label for p in template.placeholders),
    ])

    for pattern in CLIENT_DATA_PATTERNS:
        match = pattern.search(text)
        if match:
            issues.append(f'Possible client data found: "{match.group(0)}"')

    return _result("QC_NO_CLIENT_LEAKAGE", "No Client Data Leakage", issues,
                   "Template contains no client-specific data")


def run_template_qc(
    template: Template,
    min_escalation_triggers: Optional[Dict[RiskClass, int]] = None,
) -> TemplateQCResult:
    """Run every QC check on a template.

    Args:
        template: Template to check
        min_escalation_triggers: Per risk class minimum for the advisory
            escalation_triggers check

    Returns:
        TemplateQCResult with APPROVE only if all governing checks PASS
    """
    checks = {
        "determinism": check_determinism(template),
        "completeness": check_completeness(template),
        "evidence_discipline": check_evidence_discipline(template),
        "safe_language": check_safe_language(template),
        "pack_correctness": check_pack_correctness(template),
        "escalation_triggers": check_escalation_triggers(template, min_escalation_triggers),
        "no_client_leakage": check_no_client_leakage(template),
    }

    governing = [checks[name] for name in GOVERNING_CHECKS]
    approve = all(c.status == CheckStatus.PASS for c in governing)

    score = round(sum(CHECK_SCORES[c.status] for c in checks.values()) / len(checks))

    fix_list: List[str] = []
    for check in checks.values():
        if check.status != CheckStatus.PASS:
            fix_list.extend(check.details or [check.message])

    return TemplateQCResult(
        template_id=template.template_id,
        passed=all(c.status != CheckStatus.FAIL for c in governing),
        overall_score=score,
        checks=checks,
        fix_list=fix_list,
        publish_recommendation=(
            PublishRecommendation.APPROVE if approve else PublishRecommendation.REJECT
        ),
    )


def get_qc_summary(result: TemplateQCResult) -> str:
    summary = (
        f"QC Result: {result.publish_recommendation.value} "
        f"(Score: {result.overall_score}/100)"
    )
    if result.fix_list:
        summary += "\n\nFixes Required:\n" + "\n".join(f"  - {fix}" for fix in result.fix_list)
    return summary
