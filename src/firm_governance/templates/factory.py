"""Template Factory - template lifecycle and jurisdiction pack enforcement.

    create_template_draft -> DRAFT 0.1.0
    publish_template      -> PUBLISHED 1.0.0, then x.y.(z+1) per republish
    retire_template       -> RETIRED (no further publish or instantiation)

The module-level functions are pure: they take records and return new
ones. TemplateFactory wraps them with persistence, approver checks and
audit events.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Union

import pydantic
from pydantic import BaseModel, Field

from firm_governance.common.constants import TemplateConstants
from firm_governance.common.exceptions import (
    NotFoundError,
    PackMismatchError,
    PolicyViolation,
    SecurityViolation,
    StateError,
    ValidationError,
)
from firm_governance.common.logging import get_logger
from firm_governance.core.packs import as_pack, check_pack_compatibility
from firm_governance.core.types import (
    ApprovalType,
    EscalationTarget,
    JurisdictionPack,
    RiskClass,
    TemplateStatus,
)
from firm_governance.governance.audit.trail import AuditTrail
from firm_governance.governance.identity import IdentitySource
from firm_governance.governance.rules import GovernanceRules, load_governance_rules
from firm_governance.governance.schemas import (
    ChangeLogEntry,
    DeviationNote,
    Template,
    TemplateApproval,
    TemplateInstance,
    utcnow,
)
from firm_governance.templates.quality import TemplateQCResult, run_template_qc

logger = get_logger(__name__)

RESOURCE_TEMPLATE = "template"
RESOURCE_INSTANCE = "template_instance"

# Recent instances considered for the deviation-rate trigger
DEVIATION_WINDOW = 30

# Fields a template owner may edit while the template is a DRAFT
EDITABLE_DRAFT_FIELDS = frozenset({
    "name",
    "purpose",
    "risk_class",
    "required_inputs",
    "produced_outputs",
    "evidence_requirements",
    "escalation_triggers",
    "placeholders",
    "generation_instructions",
    "quality_checks",
})

# Approval kind -> role that must have granted it
APPROVER_ROLES = {
    ApprovalType.GUARDIAN_PASS: "guardian",
    ApprovalType.GOVERNOR_POLICY_REVIEW: "governor",
}


# ========== TRIGGERS ==========

class TemplateTrigger(BaseModel):
    model_config = {"frozen": True}

    trigger_id: str
    when: str
    action: str
    route_to: EscalationTarget
    threshold: Optional[float] = None


TEMPLATE_TRIGGERS: Dict[str, TemplateTrigger] = {
    "TRG_NO_TEMPLATE_FOUND": TemplateTrigger(
        trigger_id="TRG_NO_TEMPLATE_FOUND",
        when="task starts and template search returns no published template",
        action="Orchestrator opens a template-creation workstream",
        route_to=EscalationTarget.ORCHESTRATOR,
    ),
    "TRG_HIGH_DEVIATION_RATE": TemplateTrigger(
        trigger_id="TRG_HIGH_DEVIATION_RATE",
        when="share of recent instances with deviation notes exceeds threshold",
        action="Owner agent must propose the next template version",
        route_to=EscalationTarget.ORCHESTRATOR,
        threshold=30,
    ),
    "TRG_REPEAT_DEFECTS": TemplateTrigger(
        trigger_id="TRG_REPEAT_DEFECTS",
        when="Guardian defects for the same output type exceed threshold",
        action="Template remediation sprint",
        route_to=EscalationTarget.GUARDIAN,
        threshold=5,
    ),
}


def check_deviation_rate(
    instances: Sequence[TemplateInstance],
    threshold: float = 30,
    window: int = DEVIATION_WINDOW,
) -> Optional[TemplateTrigger]:
    """TRG_HIGH_DEVIATION_RATE if more than ``threshold`` percent of the
    most recent ``window`` instances carry a deviation note."""
    recent = sorted(instances, key=lambda i: i.created_at)[-window:]
    if not recent:
        return None
    deviating = sum(1 for i in recent if i.deviation_notes)
    rate = deviating / len(recent) * 100
    if rate > threshold:
        return TEMPLATE_TRIGGERS["TRG_HIGH_DEVIATION_RATE"].model_copy(update={"threshold": threshold})
    return None


def check_repeat_defects(
    defects_by_output: Mapping[str, int],
    threshold: int = 5,
) -> Optional[TemplateTrigger]:
    """TRG_REPEAT_DEFECTS if any output type has more than ``threshold`` defects."""
    if any(count > threshold for count in defects_by_output.values()):
        return TEMPLATE_TRIGGERS["TRG_REPEAT_DEFECTS"].model_copy(update={"threshold": threshold})
    return None


# ========== PACK ENFORCEMENT ==========

@dataclass
class PackCheckResult:
    allowed: bool
    error: Optional[PackMismatchError] = None


def check_pack_enforcement(
    template: Template,
    target_pack: Union[JurisdictionPack, str],
) -> PackCheckResult:
    """GLOBAL templates fit any pack; others only their own.

    Raises:
        ValidationError: ``target_pack`` is not a known pack
    """
    target_pack = as_pack(target_pack)
    if check_pack_compatibility(template.jurisdiction_pack, target_pack):
        return PackCheckResult(allowed=True)
    return PackCheckResult(
        allowed=False,
        error=PackMismatchError(
            template_pack=template.jurisdiction_pack.value,
            target_pack=target_pack.value,
            template_id=template.template_id,
        ),
    )


# ========== LIFECYCLE ==========

def create_template_draft(
    owner_agent: str,
    service_id: str,
    jurisdiction_pack: Union[JurisdictionPack, str],
    name: str,
    purpose: str,
    risk_class: Union[RiskClass, str] = RiskClass.LOW,
) -> Template:
    """Create a DRAFT template at version 0.1.0.

    Raises:
        ValidationError: Missing or malformed fields
    """
    try:
        return Template(
            owner_agent=owner_agent,
            service_id=service_id,
            jurisdiction_pack=jurisdiction_pack,
            name=name,
            purpose=purpose,
            risk_class=risk_class,
            status=TemplateStatus.DRAFT,
            version=TemplateConstants.INITIAL_DRAFT_VERSION,
            change_log=[
                ChangeLogEntry(
                    version=TemplateConstants.INITIAL_DRAFT_VERSION,
                    author=owner_agent,
                    changes=["Initial draft created"],
                )
            ],
        )
    except pydantic.ValidationError as e:
        raise ValidationError(
            "Invalid template draft",
            details={"errors": e.errors(include_url=False)},
        ) from e


class PublishCheck(BaseModel):
    allowed: bool
    missing: List[ApprovalType] = Field(default_factory=list)

    @property
    def first_missing(self) -> Optional[ApprovalType]:
        return self.missing[0] if self.missing else None


def can_publish(
    template: Template,
    approvals: Iterable[TemplateApproval],
    rules: Optional[GovernanceRules] = None,
) -> PublishCheck:
    """Compare presented approvals with the risk class's publish gate.

    Args:
        template: Template to publish
        approvals: Approvals presented with the publish request
        rules: Rules document; loaded from config when omitted

    Returns:
        PublishCheck listing missing approval kinds in gate order
    """
    rules = rules or load_governance_rules()
    present = {a.type for a in approvals}
    missing = [gate for gate in rules.publish_gate(template.risk_class) if gate not in present]
    return PublishCheck(allowed=not missing, missing=missing)


def _bump_version(template: Template) -> str:
    if template.status == TemplateStatus.DRAFT:
        return TemplateConstants.FIRST_PUBLISHED_VERSION
    major, minor, patch = (int(part) for part in template.version.split("."))
    return f"{major}.{minor}.{patch + 1}"


def publish_template(
    template: Template,
    approvals: Sequence[TemplateApproval],
    change_notes: Sequence[str],
    published_by: Optional[str] = None,
    rules: Optional[GovernanceRules] = None,
) -> Template:
    """Publish a DRAFT, or republish a PUBLISHED template with a patch bump.

    Raises:
        StateError: Template is RETIRED
        PolicyViolation: A required approval is missing; the message names it
    """
    if template.status == TemplateStatus.RETIRED:
        raise StateError(f"Cannot publish retired template {template.template_id}")

    check = can_publish(template, approvals, rules)
    if not check.allowed:
        missing = ", ".join(m.value for m in check.missing)
        raise PolicyViolation(
            f"Cannot publish: missing approvals: {missing}",
            policy_name="template_publish_gate",
            details={"template_id": template.template_id, "missing": [m.value for m in check.missing]},
        )

    version = _bump_version(template)
    now = utcnow()
    return template.model_copy(update={
        "status": TemplateStatus.PUBLISHED,
        "version": version,
        "change_log": [
            *template.change_log,
            ChangeLogEntry(
                version=version,
                date=now,
                author=published_by or template.owner_agent,
                changes=list(change_notes),
            ),
        ],
        "updated_at": now,
    })


def retire_template(template: Template, retired_by: str, reason: str) -> Template:
    """Retire a PUBLISHED template. The version is kept as-is."""
    if template.status != TemplateStatus.PUBLISHED:
        raise StateError(
            f"Only published templates can be retired (status: {template.status.value})"
        )
    now = utcnow()
    return template.model_copy(update={
        "status": TemplateStatus.RETIRED,
        "change_log": [
            *template.change_log,
            ChangeLogEntry(version=template.version, date=now, author=retired_by, changes=[f"Retired: {reason}"]),
        ],
        "updated_at": now,
    })


def instantiate_template(
    template: Template,
    case_id: str,
    task_id: str,
    target_pack: Union[JurisdictionPack, str],
) -> TemplateInstance:
    """Create a DRAFT instance carrying the template's current version.

    Raises:
        PackMismatchError: Template pack does not fit ``target_pack``
        ValidationError: ``target_pack`` is not a known pack
        StateError: Template is RETIRED
    """
    result = check_pack_enforcement(template, target_pack)
    if not result.allowed:
        logger.warning(result.error.message)
        raise result.error

    if template.status == TemplateStatus.RETIRED:
        raise StateError(f"Cannot instantiate retired template {template.template_id}")

    return TemplateInstance(
        template_id=template.template_id,
        template_version=template.version,
        jurisdiction_pack=as_pack(target_pack),
        case_id=case_id,
        task_id=task_id,
    )


def log_deviation(
    instance: TemplateInstance,
    description: str,
    reason: str,
    logged_by: str,
    field_id: Optional[str] = None,
) -> TemplateInstance:
    """Return ``instance`` with one more deviation note. Prior notes are untouched."""
    try:
        note = DeviationNote(
            instance_id=instance.instance_id,
            field_id=field_id,
            description=description,
            reason=reason,
            logged_by=logged_by,
        )
    except pydantic.ValidationError as e:
        raise ValidationError(
            "Invalid deviation note",
            details={"errors": e.errors(include_url=False)},
        ) from e

    return instance.model_copy(update={
        "deviation_notes": [*instance.deviation_notes, note],
        "updated_at": note.logged_at,
    })


# ========== SEARCH ==========

class TemplateSearchResult(BaseModel):
    found: bool
    templates: List[Template] = Field(default_factory=list)
    best_match: Optional[Template] = None
    trigger: Optional[TemplateTrigger] = None


def _semver(template: Template):
    return tuple(int(part) for part in template.version.split("."))


def search_templates(
    templates: Iterable[Template],
    service_id: str,
    jurisdiction_pack: Union[JurisdictionPack, str],
) -> TemplateSearchResult:
    """Find PUBLISHED templates for a service and pack, highest version first.

    No match is not an error: the result carries TRG_NO_TEMPLATE_FOUND.
    """
    pack = as_pack(jurisdiction_pack)
    matches = sorted(
        (
            t for t in templates
            if t.service_id == service_id
            and t.jurisdiction_pack == pack
            and t.status == TemplateStatus.PUBLISHED
        ),
        key=_semver,
        reverse=True,
    )

    if not matches:
        return TemplateSearchResult(found=False, trigger=TEMPLATE_TRIGGERS["TRG_NO_TEMPLATE_FOUND"])

    return TemplateSearchResult(found=True, templates=matches, best_match=matches[0])


# ========== SERVICE ==========

class TemplateFactory:
    """Persists template lifecycle changes through an injected repository."""

    def __init__(
        self,
        repository,
        audit_trail: Optional[AuditTrail] = None,
        identity: Optional[IdentitySource] = None,
    ):
        self.repository = repository
        self.audit_trail = audit_trail or AuditTrail()
        self.identity = identity or IdentitySource()

    @property
    def rules(self) -> GovernanceRules:
        return self.identity.rules

    def _load_template(self, template_id: str) -> Template:
        template = self.repository.get_template(template_id)
        if template is None:
            raise NotFoundError("Template", template_id)
        return template

    def _load_instance(self, instance_id: str) -> TemplateInstance:
        instance = self.repository.get_instance(instance_id)
        if instance is None:
            raise NotFoundError("TemplateInstance", instance_id)
        return instance

    def create_draft(
        self,
        owner_agent: str,
        service_id: str,
        jurisdiction_pack: Union[JurisdictionPack, str],
        name: str,
        purpose: str,
        risk_class: Union[RiskClass, str] = RiskClass.LOW,
    ) -> Template:
        template = self.repository.create_template(
            create_template_draft(owner_agent, service_id, jurisdiction_pack, name, purpose, risk_class)
        )
        self.audit_trail.record(
            action="template_created",
            actor_id=owner_agent,
            resource_type=RESOURCE_TEMPLATE,
            resource_id=template.template_id,
            details={"name": name, "service_id": service_id, "pack": template.jurisdiction_pack.value},
            new_state=template.status.value,
        )
        logger.info(f"Template draft {template.template_id} created by {owner_agent}")
        return template

    def update_draft(self, template_id: str, actor: str, **changes) -> Template:
        """Edit a DRAFT template. Only the owner agent may edit it.

        Raises:
            NotFoundError: Unknown template
            SecurityViolation: Actor is not the owner
            StateError: Template is no longer a DRAFT
            ValidationError: Unknown field or invalid value
        """
        template = self._load_template(template_id)

        if actor != template.owner_agent:
            raise SecurityViolation(
                f"SECURITY_VIOLATION: Only {template.owner_agent} can edit template {template_id}",
                actor_id=actor,
            )
        if template.status != TemplateStatus.DRAFT:
            raise StateError(f"Template {template_id} is {template.status.value}; only drafts can be edited")

        unknown = set(changes) - EDITABLE_DRAFT_FIELDS
        if unknown:
            raise ValidationError(f"Fields not editable: {', '.join(sorted(unknown))}")

        try:
            edited = Template.model_validate({
                **template.model_dump(),
                **changes,
                "updated_at": utcnow(),
            })
        except pydantic.ValidationError as e:
            raise ValidationError(
                "Invalid template update",
                details={"errors": e.errors(include_url=False)},
            ) from e

        updated = self.repository.update_template(edited)
        self.audit_trail.record(
            action="template_updated",
            actor_id=actor,
            resource_type=RESOURCE_TEMPLATE,
            resource_id=template_id,
            details={"fields": sorted(changes)},
        )
        return updated

    def _check_approvers(self, approvals: Sequence[TemplateApproval]) -> None:
        for approval in approvals:
            role = APPROVER_ROLES.get(approval.type)
            if role == "guardian" and not self.identity.is_guardian(approval.approved_by):
                raise SecurityViolation(
                    f"SECURITY_VIOLATION: {approval.type.value} must be granted by the Guardian",
                    actor_id=approval.approved_by,
                )
            if role == "governor" and not self.identity.is_governor(approval.approved_by):
                raise SecurityViolation(
                    f"SECURITY_VIOLATION: {approval.type.value} must be granted by the Governor",
                    actor_id=approval.approved_by,
                )

    def publish(
        self,
        template_id: str,
        approvals: Sequence[TemplateApproval],
        change_notes: Sequence[str],
        actor: str,
    ) -> Template:
        """Publish or republish a stored template.

        Approvals are checked against who granted them before the gate
        is evaluated.
        """
        self._check_approvers(approvals)
        template = self._load_template(template_id)
        previous = template.status

        try:
            published = publish_template(template, approvals, change_notes, actor, self.rules)
        except PolicyViolation:
            logger.warning(f"Publish of {template_id} blocked by missing approvals")
            raise

        published = self.repository.update_template(published)
        self.audit_trail.record(
            action="template_published",
            actor_id=actor,
            resource_type=RESOURCE_TEMPLATE,
            resource_id=template_id,
            details={
                "version": published.version,
                "approvals": [a.type.value for a in approvals],
                "change_notes": list(change_notes),
            },
            previous_state=previous.value,
            new_state=published.status.value,
        )
        logger.info(f"Template {template_id} published as {published.version}")
        return published

    def retire(self, template_id: str, actor: str, reason: str) -> Template:
        template = self._load_template(template_id)
        retired = self.repository.update_template(retire_template(template, actor, reason))
        self.audit_trail.record(
            action="template_retired",
            actor_id=actor,
            resource_type=RESOURCE_TEMPLATE,
            resource_id=template_id,
            details={"reason": reason},
            previous_state=TemplateStatus.PUBLISHED.value,
            new_state=TemplateStatus.RETIRED.value,
        )
        logger.info(f"Template {template_id} retired by {actor}")
        return retired

    def instantiate(
        self,
        template_id: str,
        case_id: str,
        task_id: str,
        target_pack: Union[JurisdictionPack, str],
        actor: str,
    ) -> TemplateInstance:
        """Instantiate a template for a task on behalf of ``actor``.

        Raises:
            SecurityViolation: ``actor`` works in another jurisdiction than
                ``target_pack`` (checked before the template is loaded)
            NotFoundError: Unknown template
            PackMismatchError: Template pack does not fit ``target_pack``
        """
        if not self.identity.can_agent_use_pack(actor, target_pack):
            logger.warning(f"Pack {target_pack} rejected for {actor}")
            raise SecurityViolation(
                f"SECURITY_VIOLATION: {actor} may not use pack {as_pack(target_pack).value}",
                actor_id=actor,
                details={"agent_domain": self.identity.agent_domain(actor).value},
            )

        template = self._load_template(template_id)
        instance = self.repository.create_instance(
            instantiate_template(template, case_id, task_id, target_pack)
        )
        self.audit_trail.record(
            action="template_instantiated",
            actor_id=actor,
            resource_type=RESOURCE_INSTANCE,
            resource_id=instance.instance_id,
            details={
                "template_id": template_id,
                "template_version": instance.template_version,
                "case_id": case_id,
                "task_id": task_id,
            },
        )
        return instance

    def log_deviation(
        self,
        instance_id: str,
        description: str,
        reason: str,
        logged_by: str,
        field_id: Optional[str] = None,
    ) -> TemplateInstance:
        instance = self._load_instance(instance_id)
        updated = self.repository.update_instance(
            log_deviation(instance, description, reason, logged_by, field_id)
        )
        note = updated.deviation_notes[-1]
        self.audit_trail.record(
            action="template_deviation_logged",
            actor_id=logged_by,
            resource_type=RESOURCE_INSTANCE,
            resource_id=instance_id,
            details={"deviation_id": note.deviation_id, "field_id": field_id, "reason": reason},
        )
        return updated

    def search(self, service_id: str, jurisdiction_pack: Union[JurisdictionPack, str]) -> TemplateSearchResult:
        return search_templates(self.repository.list_templates(), service_id, jurisdiction_pack)

    def run_qc(self, template_id: str) -> TemplateQCResult:
        return run_template_qc(
            self._load_template(template_id),
            self.rules.templates.min_escalation_triggers,
        )

    def deviation_trigger(self, template_id: str) -> Optional[TemplateTrigger]:
        self._load_template(template_id)
        return check_deviation_rate(
            self.repository.list_instances(template_id),
            self.rules.templates.triggers.high_deviation_rate_threshold,
        )

    def defect_trigger(self, defects_by_output: Mapping[str, int]) -> Optional[TemplateTrigger]:
        return check_repeat_defects(
            defects_by_output,
            self.rules.templates.triggers.repeat_defects_threshold,
        )

    def get_template(self, template_id: str) -> Optional[Template]:
        return self.repository.get_template(template_id)

    def get_instance(self, instance_id: str) -> Optional[TemplateInstance]:
        return self.repository.get_instance(instance_id)
