"""Template factory, pack enforcement and template QC."""

from firm_governance.templates.factory import (
    TEMPLATE_TRIGGERS,
    PackCheckResult,
    PublishCheck,
    TemplateFactory,
    TemplateSearchResult,
    TemplateTrigger,
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
from firm_governance.templates.quality import (
    CheckResult,
    TemplateQCResult,
    get_qc_summary,
    run_template_qc,
)

__all__ = [
    "TEMPLATE_TRIGGERS",
    "CheckResult",
    "PackCheckResult",
    "PublishCheck",
    "TemplateFactory",
    "TemplateQCResult",
    "TemplateSearchResult",
    "TemplateTrigger",
    "can_publish",
    "check_deviation_rate",
    "check_pack_enforcement",
    "check_repeat_defects",
    "create_template_draft",
    "get_qc_summary",
    "instantiate_template",
    "log_deviation",
    "publish_template",
    "retire_template",
    "run_template_qc",
    "search_templates",
]
