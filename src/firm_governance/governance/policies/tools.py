"""Tool registry - which group each tool belongs to and what it takes as input.

Group membership comes from the rules document so an operator can move
a tool without a code change. Input names are fixed by the tool
implementations and live here.
"""

from typing import Dict, List, Mapping, Optional, Tuple

from firm_governance.core.types import ToolGroup
from firm_governance.governance.rules import GovernanceRules

# Required input names per tool
TOOL_INPUTS: Dict[str, Tuple[str, ...]] = {
    # CORE_CASE_MGMT
    "create_engagement": ("client_id", "name", "service_type", "jurisdiction", "pack_id", "start_date"),
    "create_workstream": ("engagement_id", "name"),
    "create_tasks_from_program": ("workstream_id", "program_id"),
    "log_event": ("event_type", "entity_type", "entity_id"),
    # DOC_FACTORY
    "generate_document_from_template": ("workstream_id", "template_id", "variables"),
    "version_diff_document": ("document_id", "new_content", "changelog"),
    "assemble_pack": ("workstream_id", "pack_type"),
    # EVIDENCE
    "ingest_evidence": ("type", "name", "storage_path", "hash"),
    "classify_evidence": ("evidence_id", "evidence_type"),
    "link_evidence": ("evidence_id", "target_type", "target_id", "relationship"),
    "evidence_quality_score": ("workstream_id",),
    # QC_GATES
    "run_guardian_checks": ("workstream_id",),
    "consistency_scan": ("workstream_id",),
    "novelty_score": (),
    # RELEASE_GATED
    "request_release": ("workstream_id", "artifact_id", "release_type", "reason"),
    "release_action": ("workstream_id", "artifact_id", "release_type", "approval_id"),
}


class ToolRegistry:
    """Lookups over the tool groups defined in the rules document."""

    def __init__(self, rules: GovernanceRules):
        self.rules = rules

    def get_tool_group(self, tool_name: str) -> Optional[ToolGroup]:
        """Group that contains ``tool_name``, or None for an unknown tool."""
        for group, definition in self.rules.tool_groups.items():
            if tool_name in definition.tools:
                return group
        return None

    def requires_release_gating(self, tool_name: str) -> bool:
        group = self.get_tool_group(tool_name)
        if group is None:
            return False
        return self.rules.tool_groups[group].requires_gating

    def missing_inputs(self, tool_name: str, inputs: Mapping[str, object]) -> List[str]:
        """Required input names absent from ``inputs`` (None counts as absent)."""
        return [
            name for name in TOOL_INPUTS.get(tool_name, ())
            if inputs.get(name) is None
        ]
