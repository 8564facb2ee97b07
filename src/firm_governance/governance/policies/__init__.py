"""Tool policy engine and tool registry."""

from firm_governance.governance.policies.engine import (
    PolicyContext,
    PolicyDecision,
    ToolPolicyEngine,
)
from firm_governance.governance.policies.tools import TOOL_INPUTS, ToolRegistry

__all__ = [
    "PolicyContext",
    "PolicyDecision",
    "TOOL_INPUTS",
    "ToolPolicyEngine",
    "ToolRegistry",
]
