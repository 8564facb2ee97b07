"""Dual-gate release workflow."""

from firm_governance.governance.release.gate import ReleaseGate

__all__ = ["ReleaseGate"]
