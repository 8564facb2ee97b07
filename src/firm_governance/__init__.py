"""Firm Governance - autonomy and release governance for engine agents."""

__version__ = "0.1.0"
__author__ = "Firm Governance Team"

# Core exports
from firm_governance.core.types import AutonomyTier, JurisdictionPack, QCState, ReleaseStatus

__all__ = [
    "AutonomyTier",
    "JurisdictionPack",
    "QCState",
    "ReleaseStatus",
]
