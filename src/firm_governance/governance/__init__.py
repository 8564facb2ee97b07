"""Governance - autonomy tiers, QC reviews, release gating and tool policy.

Components:
- AutonomyClassifier: rule-based tier A/B/C decision per action
- QCWorkflow: Guardian-owned QC review state machine
- ReleaseGate: dual authorization (Guardian pass, then Governor decision)
- ToolPolicyEngine: static tool allowlist plus ordered policy rule chain
- AuditTrail: best-effort, sequence-numbered audit events

Design principles:
- Role checks run before existence checks
- Rejected operations leave no partial state
- Thresholds and role ids come from the versioned rules document
- Audit failures never fail the governing operation

Import components from their modules, e.g.
``firm_governance.governance.release.gate``. Stores depend on the
schemas in this package, so this module does not re-export services.
"""
