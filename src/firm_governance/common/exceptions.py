"""Custom exceptions for the governance engine.

Provides a hierarchy of exceptions for different error types.
All governance exceptions inherit from GovernanceError and are raised
synchronously to the immediate caller with no partial state mutation.
"""

from typing import Any, Dict, Optional


class GovernanceError(Exception):
    """Base exception for all governance errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: str = "GOVERNANCE_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(GovernanceError):
    """Raised when configuration or the rules document is invalid."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="CONFIG_ERROR", details=details)


class ValidationError(GovernanceError):
    """Raised when input to a constructor-like call is malformed."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="VALIDATION_ERROR", details=details)


class NotFoundError(GovernanceError):
    """Raised when an id does not resolve to a stored record."""

    def __init__(
        self,
        resource_type: str,
        resource_id: str,
        details: Optional[Dict[str, Any]] = None
    ):
        details = details or {}
        details["resource_type"] = resource_type
        details["resource_id"] = resource_id
        super().__init__(
            f"{resource_type} not found: {resource_id}",
            code="NOT_FOUND",
            details=details,
        )


class SecurityViolation(GovernanceError):
    """Raised when the wrong actor attempts a role-restricted action.

    Always checked before existence checks, so the error never reveals
    whether the target id exists.
    """

    def __init__(
        self,
        message: str,
        actor_id: str,
        details: Optional[Dict[str, Any]] = None
    ):
        details = details or {}
        details["actor_id"] = actor_id
        super().__init__(message, code="SECURITY_VIOLATION", details=details)


class PolicyViolation(GovernanceError):
    """Raised when a required prior gate (e.g. Guardian pass) is missing."""

    def __init__(
        self,
        message: str,
        policy_name: str,
        details: Optional[Dict[str, Any]] = None
    ):
        details = details or {}
        details["policy_name"] = policy_name
        super().__init__(message, code="POLICY_VIOLATION", details=details)


class StateError(GovernanceError):
    """Raised when a transition or operation does not fit the lifecycle stage."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="STATE_ERROR", details=details)


class PackMismatchError(GovernanceError):
    """Raised when jurisdiction pack isolation is violated."""

    def __init__(self, template_pack: str, target_pack: str, template_id: str):
        self.template_pack = template_pack
        self.target_pack = target_pack
        self.template_id = template_id
        super().__init__(
            f"PACK_MISMATCH: Template {template_id} ({template_pack}) "
            f"cannot be used for pack {target_pack}",
            code="PACK_MISMATCH",
            details={
                "template_pack": template_pack,
                "target_pack": target_pack,
                "template_id": template_id,
            },
        )


class ConcurrencyConflict(GovernanceError):
    """Raised by a store when a write precondition no longer holds."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="CONCURRENCY_CONFLICT", details=details)


class AuditError(GovernanceError):
    """Raised by audit sinks when an event cannot be persisted."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="AUDIT_ERROR", details=details)
