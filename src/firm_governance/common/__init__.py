"""Common utilities - logging, config, exceptions."""

from firm_governance.common.logging.logger import get_logger
from firm_governance.common.config import Config, get_config, reset_config
from firm_governance.common.exceptions import (
    AuditError,
    ConcurrencyConflict,
    ConfigurationError,
    GovernanceError,
    NotFoundError,
    PackMismatchError,
    PolicyViolation,
    SecurityViolation,
    StateError,
    ValidationError,
)

__all__ = [
    # Logging
    "get_logger",
    # Config
    "Config",
    "get_config",
    "reset_config",
    # Exceptions
    "GovernanceError",
    "ConfigurationError",
    "ValidationError",
    "NotFoundError",
    "SecurityViolation",
    "PolicyViolation",
    "StateError",
    "PackMismatchError",
    "ConcurrencyConflict",
    "AuditError",
]
