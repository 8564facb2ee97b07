"""Configuration module."""

from firm_governance.common.config.settings import (
    AuditStorageType,
    Config,
    Environment,
    LogLevel,
    StoreType,
    get_config,
    reset_config,
)

__all__ = [
    "AuditStorageType",
    "Config",
    "Environment",
    "LogLevel",
    "StoreType",
    "get_config",
    "reset_config",
]
