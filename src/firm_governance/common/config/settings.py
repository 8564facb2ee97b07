"""Configuration management - Centralized configuration for the governance engine.

Provides environment-aware configuration with sensible defaults.
All configuration is loaded from environment variables with fallbacks.
Governance thresholds and role ids live in the rules document instead
(see firm_governance.governance.rules).
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional


class Environment(str, Enum):
    """Application environment."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class AuditStorageType(str, Enum):
    """Audit storage backend types."""
    MEMORY = "memory"
    FILE = "file"


class StoreType(str, Enum):
    """Persistent store backend types."""
    MEMORY = "memory"
    DYNAMODB = "dynamodb"


def _optional_path(env_var: str) -> Optional[Path]:
    value = os.getenv(env_var)
    return Path(value) if value else None


@dataclass
class Config:
    """Central configuration object.

    All settings can be overridden via environment variables prefixed with FIRMGOV_.

    Example:
        FIRMGOV_ENVIRONMENT=production
        FIRMGOV_STORE_TYPE=dynamodb
        FIRMGOV_DYNAMODB_TABLE=governance
    """

    # Core settings
    environment: Environment = field(
        default_factory=lambda: Environment(
            os.getenv("FIRMGOV_ENVIRONMENT", "development")
        )
    )
    debug: bool = field(
        default_factory=lambda: os.getenv("FIRMGOV_DEBUG", "false").lower() == "true"
    )
    log_level: LogLevel = field(
        default_factory=lambda: LogLevel(os.getenv("FIRMGOV_LOG_LEVEL", "INFO"))
    )

    # Rules document (None = packaged default)
    rules_file: Optional[Path] = field(
        default_factory=lambda: _optional_path("FIRMGOV_RULES_FILE")
    )

    # Audit settings
    audit_storage_type: AuditStorageType = field(
        default_factory=lambda: AuditStorageType(
            os.getenv("FIRMGOV_AUDIT_STORAGE_TYPE", "memory")
        )
    )
    audit_log_dir: Path = field(
        default_factory=lambda: Path(
            os.getenv("FIRMGOV_AUDIT_LOG_DIR", "./logs/audit")
        )
    )

    # Persistent store
    store_type: StoreType = field(
        default_factory=lambda: StoreType(os.getenv("FIRMGOV_STORE_TYPE", "memory"))
    )
    dynamodb_table: Optional[str] = field(
        default_factory=lambda: os.getenv("FIRMGOV_DYNAMODB_TABLE")
    )
    aws_region: str = field(
        default_factory=lambda: os.getenv("AWS_DEFAULT_REGION", "us-east-1")
    )

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.store_type == StoreType.DYNAMODB and not self.dynamodb_table:
            raise ValueError(
                "FIRMGOV_DYNAMODB_TABLE must be set when using the DynamoDB store"
            )

        if self.environment == Environment.PRODUCTION:
            if self.debug:
                import warnings
                warnings.warn(
                    "Debug mode is enabled in production environment",
                    RuntimeWarning,
                    stacklevel=2
                )
            if self.store_type == StoreType.MEMORY:
                import warnings
                warnings.warn(
                    "In-memory store in production: decisions will not survive a restart",
                    RuntimeWarning,
                    stacklevel=2
                )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == Environment.DEVELOPMENT


# Singleton instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def reset_config() -> None:
    """Reset the global configuration (for testing)."""
    global _config
    _config = None
