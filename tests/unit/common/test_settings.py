"""Tests for configuration settings.

Tests the Config class and environment variable handling.
"""

from pathlib import Path
from unittest.mock import patch

import pytest

from firm_governance.common.config.settings import (
    AuditStorageType,
    Config,
    Environment,
    StoreType,
    get_config,
    reset_config,
)


class TestConfig:
    """Tests for Config class."""

    def test_default_config(self):
        """Test defaults without any FIRMGOV_ variables."""
        config = Config()
        assert config.environment == Environment.DEVELOPMENT
        assert config.store_type == StoreType.MEMORY
        assert config.audit_storage_type == AuditStorageType.MEMORY
        assert config.rules_file is None
        assert config.is_development

    def test_env_overrides(self):
        """Test values are read from the environment."""
        with patch.dict("os.environ", {
            "FIRMGOV_ENVIRONMENT": "staging",
            "FIRMGOV_RULES_FILE": "/etc/firmgov/rules.yaml",
            "FIRMGOV_AUDIT_LOG_DIR": "/var/log/firmgov",
        }):
            config = Config()
        assert config.environment == Environment.STAGING
        assert config.rules_file == Path("/etc/firmgov/rules.yaml")
        assert config.audit_log_dir == Path("/var/log/firmgov")

    def test_dynamodb_requires_table(self):
        """Test DynamoDB store without a table name is rejected."""
        with patch.dict("os.environ", {"FIRMGOV_STORE_TYPE": "dynamodb"}):
            with pytest.raises(ValueError, match="FIRMGOV_DYNAMODB_TABLE"):
                Config()

    def test_production_memory_store_warns(self):
        """Test in-memory store in production emits a warning."""
        with patch.dict("os.environ", {"FIRMGOV_ENVIRONMENT": "production"}):
            with pytest.warns(RuntimeWarning, match="In-memory store"):
                config = Config()
        assert config.is_production

    def test_invalid_environment(self):
        with patch.dict("os.environ", {"FIRMGOV_ENVIRONMENT": "qa"}):
            with pytest.raises(ValueError):
                Config()


class TestConfigSingleton:
    """Tests for get_config/reset_config."""

    def test_get_config_is_cached(self):
        assert get_config() is get_config()

    def test_reset_config(self):
        first = get_config()
        reset_config()
        assert get_config() is not first
