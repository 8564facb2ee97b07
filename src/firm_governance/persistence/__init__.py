"""Persistent stores for governed records."""

from typing import Optional

from firm_governance.common.config import Config, StoreType, get_config
from firm_governance.persistence.repository import (
    GovernanceRepository,
    InMemoryGovernanceRepository,
)


def create_repository(config: Optional[Config] = None) -> GovernanceRepository:
    """Build the repository selected by FIRMGOV_STORE_TYPE."""
    config = config or get_config()
    if config.store_type == StoreType.DYNAMODB:
        from firm_governance.persistence.dynamodb import DynamoDBGovernanceRepository
        return DynamoDBGovernanceRepository(
            table_name=config.dynamodb_table,
            region=config.aws_region,
        )
    return InMemoryGovernanceRepository()


__all__ = [
    "GovernanceRepository",
    "InMemoryGovernanceRepository",
    "create_repository",
]
