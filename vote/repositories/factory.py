"""Build the repository set for the configured backend."""
from __future__ import annotations

import logging
from typing import Optional

from vote.core.config import BACKENDS, Settings, get_settings
from vote.repositories.interfaces import RepositorySet

logger = logging.getLogger(__name__)


def create_repositories(settings: Optional[Settings] = None) -> RepositorySet:
    """Return event log, command model and query model sharing one store.

    Backend modules are imported lazily so the memory backend needs neither
    SQLAlchemy nor boto3 at import time.
    """
    settings = settings or get_settings()
    backend = settings.backend
    if backend not in BACKENDS:
        raise ValueError(f"Unknown backend {backend!r}; expected one of {', '.join(BACKENDS)}")

    if backend == "memory":
        from vote.repositories.memory_repository import (
            InMemoryCommandModel,
            InMemoryData,
            InMemoryEventLog,
            InMemoryQueryModel,
        )

        data = InMemoryData()
        repositories = RepositorySet(InMemoryEventLog(), InMemoryCommandModel(data), InMemoryQueryModel(data))
    elif backend == "sql":
        from vote.repositories.sql_repository import SQLCommandModel, SQLEventLog, SQLQueryModel

        repositories = RepositorySet(SQLEventLog(), SQLCommandModel(), SQLQueryModel())
    else:
        from vote.dynamodb.schema import create_tables
        from vote.dynamodb.session import get_dynamodb
        from vote.repositories.dynamodb_repository import (
            DynamoDBCommandModel,
            DynamoDBEventLog,
            DynamoDBQueryModel,
        )

        resource = get_dynamodb()
        main_table = settings.dynamodb_main_table
        event_table = settings.dynamodb_event_table
        if settings.dynamodb_create_tables:
            create_tables(resource, main_table, event_table)
        repositories = RepositorySet(
            DynamoDBEventLog(resource, main_table, event_table),
            DynamoDBCommandModel(resource, main_table),
            DynamoDBQueryModel(resource, main_table),
        )

    logger.info("Using %s persistence backend", backend)
    return repositories
