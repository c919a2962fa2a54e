"""
Shared fixtures: one repository set per backend plus a ``repos`` fixture
parametrized over all of them.
"""
from __future__ import annotations

from datetime import datetime, timezone
import sys
from pathlib import Path

import boto3
import pytest
from moto import mock_aws

# Make the vote package importable when running tests from a checkout
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from vote.core import config as core_config
from vote.db import models
from vote.db import session as db_session
from vote.dynamodb import session as dynamodb_session
from vote.dynamodb.schema import create_tables
from vote.repositories.dynamodb_repository import DynamoDBCommandModel, DynamoDBEventLog, DynamoDBQueryModel
from vote.repositories.interfaces import RepositorySet
from vote.repositories.memory_repository import (
    InMemoryCommandModel,
    InMemoryData,
    InMemoryEventLog,
    InMemoryQueryModel,
)
from vote.repositories.sql_repository import SQLCommandModel, SQLEventLog, SQLQueryModel

BACKEND_NAMES = ["memory", "sql", "dynamodb"]

MAIN_TABLE = "vote_data"
EVENT_TABLE = "vote_event_log"


def utc(*args) -> datetime:
    """Aware UTC datetime; values with whole milliseconds read back unchanged."""
    return datetime(*args, tzinfo=timezone.utc)


def _clear_caches() -> None:
    core_config.get_settings.cache_clear()
    db_session.get_engine.cache_clear()
    db_session._get_sessionmaker.cache_clear()  # type: ignore[attr-defined]
    dynamodb_session.get_dynamodb.cache_clear()


@pytest.fixture()
def temp_db(tmp_path, monkeypatch):
    """Point DATABASE_URL at a throwaway SQLite file and rebuild the schema."""
    db_file = tmp_path / "test.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db_file}")
    _clear_caches()

    engine = db_session.get_engine()
    models.Base.metadata.drop_all(bind=engine)
    models.Base.metadata.create_all(bind=engine)

    yield db_file

    models.Base.metadata.drop_all(bind=engine)
    engine.dispose()
    _clear_caches()


@pytest.fixture()
def aws_credentials(monkeypatch):
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture()
def dynamodb_resource(aws_credentials):
    with mock_aws():
        resource = boto3.resource("dynamodb", region_name="us-east-1")
        create_tables(resource, MAIN_TABLE, EVENT_TABLE)
        yield resource


@pytest.fixture()
def memory_repos() -> RepositorySet:
    data = InMemoryData()
    return RepositorySet(InMemoryEventLog(), InMemoryCommandModel(data), InMemoryQueryModel(data))


@pytest.fixture()
def sql_repos(temp_db) -> RepositorySet:
    return RepositorySet(SQLEventLog(), SQLCommandModel(), SQLQueryModel())


@pytest.fixture()
def dynamodb_repos(dynamodb_resource) -> RepositorySet:
    return RepositorySet(
        DynamoDBEventLog(dynamodb_resource, MAIN_TABLE, EVENT_TABLE),
        DynamoDBCommandModel(dynamodb_resource, MAIN_TABLE),
        DynamoDBQueryModel(dynamodb_resource, MAIN_TABLE),
    )


@pytest.fixture(params=BACKEND_NAMES)
def repos(request) -> RepositorySet:
    return request.getfixturevalue(f"{request.param}_repos")
