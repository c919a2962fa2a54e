from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
import logging

import pytest

from vote.core import config as core_config
from vote.core.logging import configure_logging
from vote.db import session as db_session
from vote.domain.events import UserRemoved
from vote.domain.models import DEFAULT_ROLE
from vote.dynamodb import session as dynamodb_session
from vote.repositories import create_repositories
from vote.repositories.dynamodb_repository import DynamoDBQueryModel
from vote.repositories.memory_repository import InMemoryQueryModel
from vote.repositories.sql_repository import SQLQueryModel


@pytest.fixture()
def fresh_settings(monkeypatch):
    for name in (
        "VOTE_BACKEND",
        "DATABASE_URL",
        "DYNAMODB_ENDPOINT_URL",
        "DYNAMODB_CREATE_TABLES",
        "DYNAMODB_MAIN_TABLE",
        "DYNAMODB_EVENT_TABLE",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    core_config.get_settings.cache_clear()
    db_session.get_engine.cache_clear()
    db_session._get_sessionmaker.cache_clear()  # type: ignore[attr-defined]
    dynamodb_session.get_dynamodb.cache_clear()
    yield monkeypatch
    core_config.get_settings.cache_clear()
    db_session.get_engine.cache_clear()
    db_session._get_sessionmaker.cache_clear()  # type: ignore[attr-defined]
    dynamodb_session.get_dynamodb.cache_clear()


def test_defaults(fresh_settings):
    settings = core_config.get_settings()
    assert settings.backend == "memory"
    assert settings.dynamodb_main_table == "vote_data"
    assert settings.dynamodb_event_table == "vote_event_log"
    assert settings.aws_region
    assert settings.dynamodb_create_tables is False
    assert settings.log_level == "INFO"


def test_env_overrides(fresh_settings):
    fresh_settings.setenv("VOTE_BACKEND", " SQL ")
    fresh_settings.setenv("DYNAMODB_CREATE_TABLES", "yes")
    fresh_settings.setenv("LOG_LEVEL", "debug")
    settings = core_config.get_settings()
    assert settings.backend == "sql"
    assert settings.dynamodb_create_tables is True
    assert settings.log_level == "DEBUG"


def test_memory_backend_by_default(fresh_settings):
    repos = create_repositories()
    assert isinstance(repos.query_model, InMemoryQueryModel)
    repos.command_model.create_user("admin", "alice", "a@example.com", "s", "h", DEFAULT_ROLE)
    assert repos.query_model.user_count() == 1


def test_unknown_backend_rejected(fresh_settings):
    settings = replace(core_config.get_settings(), backend="cassandra")
    with pytest.raises(ValueError, match="Unknown backend"):
        create_repositories(settings)


def test_sql_backend_requires_database_url(fresh_settings):
    fresh_settings.setenv("VOTE_BACKEND", "sql")
    repos = create_repositories()
    assert isinstance(repos.query_model, SQLQueryModel)
    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        repos.query_model.user_count()


def test_sql_backend_with_database(temp_db, monkeypatch):
    monkeypatch.setenv("VOTE_BACKEND", "sql")
    core_config.get_settings.cache_clear()
    repos = create_repositories()
    repos.event_log.append_event("admin", datetime.now(timezone.utc), UserRemoved("ghost"))
    assert repos.event_log.event_count() == 1


def test_dynamodb_backend_creates_tables(fresh_settings, aws_credentials):
    from moto import mock_aws

    fresh_settings.setenv("VOTE_BACKEND", "dynamodb")
    fresh_settings.setenv("DYNAMODB_CREATE_TABLES", "true")
    fresh_settings.setenv("DYNAMODB_MAIN_TABLE", "main_test")
    fresh_settings.setenv("DYNAMODB_EVENT_TABLE", "events_test")
    with mock_aws():
        repos = create_repositories()
        assert isinstance(repos.query_model, DynamoDBQueryModel)
        repos.command_model.add_election("admin", "alice", "Pizza")
        assert repos.query_model.election_count() == 1
        tables = {table.name for table in dynamodb_session.get_dynamodb().tables.all()}
        assert tables == {"main_test", "events_test"}


def test_configure_logging_replaces_handler():
    configure_logging("DEBUG")
    configure_logging("WARNING")
    logger = logging.getLogger("vote")
    assert len(logger.handlers) == 1
    assert logger.level == logging.WARNING
