"""
Configuration helpers for the vote persistence core.

Settings are read once from environment variables so that repositories and
services never fetch os.environ directly.
"""

from dataclasses import dataclass
from functools import lru_cache
import os

BACKENDS = ("memory", "sql", "dynamodb")


@dataclass(frozen=True)
class Settings:
    """Typed view of environment variables."""

    app_env: str
    backend: str
    database_url: str
    sql_echo: bool
    dynamodb_endpoint_url: str
    aws_region: str
    dynamodb_main_table: str
    dynamodb_event_table: str
    dynamodb_create_tables: bool
    log_level: str


@lru_cache
def get_settings() -> Settings:
    """Read the current environment and build a Settings instance."""
    def _bool(value: str | None, default: bool = False) -> bool:
        if value is None:
            return default
        return value.strip().lower() in {"1", "true", "yes", "on"}

    return Settings(
        app_env=(os.getenv("APP_ENV") or "dev").lower(),
        backend=(os.getenv("VOTE_BACKEND") or "memory").strip().lower(),
        database_url=os.getenv("DATABASE_URL", ""),
        sql_echo=_bool(os.getenv("SQL_ECHO"), False),
        dynamodb_endpoint_url=os.getenv("DYNAMODB_ENDPOINT_URL", ""),
        aws_region=os.getenv("AWS_REGION", "us-east-1"),
        dynamodb_main_table=os.getenv("DYNAMODB_MAIN_TABLE", "vote_data"),
        dynamodb_event_table=os.getenv("DYNAMODB_EVENT_TABLE", "vote_event_log"),
        dynamodb_create_tables=_bool(os.getenv("DYNAMODB_CREATE_TABLES"), False),
        log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
    )
