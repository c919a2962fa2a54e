"""Create or drop the main table and the event table."""
from __future__ import annotations

import logging

from botocore.exceptions import ClientError

from vote.core.config import get_settings

from . import keys
from .session import get_dynamodb

logger = logging.getLogger(__name__)


def _existing_tables(resource) -> set[str]:
    return {table.name for table in resource.tables.all()}


def create_tables(resource, main_table: str, event_table: str) -> None:
    existing = _existing_tables(resource)
    if main_table not in existing:
        resource.create_table(
            TableName=main_table,
            KeySchema=[
                {"AttributeName": keys.PK, "KeyType": "HASH"},
                {"AttributeName": keys.SK, "KeyType": "RANGE"},
            ],
            AttributeDefinitions=[
                {"AttributeName": keys.PK, "AttributeType": "S"},
                {"AttributeName": keys.SK, "AttributeType": "S"},
                {"AttributeName": keys.GSI1PK, "AttributeType": "S"},
                {"AttributeName": keys.GSI1SK, "AttributeType": "S"},
            ],
            GlobalSecondaryIndexes=[
                {
                    "IndexName": keys.EMAIL_INDEX,
                    "KeySchema": [
                        {"AttributeName": keys.GSI1PK, "KeyType": "HASH"},
                        {"AttributeName": keys.GSI1SK, "KeyType": "RANGE"},
                    ],
                    "Projection": {"ProjectionType": "ALL"},
                }
            ],
            BillingMode="PAY_PER_REQUEST",
        )
        resource.Table(main_table).wait_until_exists()
        logger.info("Created table %s", main_table)
    if event_table not in existing:
        resource.create_table(
            TableName=event_table,
            KeySchema=[{"AttributeName": "event_id", "KeyType": "HASH"}],
            AttributeDefinitions=[{"AttributeName": "event_id", "AttributeType": "N"}],
            BillingMode="PAY_PER_REQUEST",
        )
        resource.Table(event_table).wait_until_exists()
        logger.info("Created table %s", event_table)


def drop_tables(resource, main_table: str, event_table: str) -> None:
    existing = _existing_tables(resource)
    for name in (main_table, event_table):
        if name in existing:
            resource.Table(name).delete()
            logger.info("Deleted table %s", name)


if __name__ == "__main__":
    settings = get_settings()
    try:
        create_tables(get_dynamodb(), settings.dynamodb_main_table, settings.dynamodb_event_table)
        print("DynamoDB tables created successfully.")
    except ClientError as exc:
        raise SystemExit(f"Failed to create tables: {exc}") from exc
