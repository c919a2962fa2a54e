"""boto3 resource factory for the DynamoDB backend."""
from __future__ import annotations

from functools import lru_cache

import boto3

from vote.core.config import get_settings


@lru_cache
def get_dynamodb():
    settings = get_settings()
    kwargs = {"region_name": settings.aws_region}
    if settings.dynamodb_endpoint_url:
        kwargs["endpoint_url"] = settings.dynamodb_endpoint_url
    return boto3.resource("dynamodb", **kwargs)
