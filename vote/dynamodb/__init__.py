"""Single-table DynamoDB helpers (key layout, table schema, resource)."""

from .keys import (
    BALLOT_PREFIX,
    CANDIDATE_PREFIX,
    ELECTION_PREFIX,
    EMAIL_INDEX,
    USER_PREFIX,
    VOTER_PREFIX,
)
from .session import get_dynamodb

__all__ = [
    "BALLOT_PREFIX",
    "CANDIDATE_PREFIX",
    "ELECTION_PREFIX",
    "EMAIL_INDEX",
    "USER_PREFIX",
    "VOTER_PREFIX",
    "get_dynamodb",
]
