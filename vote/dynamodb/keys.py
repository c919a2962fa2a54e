"""
Key layout of the single main table.

Entities are addressed by ``(PK, SK)`` strings built from a type prefix and
the natural key:

    user       PK=USER#<name>          SK=METADATA
    election   PK=ELECTION#<name>      SK=METADATA
    candidate  PK=ELECTION#<election>  SK=CANDIDATE#<name>
    voter      PK=ELECTION#<election>  SK=VOTER#<name>
    ballot     PK=ELECTION#<election>  SK=BALLOT#<voter>
    sync       PK=METADATA             SK=SYNC
    counter    PK=METADATA             SK=EVENT_COUNTER

Users are also reachable by email through ``EMAIL_INDEX``
(GSI1PK=<email>, GSI1SK=USER#<name>).
"""
from __future__ import annotations

SEPARATOR = "#"

USER_PREFIX = "USER"
ELECTION_PREFIX = "ELECTION"
CANDIDATE_PREFIX = "CANDIDATE"
VOTER_PREFIX = "VOTER"
BALLOT_PREFIX = "BALLOT"

METADATA = "METADATA"
METADATA_SK = METADATA
SYNC_SK = "SYNC"
EVENT_COUNTER_SK = "EVENT_COUNTER"

EMAIL_INDEX = "email-index"

PK = "PK"
SK = "SK"
GSI1PK = "GSI1PK"
GSI1SK = "GSI1SK"


CHILD_TYPES = (CANDIDATE_PREFIX, VOTER_PREFIX, BALLOT_PREFIX)


def prefixed(entity_type: str, value: str) -> str:
    return f"{entity_type}{SEPARATOR}{value}"


def entity_key(entity_type: str, natural_key) -> tuple[str, str]:
    """Map a natural key to its ``(PK, SK)`` address.

    Users and elections take their name; candidates, voters and ballots take
    an ``(election_name, child_name)`` pair and live in the election partition.
    """
    if entity_type in (USER_PREFIX, ELECTION_PREFIX):
        return prefixed(entity_type, natural_key), METADATA_SK
    if entity_type in CHILD_TYPES:
        election_name, child_name = natural_key
        return election_pk(election_name), prefixed(entity_type, child_name)
    raise ValueError(f"Unknown entity type: {entity_type}")


def natural_key_from_key(pk: str, sk: str):
    """Inverse of ``entity_key``."""
    grouping_key = natural_key_from_sort_key(pk)
    if sk == METADATA_SK:
        return grouping_key
    return grouping_key, natural_key_from_sort_key(sk)


def natural_key_from_sort_key(key: str) -> str:
    """Strip the type prefix; names may themselves contain the separator."""
    _, sep, natural_key = key.partition(SEPARATOR)
    if not sep:
        raise ValueError(f"Key has no type prefix: {key}")
    return natural_key


def user_pk(user_name: str) -> str:
    return prefixed(USER_PREFIX, user_name)


def election_pk(election_name: str) -> str:
    return prefixed(ELECTION_PREFIX, election_name)


def candidate_sk(candidate_name: str) -> str:
    return prefixed(CANDIDATE_PREFIX, candidate_name)


def voter_sk(voter_name: str) -> str:
    return prefixed(VOTER_PREFIX, voter_name)


def ballot_sk(voter_name: str) -> str:
    return prefixed(BALLOT_PREFIX, voter_name)


def ballot_key(election_name: str, voter_name: str) -> dict[str, str]:
    """Primary key of a ballot item."""
    pk, sk = entity_key(BALLOT_PREFIX, (election_name, voter_name))
    return {PK: pk, SK: sk}


def prefix_of(entity_type: str) -> str:
    return f"{entity_type}{SEPARATOR}"
