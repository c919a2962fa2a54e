"""
Single-table DynamoDB backend.

The projection lives in one table addressed by ``PK``/``SK`` strings (see
``vote.dynamodb.keys``); events live in a second table keyed by a numeric
``event_id`` handed out by an atomic counter item. Times are stored as epoch
milliseconds and rankings as a JSON string.
"""
from __future__ import annotations

from datetime import datetime
import json
import logging
from typing import Any, Iterator, Optional, Sequence

from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from vote.core.errors import NotFoundError
from vote.domain.events import DomainEvent, EventEnvelope, decode_event, encode_event
from vote.domain.models import (
    BallotSummary,
    ElectionSummary,
    ElectionUpdates,
    Permission,
    Ranking,
    RevealedBallot,
    Role,
    User,
    VoterElectionCandidateRank,
    flatten_rankings,
    from_epoch_millis,
    list_permissions,
    rankings_from_list,
    rankings_to_list,
    role_has_permission,
    to_epoch_millis,
)
from vote.dynamodb import keys
from vote.repositories.interfaces import CommandModel, EventLog, QueryModel

logger = logging.getLogger(__name__)

TABLE_COUNT = 2

ENTITY_USER = "USER"
ENTITY_ELECTION = "ELECTION"
ENTITY_CANDIDATE = "CANDIDATE"
ENTITY_VOTER = "VOTER"
ENTITY_BALLOT = "BALLOT"


def _paginate(operation, **kwargs) -> Iterator[dict[str, Any]]:
    while True:
        response = operation(**kwargs)
        yield from response.get("Items", [])
        last_key = response.get("LastEvaluatedKey")
        if not last_key:
            return
        kwargs["ExclusiveStartKey"] = last_key


def _count(operation, **kwargs) -> int:
    total = 0
    kwargs["Select"] = "COUNT"
    while True:
        response = operation(**kwargs)
        total += int(response.get("Count", 0))
        last_key = response.get("LastEvaluatedKey")
        if not last_key:
            return total
        kwargs["ExclusiveStartKey"] = last_key


def _is_conditional_failure(exc: ClientError) -> bool:
    return exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"


def _millis_or_none(value: Any) -> Optional[datetime]:
    return None if value is None else from_epoch_millis(int(value))


def _rankings_json(rankings: Sequence[Ranking]) -> str:
    return json.dumps(rankings_to_list(list(rankings)), ensure_ascii=False)


def _user_item(name: str, email: str, salt: str, hash: str, role: str) -> dict[str, Any]:
    return {
        keys.PK: keys.user_pk(name),
        keys.SK: keys.METADATA_SK,
        keys.GSI1PK: email,
        keys.GSI1SK: keys.user_pk(name),
        "entity_type": ENTITY_USER,
        "name": name,
        "email": email,
        "salt": salt,
        "hash": hash,
        "role": role,
    }


def _to_user(item: dict[str, Any]) -> User:
    return User(
        name=item["name"],
        email=item["email"],
        salt=item["salt"],
        hash=item["hash"],
        role=Role[item["role"]],
    )


def _to_election_summary(item: dict[str, Any]) -> ElectionSummary:
    return ElectionSummary(
        owner_name=item["owner_name"],
        election_name=item["election_name"],
        secret_ballot=bool(item.get("secret_ballot", True)),
        no_voting_before=_millis_or_none(item.get("no_voting_before")),
        no_voting_after=_millis_or_none(item.get("no_voting_after")),
        allow_edit=bool(item.get("allow_edit", True)),
        allow_vote=bool(item.get("allow_vote", False)),
    )


def _to_revealed_ballot(item: dict[str, Any]) -> RevealedBallot:
    return RevealedBallot(
        voter_name=item["voter_name"],
        election_name=item["election_name"],
        confirmation=item["confirmation"],
        when_cast=from_epoch_millis(int(item["when_cast"])),
        rankings=rankings_from_list(json.loads(item.get("rankings") or "[]")),
    )


class DynamoDBEventLog(EventLog):
    def __init__(self, resource, main_table: str, event_table: str) -> None:
        self.main = resource.Table(main_table)
        self.events = resource.Table(event_table)

    def _next_event_id(self) -> int:
        response = self.main.update_item(
            Key={keys.PK: keys.METADATA, keys.SK: keys.EVENT_COUNTER_SK},
            UpdateExpression="ADD next_event_id :inc",
            ExpressionAttributeValues={":inc": 1},
            ReturnValues="UPDATED_NEW",
        )
        return int(response["Attributes"]["next_event_id"])

    def append_event(self, authority: str, when_happened: datetime, event: DomainEvent) -> None:
        event_type, event_data = encode_event(event)
        event_id = self._next_event_id()
        self.events.put_item(
            Item={
                "event_id": event_id,
                "authority": authority,
                "event_type": event_type,
                "event_data": event_data,
                "created_at": to_epoch_millis(when_happened),
            }
        )

    def events_to_sync(self, last_event_synced: int) -> list[EventEnvelope]:
        items = _paginate(self.events.scan, FilterExpression=Attr("event_id").gt(last_event_synced))
        envelopes = [
            EventEnvelope(
                event_id=int(item["event_id"]),
                when_happened=from_epoch_millis(int(item["created_at"])),
                authority=item["authority"],
                event=decode_event(item["event_type"], item["event_data"]),
            )
            for item in items
        ]
        return sorted(envelopes, key=lambda envelope: envelope.event_id)

    def event_count(self) -> int:
        return _count(self.events.scan)


class DynamoDBCommandModel(CommandModel):
    def __init__(self, resource, main_table: str) -> None:
        self.table = resource.Table(main_table)

    # -------------------------- sync state --------------------------
    def set_last_synced(self, last_synced: int) -> None:
        self.table.put_item(Item={keys.PK: keys.METADATA, keys.SK: keys.SYNC_SK, "last_synced": last_synced})

    def initialize_last_synced(self, last_synced: int) -> None:
        try:
            self.table.put_item(
                Item={keys.PK: keys.METADATA, keys.SK: keys.SYNC_SK, "last_synced": last_synced},
                ConditionExpression=Attr(keys.PK).not_exists(),
            )
        except ClientError as exc:
            if not _is_conditional_failure(exc):
                raise

    # -------------------------- users --------------------------
    def create_user(self, authority: str, user_name: str, email: str, salt: str, hash: str, role: Role) -> None:
        self.table.put_item(Item=_user_item(user_name, email, salt, hash, role.name))

    def set_role(self, authority: str, user_name: str, role: Role) -> None:
        self._update_user(user_name, {"role": role.name})

    def set_password(self, authority: str, user_name: str, salt: str, hash: str) -> None:
        self._update_user(user_name, {"salt": salt, "hash": hash})

    def set_email(self, authority: str, user_name: str, email: str) -> None:
        self._update_user(user_name, {"email": email, keys.GSI1PK: email})

    def _update_user(self, user_name: str, values: dict[str, Any]) -> None:
        names = {f"#f{index}": field for index, field in enumerate(values)}
        expression = "SET " + ", ".join(f"{name} = :v{index}" for index, name in enumerate(names))
        try:
            self.table.update_item(
                Key={keys.PK: keys.user_pk(user_name), keys.SK: keys.METADATA_SK},
                UpdateExpression=expression,
                ExpressionAttributeNames=names,
                ExpressionAttributeValues={f":v{index}": value for index, value in enumerate(values.values())},
                ConditionExpression=Attr(keys.PK).exists(),
            )
        except ClientError as exc:
            if not _is_conditional_failure(exc):
                raise
            logger.debug("Skipped update of missing user %s", user_name)

    def remove_user(self, authority: str, user_name: str) -> None:
        self.table.delete_item(Key={keys.PK: keys.user_pk(user_name), keys.SK: keys.METADATA_SK})
        voter_items = list(
            _paginate(
                self.table.scan,
                FilterExpression=Attr("entity_type").eq(ENTITY_VOTER) & Attr("voter_name").eq(user_name),
            )
        )
        with self.table.batch_writer() as batch:
            for item in voter_items:
                batch.delete_item(Key={keys.PK: item[keys.PK], keys.SK: item[keys.SK]})

    def set_user_name(self, authority: str, old_user_name: str, new_user_name: str) -> None:
        if old_user_name == new_user_name:
            return
        # Not atomic: each step writes the new key before deleting the old one.
        steps = (
            self._rename_user_record,
            self._rename_election_owners,
            self._rename_eligible_voters,
            self._rename_ballots,
        )
        for step in steps:
            step(old_user_name, new_user_name)
        logger.info("Renamed user %s to %s", old_user_name, new_user_name)

    def _rename_user_record(self, old_user_name: str, new_user_name: str) -> None:
        old_key = {keys.PK: keys.user_pk(old_user_name), keys.SK: keys.METADATA_SK}
        item = self.table.get_item(Key=old_key).get("Item")
        if item is None:
            return
        self.table.put_item(
            Item=_user_item(new_user_name, item["email"], item["salt"], item["hash"], item["role"])
        )
        self.table.delete_item(Key=old_key)

    def _rename_election_owners(self, old_user_name: str, new_user_name: str) -> None:
        elections = _paginate(
            self.table.scan,
            FilterExpression=Attr("entity_type").eq(ENTITY_ELECTION) & Attr("owner_name").eq(old_user_name),
        )
        for item in elections:
            self.table.update_item(
                Key={keys.PK: item[keys.PK], keys.SK: item[keys.SK]},
                UpdateExpression="SET owner_name = :owner",
                ExpressionAttributeValues={":owner": new_user_name},
            )

    def _rename_eligible_voters(self, old_user_name: str, new_user_name: str) -> None:
        self._move_election_children(ENTITY_VOTER, keys.voter_sk, old_user_name, new_user_name)

    def _rename_ballots(self, old_user_name: str, new_user_name: str) -> None:
        self._move_election_children(ENTITY_BALLOT, keys.ballot_sk, old_user_name, new_user_name)

    def _move_election_children(self, entity_type: str, sort_key, old_user_name: str, new_user_name: str) -> None:
        items = list(
            _paginate(
                self.table.scan,
                FilterExpression=Attr("entity_type").eq(entity_type) & Attr("voter_name").eq(old_user_name),
            )
        )
        for item in items:
            moved = dict(item, voter_name=new_user_name)
            moved[keys.SK] = sort_key(new_user_name)
            self.table.put_item(Item=moved)
            self.table.delete_item(Key={keys.PK: item[keys.PK], keys.SK: item[keys.SK]})

    # -------------------------- elections --------------------------
    def add_election(self, authority: str, owner: str, election_name: str) -> None:
        self.table.put_item(
            Item={
                keys.PK: keys.election_pk(election_name),
                keys.SK: keys.METADATA_SK,
                "entity_type": ENTITY_ELECTION,
                "election_name": election_name,
                "owner_name": owner,
                "secret_ballot": True,
                "allow_edit": True,
                "allow_vote": False,
            }
        )

    def update_election(self, authority: str, election_name: str, updates: ElectionUpdates) -> None:
        if updates.is_empty():
            return
        metadata_key = {keys.PK: keys.election_pk(election_name), keys.SK: keys.METADATA_SK}
        item = self.table.get_item(Key=metadata_key).get("Item")
        if item is None:
            return
        updated = self._apply_updates(item, updates)
        new_name = updated["election_name"]
        if new_name == election_name:
            self.table.put_item(Item=updated)
            return
        self._move_election(election_name, new_name, updated)

    @staticmethod
    def _apply_updates(item: dict[str, Any], updates: ElectionUpdates) -> dict[str, Any]:
        updated = dict(item)
        if updates.new_election_name is not None:
            updated["election_name"] = updates.new_election_name
        if updates.secret_ballot is not None:
            updated["secret_ballot"] = updates.secret_ballot
        if updates.clear_no_voting_before:
            updated.pop("no_voting_before", None)
        elif updates.no_voting_before is not None:
            updated["no_voting_before"] = to_epoch_millis(updates.no_voting_before)
        if updates.clear_no_voting_after:
            updated.pop("no_voting_after", None)
        elif updates.no_voting_after is not None:
            updated["no_voting_after"] = to_epoch_millis(updates.no_voting_after)
        if updates.allow_vote is not None:
            updated["allow_vote"] = updates.allow_vote
        if updates.allow_edit is not None:
            updated["allow_edit"] = updates.allow_edit
        return updated

    def _move_election(self, old_name: str, new_name: str, metadata: dict[str, Any]) -> None:
        """Copy the whole partition under the new key (metadata first), then drop the old one."""
        old_pk = keys.election_pk(old_name)
        new_pk = keys.election_pk(new_name)
        children = [
            item
            for item in _paginate(self.table.query, KeyConditionExpression=Key(keys.PK).eq(old_pk))
            if item[keys.SK] != keys.METADATA_SK
        ]
        self.table.put_item(Item=dict(metadata, **{keys.PK: new_pk}))
        with self.table.batch_writer() as batch:
            for item in children:
                batch.put_item(Item=dict(item, election_name=new_name, **{keys.PK: new_pk}))
        with self.table.batch_writer() as batch:
            for item in children:
                batch.delete_item(Key={keys.PK: old_pk, keys.SK: item[keys.SK]})
            batch.delete_item(Key={keys.PK: old_pk, keys.SK: keys.METADATA_SK})
        logger.info("Renamed election %s to %s", old_name, new_name)

    def delete_election(self, authority: str, election_name: str) -> None:
        pk = keys.election_pk(election_name)
        items = list(_paginate(self.table.query, KeyConditionExpression=Key(keys.PK).eq(pk)))
        with self.table.batch_writer() as batch:
            for item in items:
                batch.delete_item(Key={keys.PK: item[keys.PK], keys.SK: item[keys.SK]})

    # -------------------------- candidates / voters --------------------------
    def add_candidates(self, authority: str, election_name: str, candidate_names: Sequence[str]) -> None:
        pk = keys.election_pk(election_name)
        with self.table.batch_writer(overwrite_by_pkeys=[keys.PK, keys.SK]) as batch:
            for candidate_name in candidate_names:
                batch.put_item(
                    Item={
                        keys.PK: pk,
                        keys.SK: keys.candidate_sk(candidate_name),
                        "entity_type": ENTITY_CANDIDATE,
                        "election_name": election_name,
                        "candidate_name": candidate_name,
                    }
                )

    def remove_candidates(self, authority: str, election_name: str, candidate_names: Sequence[str]) -> None:
        pk = keys.election_pk(election_name)
        with self.table.batch_writer(overwrite_by_pkeys=[keys.PK, keys.SK]) as batch:
            for candidate_name in candidate_names:
                batch.delete_item(Key={keys.PK: pk, keys.SK: keys.candidate_sk(candidate_name)})

    def add_voters(self, authority: str, election_name: str, voter_names: Sequence[str]) -> None:
        pk = keys.election_pk(election_name)
        with self.table.batch_writer(overwrite_by_pkeys=[keys.PK, keys.SK]) as batch:
            for voter_name in voter_names:
                batch.put_item(
                    Item={
                        keys.PK: pk,
                        keys.SK: keys.voter_sk(voter_name),
                        "entity_type": ENTITY_VOTER,
                        "election_name": election_name,
                        "voter_name": voter_name,
                    }
                )

    def remove_voters(self, authority: str, election_name: str, voter_names: Sequence[str]) -> None:
        pk = keys.election_pk(election_name)
        with self.table.batch_writer(overwrite_by_pkeys=[keys.PK, keys.SK]) as batch:
            for voter_name in voter_names:
                batch.delete_item(Key={keys.PK: pk, keys.SK: keys.voter_sk(voter_name)})

    # -------------------------- ballots --------------------------
    def cast_ballot(
        self,
        authority: str,
        voter_name: str,
        election_name: str,
        rankings: Sequence[Ranking],
        confirmation: str,
        now: datetime,
    ) -> None:
        item = dict(
            keys.ballot_key(election_name, voter_name),
            entity_type=ENTITY_BALLOT,
            election_name=election_name,
            voter_name=voter_name,
            rankings=_rankings_json(rankings),
            confirmation=confirmation,
            when_cast=to_epoch_millis(now),
        )
        self.table.put_item(Item=item)

    def set_rankings(
        self, authority: str, confirmation: str, election_name: str, rankings: Sequence[Ranking]
    ) -> None:
        ballots = list(
            _paginate(
                self.table.query,
                KeyConditionExpression=Key(keys.PK).eq(keys.election_pk(election_name))
                & Key(keys.SK).begins_with(keys.prefix_of(keys.BALLOT_PREFIX)),
                FilterExpression=Attr("confirmation").eq(confirmation),
            )
        )
        for item in ballots:
            self.table.update_item(
                Key={keys.PK: item[keys.PK], keys.SK: item[keys.SK]},
                UpdateExpression="SET rankings = :rankings",
                ExpressionAttributeValues={":rankings": _rankings_json(rankings)},
            )

    def update_when_cast(self, authority: str, confirmation: str, now: datetime) -> None:
        ballots = list(
            _paginate(
                self.table.scan,
                FilterExpression=Attr("entity_type").eq(ENTITY_BALLOT) & Attr("confirmation").eq(confirmation),
            )
        )
        for item in ballots:
            self.table.update_item(
                Key={keys.PK: item[keys.PK], keys.SK: item[keys.SK]},
                UpdateExpression="SET when_cast = :when_cast",
                ExpressionAttributeValues={":when_cast": to_epoch_millis(now)},
            )


class DynamoDBQueryModel(QueryModel):
    def __init__(self, resource, main_table: str) -> None:
        self.table = resource.Table(main_table)

    def _scan_entities(self, entity_type: str) -> Iterator[dict[str, Any]]:
        return _paginate(self.table.scan, FilterExpression=Attr("entity_type").eq(entity_type))

    def _query_children(self, election_name: str, prefix: str, **kwargs) -> Iterator[dict[str, Any]]:
        return _paginate(
            self.table.query,
            KeyConditionExpression=Key(keys.PK).eq(keys.election_pk(election_name))
            & Key(keys.SK).begins_with(keys.prefix_of(prefix)),
            **kwargs,
        )

    def _count_children(self, election_name: str, prefix: str) -> int:
        return _count(
            self.table.query,
            KeyConditionExpression=Key(keys.PK).eq(keys.election_pk(election_name))
            & Key(keys.SK).begins_with(keys.prefix_of(prefix)),
        )

    # -------------------------- users --------------------------
    def find_user_by_name(self, name: str) -> User:
        user = self.search_user_by_name(name)
        if user is None:
            raise NotFoundError("User", name)
        return user

    def find_user_by_email(self, email: str) -> User:
        user = self.search_user_by_email(email)
        if user is None:
            raise NotFoundError("User with email", email)
        return user

    def search_user_by_name(self, name: str) -> Optional[User]:
        item = self.table.get_item(Key={keys.PK: keys.user_pk(name), keys.SK: keys.METADATA_SK}).get("Item")
        return _to_user(item) if item else None

    def search_user_by_email(self, email: str) -> Optional[User]:
        response = self.table.query(
            IndexName=keys.EMAIL_INDEX,
            KeyConditionExpression=Key(keys.GSI1PK).eq(email),
        )
        items = response.get("Items", [])
        return _to_user(items[0]) if items else None

    def user_count(self) -> int:
        return _count(self.table.scan, FilterExpression=Attr("entity_type").eq(ENTITY_USER))

    def list_users(self) -> list[User]:
        users = [_to_user(item) for item in self._scan_entities(ENTITY_USER)]
        return sorted(users, key=lambda user: user.name)

    def list_user_names(self) -> list[str]:
        return [user.name for user in self.list_users()]

    # -------------------------- elections --------------------------
    def election_count(self) -> int:
        return _count(self.table.scan, FilterExpression=Attr("entity_type").eq(ENTITY_ELECTION))

    def list_elections(self) -> list[ElectionSummary]:
        elections = [_to_election_summary(item) for item in self._scan_entities(ENTITY_ELECTION)]
        return sorted(elections, key=lambda election: election.election_name)

    def search_election_by_name(self, name: str) -> Optional[ElectionSummary]:
        item = self.table.get_item(Key={keys.PK: keys.election_pk(name), keys.SK: keys.METADATA_SK}).get("Item")
        return _to_election_summary(item) if item else None

    def find_election_by_name(self, name: str) -> ElectionSummary:
        election = self.search_election_by_name(name)
        if election is None:
            raise NotFoundError("Election", name)
        return election

    def candidate_count(self, election_name: str) -> int:
        return self._count_children(election_name, keys.CANDIDATE_PREFIX)

    def voter_count(self, election_name: str) -> int:
        return self._count_children(election_name, keys.VOTER_PREFIX)

    def list_candidates(self, election_name: str) -> list[str]:
        return sorted(item["candidate_name"] for item in self._query_children(election_name, keys.CANDIDATE_PREFIX))

    def list_voters_for_election(self, election_name: str) -> list[str]:
        return sorted(item["voter_name"] for item in self._query_children(election_name, keys.VOTER_PREFIX))

    # -------------------------- ballots --------------------------
    def _get_ballot(self, voter_name: str, election_name: str) -> Optional[RevealedBallot]:
        item = self.table.get_item(Key=keys.ballot_key(election_name, voter_name)).get("Item")
        return _to_revealed_ballot(item) if item else None

    def list_rankings(self, voter_name: str, election_name: str) -> list[Ranking]:
        ballot = self._get_ballot(voter_name, election_name)
        return list(ballot.rankings) if ballot else []

    def list_election_rankings(self, election_name: str) -> list[VoterElectionCandidateRank]:
        return flatten_rankings(self.list_ballots(election_name))

    def search_ballot(self, voter_name: str, election_name: str) -> Optional[BallotSummary]:
        ballot = self._get_ballot(voter_name, election_name)
        return ballot.to_summary() if ballot else None

    def list_ballots(self, election_name: str) -> list[RevealedBallot]:
        ballots = [_to_revealed_ballot(item) for item in self._query_children(election_name, keys.BALLOT_PREFIX)]
        return sorted(ballots, key=lambda ballot: ballot.voter_name)

    def list_voter_names(self) -> list[str]:
        return sorted({item["voter_name"] for item in self._scan_entities(ENTITY_BALLOT)})

    # -------------------------- metadata --------------------------
    def table_count(self) -> int:
        return TABLE_COUNT

    def role_has_permission(self, role: Role, permission: Permission) -> bool:
        return role_has_permission(role, permission)

    def list_permissions(self, role: Role) -> list[Permission]:
        return list_permissions(role)

    def last_synced(self) -> Optional[int]:
        item = self.table.get_item(Key={keys.PK: keys.METADATA, keys.SK: keys.SYNC_SK}).get("Item")
        return int(item["last_synced"]) if item else None
