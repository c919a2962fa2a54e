"""Canonical natural-key object model returned by every QueryModel."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum, IntEnum
from typing import Any, Optional


class Role(IntEnum):
    """Ordered user roles; a higher value can do everything a lower one can."""

    NO_ACCESS = 0
    OBSERVER = 1
    VOTER = 2
    USER = 3
    ADMIN = 4
    AUDITOR = 5
    OWNER = 6

    @property
    def description(self) -> str:
        return ROLE_DESCRIPTIONS[self]


ROLE_DESCRIPTIONS = {
    Role.NO_ACCESS: "Waiting for ADMIN to promote",
    Role.OBSERVER: "Can navigate the application",
    Role.VOTER: "Can vote, can do anything an OBSERVER can do",
    Role.USER: "Can create elections, can do anything a VOTER can do",
    Role.ADMIN: "Can manage users, can do anything a USER can do",
    Role.AUDITOR: "Can see secrets, can do anything a ADMIN can do",
    Role.OWNER: "Only 1 owner, can transfer OWNER to another user, can do anything AUDITOR can do",
}

PRIMARY_ROLE = Role.OWNER
SECONDARY_ROLE = Role.AUDITOR
DEFAULT_ROLE = Role.USER


class Permission(str, Enum):
    TRANSFER_OWNER = "TRANSFER_OWNER"
    VIEW_SECRETS = "VIEW_SECRETS"
    MANAGE_USERS = "MANAGE_USERS"
    USE_APPLICATION = "USE_APPLICATION"
    VOTE = "VOTE"
    VIEW_APPLICATION = "VIEW_APPLICATION"


def role_has_permission(role: Role, permission: Permission) -> bool:
    if permission is Permission.TRANSFER_OWNER:
        return role == Role.OWNER
    minimum = {
        Permission.VIEW_APPLICATION: Role.OBSERVER,
        Permission.VOTE: Role.VOTER,
        Permission.USE_APPLICATION: Role.USER,
        Permission.MANAGE_USERS: Role.ADMIN,
        Permission.VIEW_SECRETS: Role.AUDITOR,
    }[permission]
    return role >= minimum


def list_permissions(role: Role) -> list[Permission]:
    return [permission for permission in Permission if role_has_permission(role, permission)]


def to_utc(value: datetime | None) -> datetime | None:
    """Normalize datetimes read back from a backend to aware UTC.

    SQLite hands back naive datetimes for timezone-aware columns; those are
    stored as UTC, so the tzinfo is reattached rather than converted.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
MILLISECOND = timedelta(milliseconds=1)


def to_stored_time(value: datetime | None) -> datetime | None:
    """UTC truncated to whole milliseconds, the form every backend stores."""
    value = to_utc(value)
    if value is None:
        return None
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


def to_epoch_millis(value: datetime) -> int:
    return (to_utc(value) - EPOCH) // MILLISECOND


def from_epoch_millis(value: int | float) -> datetime:
    return EPOCH + int(value) * MILLISECOND


@dataclass(frozen=True)
class User:
    name: str
    email: str
    salt: str
    hash: str
    role: Role


@dataclass(frozen=True)
class Ranking:
    candidate_name: str
    rank: Optional[int]

    def to_dict(self) -> dict[str, Any]:
        return {"candidateName": self.candidate_name, "rank": self.rank}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Ranking":
        rank = data.get("rank")
        return cls(candidate_name=data["candidateName"], rank=None if rank is None else int(rank))


def rankings_to_list(rankings: list[Ranking]) -> list[dict[str, Any]]:
    return [ranking.to_dict() for ranking in rankings]


def rankings_from_list(data: list[dict[str, Any]] | None) -> list[Ranking]:
    return [Ranking.from_dict(item) for item in data or []]


@dataclass(frozen=True)
class ElectionDetail:
    owner_name: str
    election_name: str
    candidate_count: int
    voter_count: int
    secret_ballot: bool = True
    no_voting_before: Optional[datetime] = None
    no_voting_after: Optional[datetime] = None
    allow_edit: bool = True
    allow_vote: bool = False


@dataclass(frozen=True)
class ElectionSummary:
    owner_name: str
    election_name: str
    secret_ballot: bool = True
    no_voting_before: Optional[datetime] = None
    no_voting_after: Optional[datetime] = None
    allow_edit: bool = True
    allow_vote: bool = False

    def to_election_detail(self, candidate_count: int, voter_count: int) -> ElectionDetail:
        return ElectionDetail(
            owner_name=self.owner_name,
            election_name=self.election_name,
            candidate_count=candidate_count,
            voter_count=voter_count,
            secret_ballot=self.secret_ballot,
            no_voting_before=self.no_voting_before,
            no_voting_after=self.no_voting_after,
            allow_edit=self.allow_edit,
            allow_vote=self.allow_vote,
        )


@dataclass(frozen=True)
class ElectionUpdates:
    """Partial election update; ``None`` leaves a field unchanged."""

    new_election_name: Optional[str] = None
    secret_ballot: Optional[bool] = None
    clear_no_voting_before: Optional[bool] = None
    no_voting_before: Optional[datetime] = None
    clear_no_voting_after: Optional[bool] = None
    no_voting_after: Optional[datetime] = None
    allow_vote: Optional[bool] = None
    allow_edit: Optional[bool] = None

    def is_empty(self) -> bool:
        return all(
            value is None
            for value in (
                self.new_election_name,
                self.secret_ballot,
                self.clear_no_voting_before,
                self.no_voting_before,
                self.clear_no_voting_after,
                self.no_voting_after,
                self.allow_vote,
                self.allow_edit,
            )
        )

    def apply_to(self, summary: ElectionSummary) -> ElectionSummary:
        """Return ``summary`` with these updates applied (name included)."""
        changes: dict[str, Any] = {}
        if self.new_election_name is not None:
            changes["election_name"] = self.new_election_name
        if self.secret_ballot is not None:
            changes["secret_ballot"] = self.secret_ballot
        if self.clear_no_voting_before:
            changes["no_voting_before"] = None
        elif self.no_voting_before is not None:
            changes["no_voting_before"] = self.no_voting_before
        if self.clear_no_voting_after:
            changes["no_voting_after"] = None
        elif self.no_voting_after is not None:
            changes["no_voting_after"] = self.no_voting_after
        if self.allow_vote is not None:
            changes["allow_vote"] = self.allow_vote
        if self.allow_edit is not None:
            changes["allow_edit"] = self.allow_edit
        return replace(summary, **changes)


@dataclass(frozen=True)
class BallotSummary:
    voter_name: str
    election_name: str
    confirmation: str
    when_cast: datetime


@dataclass(frozen=True)
class SecretBallot:
    election_name: str
    confirmation: str
    rankings: list[Ranking] = field(default_factory=list)


@dataclass(frozen=True)
class RevealedBallot:
    voter_name: str
    election_name: str
    confirmation: str
    when_cast: datetime
    rankings: list[Ranking] = field(default_factory=list)

    def make_secret(self) -> SecretBallot:
        return SecretBallot(self.election_name, self.confirmation, list(self.rankings))

    def to_summary(self) -> BallotSummary:
        return BallotSummary(self.voter_name, self.election_name, self.confirmation, self.when_cast)


@dataclass(frozen=True)
class VoterElectionCandidateRank:
    voter: str
    election: str
    candidate: str
    rank: int


def flatten_rankings(ballots: list[RevealedBallot]) -> list[VoterElectionCandidateRank]:
    """Explode ballots into one row per ranked candidate; unranked entries are skipped."""
    rows = []
    for ballot in ballots:
        for ranking in ballot.rankings:
            if ranking.rank is None:
                continue
            rows.append(
                VoterElectionCandidateRank(
                    voter=ballot.voter_name,
                    election=ballot.election_name,
                    candidate=ranking.candidate_name,
                    rank=ranking.rank,
                )
            )
    return rows
