"""
Domain events stored in the append-only event log.

Every event class carries an explicit ``event_type`` discriminator that is
written next to the payload. Decoding dispatches through ``EVENT_TYPES``; the
class name is never used as the wire name.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import json
from typing import Any, ClassVar, Optional

from .models import Ranking, Role, rankings_from_list, rankings_to_list, to_utc


def _dt_to_wire(value: datetime | None) -> str | None:
    return None if value is None else to_utc(value).isoformat()


def _dt_from_wire(value: str | None) -> datetime | None:
    return None if value is None else to_utc(datetime.fromisoformat(value))


@dataclass(frozen=True)
class DomainEvent:
    event_type: ClassVar[str] = ""

    def to_payload(self) -> dict[str, Any]:
        raise NotImplementedError

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "DomainEvent":
        raise NotImplementedError


# -------------------------- users --------------------------
@dataclass(frozen=True)
class UserRegistered(DomainEvent):
    event_type: ClassVar[str] = "UserRegistered"

    name: str
    email: str
    salt: str
    hash: str
    role: Role

    def to_payload(self) -> dict[str, Any]:
        return {"name": self.name, "email": self.email, "salt": self.salt, "hash": self.hash, "role": self.role.name}

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "UserRegistered":
        return cls(data["name"], data["email"], data["salt"], data["hash"], Role[data["role"]])


@dataclass(frozen=True)
class UserRoleChanged(DomainEvent):
    event_type: ClassVar[str] = "UserRoleChanged"

    user_name: str
    new_role: Role

    def to_payload(self) -> dict[str, Any]:
        return {"userName": self.user_name, "newRole": self.new_role.name}

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "UserRoleChanged":
        return cls(data["userName"], Role[data["newRole"]])


@dataclass(frozen=True)
class UserRemoved(DomainEvent):
    event_type: ClassVar[str] = "UserRemoved"

    user_name: str

    def to_payload(self) -> dict[str, Any]:
        return {"userName": self.user_name}

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "UserRemoved":
        return cls(data["userName"])


@dataclass(frozen=True)
class UserPasswordChanged(DomainEvent):
    event_type: ClassVar[str] = "UserPasswordChanged"

    user_name: str
    new_salt: str
    new_hash: str

    def to_payload(self) -> dict[str, Any]:
        return {"userName": self.user_name, "newSalt": self.new_salt, "newHash": self.new_hash}

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "UserPasswordChanged":
        return cls(data["userName"], data["newSalt"], data["newHash"])


@dataclass(frozen=True)
class UserNameChanged(DomainEvent):
    event_type: ClassVar[str] = "UserNameChanged"

    old_user_name: str
    new_user_name: str

    def to_payload(self) -> dict[str, Any]:
        return {"oldUserName": self.old_user_name, "newUserName": self.new_user_name}

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "UserNameChanged":
        return cls(data["oldUserName"], data["newUserName"])


@dataclass(frozen=True)
class UserEmailChanged(DomainEvent):
    event_type: ClassVar[str] = "UserEmailChanged"

    user_name: str
    new_email: str

    def to_payload(self) -> dict[str, Any]:
        return {"userName": self.user_name, "newEmail": self.new_email}

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "UserEmailChanged":
        return cls(data["userName"], data["newEmail"])


# -------------------------- elections --------------------------
@dataclass(frozen=True)
class ElectionCreated(DomainEvent):
    event_type: ClassVar[str] = "ElectionCreated"

    owner_name: str
    election_name: str

    def to_payload(self) -> dict[str, Any]:
        return {"ownerName": self.owner_name, "electionName": self.election_name}

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "ElectionCreated":
        return cls(data["ownerName"], data["electionName"])


@dataclass(frozen=True)
class ElectionUpdated(DomainEvent):
    event_type: ClassVar[str] = "ElectionUpdated"

    election_name: str
    new_election_name: Optional[str] = None
    secret_ballot: Optional[bool] = None
    clear_no_voting_before: Optional[bool] = None
    no_voting_before: Optional[datetime] = None
    clear_no_voting_after: Optional[bool] = None
    no_voting_after: Optional[datetime] = None
    allow_edit: Optional[bool] = None
    allow_vote: Optional[bool] = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "electionName": self.election_name,
            "newElectionName": self.new_election_name,
            "secretBallot": self.secret_ballot,
            "clearNoVotingBefore": self.clear_no_voting_before,
            "noVotingBefore": _dt_to_wire(self.no_voting_before),
            "clearNoVotingAfter": self.clear_no_voting_after,
            "noVotingAfter": _dt_to_wire(self.no_voting_after),
            "allowEdit": self.allow_edit,
            "allowVote": self.allow_vote,
        }

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "ElectionUpdated":
        return cls(
            election_name=data["electionName"],
            new_election_name=data.get("newElectionName"),
            secret_ballot=data.get("secretBallot"),
            clear_no_voting_before=data.get("clearNoVotingBefore"),
            no_voting_before=_dt_from_wire(data.get("noVotingBefore")),
            clear_no_voting_after=data.get("clearNoVotingAfter"),
            no_voting_after=_dt_from_wire(data.get("noVotingAfter")),
            allow_edit=data.get("allowEdit"),
            allow_vote=data.get("allowVote"),
        )


@dataclass(frozen=True)
class ElectionDeleted(DomainEvent):
    event_type: ClassVar[str] = "ElectionDeleted"

    election_name: str

    def to_payload(self) -> dict[str, Any]:
        return {"electionName": self.election_name}

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "ElectionDeleted":
        return cls(data["electionName"])


# -------------------------- candidates / voters --------------------------
@dataclass(frozen=True)
class CandidatesAdded(DomainEvent):
    event_type: ClassVar[str] = "CandidatesAdded"

    election_name: str
    candidate_names: tuple[str, ...]

    def to_payload(self) -> dict[str, Any]:
        return {"electionName": self.election_name, "candidateNames": list(self.candidate_names)}

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "CandidatesAdded":
        return cls(data["electionName"], tuple(data["candidateNames"]))


@dataclass(frozen=True)
class CandidatesRemoved(DomainEvent):
    event_type: ClassVar[str] = "CandidatesRemoved"

    election_name: str
    candidate_names: tuple[str, ...]

    def to_payload(self) -> dict[str, Any]:
        return {"electionName": self.election_name, "candidateNames": list(self.candidate_names)}

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "CandidatesRemoved":
        return cls(data["electionName"], tuple(data["candidateNames"]))


@dataclass(frozen=True)
class VotersAdded(DomainEvent):
    event_type: ClassVar[str] = "VotersAdded"

    election_name: str
    voter_names: tuple[str, ...]

    def to_payload(self) -> dict[str, Any]:
        return {"electionName": self.election_name, "voterNames": list(self.voter_names)}

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "VotersAdded":
        return cls(data["electionName"], tuple(data["voterNames"]))


@dataclass(frozen=True)
class VotersRemoved(DomainEvent):
    event_type: ClassVar[str] = "VotersRemoved"

    election_name: str
    voter_names: tuple[str, ...]

    def to_payload(self) -> dict[str, Any]:
        return {"electionName": self.election_name, "voterNames": list(self.voter_names)}

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "VotersRemoved":
        return cls(data["electionName"], tuple(data["voterNames"]))


# -------------------------- ballots --------------------------
@dataclass(frozen=True)
class BallotCast(DomainEvent):
    event_type: ClassVar[str] = "BallotCast"

    voter_name: str
    election_name: str
    rankings: tuple[Ranking, ...]
    confirmation: str
    when_cast: datetime

    def to_payload(self) -> dict[str, Any]:
        return {
            "voterName": self.voter_name,
            "electionName": self.election_name,
            "rankings": rankings_to_list(list(self.rankings)),
            "confirmation": self.confirmation,
            "whenCast": _dt_to_wire(self.when_cast),
        }

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "BallotCast":
        return cls(
            voter_name=data["voterName"],
            election_name=data["electionName"],
            rankings=tuple(rankings_from_list(data["rankings"])),
            confirmation=data["confirmation"],
            when_cast=_dt_from_wire(data["whenCast"]),
        )


@dataclass(frozen=True)
class BallotTimestampUpdated(DomainEvent):
    event_type: ClassVar[str] = "BallotTimestampUpdated"

    confirmation: str
    new_when_cast: datetime

    def to_payload(self) -> dict[str, Any]:
        return {"confirmation": self.confirmation, "newWhenCast": _dt_to_wire(self.new_when_cast)}

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "BallotTimestampUpdated":
        return cls(data["confirmation"], _dt_from_wire(data["newWhenCast"]))


@dataclass(frozen=True)
class BallotRankingsChanged(DomainEvent):
    event_type: ClassVar[str] = "BallotRankingsChanged"

    confirmation: str
    election_name: str
    new_rankings: tuple[Ranking, ...]

    def to_payload(self) -> dict[str, Any]:
        return {
            "confirmation": self.confirmation,
            "electionName": self.election_name,
            "newRankings": rankings_to_list(list(self.new_rankings)),
        }

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "BallotRankingsChanged":
        return cls(data["confirmation"], data["electionName"], tuple(rankings_from_list(data["newRankings"])))


EVENT_TYPES: dict[str, type[DomainEvent]] = {
    cls.event_type: cls
    for cls in (
        UserRegistered,
        UserRoleChanged,
        UserRemoved,
        UserPasswordChanged,
        UserNameChanged,
        UserEmailChanged,
        ElectionCreated,
        ElectionUpdated,
        ElectionDeleted,
        CandidatesAdded,
        CandidatesRemoved,
        VotersAdded,
        VotersRemoved,
        BallotCast,
        BallotTimestampUpdated,
        BallotRankingsChanged,
    )
}


def encode_event(event: DomainEvent) -> tuple[str, str]:
    """Return ``(event_type, event_data)`` ready to be written by a backend."""
    if EVENT_TYPES.get(event.event_type) is not type(event):
        raise ValueError(f"Unregistered event: {event!r}")
    return event.event_type, json.dumps(event.to_payload(), ensure_ascii=False, sort_keys=True)


def decode_event(event_type: str, event_data: str) -> DomainEvent:
    try:
        cls = EVENT_TYPES[event_type]
    except KeyError:
        raise ValueError(f"Unknown event type: {event_type}") from None
    return cls.from_payload(json.loads(event_data))


@dataclass(frozen=True)
class EventEnvelope:
    event_id: int
    when_happened: datetime
    authority: str
    event: DomainEvent
