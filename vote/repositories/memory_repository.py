"""
In-process backend built on plain dicts and sets.

No locking: safe for single-threaded use only (tests, local experiments).
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
import logging
from typing import Optional, Sequence

from vote.core.errors import NotFoundError
from vote.domain.events import DomainEvent, EventEnvelope
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
    list_permissions,
    role_has_permission,
    to_stored_time,
)
from vote.repositories.interfaces import CommandModel, EventLog, QueryModel

logger = logging.getLogger(__name__)

TABLE_NAMES = ("users", "elections", "candidates", "eligible_voters", "ballots")


def ballot_key(election_name: str, voter_name: str) -> tuple[str, str]:
    """Physical address of a ballot in ``InMemoryData.ballots``."""
    return election_name, voter_name


@dataclass
class InMemoryData:
    users: dict[str, User] = field(default_factory=dict)
    elections: dict[str, ElectionSummary] = field(default_factory=dict)
    candidates: dict[str, set[str]] = field(default_factory=dict)
    eligible_voters: dict[str, set[str]] = field(default_factory=dict)
    ballots: dict[tuple[str, str], RevealedBallot] = field(default_factory=dict)
    last_synced: Optional[int] = None


class InMemoryEventLog(EventLog):
    def __init__(self) -> None:
        self._events: list[EventEnvelope] = []
        self._next_id = 1

    def append_event(self, authority: str, when_happened: datetime, event: DomainEvent) -> None:
        envelope = EventEnvelope(
            event_id=self._next_id,
            when_happened=to_stored_time(when_happened),
            authority=authority,
            event=event,
        )
        self._next_id += 1
        self._events.append(envelope)

    def events_to_sync(self, last_event_synced: int) -> list[EventEnvelope]:
        return [envelope for envelope in self._events if envelope.event_id > last_event_synced]

    def event_count(self) -> int:
        return len(self._events)


class InMemoryCommandModel(CommandModel):
    def __init__(self, data: InMemoryData) -> None:
        self.data = data

    # -------------------------- sync state --------------------------
    def set_last_synced(self, last_synced: int) -> None:
        self.data.last_synced = last_synced

    def initialize_last_synced(self, last_synced: int) -> None:
        if self.data.last_synced is None:
            self.data.last_synced = last_synced

    # -------------------------- users --------------------------
    def create_user(self, authority: str, user_name: str, email: str, salt: str, hash: str, role: Role) -> None:
        self.data.users[user_name] = User(user_name, email, salt, hash, role)

    def set_role(self, authority: str, user_name: str, role: Role) -> None:
        self._update_user(user_name, role=role)

    def set_password(self, authority: str, user_name: str, salt: str, hash: str) -> None:
        self._update_user(user_name, salt=salt, hash=hash)

    def set_email(self, authority: str, user_name: str, email: str) -> None:
        self._update_user(user_name, email=email)

    def _update_user(self, user_name: str, **changes) -> None:
        user = self.data.users.get(user_name)
        if user is not None:
            self.data.users[user_name] = replace(user, **changes)

    def remove_user(self, authority: str, user_name: str) -> None:
        self.data.users.pop(user_name, None)
        for voters in self.data.eligible_voters.values():
            voters.discard(user_name)

    def set_user_name(self, authority: str, old_user_name: str, new_user_name: str) -> None:
        if old_user_name == new_user_name:
            return
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
        user = self.data.users.get(old_user_name)
        if user is None:
            return
        self.data.users[new_user_name] = replace(user, name=new_user_name)
        del self.data.users[old_user_name]

    def _rename_election_owners(self, old_user_name: str, new_user_name: str) -> None:
        for name, election in list(self.data.elections.items()):
            if election.owner_name == old_user_name:
                self.data.elections[name] = replace(election, owner_name=new_user_name)

    def _rename_eligible_voters(self, old_user_name: str, new_user_name: str) -> None:
        for voters in self.data.eligible_voters.values():
            if old_user_name in voters:
                voters.discard(old_user_name)
                voters.add(new_user_name)

    def _rename_ballots(self, old_user_name: str, new_user_name: str) -> None:
        for key, ballot in list(self.data.ballots.items()):
            if ballot.voter_name != old_user_name:
                continue
            self.data.ballots[ballot_key(ballot.election_name, new_user_name)] = replace(
                ballot, voter_name=new_user_name
            )
            del self.data.ballots[key]

    # -------------------------- elections --------------------------
    def add_election(self, authority: str, owner: str, election_name: str) -> None:
        self.data.elections[election_name] = ElectionSummary(owner_name=owner, election_name=election_name)

    def update_election(self, authority: str, election_name: str, updates: ElectionUpdates) -> None:
        election = self.data.elections.get(election_name)
        if election is None or updates.is_empty():
            return
        updated = updates.apply_to(election)
        updated = replace(
            updated,
            no_voting_before=to_stored_time(updated.no_voting_before),
            no_voting_after=to_stored_time(updated.no_voting_after),
        )
        new_name = updated.election_name
        if new_name == election_name:
            self.data.elections[election_name] = updated
            return
        self.data.elections[new_name] = updated
        del self.data.elections[election_name]
        if election_name in self.data.candidates:
            self.data.candidates[new_name] = self.data.candidates.pop(election_name)
        if election_name in self.data.eligible_voters:
            self.data.eligible_voters[new_name] = self.data.eligible_voters.pop(election_name)
        for key, ballot in list(self.data.ballots.items()):
            if ballot.election_name == election_name:
                self.data.ballots[ballot_key(new_name, ballot.voter_name)] = replace(ballot, election_name=new_name)
                del self.data.ballots[key]

    def delete_election(self, authority: str, election_name: str) -> None:
        self.data.elections.pop(election_name, None)
        self.data.candidates.pop(election_name, None)
        self.data.eligible_voters.pop(election_name, None)
        for key in [key for key in self.data.ballots if key[0] == election_name]:
            del self.data.ballots[key]

    # -------------------------- candidates / voters --------------------------
    def add_candidates(self, authority: str, election_name: str, candidate_names: Sequence[str]) -> None:
        if candidate_names:
            self.data.candidates.setdefault(election_name, set()).update(candidate_names)

    def remove_candidates(self, authority: str, election_name: str, candidate_names: Sequence[str]) -> None:
        self.data.candidates.get(election_name, set()).difference_update(candidate_names)

    def add_voters(self, authority: str, election_name: str, voter_names: Sequence[str]) -> None:
        if voter_names:
            self.data.eligible_voters.setdefault(election_name, set()).update(voter_names)

    def remove_voters(self, authority: str, election_name: str, voter_names: Sequence[str]) -> None:
        self.data.eligible_voters.get(election_name, set()).difference_update(voter_names)

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
        self.data.ballots[ballot_key(election_name, voter_name)] = RevealedBallot(
            voter_name=voter_name,
            election_name=election_name,
            confirmation=confirmation,
            when_cast=to_stored_time(now),
            rankings=list(rankings),
        )

    def set_rankings(
        self, authority: str, confirmation: str, election_name: str, rankings: Sequence[Ranking]
    ) -> None:
        for key, ballot in list(self.data.ballots.items()):
            if ballot.election_name == election_name and ballot.confirmation == confirmation:
                self.data.ballots[key] = replace(ballot, rankings=list(rankings))

    def update_when_cast(self, authority: str, confirmation: str, now: datetime) -> None:
        for key, ballot in list(self.data.ballots.items()):
            if ballot.confirmation == confirmation:
                self.data.ballots[key] = replace(ballot, when_cast=to_stored_time(now))


class InMemoryQueryModel(QueryModel):
    def __init__(self, data: InMemoryData) -> None:
        self.data = data

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
        return self.data.users.get(name)

    def search_user_by_email(self, email: str) -> Optional[User]:
        for user in self.data.users.values():
            if user.email == email:
                return user
        return None

    def user_count(self) -> int:
        return len(self.data.users)

    def list_users(self) -> list[User]:
        return [self.data.users[name] for name in sorted(self.data.users)]

    def list_user_names(self) -> list[str]:
        return sorted(self.data.users)

    # -------------------------- elections --------------------------
    def election_count(self) -> int:
        return len(self.data.elections)

    def list_elections(self) -> list[ElectionSummary]:
        return [self.data.elections[name] for name in sorted(self.data.elections)]

    def search_election_by_name(self, name: str) -> Optional[ElectionSummary]:
        return self.data.elections.get(name)

    def find_election_by_name(self, name: str) -> ElectionSummary:
        election = self.search_election_by_name(name)
        if election is None:
            raise NotFoundError("Election", name)
        return election

    def candidate_count(self, election_name: str) -> int:
        return len(self.data.candidates.get(election_name, ()))

    def voter_count(self, election_name: str) -> int:
        return len(self.data.eligible_voters.get(election_name, ()))

    def list_candidates(self, election_name: str) -> list[str]:
        return sorted(self.data.candidates.get(election_name, ()))

    def list_voters_for_election(self, election_name: str) -> list[str]:
        return sorted(self.data.eligible_voters.get(election_name, ()))

    # -------------------------- ballots --------------------------
    def list_rankings(self, voter_name: str, election_name: str) -> list[Ranking]:
        ballot = self.data.ballots.get(ballot_key(election_name, voter_name))
        return list(ballot.rankings) if ballot else []

    def list_election_rankings(self, election_name: str) -> list[VoterElectionCandidateRank]:
        return flatten_rankings(self.list_ballots(election_name))

    def search_ballot(self, voter_name: str, election_name: str) -> Optional[BallotSummary]:
        ballot = self.data.ballots.get(ballot_key(election_name, voter_name))
        return ballot.to_summary() if ballot else None

    def list_ballots(self, election_name: str) -> list[RevealedBallot]:
        ballots = [ballot for key, ballot in self.data.ballots.items() if key[0] == election_name]
        return sorted(ballots, key=lambda ballot: ballot.voter_name)

    def list_voter_names(self) -> list[str]:
        return sorted({ballot.voter_name for ballot in self.data.ballots.values()})

    # -------------------------- metadata --------------------------
    def table_count(self) -> int:
        return len(TABLE_NAMES)

    def role_has_permission(self, role: Role, permission: Permission) -> bool:
        return role_has_permission(role, permission)

    def list_permissions(self, role: Role) -> list[Permission]:
        return list_permissions(role)

    def last_synced(self) -> Optional[int]:
        return self.data.last_synced
