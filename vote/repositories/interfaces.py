from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol, Sequence

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
)


class EventLog(Protocol):
    def append_event(self, authority: str, when_happened: datetime, event: DomainEvent) -> None:
        """Assign the next event id and store the envelope."""

    def events_to_sync(self, last_event_synced: int) -> list[EventEnvelope]:
        """Envelopes with id > last_event_synced, ascending by id."""

    def event_count(self) -> int:
        """Total number of stored events."""


class CommandModel(Protocol):
    def set_last_synced(self, last_synced: int) -> None:
        """Record the id of the last event applied to the projection."""

    def initialize_last_synced(self, last_synced: int) -> None:
        """Set the sync position only if none has been recorded yet."""

    def create_user(self, authority: str, user_name: str, email: str, salt: str, hash: str, role: Role) -> None:
        """Insert a user record."""

    def set_role(self, authority: str, user_name: str, role: Role) -> None:
        """Change a user's role."""

    def remove_user(self, authority: str, user_name: str) -> None:
        """Delete a user and every eligible-voter reference to it."""

    def add_election(self, authority: str, owner: str, election_name: str) -> None:
        """Insert an election owned by ``owner`` with default policy flags."""

    def update_election(self, authority: str, election_name: str, updates: ElectionUpdates) -> None:
        """Apply partial updates, including a rename of the election."""

    def delete_election(self, authority: str, election_name: str) -> None:
        """Delete an election with its candidates, voters and ballots."""

    def add_candidates(self, authority: str, election_name: str, candidate_names: Sequence[str]) -> None:
        """Add candidates (idempotent)."""

    def remove_candidates(self, authority: str, election_name: str, candidate_names: Sequence[str]) -> None:
        """Remove candidates (idempotent)."""

    def add_voters(self, authority: str, election_name: str, voter_names: Sequence[str]) -> None:
        """Add eligible voters (idempotent)."""

    def remove_voters(self, authority: str, election_name: str, voter_names: Sequence[str]) -> None:
        """Remove eligible voters (idempotent)."""

    def cast_ballot(
        self,
        authority: str,
        voter_name: str,
        election_name: str,
        rankings: Sequence[Ranking],
        confirmation: str,
        now: datetime,
    ) -> None:
        """Insert or overwrite the ballot of (election, voter)."""

    def set_rankings(
        self, authority: str, confirmation: str, election_name: str, rankings: Sequence[Ranking]
    ) -> None:
        """Replace the rankings of the ballot holding ``confirmation`` in an election."""

    def update_when_cast(self, authority: str, confirmation: str, now: datetime) -> None:
        """Replace the cast timestamp of the ballot holding ``confirmation``."""

    def set_password(self, authority: str, user_name: str, salt: str, hash: str) -> None:
        """Replace a user's salt and hash."""

    def set_user_name(self, authority: str, old_user_name: str, new_user_name: str) -> None:
        """Rename a user everywhere the name is stored (ordered, non-atomic fan-out)."""

    def set_email(self, authority: str, user_name: str, email: str) -> None:
        """Change a user's email."""


class QueryModel(Protocol):
    def find_user_by_name(self, name: str) -> User:
        """Fetch a user or raise NotFoundError."""

    def find_user_by_email(self, email: str) -> User:
        """Fetch a user by email or raise NotFoundError."""

    def search_user_by_name(self, name: str) -> Optional[User]:
        """Fetch a user or None."""

    def search_user_by_email(self, email: str) -> Optional[User]:
        """Fetch a user by email or None."""

    def user_count(self) -> int:
        """Total users."""

    def election_count(self) -> int:
        """Total elections."""

    def candidate_count(self, election_name: str) -> int:
        """Candidates of one election."""

    def voter_count(self, election_name: str) -> int:
        """Eligible voters of one election."""

    def table_count(self) -> int:
        """Number of physical tables/maps backing this store."""

    def list_users(self) -> list[User]:
        """All users ordered by name."""

    def list_elections(self) -> list[ElectionSummary]:
        """All elections ordered by name."""

    def role_has_permission(self, role: Role, permission: Permission) -> bool:
        """Whether ``role`` grants ``permission``."""

    def list_permissions(self, role: Role) -> list[Permission]:
        """Permissions granted by ``role``."""

    def last_synced(self) -> Optional[int]:
        """Id of the last event applied to the projection, or None."""

    def search_election_by_name(self, name: str) -> Optional[ElectionSummary]:
        """Fetch an election or None."""

    def find_election_by_name(self, name: str) -> ElectionSummary:
        """Fetch an election or raise NotFoundError."""

    def list_candidates(self, election_name: str) -> list[str]:
        """Candidate names of one election, sorted."""

    def list_rankings(self, voter_name: str, election_name: str) -> list[Ranking]:
        """Rankings of one ballot, empty when no ballot exists."""

    def list_election_rankings(self, election_name: str) -> list[VoterElectionCandidateRank]:
        """Ranked (voter, candidate, rank) rows of every ballot in an election."""

    def search_ballot(self, voter_name: str, election_name: str) -> Optional[BallotSummary]:
        """Fetch a ballot summary or None."""

    def list_ballots(self, election_name: str) -> list[RevealedBallot]:
        """All ballots of an election ordered by voter name."""

    def list_voter_names(self) -> list[str]:
        """Distinct names that have cast at least one ballot, sorted."""

    def list_voters_for_election(self, election_name: str) -> list[str]:
        """Eligible voter names of one election, sorted."""

    def list_user_names(self) -> list[str]:
        """All user names, sorted."""


@dataclass(frozen=True)
class RepositorySet:
    """The capability set every backend provides."""

    event_log: EventLog
    command_model: CommandModel
    query_model: QueryModel
