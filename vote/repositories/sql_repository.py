"""Relational backend: event log, command model and query model backed by SQLAlchemy."""
from __future__ import annotations

from datetime import datetime
import json
import logging
from typing import Optional, Sequence

from sqlalchemy import delete, func, select, update

from vote.core.errors import NotFoundError
from vote.db import models
from vote.db.session import Base, get_session
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
    list_permissions,
    rankings_from_list,
    rankings_to_list,
    role_has_permission,
    to_stored_time,
    to_utc,
)
from vote.repositories.interfaces import CommandModel, EventLog, QueryModel

logger = logging.getLogger(__name__)


def _rankings_json(rankings: Sequence[Ranking]) -> str:
    return json.dumps(rankings_to_list(list(rankings)), ensure_ascii=False)


def _to_user(entity: models.User) -> User:
    return User(
        name=entity.name,
        email=entity.email,
        salt=entity.salt,
        hash=entity.hash,
        role=Role[entity.role],
    )


def _to_election_summary(entity: models.Election) -> ElectionSummary:
    return ElectionSummary(
        owner_name=entity.owner_name,
        election_name=entity.election_name,
        secret_ballot=bool(entity.secret_ballot),
        no_voting_before=to_utc(entity.no_voting_before),
        no_voting_after=to_utc(entity.no_voting_after),
        allow_edit=bool(entity.allow_edit),
        allow_vote=bool(entity.allow_vote),
    )


def _to_revealed_ballot(entity: models.Ballot) -> RevealedBallot:
    return RevealedBallot(
        voter_name=entity.voter_name,
        election_name=entity.election_name,
        confirmation=entity.confirmation,
        when_cast=to_utc(entity.when_cast),
        rankings=rankings_from_list(json.loads(entity.rankings or "[]")),
    )


class SQLEventLog(EventLog):
    """Append-only event log; ids come from the auto-increment column."""

    def append_event(self, authority: str, when_happened: datetime, event: DomainEvent) -> None:
        event_type, event_data = encode_event(event)
        entity = models.EventLogEntry(
            authority=authority,
            event_type=event_type,
            event_data=event_data,
            created_at=to_stored_time(when_happened),
        )
        with get_session() as session:
            session.add(entity)
            session.commit()

    def events_to_sync(self, last_event_synced: int) -> list[EventEnvelope]:
        with get_session() as session:
            stmt = (
                select(models.EventLogEntry)
                .where(models.EventLogEntry.event_id > last_event_synced)
                .order_by(models.EventLogEntry.event_id)
            )
            rows = session.execute(stmt).scalars().all()
            return [
                EventEnvelope(
                    event_id=int(row.event_id),
                    when_happened=to_utc(row.created_at),
                    authority=row.authority,
                    event=decode_event(row.event_type, row.event_data),
                )
                for row in rows
            ]

    def event_count(self) -> int:
        with get_session() as session:
            stmt = select(func.count()).select_from(models.EventLogEntry)
            return int(session.execute(stmt).scalar_one())


class SQLCommandModel(CommandModel):
    """Write side of the relational projection."""

    # -------------------------- sync state --------------------------
    def set_last_synced(self, last_synced: int) -> None:
        with get_session() as session:
            state = session.get(models.SyncState, models.SYNC_STATE_ID)
            if state is None:
                session.add(models.SyncState(id=models.SYNC_STATE_ID, last_synced=last_synced))
            else:
                state.last_synced = last_synced
            session.commit()

    def initialize_last_synced(self, last_synced: int) -> None:
        with get_session() as session:
            if session.get(models.SyncState, models.SYNC_STATE_ID) is None:
                session.add(models.SyncState(id=models.SYNC_STATE_ID, last_synced=last_synced))
                session.commit()

    # -------------------------- users --------------------------
    def create_user(self, authority: str, user_name: str, email: str, salt: str, hash: str, role: Role) -> None:
        entity = models.User(name=user_name, email=email, salt=salt, hash=hash, role=role.name)
        with get_session() as session:
            session.add(entity)
            session.commit()

    def set_role(self, authority: str, user_name: str, role: Role) -> None:
        self._update_user(user_name, role=role.name)

    def set_password(self, authority: str, user_name: str, salt: str, hash: str) -> None:
        self._update_user(user_name, salt=salt, hash=hash)

    def set_email(self, authority: str, user_name: str, email: str) -> None:
        self._update_user(user_name, email=email)

    def _update_user(self, user_name: str, **values) -> None:
        with get_session() as session:
            session.execute(update(models.User).where(models.User.name == user_name).values(**values))
            session.commit()

    def remove_user(self, authority: str, user_name: str) -> None:
        with get_session() as session:
            session.execute(delete(models.EligibleVoter).where(models.EligibleVoter.voter_name == user_name))
            session.execute(delete(models.User).where(models.User.name == user_name))
            session.commit()

    def set_user_name(self, authority: str, old_user_name: str, new_user_name: str) -> None:
        if old_user_name == new_user_name:
            return
        # Each step commits on its own; a failure part-way leaves earlier steps applied.
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
        with get_session() as session:
            session.execute(
                update(models.User).where(models.User.name == old_user_name).values(name=new_user_name)
            )
            session.commit()

    def _rename_election_owners(self, old_user_name: str, new_user_name: str) -> None:
        with get_session() as session:
            result = session.execute(
                update(models.Election)
                .where(models.Election.owner_name == old_user_name)
                .values(owner_name=new_user_name)
            )
            session.commit()
            logger.debug("Moved %d owned elections to %s", result.rowcount, new_user_name)

    def _rename_eligible_voters(self, old_user_name: str, new_user_name: str) -> None:
        with get_session() as session:
            session.execute(
                update(models.EligibleVoter)
                .where(models.EligibleVoter.voter_name == old_user_name)
                .values(voter_name=new_user_name)
            )
            session.commit()

    def _rename_ballots(self, old_user_name: str, new_user_name: str) -> None:
        with get_session() as session:
            session.execute(
                update(models.Ballot).where(models.Ballot.voter_name == old_user_name).values(voter_name=new_user_name)
            )
            session.commit()

    # -------------------------- elections --------------------------
    def add_election(self, authority: str, owner: str, election_name: str) -> None:
        entity = models.Election(
            election_name=election_name,
            owner_name=owner,
            secret_ballot=True,
            allow_edit=True,
            allow_vote=False,
        )
        with get_session() as session:
            session.add(entity)
            session.commit()

    def update_election(self, authority: str, election_name: str, updates: ElectionUpdates) -> None:
        values = {}
        if updates.new_election_name is not None:
            values["election_name"] = updates.new_election_name
        if updates.secret_ballot is not None:
            values["secret_ballot"] = updates.secret_ballot
        if updates.clear_no_voting_before:
            values["no_voting_before"] = None
        elif updates.no_voting_before is not None:
            values["no_voting_before"] = to_stored_time(updates.no_voting_before)
        if updates.clear_no_voting_after:
            values["no_voting_after"] = None
        elif updates.no_voting_after is not None:
            values["no_voting_after"] = to_stored_time(updates.no_voting_after)
        if updates.allow_vote is not None:
            values["allow_vote"] = updates.allow_vote
        if updates.allow_edit is not None:
            values["allow_edit"] = updates.allow_edit
        if not values:
            return

        with get_session() as session:
            session.execute(
                update(models.Election).where(models.Election.election_name == election_name).values(**values)
            )
            session.commit()

        new_name = values.get("election_name")
        if new_name and new_name != election_name:
            self._move_election_children(election_name, new_name)

    def _move_election_children(self, old_name: str, new_name: str) -> None:
        # No-op where the database already cascaded the key update.
        with get_session() as session:
            for table in (models.Candidate, models.EligibleVoter, models.Ballot):
                session.execute(update(table).where(table.election_name == old_name).values(election_name=new_name))
            session.commit()

    def delete_election(self, authority: str, election_name: str) -> None:
        with get_session() as session:
            for table in (models.Ballot, models.EligibleVoter, models.Candidate):
                session.execute(delete(table).where(table.election_name == election_name))
            session.execute(delete(models.Election).where(models.Election.election_name == election_name))
            session.commit()

    # -------------------------- candidates / voters --------------------------
    def add_candidates(self, authority: str, election_name: str, candidate_names: Sequence[str]) -> None:
        if not candidate_names:
            return
        with get_session() as session:
            for candidate_name in dict.fromkeys(candidate_names):
                identity = models.candidate_identity(election_name, candidate_name)
                if session.get(models.Candidate, identity) is None:
                    session.add(models.Candidate(election_name=election_name, candidate_name=candidate_name))
            session.commit()

    def remove_candidates(self, authority: str, election_name: str, candidate_names: Sequence[str]) -> None:
        if not candidate_names:
            return
        with get_session() as session:
            session.execute(
                delete(models.Candidate).where(
                    models.Candidate.election_name == election_name,
                    models.Candidate.candidate_name.in_(list(candidate_names)),
                )
            )
            session.commit()

    def add_voters(self, authority: str, election_name: str, voter_names: Sequence[str]) -> None:
        if not voter_names:
            return
        with get_session() as session:
            for voter_name in dict.fromkeys(voter_names):
                identity = models.eligible_voter_identity(election_name, voter_name)
                if session.get(models.EligibleVoter, identity) is None:
                    session.add(models.EligibleVoter(election_name=election_name, voter_name=voter_name))
            session.commit()

    def remove_voters(self, authority: str, election_name: str, voter_names: Sequence[str]) -> None:
        if not voter_names:
            return
        with get_session() as session:
            session.execute(
                delete(models.EligibleVoter).where(
                    models.EligibleVoter.election_name == election_name,
                    models.EligibleVoter.voter_name.in_(list(voter_names)),
                )
            )
            session.commit()

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
        with get_session() as session:
            ballot = session.get(models.Ballot, models.ballot_identity(election_name, voter_name))
            if ballot is None:
                ballot = models.Ballot(election_name=election_name, voter_name=voter_name)
                session.add(ballot)
            ballot.rankings = _rankings_json(rankings)
            ballot.confirmation = confirmation
            ballot.when_cast = to_stored_time(now)
            session.commit()

    def set_rankings(
        self, authority: str, confirmation: str, election_name: str, rankings: Sequence[Ranking]
    ) -> None:
        with get_session() as session:
            stmt = (
                update(models.Ballot)
                .where(models.Ballot.confirmation == confirmation, models.Ballot.election_name == election_name)
                .values(rankings=_rankings_json(rankings))
            )
            session.execute(stmt)
            session.commit()

    def update_when_cast(self, authority: str, confirmation: str, now: datetime) -> None:
        with get_session() as session:
            stmt = (
                update(models.Ballot)
                .where(models.Ballot.confirmation == confirmation)
                .values(when_cast=to_stored_time(now))
            )
            session.execute(stmt)
            session.commit()


class SQLQueryModel(QueryModel):
    """Read side of the relational projection."""

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
        with get_session() as session:
            entity = session.get(models.User, name)
            return _to_user(entity) if entity else None

    def search_user_by_email(self, email: str) -> Optional[User]:
        with get_session() as session:
            stmt = select(models.User).where(models.User.email == email)
            entity = session.execute(stmt).scalar_one_or_none()
            return _to_user(entity) if entity else None

    def user_count(self) -> int:
        return self._count(models.User)

    def list_users(self) -> list[User]:
        with get_session() as session:
            stmt = select(models.User).order_by(models.User.name)
            return [_to_user(entity) for entity in session.execute(stmt).scalars().all()]

    def list_user_names(self) -> list[str]:
        with get_session() as session:
            return list(session.execute(select(models.User.name).order_by(models.User.name)).scalars().all())

    # -------------------------- elections --------------------------
    def election_count(self) -> int:
        return self._count(models.Election)

    def list_elections(self) -> list[ElectionSummary]:
        with get_session() as session:
            stmt = select(models.Election).order_by(models.Election.election_name)
            return [_to_election_summary(entity) for entity in session.execute(stmt).scalars().all()]

    def search_election_by_name(self, name: str) -> Optional[ElectionSummary]:
        with get_session() as session:
            entity = session.get(models.Election, name)
            return _to_election_summary(entity) if entity else None

    def find_election_by_name(self, name: str) -> ElectionSummary:
        election = self.search_election_by_name(name)
        if election is None:
            raise NotFoundError("Election", name)
        return election

    def candidate_count(self, election_name: str) -> int:
        return self._count(models.Candidate, models.Candidate.election_name == election_name)

    def voter_count(self, election_name: str) -> int:
        return self._count(models.EligibleVoter, models.EligibleVoter.election_name == election_name)

    def list_candidates(self, election_name: str) -> list[str]:
        with get_session() as session:
            stmt = (
                select(models.Candidate.candidate_name)
                .where(models.Candidate.election_name == election_name)
                .order_by(models.Candidate.candidate_name)
            )
            return list(session.execute(stmt).scalars().all())

    def list_voters_for_election(self, election_name: str) -> list[str]:
        with get_session() as session:
            stmt = (
                select(models.EligibleVoter.voter_name)
                .where(models.EligibleVoter.election_name == election_name)
                .order_by(models.EligibleVoter.voter_name)
            )
            return list(session.execute(stmt).scalars().all())

    # -------------------------- ballots --------------------------
    def list_rankings(self, voter_name: str, election_name: str) -> list[Ranking]:
        with get_session() as session:
            entity = session.get(models.Ballot, models.ballot_identity(election_name, voter_name))
            return rankings_from_list(json.loads(entity.rankings)) if entity else []

    def list_election_rankings(self, election_name: str) -> list[VoterElectionCandidateRank]:
        return flatten_rankings(self.list_ballots(election_name))

    def search_ballot(self, voter_name: str, election_name: str) -> Optional[BallotSummary]:
        with get_session() as session:
            entity = session.get(models.Ballot, models.ballot_identity(election_name, voter_name))
            return _to_revealed_ballot(entity).to_summary() if entity else None

    def list_ballots(self, election_name: str) -> list[RevealedBallot]:
        with get_session() as session:
            stmt = (
                select(models.Ballot)
                .where(models.Ballot.election_name == election_name)
                .order_by(models.Ballot.voter_name)
            )
            return [_to_revealed_ballot(entity) for entity in session.execute(stmt).scalars().all()]

    def list_voter_names(self) -> list[str]:
        with get_session() as session:
            stmt = select(models.Ballot.voter_name).distinct().order_by(models.Ballot.voter_name)
            return list(session.execute(stmt).scalars().all())

    # -------------------------- metadata --------------------------
    def table_count(self) -> int:
        return len(Base.metadata.tables)

    def role_has_permission(self, role: Role, permission: Permission) -> bool:
        return role_has_permission(role, permission)

    def list_permissions(self, role: Role) -> list[Permission]:
        return list_permissions(role)

    def last_synced(self) -> Optional[int]:
        with get_session() as session:
            state = session.get(models.SyncState, models.SYNC_STATE_ID)
            return int(state.last_synced) if state else None

    def _count(self, table, *criteria) -> int:
        with get_session() as session:
            stmt = select(func.count()).select_from(table)
            if criteria:
                stmt = stmt.where(*criteria)
            return int(session.execute(stmt).scalar_one())
