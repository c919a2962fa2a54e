"""SQLAlchemy models for the normalized projection and the event log.

Every table is keyed by natural keys, so a natural key maps to its row
identity unchanged (see ``ballot_identity``).
"""
from __future__ import annotations

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)

from .session import Base

SYNC_STATE_ID = 1


class User(Base):
    __tablename__ = "user"

    name = Column(String(255), primary_key=True)
    email = Column(String(255), unique=True, nullable=False)
    salt = Column(String(255), nullable=False)
    hash = Column(String(255), nullable=False)
    role = Column(String(32), nullable=False)


class Election(Base):
    __tablename__ = "election"

    election_name = Column(String(255), primary_key=True)
    # Kept after the owner is removed, so no foreign key.
    owner_name = Column(String(255), nullable=False, index=True)
    secret_ballot = Column(Boolean, default=True, nullable=False)
    no_voting_before = Column(DateTime(timezone=True), nullable=True)
    no_voting_after = Column(DateTime(timezone=True), nullable=True)
    allow_edit = Column(Boolean, default=True, nullable=False)
    allow_vote = Column(Boolean, default=False, nullable=False)


class Candidate(Base):
    __tablename__ = "candidate"

    election_name = Column(
        String(255),
        ForeignKey("election.election_name", ondelete="CASCADE", onupdate="CASCADE"),
        primary_key=True,
    )
    candidate_name = Column(String(255), primary_key=True)


class EligibleVoter(Base):
    __tablename__ = "eligible_voter"

    election_name = Column(
        String(255),
        ForeignKey("election.election_name", ondelete="CASCADE", onupdate="CASCADE"),
        primary_key=True,
    )
    voter_name = Column(
        String(255),
        ForeignKey("user.name", ondelete="CASCADE", onupdate="CASCADE"),
        primary_key=True,
    )


class Ballot(Base):
    __tablename__ = "ballot"

    election_name = Column(
        String(255),
        ForeignKey("election.election_name", ondelete="CASCADE", onupdate="CASCADE"),
        primary_key=True,
    )
    # Cast ballots outlive their voter's account, so no foreign key to user.
    voter_name = Column(String(255), primary_key=True)
    rankings = Column(Text, nullable=False, default="[]")
    confirmation = Column(String(255), nullable=False, index=True)
    when_cast = Column(DateTime(timezone=True), nullable=False)


class EventLogEntry(Base):
    __tablename__ = "event_log"
    __table_args__ = {"sqlite_autoincrement": True}

    event_id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    authority = Column(String(255), nullable=False)
    event_type = Column(String(100), nullable=False)
    event_data = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


class SyncState(Base):
    __tablename__ = "sync_state"

    id = Column(Integer, primary_key=True, default=SYNC_STATE_ID)
    last_synced = Column(BigInteger, nullable=False, default=0)


def ballot_identity(election_name: str, voter_name: str) -> tuple[str, str]:
    """Primary-key identity of a ballot row, in ``Ballot`` column order."""
    return election_name, voter_name


def eligible_voter_identity(election_name: str, voter_name: str) -> tuple[str, str]:
    return election_name, voter_name


def candidate_identity(election_name: str, candidate_name: str) -> tuple[str, str]:
    return election_name, candidate_name
