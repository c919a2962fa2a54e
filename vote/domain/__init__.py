"""Domain types shared by every backend (natural keys only)."""

from .models import (
    BallotSummary,
    ElectionDetail,
    ElectionSummary,
    ElectionUpdates,
    Permission,
    Ranking,
    RevealedBallot,
    Role,
    SecretBallot,
    User,
    VoterElectionCandidateRank,
)
from .events import DomainEvent, EventEnvelope

__all__ = [
    "BallotSummary",
    "DomainEvent",
    "ElectionDetail",
    "ElectionSummary",
    "ElectionUpdates",
    "EventEnvelope",
    "Permission",
    "Ranking",
    "RevealedBallot",
    "Role",
    "SecretBallot",
    "User",
    "VoterElectionCandidateRank",
]
