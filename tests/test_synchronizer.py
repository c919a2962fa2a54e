from __future__ import annotations

import pytest

from conftest import utc
from vote.domain import events as ev
from vote.domain.models import Ranking, Role
from vote.services.synchronizer import Synchronizer


def _append(repos, *events):
    for event in events:
        repos.event_log.append_event("alice", utc(2024, 5, 1, 12), event)


def _synchronizer(repos):
    return Synchronizer(repos.event_log, repos.command_model, repos.query_model)


def test_replay_builds_projection(repos):
    _append(
        repos,
        ev.UserRegistered("alice", "alice@example.com", "salt", "hash", Role.OWNER),
        ev.UserRegistered("bob", "bob@example.com", "salt", "hash", Role.USER),
        ev.ElectionCreated("alice", "Pizza"),
        ev.ElectionUpdated("Pizza", allow_vote=True, no_voting_after=utc(2024, 6, 1)),
        ev.CandidatesAdded("Pizza", ("A", "B", "C")),
        ev.CandidatesRemoved("Pizza", ("C",)),
        ev.VotersAdded("Pizza", ("alice", "bob")),
        ev.BallotCast("bob", "Pizza", (Ranking("A", 1),), "conf-bob", utc(2024, 5, 2, 10)),
        ev.BallotRankingsChanged("conf-bob", "Pizza", (Ranking("B", 1), Ranking("A", 2))),
        ev.BallotTimestampUpdated("conf-bob", utc(2024, 5, 3, 10)),
        ev.UserRoleChanged("bob", Role.ADMIN),
        ev.UserEmailChanged("bob", "robert@example.com"),
        ev.UserPasswordChanged("bob", "salt2", "hash2"),
        ev.UserNameChanged("bob", "robert"),
    )
    synchronizer = _synchronizer(repos)
    query = repos.query_model

    assert synchronizer.synchronize() == 14
    assert query.last_synced() == 14

    user = query.find_user_by_name("robert")
    assert (user.email, user.role, user.salt, user.hash) == ("robert@example.com", Role.ADMIN, "salt2", "hash2")
    election = query.find_election_by_name("Pizza")
    assert election.allow_vote is True
    assert election.no_voting_after == utc(2024, 6, 1)
    assert query.list_candidates("Pizza") == ["A", "B"]
    assert query.list_voters_for_election("Pizza") == ["alice", "robert"]
    ballot = query.search_ballot("robert", "Pizza")
    assert ballot.when_cast == utc(2024, 5, 3, 10)
    assert query.list_rankings("robert", "Pizza") == [Ranking("B", 1), Ranking("A", 2)]


def test_synchronize_resumes_from_last_position(repos):
    synchronizer = _synchronizer(repos)
    query = repos.query_model

    assert synchronizer.synchronize() == 0
    assert query.last_synced() == 0

    _append(repos, ev.UserRegistered("alice", "alice@example.com", "salt", "hash", Role.OWNER))
    assert synchronizer.synchronize() == 1
    assert synchronizer.synchronize() == 0

    _append(repos, ev.ElectionCreated("alice", "Pizza"), ev.ElectionDeleted("Pizza"), ev.UserRemoved("alice"))
    assert synchronizer.synchronize() == 3
    assert query.last_synced() == 4
    assert query.user_count() == 0
    assert query.election_count() == 0


def test_voters_removed_and_election_renamed(repos):
    _append(
        repos,
        ev.UserRegistered("alice", "alice@example.com", "salt", "hash", Role.OWNER),
        ev.ElectionCreated("alice", "Pizza"),
        ev.VotersAdded("Pizza", ("alice",)),
        ev.ElectionUpdated("Pizza", new_election_name="Pie"),
        ev.VotersRemoved("Pie", ("alice",)),
    )

    _synchronizer(repos).synchronize()

    assert repos.query_model.search_election_by_name("Pizza") is None
    assert repos.query_model.list_voters_for_election("Pie") == []


def test_failed_event_stops_at_previous_position(memory_repos, monkeypatch):
    _append(
        memory_repos,
        ev.UserRegistered("alice", "alice@example.com", "salt", "hash", Role.OWNER),
        ev.ElectionCreated("alice", "Pizza"),
    )

    def fail(authority, owner, election_name):
        raise RuntimeError("write failed")

    monkeypatch.setattr(memory_repos.command_model, "add_election", fail)
    with pytest.raises(RuntimeError):
        _synchronizer(memory_repos).synchronize()
    assert memory_repos.query_model.last_synced() == 1

    monkeypatch.delattr(memory_repos.command_model, "add_election")
    assert _synchronizer(memory_repos).synchronize() == 1
    assert memory_repos.query_model.find_election_by_name("Pizza").owner_name == "alice"
