"""
Behaviour every backend must share, run against memory, SQLite and a
moto-backed DynamoDB table.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from conftest import utc
from vote.core.errors import NotFoundError
from vote.domain.events import ElectionCreated
from vote.domain.models import (
    BallotSummary,
    ElectionSummary,
    ElectionUpdates,
    Permission,
    Ranking,
    Role,
    User,
    VoterElectionCandidateRank,
)

AUTH = "admin"


def _register(command, *names):
    for name in names:
        command.create_user(AUTH, name, f"{name}@example.com", "salt", "hash", Role.USER)


def _populate(repos):
    command = repos.command_model
    _register(command, "alice", "bob", "carol")
    command.set_role(AUTH, "carol", Role.ADMIN)
    command.add_election(AUTH, "alice", "Pizza")
    command.add_election(AUTH, "bob", "Lunch")
    command.update_election(
        AUTH,
        "Pizza",
        ElectionUpdates(secret_ballot=False, no_voting_before=utc(2024, 5, 1, 9), allow_vote=True),
    )
    command.add_candidates(AUTH, "Pizza", ["Margherita", "Pepperoni", "Hawaiian"])
    command.add_candidates(AUTH, "Lunch", ["Tacos"])
    command.add_voters(AUTH, "Pizza", ["bob", "carol"])
    command.cast_ballot(
        AUTH,
        "bob",
        "Pizza",
        [Ranking("Pepperoni", 1), Ranking("Margherita", 2), Ranking("Hawaiian", None)],
        "conf-bob",
        utc(2024, 5, 2, 10),
    )
    command.cast_ballot(AUTH, "carol", "Pizza", [Ranking("Margherita", 1)], "conf-carol", utc(2024, 5, 2, 11))


def _snapshot(query):
    return {
        "users": query.list_users(),
        "user_names": query.list_user_names(),
        "user_count": query.user_count(),
        "elections": query.list_elections(),
        "election_count": query.election_count(),
        "candidates": {name: query.list_candidates(name) for name in ("Pizza", "Lunch", "Missing")},
        "voters": {name: query.list_voters_for_election(name) for name in ("Pizza", "Lunch", "Missing")},
        "candidate_count": query.candidate_count("Pizza"),
        "voter_count": query.voter_count("Pizza"),
        "ballots": query.list_ballots("Pizza"),
        "ballot": query.search_ballot("bob", "Pizza"),
        "rankings": query.list_rankings("bob", "Pizza"),
        "election_rankings": query.list_election_rankings("Pizza"),
        "voter_names": query.list_voter_names(),
        "by_email": query.search_user_by_email("carol@example.com"),
    }


def test_backends_return_identical_results(memory_repos, sql_repos, dynamodb_repos):
    snapshots = []
    for repos in (memory_repos, sql_repos, dynamodb_repos):
        _populate(repos)
        snapshots.append(_snapshot(repos.query_model))

    assert snapshots[0] == snapshots[1] == snapshots[2]
    assert snapshots[0]["user_names"] == ["alice", "bob", "carol"]
    assert snapshots[0]["candidates"]["Pizza"] == ["Hawaiian", "Margherita", "Pepperoni"]
    assert snapshots[0]["candidates"]["Missing"] == []


def test_populated_state_reads_back(repos):
    _populate(repos)
    query = repos.query_model

    assert query.find_user_by_name("carol") == User("carol", "carol@example.com", "salt", "hash", Role.ADMIN)
    assert query.find_election_by_name("Pizza") == ElectionSummary(
        owner_name="alice",
        election_name="Pizza",
        secret_ballot=False,
        no_voting_before=utc(2024, 5, 1, 9),
        no_voting_after=None,
        allow_edit=True,
        allow_vote=True,
    )
    assert query.search_ballot("bob", "Pizza") == BallotSummary("bob", "Pizza", "conf-bob", utc(2024, 5, 2, 10))
    assert query.list_election_rankings("Pizza") == [
        VoterElectionCandidateRank("bob", "Pizza", "Pepperoni", 1),
        VoterElectionCandidateRank("bob", "Pizza", "Margherita", 2),
        VoterElectionCandidateRank("carol", "Pizza", "Margherita", 1),
    ]
    assert query.list_voter_names() == ["bob", "carol"]


def test_new_election_has_default_policy(repos):
    _register(repos.command_model, "alice")
    repos.command_model.add_election(AUTH, "alice", "Board")

    election = repos.query_model.find_election_by_name("Board")
    assert election.secret_ballot is True
    assert election.allow_edit is True
    assert election.allow_vote is False
    assert election.no_voting_before is None
    assert election.no_voting_after is None


def test_update_election_clears_voting_window(repos):
    command = repos.command_model
    _register(command, "alice")
    command.add_election(AUTH, "alice", "Board")
    command.update_election(
        AUTH, "Board", ElectionUpdates(no_voting_before=utc(2024, 1, 1), no_voting_after=utc(2024, 2, 1))
    )
    command.update_election(AUTH, "Board", ElectionUpdates(clear_no_voting_before=True, allow_edit=False))

    election = repos.query_model.find_election_by_name("Board")
    assert election.no_voting_before is None
    assert election.no_voting_after == utc(2024, 2, 1)
    assert election.allow_edit is False


def test_user_updates(repos):
    command, query = repos.command_model, repos.query_model
    _register(command, "alice")

    command.set_password(AUTH, "alice", "salt2", "hash2")
    command.set_email(AUTH, "alice", "alice@new.example.com")

    user = query.find_user_by_name("alice")
    assert (user.salt, user.hash, user.email) == ("salt2", "hash2", "alice@new.example.com")
    assert query.search_user_by_email("alice@example.com") is None
    assert query.find_user_by_email("alice@new.example.com").name == "alice"


def test_updates_to_missing_user_are_ignored(repos):
    repos.command_model.set_role(AUTH, "ghost", Role.ADMIN)
    assert repos.query_model.search_user_by_name("ghost") is None
    assert repos.query_model.user_count() == 0


def test_find_missing_raises_not_found(repos):
    query = repos.query_model

    with pytest.raises(NotFoundError) as excinfo:
        query.find_user_by_name("ghost")
    assert excinfo.value.key == "ghost"
    with pytest.raises(NotFoundError):
        query.find_user_by_email("ghost@example.com")
    with pytest.raises(NotFoundError):
        query.find_election_by_name("Nowhere")
    assert query.search_election_by_name("Nowhere") is None
    assert query.search_ballot("ghost", "Nowhere") is None
    assert query.list_rankings("ghost", "Nowhere") == []


def test_casting_again_overwrites_ballot(repos):
    command, query = repos.command_model, repos.query_model
    _register(command, "alice", "bob")
    command.add_election(AUTH, "alice", "Pizza")
    command.add_candidates(AUTH, "Pizza", ["A", "B"])
    command.add_voters(AUTH, "Pizza", ["bob"])

    command.cast_ballot(AUTH, "bob", "Pizza", [Ranking("A", 1)], "first", utc(2024, 5, 2, 10))
    command.cast_ballot(AUTH, "bob", "Pizza", [Ranking("B", 1), Ranking("A", 2)], "second", utc(2024, 5, 2, 12))

    ballots = query.list_ballots("Pizza")
    assert len(ballots) == 1
    assert ballots[0].confirmation == "second"
    assert ballots[0].when_cast == utc(2024, 5, 2, 12)
    assert query.list_rankings("bob", "Pizza") == [Ranking("B", 1), Ranking("A", 2)]


def test_membership_is_idempotent(repos):
    command, query = repos.command_model, repos.query_model
    _register(command, "alice", "bob")
    command.add_election(AUTH, "alice", "Pizza")

    command.add_candidates(AUTH, "Pizza", ["A", "B", "A"])
    command.add_candidates(AUTH, "Pizza", ["B"])
    command.add_voters(AUTH, "Pizza", ["bob", "bob"])
    command.add_voters(AUTH, "Pizza", ["bob"])
    command.add_candidates(AUTH, "Pizza", [])

    assert query.list_candidates("Pizza") == ["A", "B"]
    assert query.candidate_count("Pizza") == 2
    assert query.voter_count("Pizza") == 1

    command.remove_candidates(AUTH, "Pizza", ["B", "Z"])
    command.remove_candidates(AUTH, "Pizza", ["B"])
    command.remove_voters(AUTH, "Pizza", ["bob"])
    command.remove_voters(AUTH, "Pizza", ["bob"])

    assert query.list_candidates("Pizza") == ["A"]
    assert query.list_voters_for_election("Pizza") == []


def test_delete_election_cascades(repos):
    _populate(repos)
    command, query = repos.command_model, repos.query_model

    command.delete_election(AUTH, "Pizza")

    assert query.search_election_by_name("Pizza") is None
    assert query.list_candidates("Pizza") == []
    assert query.list_voters_for_election("Pizza") == []
    assert query.list_ballots("Pizza") == []
    assert query.search_ballot("bob", "Pizza") is None
    assert query.list_voter_names() == []
    assert query.election_count() == 1
    assert query.list_candidates("Lunch") == ["Tacos"]
    assert query.user_count() == 3


def test_remove_user_keeps_ballots_and_owned_elections(repos):
    _populate(repos)
    command, query = repos.command_model, repos.query_model

    command.remove_user(AUTH, "bob")
    command.remove_user(AUTH, "ghost")

    assert query.search_user_by_name("bob") is None
    assert query.list_voters_for_election("Pizza") == ["carol"]
    assert query.search_ballot("bob", "Pizza") is not None
    assert query.find_election_by_name("Lunch").owner_name == "bob"
    assert query.user_count() == 2


def test_rename_election_moves_children(repos):
    _populate(repos)
    command, query = repos.command_model, repos.query_model

    command.update_election(AUTH, "Pizza", ElectionUpdates(new_election_name="Pie", allow_edit=False))

    assert query.search_election_by_name("Pizza") is None
    election = query.find_election_by_name("Pie")
    assert election.owner_name == "alice"
    assert election.allow_edit is False
    assert election.secret_ballot is False
    assert query.list_candidates("Pie") == ["Hawaiian", "Margherita", "Pepperoni"]
    assert query.list_voters_for_election("Pie") == ["bob", "carol"]
    assert [ballot.election_name for ballot in query.list_ballots("Pie")] == ["Pie", "Pie"]
    assert query.list_rankings("bob", "Pie")[0] == Ranking("Pepperoni", 1)
    assert query.list_candidates("Pizza") == []
    assert query.election_count() == 2


def test_set_rankings_by_confirmation(repos):
    _populate(repos)
    command, query = repos.command_model, repos.query_model

    command.set_rankings(AUTH, "conf-bob", "Pizza", [Ranking("Hawaiian", 1)])
    command.set_rankings(AUTH, "conf-carol", "Lunch", [Ranking("Tacos", 1)])

    assert query.list_rankings("bob", "Pizza") == [Ranking("Hawaiian", 1)]
    assert query.list_rankings("carol", "Pizza") == [Ranking("Margherita", 1)]


def test_update_when_cast_by_confirmation(repos):
    _populate(repos)
    command, query = repos.command_model, repos.query_model

    command.update_when_cast(AUTH, "conf-carol", utc(2024, 6, 1, 8, 30))

    assert query.search_ballot("carol", "Pizza").when_cast == utc(2024, 6, 1, 8, 30)
    assert query.search_ballot("bob", "Pizza").when_cast == utc(2024, 5, 2, 10)


def test_sync_position(repos):
    command, query = repos.command_model, repos.query_model
    assert query.last_synced() is None

    command.initialize_last_synced(0)
    command.initialize_last_synced(5)
    assert query.last_synced() == 0

    command.set_last_synced(7)
    command.initialize_last_synced(1)
    assert query.last_synced() == 7


def test_permissions(repos):
    query = repos.query_model
    assert query.role_has_permission(Role.ADMIN, Permission.MANAGE_USERS)
    assert not query.role_has_permission(Role.AUDITOR, Permission.TRANSFER_OWNER)
    assert query.list_permissions(Role.VOTER) == [Permission.VOTE, Permission.VIEW_APPLICATION]
    assert query.list_permissions(Role.NO_ACCESS) == []


@pytest.mark.parametrize("fixture_name, expected", [("memory_repos", 5), ("sql_repos", 7), ("dynamodb_repos", 2)])
def test_table_count_is_backend_specific(request, fixture_name, expected):
    assert request.getfixturevalue(fixture_name).query_model.table_count() == expected


def test_sub_second_local_times_read_back_identically(memory_repos, sql_repos, dynamodb_repos):
    local = timezone(timedelta(hours=2))
    cast_at = datetime(2024, 5, 2, 12, 0, 0, 123456, tzinfo=local)
    recast_at = datetime(2024, 5, 2, 12, 30, 0, 999999, tzinfo=local)
    opens_at = datetime(2024, 5, 1, 9, 0, 0, 500001, tzinfo=local)

    results = []
    for repos in (memory_repos, sql_repos, dynamodb_repos):
        command, query = repos.command_model, repos.query_model
        _register(command, "alice", "bob")
        command.add_election(AUTH, "alice", "Pizza")
        command.update_election(AUTH, "Pizza", ElectionUpdates(no_voting_before=opens_at))
        command.cast_ballot(AUTH, "bob", "Pizza", [Ranking("A", 1)], "conf-bob", cast_at)
        command.cast_ballot(AUTH, "alice", "Pizza", [Ranking("A", 1)], "conf-alice", cast_at)
        command.update_when_cast(AUTH, "conf-alice", recast_at)
        repos.event_log.append_event("alice", cast_at, ElectionCreated("alice", "Pizza"))
        results.append(
            (
                query.find_election_by_name("Pizza").no_voting_before,
                [ballot.when_cast for ballot in query.list_ballots("Pizza")],
                repos.event_log.events_to_sync(0)[0].when_happened,
            )
        )

    assert results[0] == results[1] == results[2]
    assert results[0] == (
        utc(2024, 5, 1, 7, 0, 0, 500000),
        [utc(2024, 5, 2, 10, 30, 0, 999000), utc(2024, 5, 2, 10, 0, 0, 123000)],
        utc(2024, 5, 2, 10, 0, 0, 123000),
    )
    assert results[0][2].tzinfo == timezone.utc
