"""
Replays the event log into the projection.

The projection is whatever the CommandModel has applied so far; its position
in the log is the ``last_synced`` event id stored next to it. ``synchronize``
applies every later event in id order and advances the position after each
one, so an interrupted run resumes where it stopped.
"""
from __future__ import annotations

import logging
from typing import Callable

from vote.domain import events as ev
from vote.domain.models import ElectionUpdates
from vote.repositories.interfaces import CommandModel, EventLog, QueryModel

logger = logging.getLogger(__name__)


class Synchronizer:
    def __init__(self, event_log: EventLog, command_model: CommandModel, query_model: QueryModel) -> None:
        self.event_log = event_log
        self.command_model = command_model
        self.query_model = query_model
        self._handlers: dict[str, Callable[[str, ev.DomainEvent], None]] = {
            ev.UserRegistered.event_type: self._user_registered,
            ev.UserRoleChanged.event_type: self._user_role_changed,
            ev.UserRemoved.event_type: self._user_removed,
            ev.UserPasswordChanged.event_type: self._user_password_changed,
            ev.UserNameChanged.event_type: self._user_name_changed,
            ev.UserEmailChanged.event_type: self._user_email_changed,
            ev.ElectionCreated.event_type: self._election_created,
            ev.ElectionUpdated.event_type: self._election_updated,
            ev.ElectionDeleted.event_type: self._election_deleted,
            ev.CandidatesAdded.event_type: self._candidates_added,
            ev.CandidatesRemoved.event_type: self._candidates_removed,
            ev.VotersAdded.event_type: self._voters_added,
            ev.VotersRemoved.event_type: self._voters_removed,
            ev.BallotCast.event_type: self._ballot_cast,
            ev.BallotTimestampUpdated.event_type: self._ballot_timestamp_updated,
            ev.BallotRankingsChanged.event_type: self._ballot_rankings_changed,
        }

    def synchronize(self) -> int:
        """Apply pending events; return how many were applied."""
        last_synced = self.query_model.last_synced()
        if last_synced is None:
            self.command_model.initialize_last_synced(0)
            last_synced = 0
        pending = self.event_log.events_to_sync(last_synced)
        for envelope in pending:
            self.apply(envelope)
            self.command_model.set_last_synced(envelope.event_id)
        if pending:
            logger.info("Synchronized %d events (last event %d)", len(pending), pending[-1].event_id)
        return len(pending)

    def apply(self, envelope: ev.EventEnvelope) -> None:
        event = envelope.event
        try:
            handler = self._handlers[event.event_type]
        except KeyError:
            raise ValueError(f"No handler for event type {event.event_type}") from None
        handler(envelope.authority, event)

    # -------------------------- users --------------------------
    def _user_registered(self, authority: str, event: ev.UserRegistered) -> None:
        self.command_model.create_user(authority, event.name, event.email, event.salt, event.hash, event.role)

    def _user_role_changed(self, authority: str, event: ev.UserRoleChanged) -> None:
        self.command_model.set_role(authority, event.user_name, event.new_role)

    def _user_removed(self, authority: str, event: ev.UserRemoved) -> None:
        self.command_model.remove_user(authority, event.user_name)

    def _user_password_changed(self, authority: str, event: ev.UserPasswordChanged) -> None:
        self.command_model.set_password(authority, event.user_name, event.new_salt, event.new_hash)

    def _user_name_changed(self, authority: str, event: ev.UserNameChanged) -> None:
        self.command_model.set_user_name(authority, event.old_user_name, event.new_user_name)

    def _user_email_changed(self, authority: str, event: ev.UserEmailChanged) -> None:
        self.command_model.set_email(authority, event.user_name, event.new_email)

    # -------------------------- elections --------------------------
    def _election_created(self, authority: str, event: ev.ElectionCreated) -> None:
        self.command_model.add_election(authority, event.owner_name, event.election_name)

    def _election_updated(self, authority: str, event: ev.ElectionUpdated) -> None:
        updates = ElectionUpdates(
            new_election_name=event.new_election_name,
            secret_ballot=event.secret_ballot,
            clear_no_voting_before=event.clear_no_voting_before,
            no_voting_before=event.no_voting_before,
            clear_no_voting_after=event.clear_no_voting_after,
            no_voting_after=event.no_voting_after,
            allow_vote=event.allow_vote,
            allow_edit=event.allow_edit,
        )
        self.command_model.update_election(authority, event.election_name, updates)

    def _election_deleted(self, authority: str, event: ev.ElectionDeleted) -> None:
        self.command_model.delete_election(authority, event.election_name)

    def _candidates_added(self, authority: str, event: ev.CandidatesAdded) -> None:
        self.command_model.add_candidates(authority, event.election_name, list(event.candidate_names))

    def _candidates_removed(self, authority: str, event: ev.CandidatesRemoved) -> None:
        self.command_model.remove_candidates(authority, event.election_name, list(event.candidate_names))

    def _voters_added(self, authority: str, event: ev.VotersAdded) -> None:
        self.command_model.add_voters(authority, event.election_name, list(event.voter_names))

    def _voters_removed(self, authority: str, event: ev.VotersRemoved) -> None:
        self.command_model.remove_voters(authority, event.election_name, list(event.voter_names))

    # -------------------------- ballots --------------------------
    def _ballot_cast(self, authority: str, event: ev.BallotCast) -> None:
        self.command_model.cast_ballot(
            authority,
            event.voter_name,
            event.election_name,
            list(event.rankings),
            event.confirmation,
            event.when_cast,
        )

    def _ballot_timestamp_updated(self, authority: str, event: ev.BallotTimestampUpdated) -> None:
        self.command_model.update_when_cast(authority, event.confirmation, event.new_when_cast)

    def _ballot_rankings_changed(self, authority: str, event: ev.BallotRankingsChanged) -> None:
        self.command_model.set_rankings(authority, event.confirmation, event.election_name, list(event.new_rankings))
