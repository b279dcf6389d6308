"""Unit tests for the history reader and per-identity moderation status."""

import pytest

from livepoll.engine import PollNotFound, identity_statuses
from livepoll.engine.history import latest_vote, newest_first
from livepoll.shared.models import AuditAction, AuditLogEntry, IdentityStatus, VoteRecord


def make_entry(entry_id, timestamp, action=AuditAction.VOTE):
    return AuditLogEntry(entry_id, action, 'poll_1', '1.1.1.1', 'details', timestamp)


class TestHistory:

    def test_history_scopes_to_poll(self, engine, cast_many):
        cast_many('poll_1', [('opt_1', '1.1.1.1')])
        cast_many('poll_2', [('opt_a', '1.1.1.1')])

        history = engine.get_history('poll_1')

        assert [vote.poll_id for vote in history.votes] == ['poll_1']
        assert [entry.poll_id for entry in history.audit] == ['poll_1']

    def test_audit_is_newest_first(self, engine):
        engine.cast_vote('poll_1', 'opt_1', '9.9.9.9')
        engine.release_identity('poll_1', '9.9.9.9')
        engine.cast_vote('poll_1', 'opt_3', '9.9.9.9')

        actions = [entry.action for entry in engine.get_history('poll_1').audit]

        assert actions == [AuditAction.REVOTE, AuditAction.RELEASE, AuditAction.VOTE]

    def test_identical_timestamps_fall_back_to_append_order(self, engine, clock):
        """Test: With a frozen clock, later appends still sort as newer."""
        clock.frozen = True
        engine.cast_vote('poll_1', 'opt_1', '9.9.9.9')
        engine.release_identity('poll_1', '9.9.9.9')
        engine.cast_vote('poll_1', 'opt_2', '9.9.9.9')

        history = engine.get_history('poll_1')

        assert len({entry.timestamp for entry in history.audit}) == 1
        assert [entry.action for entry in history.audit] == [
            AuditAction.REVOTE, AuditAction.RELEASE, AuditAction.VOTE
        ]

    def test_history_of_unknown_poll_raises(self, engine):
        with pytest.raises(PollNotFound):
            engine.get_history('poll_missing')

    def test_newest_first_orders_by_timestamp_not_insertion(self):
        entries = [
            make_entry('a', '2024-01-15T10:30:02Z'),
            make_entry('b', '2024-01-15T10:30:01Z'),
            make_entry('c', '2024-01-15T10:30:03Z'),
        ]
        assert [entry.id for entry in newest_first(entries)] == ['c', 'a', 'b']


class TestIdentityStatuses:

    def test_status_per_identity(self, engine, cast_many):
        cast_many('poll_1', [('opt_1', '1.1.1.1'), ('opt_2', '2.2.2.2')])
        engine.release_identity('poll_1', '2.2.2.2')

        statuses = {summary.identity: summary for summary in engine.identity_statuses('poll_1')}

        assert statuses['1.1.1.1'].status == IdentityStatus.LOCKED
        assert statuses['1.1.1.1'].active_vote_id is not None
        assert statuses['2.2.2.2'].status == IdentityStatus.RELEASED
        assert statuses['2.2.2.2'].active_vote_id is None

    def test_revoted_identity_is_locked_again(self, engine):
        engine.cast_vote('poll_1', 'opt_1', '9.9.9.9')
        engine.release_identity('poll_1', '9.9.9.9')
        engine.cast_vote('poll_1', 'opt_2', '9.9.9.9')

        [summary] = engine.identity_statuses('poll_1')

        assert summary.status == IdentityStatus.LOCKED
        assert summary.vote_count == 2

    def test_identities_listed_in_first_vote_order(self, cast_many, engine):
        cast_many('poll_1', [('opt_1', '3.3.3.3'), ('opt_1', '1.1.1.1'), ('opt_1', '2.2.2.2')])

        order = [summary.identity for summary in engine.identity_statuses('poll_1')]

        assert order == ['3.3.3.3', '1.1.1.1', '2.2.2.2']

    def test_tie_on_timestamp_uses_ledger_order(self):
        """Test: Same timestamp, the later ledger record decides the status."""
        timestamp = '2024-01-15T10:30:00Z'
        votes = [
            VoteRecord('v1', 'poll_1', 'opt_1', '5.5.5.5', timestamp, released=True),
            VoteRecord('v2', 'poll_1', 'opt_2', '5.5.5.5', timestamp, released=False),
        ]

        [summary] = identity_statuses(votes)

        assert summary.status == IdentityStatus.LOCKED
        assert summary.active_vote_id == 'v2'
        assert latest_vote(votes).id == 'v2'
        assert latest_vote(list(reversed(votes))).id == 'v1'

    def test_no_votes_no_statuses(self):
        assert identity_statuses([]) == []


class TestVoterStatus:

    def test_fresh_identity_can_vote(self, engine):
        status = engine.voter_status('poll_1', '1.1.1.1')

        assert status.can_vote is True
        assert status.has_active_vote is False
        assert status.to_dict()['next_vote_is_revote'] is False

    def test_locked_identity(self, engine):
        cast = engine.cast_vote('poll_1', 'opt_2', '1.1.1.1')

        status = engine.voter_status('poll_1', '1.1.1.1')

        assert status.can_vote is False
        assert status.active_vote_id == cast.vote_id
        assert status.active_option_id == 'opt_2'

    def test_released_identity_would_revote(self, engine):
        engine.cast_vote('poll_1', 'opt_2', '1.1.1.1')
        engine.release_identity('poll_1', '1.1.1.1')

        status = engine.voter_status('poll_1', '1.1.1.1')

        assert status.can_vote is True
        assert status.has_released_votes is True

    def test_unknown_poll_raises(self, engine):
        with pytest.raises(PollNotFound):
            engine.voter_status('poll_missing', '1.1.1.1')
