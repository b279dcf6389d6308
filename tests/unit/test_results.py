"""Unit tests for the results projection."""

from livepoll.engine import compute_results, project_poll
from livepoll.engine.catalog import DEFAULT_POLLS
from livepoll.shared.models import VoteRecord

POLL_1 = DEFAULT_POLLS[0]


def make_vote(vote_id, option_id, identity='1.1.1.1', poll_id='poll_1', released=False):
    return VoteRecord(vote_id, poll_id, option_id, identity, '2024-01-15T10:30:00Z', released)


class TestComputeResults:

    def test_no_votes_gives_zero_for_every_option_in_order(self):
        assert compute_results(POLL_1, []) == [
            ('opt_1', 0), ('opt_2', 0), ('opt_3', 0), ('opt_4', 0)
        ]

    def test_released_votes_are_not_counted(self):
        votes = [
            make_vote('v1', 'opt_1', released=True),
            make_vote('v2', 'opt_1', identity='2.2.2.2'),
            make_vote('v3', 'opt_3', identity='3.3.3.3'),
        ]

        assert dict(compute_results(POLL_1, votes)) == {
            'opt_1': 1, 'opt_2': 0, 'opt_3': 1, 'opt_4': 0
        }

    def test_votes_of_other_polls_are_ignored(self):
        votes = [make_vote('v1', 'opt_1', poll_id='poll_2')]
        assert sum(count for _, count in compute_results(POLL_1, votes)) == 0

    def test_order_follows_poll_not_counts(self):
        votes = [make_vote(f'v{i}', 'opt_4', identity=f'10.0.0.{i}') for i in range(3)]

        option_ids = [option_id for option_id, _ in compute_results(POLL_1, votes)]

        assert option_ids == ['opt_1', 'opt_2', 'opt_3', 'opt_4']

    def test_unknown_option_ids_are_not_counted(self):
        votes = [make_vote('v1', 'opt_zzz')]
        assert sum(count for _, count in compute_results(POLL_1, votes)) == 0


class TestProjection:

    def test_total_matches_number_of_active_votes(self, engine, cast_many, storage):
        """Test: Sum of option counts equals unreleased records of the poll."""
        cast_many('poll_1', [
            ('opt_1', '1.1.1.1'),
            ('opt_2', '2.2.2.2'),
            ('opt_2', '3.3.3.3'),
            ('opt_4', '4.4.4.4'),
        ])
        engine.release_identity('poll_1', '2.2.2.2')

        results = engine.get_results('poll_1')
        active = [vote for vote in storage.list_votes('poll_1') if not vote.released]

        assert results.total_votes == len(active) == 3
        assert results.counts() == {'opt_1': 1, 'opt_2': 1, 'opt_3': 0, 'opt_4': 1}

    def test_projection_reflects_release_immediately(self, engine):
        engine.cast_vote('poll_1', 'opt_1', '9.9.9.9')
        assert engine.get_results('poll_1').counts()['opt_1'] == 1

        engine.release_identity('poll_1', '9.9.9.9')

        assert engine.get_results('poll_1').counts()['opt_1'] == 0

    def test_to_dict_shape(self):
        data = project_poll(POLL_1, [make_vote('v1', 'opt_2')]).to_dict()

        assert data['id'] == 'poll_1'
        assert data['total_votes'] == 1
        assert data['options'][1] == {'id': 'opt_2', 'text': 'Vue', 'votes': 1}

    def test_list_polls_projects_every_poll(self, engine):
        engine.cast_vote('poll_2', 'opt_c', '1.1.1.1')

        polls = {results.poll.id: results for results in engine.list_polls()}

        assert set(polls) == {'poll_1', 'poll_2'}
        assert polls['poll_1'].total_votes == 0
        assert polls['poll_2'].counts()['opt_c'] == 1

    def test_reads_are_idempotent(self, engine, cast_many):
        cast_many('poll_1', [('opt_1', '1.1.1.1'), ('opt_3', '2.2.2.2')])

        assert engine.get_results('poll_1') == engine.get_results('poll_1')
        assert engine.get_history('poll_1') == engine.get_history('poll_1')
