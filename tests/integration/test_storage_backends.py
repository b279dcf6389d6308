"""Integration tests for the Redis and PostgreSQL storage backends.

Each test runs the same voting lifecycle against a real service. Tests skip
when the service is not reachable.

Requires: Redis and/or PostgreSQL running (see REDIS_HOST, POSTGRES_TEST_DSN)
"""

import threading
import uuid

import pytest

from livepoll.engine import DEFAULT_POLLS, VotingEngine
from livepoll.shared.models import AuditAction, Poll, PollOption
from livepoll.storage import StorageError


def unique_poll() -> Poll:
    """Fresh poll id so runs against a shared service never collide."""
    return Poll(
        id=f"poll_{uuid.uuid4().hex[:8]}",
        question="Integration poll?",
        options=[PollOption("opt_1", "One"), PollOption("opt_2", "Two")],
    )


@pytest.fixture
def redis_storage(redis_settings):
    from livepoll.storage.redis_store import RedisStorage

    try:
        storage = RedisStorage(key_prefix=f"livepoll_test_{uuid.uuid4().hex[:8]}", **redis_settings)
    except StorageError:
        pytest.skip("Redis not available")

    yield storage

    keys = storage.client.keys(f"{storage.key_prefix}:*")
    if keys:
        storage.client.delete(*keys)
    storage.close()


@pytest.fixture
def postgres_storage(postgres_dsn):
    from livepoll.storage.postgres import PostgresStorage

    try:
        storage = PostgresStorage(dsn=postgres_dsn, min_connections=1, max_connections=20)
    except StorageError:
        pytest.skip("PostgreSQL not available")

    yield storage

    storage.close()


@pytest.fixture(params=["redis_storage", "postgres_storage"])
def backend(request):
    return request.getfixturevalue(request.param)


@pytest.mark.docker
class TestStorageBackends:
    """Lifecycle tests shared by every external backend."""

    def test_catalog_round_trip(self, backend):
        poll = unique_poll()
        backend.save_polls([poll])

        stored = backend.get_poll(poll.id)

        assert stored.question == poll.question
        assert [option.id for option in stored.options] == ["opt_1", "opt_2"]
        assert poll.id in [p.id for p in backend.list_polls()]

    def test_vote_release_revote(self, backend):
        """Test: Lifecycle and audit ordering against a real backend."""
        poll = unique_poll()
        backend.save_polls([poll])
        engine = VotingEngine(backend)

        assert engine.cast_vote(poll.id, "opt_1", "9.9.9.9").action == AuditAction.VOTE
        assert engine.cast_vote(poll.id, "opt_2", "9.9.9.9").error == "AlreadyVoted"
        assert engine.release_identity(poll.id, "9.9.9.9").success is True
        assert engine.cast_vote(poll.id, "opt_2", "9.9.9.9").action == AuditAction.REVOTE

        history = engine.get_history(poll.id)
        assert [vote.released for vote in history.votes] == [True, False]
        assert [entry.action for entry in history.audit] == [
            AuditAction.REVOTE, AuditAction.RELEASE, AuditAction.VOTE
        ]
        assert engine.get_results(poll.id).counts() == {"opt_1": 0, "opt_2": 1}

    def test_concurrent_votes_one_winner(self, backend):
        poll = unique_poll()
        backend.save_polls([poll])
        engine = VotingEngine(backend)
        results = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            results.append(engine.cast_vote(poll.id, "opt_1", "7.7.7.7"))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sum(1 for result in results if result.success) == 1
        assert len(backend.list_votes(poll.id)) == 1
        assert len(backend.list_audit(poll.id)) == 1

    def test_health(self, backend):
        assert backend.check_health() is True


@pytest.mark.docker
def test_default_polls_seed_into_redis(redis_storage):
    redis_storage.save_polls(DEFAULT_POLLS)
    redis_storage.save_polls(DEFAULT_POLLS)

    assert [poll.id for poll in redis_storage.list_polls()] == ["poll_1", "poll_2"]


@pytest.mark.docker
def test_postgres_writers_hold_one_connection_each(postgres_dsn):
    """Test: As many concurrent writers as pooled connections all succeed.

    Each writer's reads and writes run on its lock connection, so a pool of
    four serves four writers on different identities at once.
    """
    from livepoll.storage.postgres import PostgresStorage

    try:
        storage = PostgresStorage(dsn=postgres_dsn, min_connections=1, max_connections=4)
    except StorageError:
        pytest.skip("PostgreSQL not available")

    try:
        poll = unique_poll()
        storage.save_polls([poll])
        engine = VotingEngine(storage)
        results = []
        barrier = threading.Barrier(4)

        def worker(identity):
            barrier.wait()
            results.append(engine.cast_vote(poll.id, "opt_1", identity))

        threads = [threading.Thread(target=worker, args=(f"10.4.0.{i}",)) for i in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert [result.success for result in results] == [True] * 4
        votes, audit = storage.read_history(poll.id)
        assert len(votes) == len(audit) == 4
    finally:
        storage.close()


@pytest.mark.docker
def test_postgres_lock_timeout(postgres_dsn):
    from livepoll.storage import LockTimeout
    from livepoll.storage.postgres import PostgresStorage

    try:
        storage = PostgresStorage(dsn=postgres_dsn, lock_blocking_timeout=0.2)
    except StorageError:
        pytest.skip("PostgreSQL not available")

    errors = []

    def contender():
        try:
            with storage.lock("poll_x", "8.8.8.8"):
                pass
        except LockTimeout as e:
            errors.append(e)

    try:
        with storage.lock("poll_x", "8.8.8.8"):
            thread = threading.Thread(target=contender)
            thread.start()
            thread.join()
        assert len(errors) == 1
    finally:
        storage.close()
