"""Pytest fixtures shared by unit and integration tests.

Every test gets a fresh in-memory storage seeded with the demo polls, and
an engine whose clock can be pinned to force identical timestamps.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, List

import pytest

from livepoll.engine import DEFAULT_POLLS, VotingEngine
from livepoll.shared.models import Poll, PollOption
from livepoll.storage import InMemoryStorage


class StepClock:
    """Deterministic clock: each call advances by one second unless frozen."""

    def __init__(self, start: datetime = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)):
        self.current = start
        self.frozen = False

    def __call__(self) -> str:
        value = self.current.isoformat().replace('+00:00', 'Z')
        if not self.frozen:
            self.current += timedelta(seconds=1)
        return value


@pytest.fixture
def storage() -> InMemoryStorage:
    """Empty in-memory storage with the demo polls in its catalog."""
    store = InMemoryStorage(lock_timeout=2.0)
    store.save_polls(DEFAULT_POLLS)
    return store


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def engine(storage: InMemoryStorage, clock: StepClock) -> VotingEngine:
    """Voting engine with option and active-poll checks enabled."""
    return VotingEngine(storage, clock=clock)


@pytest.fixture
def closed_poll(storage: InMemoryStorage) -> Poll:
    """A poll whose active flag is off."""
    poll = Poll(
        id='poll_closed',
        question='Closed question?',
        options=[PollOption('yes', 'Yes'), PollOption('no', 'No')],
        is_active=False,
    )
    storage.save_polls([poll])
    return poll


@pytest.fixture
def cast_many(engine: VotingEngine) -> Callable[[str, List[tuple]], None]:
    """Helper fixture to cast several (option_id, identity) votes on a poll."""
    def _cast(poll_id: str, votes: List[tuple]):
        for option_id, identity in votes:
            result = engine.cast_vote(poll_id, option_id, identity)
            assert result.success, result.message

    return _cast


def pytest_configure(config):
    """Register custom pytest markers."""
    config.addinivalue_line(
        "markers",
        "docker: mark test as requiring a running Redis or PostgreSQL service"
    )
