"""
Poll catalog access.

Polls are read-mostly definitions. The catalog is seeded once, either from
the built-in demo polls or from a JSON file holding a list of polls.
"""
import json
import logging
from pathlib import Path
from typing import List, Optional, Sequence

from livepoll.engine.errors import PollNotFound
from livepoll.shared.models import Poll, PollOption
from livepoll.storage.base import LedgerStorage

logger = logging.getLogger(__name__)


DEFAULT_POLLS = [
    Poll(
        id='poll_1',
        question='Which frontend framework do you prefer?',
        options=[
            PollOption('opt_1', 'React'),
            PollOption('opt_2', 'Vue'),
            PollOption('opt_3', 'Angular'),
            PollOption('opt_4', 'Svelte'),
        ],
    ),
    Poll(
        id='poll_2',
        question='What is your favorite backend language?',
        options=[
            PollOption('opt_a', 'PHP'),
            PollOption('opt_b', 'Node.js'),
            PollOption('opt_c', 'Python'),
            PollOption('opt_d', 'Go'),
        ],
    ),
]


def load_polls_file(path: str) -> List[Poll]:
    """
    Load poll definitions from a JSON file.

    The file holds either a list of polls or {"polls": [...]}.

    Raises:
        ValueError: If the file content is not a list of polls.
    """
    with open(Path(path), 'r', encoding='utf-8') as f:
        data = json.load(f)

    if isinstance(data, dict):
        data = data.get('polls')
    if not isinstance(data, list):
        raise ValueError(f"Polls file {path} must contain a list of polls")

    polls = [Poll.from_dict(item) for item in data]
    ids = [poll.id for poll in polls]
    if len(ids) != len(set(ids)):
        raise ValueError(f"Polls file {path} contains duplicate poll ids")
    return polls


class PollCatalog:
    """Read access to poll definitions held by a storage backend."""

    def __init__(self, storage: LedgerStorage):
        self.storage = storage

    def get(self, poll_id: str) -> Poll:
        """
        Return the poll with the given id.

        Raises:
            PollNotFound: If no such poll exists.
        """
        poll = self.storage.get_poll(poll_id)
        if poll is None:
            raise PollNotFound()
        return poll

    def find(self, poll_id: str) -> Optional[Poll]:
        return self.storage.get_poll(poll_id)

    def list(self) -> List[Poll]:
        return self.storage.list_polls()

    def seed(self, polls: Sequence[Poll], overwrite: bool = False) -> int:
        """
        Store polls in the catalog.

        Existing polls are kept unless overwrite is set, so options of a
        poll that already has votes are never dropped by a reseed.

        Returns:
            int: Number of polls written
        """
        if overwrite:
            to_write = list(polls)
        else:
            to_write = [poll for poll in polls if self.storage.get_poll(poll.id) is None]

        if to_write:
            self.storage.save_polls(to_write)
        logger.info(f"Catalog seeded with {len(to_write)} of {len(polls)} polls")
        return len(to_write)
