"""
Results projection.

Counts are derived from the ledger on every call and never stored.
"""
from dataclasses import dataclass, field
from typing import Dict, Any, Iterable, List, Tuple

from livepoll.shared.models import Poll, VoteRecord


@dataclass(frozen=True)
class OptionResult:
    """Current vote count of one option."""
    option_id: str
    text: str
    votes: int

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.option_id, 'text': self.text, 'votes': self.votes}


@dataclass
class PollResults:
    """A poll together with its projected per-option counts."""
    poll: Poll
    options: List[OptionResult] = field(default_factory=list)

    @property
    def total_votes(self) -> int:
        return sum(option.votes for option in self.options)

    def counts(self) -> Dict[str, int]:
        return {option.option_id: option.votes for option in self.options}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.poll.id,
            'question': self.poll.question,
            'is_active': self.poll.is_active,
            'created_at': self.poll.created_at,
            'options': [option.to_dict() for option in self.options],
            'total_votes': self.total_votes,
        }


def compute_results(poll: Poll, votes: Iterable[VoteRecord]) -> List[Tuple[str, int]]:
    """
    Count active votes per option, in the poll's option order.

    Released records and records of other polls are ignored. Votes naming
    an option that is not in the catalog are not counted.

    Args:
        poll: Poll definition
        votes: Ledger records (any poll)

    Returns:
        list: (option_id, count) pairs
    """
    counts = {option.id: 0 for option in poll.options}
    for vote in votes:
        if vote.poll_id != poll.id or vote.released:
            continue
        if vote.option_id in counts:
            counts[vote.option_id] += 1
    return [(option.id, counts[option.id]) for option in poll.options]


def project_poll(poll: Poll, votes: Iterable[VoteRecord]) -> PollResults:
    """Build the PollResults view of a poll from ledger records."""
    texts = {option.id: option.text for option in poll.options}
    return PollResults(
        poll=poll,
        options=[
            OptionResult(option_id=option_id, text=texts[option_id], votes=count)
            for option_id, count in compute_results(poll, votes)
        ],
    )
