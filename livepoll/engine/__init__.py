"""Voting state machine, results projection and history views."""

from .catalog import DEFAULT_POLLS, PollCatalog, load_polls_file
from .errors import (
    AlreadyVoted,
    IntegrityFault,
    NoActiveVote,
    OptionNotFound,
    PollClosed,
    PollNotFound,
    VotingError,
)
from .history import IdentitySummary, VoteHistory, build_history, identity_statuses
from .results import OptionResult, PollResults, compute_results, project_poll
from .voting import OperationResult, VoterStatus, VotingEngine

__all__ = [
    'DEFAULT_POLLS',
    'PollCatalog',
    'load_polls_file',
    'AlreadyVoted',
    'IntegrityFault',
    'NoActiveVote',
    'OptionNotFound',
    'PollClosed',
    'PollNotFound',
    'VotingError',
    'IdentitySummary',
    'VoteHistory',
    'build_history',
    'identity_statuses',
    'OptionResult',
    'PollResults',
    'compute_results',
    'project_poll',
    'OperationResult',
    'VoterStatus',
    'VotingEngine',
]
