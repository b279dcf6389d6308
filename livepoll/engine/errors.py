"""Expected failures of the voting state machine."""


class VotingError(Exception):
    """Base class for rejected voting operations."""

    error_code = "VotingError"
    default_message = "Voting operation rejected."

    def __init__(self, message: str = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class PollNotFound(VotingError):
    error_code = "PollNotFound"
    default_message = "Poll not found"


class OptionNotFound(VotingError):
    error_code = "OptionNotFound"
    default_message = "Option not found on this poll"


class PollClosed(VotingError):
    error_code = "PollClosed"
    default_message = "This poll is not accepting votes."


class AlreadyVoted(VotingError):
    error_code = "AlreadyVoted"
    default_message = "Error: This IP has already voted on this poll."


class NoActiveVote(VotingError):
    error_code = "NoActiveVote"
    default_message = "No active vote found for this IP."


class IntegrityFault(VotingError):
    """More than one active vote exists for a single (poll, identity)."""
    error_code = "IntegrityFault"
    default_message = "Ledger integrity fault: multiple active votes for this IP."

    def __init__(self, message: str = None, vote_id: str = None):
        super().__init__(message)
        # The vote released before the fault was detected
        self.vote_id = vote_id
