"""LivePoll: one-vote-per-identity polling core with releasable locks and an audit trail."""

__version__ = '1.0.0'
