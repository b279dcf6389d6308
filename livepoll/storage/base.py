"""
Storage capability used by the voting engine.

A backend keeps three logical tables (polls, votes, audit) and offers a
mutual-exclusion scope per (poll, identity) pair. The engine holds nothing
but a reference to a LedgerStorage, so tests inject the in-memory backend.
"""
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator, List, Optional, Sequence, Tuple

from livepoll.shared.models import AuditLogEntry, Poll, VoteRecord


class StorageError(Exception):
    """Custom exception for storage backend errors."""
    pass


class LockTimeout(StorageError):
    """Raised when a (poll, identity) lock cannot be acquired in time."""
    pass


class DuplicateActiveVote(StorageError):
    """Raised when a backend refuses a second active vote for one (poll, identity)."""
    pass


class LedgerStorage(ABC):
    """Abstract vote ledger, audit log and poll catalog store."""

    name = "abstract"

    # Catalog

    @abstractmethod
    def list_polls(self) -> List[Poll]:
        """Return every poll in catalog order."""

    @abstractmethod
    def get_poll(self, poll_id: str) -> Optional[Poll]:
        """Return the poll with the given id, or None."""

    @abstractmethod
    def save_polls(self, polls: Sequence[Poll]) -> None:
        """Insert or replace catalog entries."""

    # Ledger and audit (reads)

    @abstractmethod
    def list_votes(self, poll_id: str, identity: Optional[str] = None) -> List[VoteRecord]:
        """
        Return vote records for a poll in ledger append order.

        Args:
            poll_id: Poll identifier
            identity: Optional identity filter
        """

    @abstractmethod
    def list_audit(self, poll_id: str) -> List[AuditLogEntry]:
        """Return audit entries for a poll in append order."""

    @abstractmethod
    def read_history(self, poll_id: str) -> Tuple[List[VoteRecord], List[AuditLogEntry]]:
        """
        Return the vote records and audit entries of a poll from one snapshot.

        Both lists are in append order, and no write lands between them.
        """

    # Ledger and audit (writes, each one atomic unit)

    @abstractmethod
    def append_vote(self, vote: VoteRecord, entry: AuditLogEntry) -> None:
        """
        Append a vote record and its audit entry as one atomic unit.

        Raises:
            DuplicateActiveVote: If the backend detects another active vote
                for the same (poll, identity).
            StorageError: If the write fails; nothing is applied.
        """

    @abstractmethod
    def release_vote(self, vote: VoteRecord, entry: AuditLogEntry) -> VoteRecord:
        """
        Flip the released flag of an active vote and append its audit entry
        as one atomic unit.

        Returns:
            VoteRecord: The released record.
        """

    # Concurrency

    @abstractmethod
    @contextmanager
    def lock(self, poll_id: str, identity: str) -> Iterator[None]:
        """
        Mutual-exclusion scope for one (poll, identity) pair.

        Raises:
            LockTimeout: If the lock is not acquired within the configured wait.
        """

    # Lifecycle

    def check_health(self) -> bool:
        """Check backend health."""
        return True

    def close(self) -> None:
        """Release backend resources."""
        pass
