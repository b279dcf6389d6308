"""In-process storage backend. Used by tests and single-process deployments."""
import logging
import threading
from contextlib import contextmanager
from typing import Dict, List, Optional, Sequence, Tuple

from livepoll.shared.models import AuditLogEntry, Poll, VoteRecord
from livepoll.storage.base import DuplicateActiveVote, LedgerStorage, LockTimeout, StorageError

logger = logging.getLogger(__name__)


class InMemoryStorage(LedgerStorage):
    """Thread-safe in-memory ledger, audit log and catalog."""

    name = "memory"

    def __init__(self, lock_timeout: float = 5.0):
        self.lock_timeout = lock_timeout
        self._polls: Dict[str, Poll] = {}
        self._votes: List[VoteRecord] = []
        self._audit: List[AuditLogEntry] = []
        # Guards the three tables; held only for the duration of one read or write
        self._data_lock = threading.RLock()
        # (poll_id, identity) -> [lock, number of threads holding or waiting]
        self._key_locks: Dict[tuple, list] = {}
        self._key_locks_guard = threading.Lock()

    def list_polls(self) -> List[Poll]:
        with self._data_lock:
            return list(self._polls.values())

    def get_poll(self, poll_id: str) -> Optional[Poll]:
        with self._data_lock:
            return self._polls.get(poll_id)

    def save_polls(self, polls: Sequence[Poll]) -> None:
        with self._data_lock:
            for poll in polls:
                self._polls[poll.id] = poll
        logger.debug(f"Saved {len(polls)} polls")

    def list_votes(self, poll_id: str, identity: Optional[str] = None) -> List[VoteRecord]:
        with self._data_lock:
            return [
                vote for vote in self._votes
                if vote.poll_id == poll_id and (identity is None or vote.identity == identity)
            ]

    def list_audit(self, poll_id: str) -> List[AuditLogEntry]:
        with self._data_lock:
            return [entry for entry in self._audit if entry.poll_id == poll_id]

    def read_history(self, poll_id: str) -> Tuple[List[VoteRecord], List[AuditLogEntry]]:
        with self._data_lock:
            votes = [vote for vote in self._votes if vote.poll_id == poll_id]
            audit = [entry for entry in self._audit if entry.poll_id == poll_id]
        return votes, audit

    def append_vote(self, vote: VoteRecord, entry: AuditLogEntry) -> None:
        with self._data_lock:
            for existing in self._votes:
                if (existing.poll_id == vote.poll_id
                        and existing.identity == vote.identity
                        and existing.is_active):
                    raise DuplicateActiveVote(
                        f"Active vote {existing.id} already exists for "
                        f"{vote.identity} on {vote.poll_id}"
                    )
            self._votes.append(vote)
            self._audit.append(entry)

    def release_vote(self, vote: VoteRecord, entry: AuditLogEntry) -> VoteRecord:
        with self._data_lock:
            for index, existing in enumerate(self._votes):
                if existing.id == vote.id:
                    if existing.released:
                        raise StorageError(f"Vote {vote.id} is already released")
                    released = existing.mark_released()
                    self._votes[index] = released
                    self._audit.append(entry)
                    return released
        raise StorageError(f"Vote {vote.id} not found")

    @contextmanager
    def lock(self, poll_id: str, identity: str):
        key = (poll_id, identity)
        with self._key_locks_guard:
            slot = self._key_locks.setdefault(key, [threading.Lock(), 0])
            slot[1] += 1
        key_lock = slot[0]

        try:
            if not key_lock.acquire(timeout=self.lock_timeout):
                raise LockTimeout(f"Timed out waiting for lock on {poll_id}/{identity}")
            try:
                yield
            finally:
                key_lock.release()
        finally:
            with self._key_locks_guard:
                slot[1] -= 1
                if slot[1] == 0:
                    del self._key_locks[key]
