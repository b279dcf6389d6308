"""Redis storage backend for the vote ledger, audit log and catalog."""

import logging
from contextlib import contextmanager
from typing import List, Optional, Sequence, Tuple

import redis
from redis.exceptions import LockError, WatchError

from livepoll.shared.models import AuditLogEntry, Poll, VoteRecord
from livepoll.storage.base import DuplicateActiveVote, LedgerStorage, LockTimeout, StorageError

logger = logging.getLogger(__name__)

MAX_WATCH_RETRIES = 5


class RedisStorage(LedgerStorage):
    """
    Ledger stored in Redis.

    Key layout (prefix defaults to "livepoll"):
        {prefix}:poll_ids                   LIST of poll ids in catalog order
        {prefix}:polls                      HASH poll id -> poll JSON
        {prefix}:vote:{vote_id}             STRING vote JSON
        {prefix}:votes:{poll_id}            LIST of vote ids in append order
        {prefix}:active:{poll_id}:{ip}      STRING id of the active vote
        {prefix}:audit:{poll_id}            LIST of audit JSON in append order
        {prefix}:lock:{poll_id}:{ip}        distributed lock
    """

    name = "redis"

    def __init__(
        self,
        client: Optional[redis.Redis] = None,
        host: str = 'localhost',
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        key_prefix: str = 'livepoll',
        lock_timeout: float = 10.0,
        lock_blocking_timeout: float = 5.0,
        max_connections: int = 50
    ):
        """Initialize Redis connection pool."""
        self.key_prefix = key_prefix
        self.lock_timeout = lock_timeout
        self.lock_blocking_timeout = lock_blocking_timeout
        self.pool = None

        if client is None:
            self.pool = redis.ConnectionPool(
                host=host,
                port=port,
                db=db,
                password=password,
                max_connections=max_connections,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_keepalive=True,
                health_check_interval=30
            )
            client = redis.Redis(connection_pool=self.pool)
        self.client = client
        self._test_connection()

    def _test_connection(self):
        """Test Redis connection on initialization."""
        try:
            self.client.ping()
            logger.info("Redis connection established successfully")
        except redis.RedisError as e:
            logger.error(f"Failed to connect to Redis: {e}")
            raise StorageError(f"Redis connection failed: {e}") from e

    def _key(self, *parts: str) -> str:
        return ':'.join((self.key_prefix,) + parts)

    def list_polls(self) -> List[Poll]:
        try:
            poll_ids = self.client.lrange(self._key('poll_ids'), 0, -1)
            if not poll_ids:
                return []
            raw = self.client.hmget(self._key('polls'), poll_ids)
        except redis.RedisError as e:
            logger.error(f"Redis error listing polls: {e}")
            raise StorageError(f"Failed to list polls: {e}") from e
        return [Poll.from_json(item) for item in raw if item]

    def get_poll(self, poll_id: str) -> Optional[Poll]:
        try:
            raw = self.client.hget(self._key('polls'), poll_id)
        except redis.RedisError as e:
            logger.error(f"Redis error getting poll {poll_id}: {e}")
            raise StorageError(f"Failed to get poll {poll_id}: {e}") from e
        return Poll.from_json(raw) if raw else None

    def save_polls(self, polls: Sequence[Poll]) -> None:
        try:
            known = set(self.client.lrange(self._key('poll_ids'), 0, -1))
            pipe = self.client.pipeline(transaction=True)
            for poll in polls:
                pipe.hset(self._key('polls'), poll.id, poll.to_json())
                if poll.id not in known:
                    pipe.rpush(self._key('poll_ids'), poll.id)
                    known.add(poll.id)
            pipe.execute()
            logger.info(f"Saved {len(polls)} polls to Redis")
        except redis.RedisError as e:
            logger.error(f"Redis error saving polls: {e}")
            raise StorageError(f"Failed to save polls: {e}") from e

    def list_votes(self, poll_id: str, identity: Optional[str] = None) -> List[VoteRecord]:
        try:
            vote_ids = self.client.lrange(self._key('votes', poll_id), 0, -1)
            if not vote_ids:
                return []
            raw = self.client.mget([self._key('vote', vote_id) for vote_id in vote_ids])
        except redis.RedisError as e:
            logger.error(f"Redis error listing votes for {poll_id}: {e}")
            raise StorageError(f"Failed to list votes: {e}") from e

        votes = [VoteRecord.from_json(item) for item in raw if item]
        if identity is not None:
            votes = [vote for vote in votes if vote.identity == identity]
        return votes

    def list_audit(self, poll_id: str) -> List[AuditLogEntry]:
        try:
            raw = self.client.lrange(self._key('audit', poll_id), 0, -1)
        except redis.RedisError as e:
            logger.error(f"Redis error listing audit for {poll_id}: {e}")
            raise StorageError(f"Failed to list audit entries: {e}") from e
        return [AuditLogEntry.from_json(item) for item in raw]

    def read_history(self, poll_id: str) -> Tuple[List[VoteRecord], List[AuditLogEntry]]:
        """Read votes and audit together; retried if either list changes mid-read."""
        votes_key = self._key('votes', poll_id)
        audit_key = self._key('audit', poll_id)

        for attempt in range(MAX_WATCH_RETRIES):
            try:
                with self.client.pipeline() as pipe:
                    # Every write appends to the audit list, so watching it catches releases too
                    pipe.watch(votes_key, audit_key)
                    vote_ids = pipe.lrange(votes_key, 0, -1)
                    raw_votes = pipe.mget([self._key('vote', vote_id) for vote_id in vote_ids]) if vote_ids else []
                    raw_audit = pipe.lrange(audit_key, 0, -1)
                    pipe.multi()
                    pipe.execute()
            except WatchError:
                logger.warning(f"Concurrent write on {poll_id} during history read, retrying (attempt {attempt + 1})")
                continue
            except redis.RedisError as e:
                logger.error(f"Redis error reading history for {poll_id}: {e}")
                raise StorageError(f"Failed to read history: {e}") from e

            votes = [VoteRecord.from_json(item) for item in raw_votes if item]
            audit = [AuditLogEntry.from_json(item) for item in raw_audit]
            return votes, audit

        raise StorageError(f"Gave up reading history for {poll_id} after {MAX_WATCH_RETRIES} attempts")

    def append_vote(self, vote: VoteRecord, entry: AuditLogEntry) -> None:
        active_key = self._key('active', vote.poll_id, vote.identity)

        for attempt in range(MAX_WATCH_RETRIES):
            try:
                with self.client.pipeline() as pipe:
                    pipe.watch(active_key)
                    existing = pipe.get(active_key)
                    if existing:
                        raise DuplicateActiveVote(
                            f"Active vote {existing} already exists for "
                            f"{vote.identity} on {vote.poll_id}"
                        )
                    pipe.multi()
                    pipe.set(self._key('vote', vote.id), vote.to_json())
                    pipe.rpush(self._key('votes', vote.poll_id), vote.id)
                    pipe.set(active_key, vote.id)
                    pipe.rpush(self._key('audit', entry.poll_id), entry.to_json())
                    pipe.execute()
                    logger.debug(f"Vote {vote.id} appended to Redis ledger")
                    return
            except WatchError:
                logger.warning(f"Concurrent change on {active_key}, retrying (attempt {attempt + 1})")
            except redis.RedisError as e:
                logger.error(f"Redis error appending vote {vote.id}: {e}")
                raise StorageError(f"Failed to append vote: {e}") from e

        raise StorageError(f"Gave up appending vote {vote.id} after {MAX_WATCH_RETRIES} attempts")

    def release_vote(self, vote: VoteRecord, entry: AuditLogEntry) -> VoteRecord:
        vote_key = self._key('vote', vote.id)
        active_key = self._key('active', vote.poll_id, vote.identity)

        for attempt in range(MAX_WATCH_RETRIES):
            try:
                with self.client.pipeline() as pipe:
                    pipe.watch(vote_key, active_key)
                    raw = pipe.get(vote_key)
                    if not raw:
                        raise StorageError(f"Vote {vote.id} not found")
                    released = VoteRecord.from_json(raw).mark_released()
                    active_id = pipe.get(active_key)

                    pipe.multi()
                    pipe.set(vote_key, released.to_json())
                    if active_id == vote.id:
                        pipe.delete(active_key)
                    pipe.rpush(self._key('audit', entry.poll_id), entry.to_json())
                    pipe.execute()
                    logger.debug(f"Vote {vote.id} released in Redis ledger")
                    return released
            except ValueError as e:
                raise StorageError(str(e)) from e
            except WatchError:
                logger.warning(f"Concurrent change on {vote_key}, retrying (attempt {attempt + 1})")
            except redis.RedisError as e:
                logger.error(f"Redis error releasing vote {vote.id}: {e}")
                raise StorageError(f"Failed to release vote: {e}") from e

        raise StorageError(f"Gave up releasing vote {vote.id} after {MAX_WATCH_RETRIES} attempts")

    @contextmanager
    def lock(self, poll_id: str, identity: str):
        redis_lock = self.client.lock(
            self._key('lock', poll_id, identity),
            timeout=self.lock_timeout,
            blocking_timeout=self.lock_blocking_timeout
        )
        try:
            acquired = redis_lock.acquire()
        except redis.RedisError as e:
            logger.error(f"Redis error acquiring lock for {poll_id}/{identity}: {e}")
            raise StorageError(f"Failed to acquire lock: {e}") from e
        if not acquired:
            raise LockTimeout(f"Timed out waiting for lock on {poll_id}/{identity}")

        try:
            yield
        finally:
            try:
                redis_lock.release()
            except LockError as e:
                # Lease expired before the critical section finished
                logger.warning(f"Lock on {poll_id}/{identity} was lost before release: {e}")

    def check_health(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            return False

    def close(self):
        """Close Redis connection pool."""
        try:
            if self.pool:
                self.pool.disconnect()
            logger.info("Redis connection pool closed")
        except Exception as e:
            logger.error(f"Error closing Redis connection: {e}")
