"""
PostgreSQL storage backend for the vote ledger, audit log and catalog.
"""
import logging
import threading
from contextlib import contextmanager
from typing import List, Optional, Sequence, Tuple

import psycopg2
from psycopg2 import pool, errors
from psycopg2.extras import Json, RealDictCursor, execute_batch

from livepoll.shared.models import AuditAction, AuditLogEntry, Poll, PollOption, VoteRecord
from livepoll.storage.base import DuplicateActiveVote, LedgerStorage, LockTimeout, StorageError

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS polls (
    seq BIGSERIAL,
    id TEXT PRIMARY KEY,
    question TEXT NOT NULL,
    options JSONB NOT NULL,
    active BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS votes (
    seq BIGSERIAL,
    id TEXT PRIMARY KEY,
    poll_id TEXT NOT NULL,
    option_id TEXT NOT NULL,
    identity TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    released BOOLEAN NOT NULL DEFAULT FALSE
);

CREATE INDEX IF NOT EXISTS votes_poll_idx ON votes (poll_id, seq);

CREATE UNIQUE INDEX IF NOT EXISTS votes_one_active_per_identity
    ON votes (poll_id, identity) WHERE NOT released;

CREATE TABLE IF NOT EXISTS audit (
    seq BIGSERIAL,
    id TEXT PRIMARY KEY,
    action TEXT NOT NULL,
    poll_id TEXT NOT NULL,
    identity TEXT NOT NULL,
    details TEXT NOT NULL,
    timestamp TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS audit_poll_idx ON audit (poll_id, seq);
"""


class PostgresStorage(LedgerStorage):
    """PostgreSQL connection pool and ledger operations."""

    name = "postgres"

    def __init__(
        self,
        dsn: str,
        min_connections: int = 2,
        max_connections: int = 10,
        lock_blocking_timeout: float = 5.0
    ):
        """Initialize database connection pool and schema."""
        self.dsn = dsn
        self.min_connections = min_connections
        self.max_connections = max_connections
        self.lock_blocking_timeout = lock_blocking_timeout
        self.connection_pool = None
        # Connection held by lock() on the current thread
        self._scope = threading.local()
        self._init_connection_pool()
        self.ensure_schema()

    def _init_connection_pool(self):
        """Create database connection pool."""
        try:
            self.connection_pool = psycopg2.pool.ThreadedConnectionPool(
                self.min_connections,
                self.max_connections,
                dsn=self.dsn,
                connect_timeout=10
            )
            logger.info("Database connection pool created")
        except Exception as e:
            logger.error(f"Failed to create connection pool: {e}")
            raise StorageError(f"Connection pool creation failed: {e}") from e

    @contextmanager
    def get_connection(self):
        """
        Context manager for database connections.

        Commits on success, rolls back on any error. Inside lock() on the
        same thread, yields the lock's connection instead and leaves commit
        or rollback to the lock.

        Yields:
            Connection object from the pool.
        """
        scoped = getattr(self._scope, 'connection', None)
        if scoped is not None:
            yield scoped
            return

        connection = None
        try:
            connection = self.connection_pool.getconn()
            yield connection
            connection.commit()
        except Exception:
            if connection:
                connection.rollback()
            raise
        finally:
            if connection:
                self.connection_pool.putconn(connection)

    def ensure_schema(self):
        """Create tables and indexes if they do not exist."""
        try:
            with self.get_connection() as conn:
                with conn.cursor() as cursor:
                    cursor.execute(SCHEMA_SQL)
            logger.info("Database schema verified")
        except psycopg2.Error as e:
            logger.error(f"Failed to create schema: {e}")
            raise StorageError(f"Schema creation failed: {e}") from e

    @staticmethod
    def _row_to_poll(row) -> Poll:
        return Poll(
            id=row['id'],
            question=row['question'],
            options=[PollOption.from_dict(option) for option in row['options']],
            is_active=row['active'],
            created_at=row['created_at'],
        )

    @staticmethod
    def _row_to_vote(row) -> VoteRecord:
        return VoteRecord(
            id=row['id'],
            poll_id=row['poll_id'],
            option_id=row['option_id'],
            identity=row['identity'],
            timestamp=row['timestamp'],
            released=row['released'],
        )

    @staticmethod
    def _row_to_audit(row) -> AuditLogEntry:
        return AuditLogEntry(
            id=row['id'],
            action=AuditAction(row['action']),
            poll_id=row['poll_id'],
            identity=row['identity'],
            details=row['details'],
            timestamp=row['timestamp'],
        )

    def _fetch(self, query: str, params: tuple) -> list:
        try:
            with self.get_connection() as conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                    cursor.execute(query, params)
                    return cursor.fetchall()
        except psycopg2.Error as e:
            logger.error(f"Database query failed: {e}")
            raise StorageError(f"Query failed: {e}") from e

    def list_polls(self) -> List[Poll]:
        rows = self._fetch(
            "SELECT id, question, options, active, created_at FROM polls ORDER BY seq",
            ()
        )
        return [self._row_to_poll(row) for row in rows]

    def get_poll(self, poll_id: str) -> Optional[Poll]:
        rows = self._fetch(
            "SELECT id, question, options, active, created_at FROM polls WHERE id = %s",
            (poll_id,)
        )
        return self._row_to_poll(rows[0]) if rows else None

    def save_polls(self, polls: Sequence[Poll]) -> None:
        upsert_sql = """
        INSERT INTO polls (id, question, options, active, created_at)
        VALUES (%s, %s, %s, %s, %s)
        ON CONFLICT (id)
        DO UPDATE SET
            question = EXCLUDED.question,
            options = EXCLUDED.options,
            active = EXCLUDED.active
        """
        batch_data = [
            (
                poll.id,
                poll.question,
                Json([option.to_dict() for option in poll.options]),
                poll.is_active,
                poll.created_at,
            )
            for poll in polls
        ]
        try:
            with self.get_connection() as conn:
                with conn.cursor() as cursor:
                    execute_batch(cursor, upsert_sql, batch_data)
            logger.info(f"Saved {len(polls)} polls to PostgreSQL")
        except psycopg2.Error as e:
            logger.error(f"Failed to save polls: {e}")
            raise StorageError(f"Failed to save polls: {e}") from e

    def list_votes(self, poll_id: str, identity: Optional[str] = None) -> List[VoteRecord]:
        query = (
            "SELECT id, poll_id, option_id, identity, timestamp, released "
            "FROM votes WHERE poll_id = %s"
        )
        params = (poll_id,)
        if identity is not None:
            query += " AND identity = %s"
            params = (poll_id, identity)
        rows = self._fetch(query + " ORDER BY seq", params)
        return [self._row_to_vote(row) for row in rows]

    def list_audit(self, poll_id: str) -> List[AuditLogEntry]:
        rows = self._fetch(
            "SELECT id, action, poll_id, identity, details, timestamp "
            "FROM audit WHERE poll_id = %s ORDER BY seq",
            (poll_id,)
        )
        return [self._row_to_audit(row) for row in rows]

    def read_history(self, poll_id: str) -> Tuple[List[VoteRecord], List[AuditLogEntry]]:
        """Both SELECTs run in one REPEATABLE READ transaction, so they share a snapshot."""
        in_lock = getattr(self._scope, 'connection', None) is not None
        try:
            with self.get_connection() as conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                    if not in_lock:
                        cursor.execute("SET TRANSACTION ISOLATION LEVEL REPEATABLE READ READ ONLY")
                    cursor.execute(
                        "SELECT id, poll_id, option_id, identity, timestamp, released "
                        "FROM votes WHERE poll_id = %s ORDER BY seq",
                        (poll_id,)
                    )
                    vote_rows = cursor.fetchall()
                    cursor.execute(
                        "SELECT id, action, poll_id, identity, details, timestamp "
                        "FROM audit WHERE poll_id = %s ORDER BY seq",
                        (poll_id,)
                    )
                    audit_rows = cursor.fetchall()
        except psycopg2.Error as e:
            logger.error(f"Failed to read history for {poll_id}: {e}")
            raise StorageError(f"Failed to read history: {e}") from e

        return (
            [self._row_to_vote(row) for row in vote_rows],
            [self._row_to_audit(row) for row in audit_rows],
        )

    def _insert_audit(self, cursor, entry: AuditLogEntry):
        cursor.execute(
            """
            INSERT INTO audit (id, action, poll_id, identity, details, timestamp)
            VALUES (%s, %s, %s, %s, %s, %s)
            """,
            (
                entry.id,
                AuditAction(entry.action).value,
                entry.poll_id,
                entry.identity,
                entry.details,
                entry.timestamp,
            )
        )

    def append_vote(self, vote: VoteRecord, entry: AuditLogEntry) -> None:
        try:
            with self.get_connection() as conn:
                with conn.cursor() as cursor:
                    cursor.execute(
                        """
                        INSERT INTO votes (id, poll_id, option_id, identity, timestamp, released)
                        VALUES (%s, %s, %s, %s, %s, FALSE)
                        """,
                        (vote.id, vote.poll_id, vote.option_id, vote.identity, vote.timestamp)
                    )
                    self._insert_audit(cursor, entry)
            logger.debug(f"Vote {vote.id} appended to PostgreSQL ledger")
        except errors.UniqueViolation as e:
            logger.warning(f"Active vote already exists for {vote.identity} on {vote.poll_id}")
            raise DuplicateActiveVote(str(e)) from e
        except psycopg2.Error as e:
            logger.error(f"Failed to append vote {vote.id}: {e}")
            raise StorageError(f"Failed to append vote: {e}") from e

    def release_vote(self, vote: VoteRecord, entry: AuditLogEntry) -> VoteRecord:
        try:
            with self.get_connection() as conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                    cursor.execute(
                        """
                        UPDATE votes SET released = TRUE
                        WHERE id = %s AND released = FALSE
                        RETURNING id, poll_id, option_id, identity, timestamp, released
                        """,
                        (vote.id,)
                    )
                    row = cursor.fetchone()
                    if row is None:
                        raise StorageError(f"Vote {vote.id} not found or already released")
                    self._insert_audit(cursor, entry)
            logger.debug(f"Vote {vote.id} released in PostgreSQL ledger")
            return self._row_to_vote(row)
        except psycopg2.Error as e:
            logger.error(f"Failed to release vote {vote.id}: {e}")
            raise StorageError(f"Failed to release vote: {e}") from e

    @contextmanager
    def lock(self, poll_id: str, identity: str):
        """
        Transaction-scoped advisory lock keyed by (poll, identity).

        Ledger reads and writes made on this thread inside the scope run on
        the lock's connection, in the lock's transaction, so a writer holds
        one pooled connection. The body commits on exit and rolls back on
        error; either ends the transaction and frees the advisory lock.

        Raises:
            LockTimeout: If the lock is not granted within lock_blocking_timeout.
        """
        if getattr(self._scope, 'connection', None) is not None:
            raise StorageError("Nested ledger locks are not supported")

        try:
            conn = self.connection_pool.getconn()
        except psycopg2.Error as e:
            raise StorageError(f"Failed to get connection for lock: {e}") from e

        try:
            try:
                with conn.cursor() as cursor:
                    cursor.execute(
                        "SET LOCAL lock_timeout = %s",
                        (max(1, int(self.lock_blocking_timeout * 1000)),)
                    )
                    cursor.execute(
                        "SELECT pg_advisory_xact_lock(hashtext(%s), hashtext(%s))",
                        (poll_id, identity)
                    )
            except errors.LockNotAvailable as e:
                raise LockTimeout(f"Timed out waiting for lock on {poll_id}/{identity}") from e
            except psycopg2.Error as e:
                logger.error(f"Advisory lock error for {poll_id}/{identity}: {e}")
                raise StorageError(f"Lock failed: {e}") from e

            self._scope.connection = conn
            try:
                yield
            finally:
                self._scope.connection = None

            try:
                conn.commit()
            except psycopg2.Error as e:
                logger.error(f"Commit failed for {poll_id}/{identity}: {e}")
                raise StorageError(f"Commit failed: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            self.connection_pool.putconn(conn)

    def check_health(self) -> bool:
        try:
            self._fetch("SELECT 1 AS ok", ())
            return True
        except StorageError as e:
            logger.error(f"PostgreSQL health check failed: {e}")
            return False

    def close(self):
        """Close all database connections."""
        if self.connection_pool:
            self.connection_pool.closeall()
            logger.info("Database connection pool closed")
