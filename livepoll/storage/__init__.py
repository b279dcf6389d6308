"""Storage backends for the vote ledger, audit log and poll catalog."""

from .base import DuplicateActiveVote, LedgerStorage, LockTimeout, StorageError
from .memory import InMemoryStorage

__all__ = [
    'DuplicateActiveVote',
    'LedgerStorage',
    'LockTimeout',
    'StorageError',
    'InMemoryStorage',
    'create_storage',
]


def create_storage(settings) -> LedgerStorage:
    """
    Build the backend selected by settings.STORAGE_BACKEND.

    Redis and PostgreSQL backends are imported lazily so the in-memory
    backend works without their client libraries reachable.
    """
    backend = settings.STORAGE_BACKEND.lower()

    if backend == "memory":
        return InMemoryStorage(lock_timeout=settings.LOCK_BLOCKING_TIMEOUT_SECONDS)

    if backend == "redis":
        from .redis_store import RedisStorage
        return RedisStorage(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            db=settings.REDIS_DB,
            password=settings.REDIS_PASSWORD,
            key_prefix=settings.REDIS_KEY_PREFIX,
            lock_timeout=settings.LOCK_TIMEOUT_SECONDS,
            lock_blocking_timeout=settings.LOCK_BLOCKING_TIMEOUT_SECONDS,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
        )

    if backend == "postgres":
        from .postgres import PostgresStorage
        return PostgresStorage(
            dsn=settings.postgres_dsn,
            min_connections=settings.POSTGRES_POOL_MIN_SIZE,
            max_connections=settings.POSTGRES_POOL_MAX_SIZE,
            lock_blocking_timeout=settings.LOCK_BLOCKING_TIMEOUT_SECONDS,
        )

    raise ValueError(f"Unknown storage backend: {settings.STORAGE_BACKEND!r}")
