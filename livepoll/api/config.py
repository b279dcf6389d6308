"""Configuration management for the LivePoll API service."""
from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Service configuration
    SERVICE_NAME: str = "livepoll-api"
    API_VERSION: str = "v1"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Server configuration
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Storage backend: memory, redis or postgres
    STORAGE_BACKEND: str = "memory"

    # Redis configuration
    REDIS_HOST: str = "redis"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: Optional[str] = None
    REDIS_KEY_PREFIX: str = "livepoll"
    REDIS_MAX_CONNECTIONS: int = 50

    # PostgreSQL configuration
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "livepoll_db"
    POSTGRES_USER: str = "livepoll_user"
    POSTGRES_PASSWORD: str = "livepoll_pass"
    POSTGRES_POOL_MIN_SIZE: int = 2
    POSTGRES_POOL_MAX_SIZE: int = 10

    # Locking around check-then-act sequences
    LOCK_TIMEOUT_SECONDS: float = 10.0
    LOCK_BLOCKING_TIMEOUT_SECONDS: float = 5.0

    # Poll catalog
    POLLS_FILE: Optional[str] = None
    SEED_DEFAULT_POLLS: bool = True

    # Voting rules
    ENFORCE_OPTION_CHECK: bool = True
    ENFORCE_ACTIVE_POLLS: bool = True

    # Rate limiting
    RATE_LIMIT: str = "60/minute"

    # CORS settings
    CORS_ORIGINS: list = ["*"]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: list = ["*"]
    CORS_ALLOW_HEADERS: list = ["*"]

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def postgres_dsn(self) -> str:
        """Generate PostgreSQL connection string."""
        return (
            f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )


settings = Settings()
