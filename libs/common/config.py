from functools import lru_cache
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global application settings."""

    # Application
    ENVIRONMENT: Literal["local", "development", "production"] = "local"
    LOG_LEVEL: str = "INFO"
    PUBLIC_BASE_URL: str = "http://localhost:3000"

    # Database
    DATABASE_URL: str
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800
    DB_ECHO: bool = False

    # Store guard: a unit of work that does not finish in time fails closed
    STORE_TIMEOUT_SECONDS: float = 5.0
    LEDGER_CAS_MAX_RETRIES: int = 3

    # Auth (back office)
    JWT_SECRET: str = "test-jwt-secret"
    JWT_ALG: str = "HS256"

    # Redis (ARQ queue)
    REDIS_URL: str = "redis://localhost:6379/0"

    # HTTP rate limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_STORAGE_URI: str = "memory://"
    EARN_IP_RATE_LIMIT: str = "20/hour"

    # Loyalty engine
    PROGRAM_CACHE_TTL_SECONDS: int = 30
    PROGRAM_CACHE_SHARED_INVALIDATION: bool = True
    EARN_TOKEN_GRACE_MINUTES: int = 0
    REDEMPTION_REPLAY_WINDOW_MINUTES: int = 10
    REDEMPTION_DISPLAY_MINUTES: int = 10

    # Earn abuse checks (0 disables)
    EARN_MEMBER_HOURLY_CAP: int = 10
    IP_VELOCITY_THRESHOLD: int = 3
    IP_VELOCITY_WINDOW_MINUTES: int = 10

    # Wallet pass provisioner
    WALLET_PASS_API_URL: str = "http://localhost:8090"
    WALLET_PASS_API_KEY: str = ""
    WALLET_PASS_TIMEOUT_SECONDS: float = 10.0
    WALLET_PASS_MAX_ATTEMPTS: int = 5
    WALLET_PASS_RETRY_BASE_SECONDS: int = 30

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("DATABASE_URL")
    @classmethod
    def assemble_db_connection(cls, v: Optional[str]) -> str:
        if isinstance(v, str):
            if v.startswith("postgresql://"):
                return v.replace("postgresql://", "postgresql+psycopg://", 1)
        return v

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    """
    Return the global settings instance, cached.
    """
    return Settings()
