from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import List, Optional

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Environment
    ENV: str = "production"  # development, staging, production
    DEBUG: bool = False

    # Database
    DATABASE_URL: str = Field(
        "sqlite+aiosqlite:///./examshield.db",
        description="Async connection string (postgresql+asyncpg://... in production)",
    )

    # Redis
    REDIS_URL: str = Field("redis://localhost:6379/0")

    # Auth
    SECRET_KEY: str = Field("change-this-in-production", description="Signs bearer access tokens")
    ACCESS_TOKEN_TTL_SECONDS: int = 86400  # 24 hours
    CORS_ORIGINS: List[str] = Field(default_factory=lambda: ["http://localhost:5173"])

    # Offline package
    PACKAGE_KEY_MODE: str = Field("ephemeral", description="ephemeral (fresh key per download) or shared")
    PACKAGE_ENCRYPTION_KEY: str = Field("", description="Passphrase for the shared package key")
    PACKAGE_KEY_SALT: str = "examshield-package"
    PACKAGE_KDF_ITERATIONS: int = 480000

    # Attempt policy
    MAX_RETAKES: Optional[int] = Field(None, description="Archived attempts allowed per assignment; unset is unlimited")
    SUBMIT_GRACE_SECONDS: Optional[int] = Field(None, description="Reject submit after end_time + grace; unset never rejects")
    AUTO_SUBMIT_VIOLATION_LIMIT: int = 3

    # Concurrency
    ASSIGNMENT_LOCK_TTL_SECONDS: int = 10
    ASSIGNMENT_LOCK_WAIT_SECONDS: float = 5.0
    REDIS_RETRY_AFTER_SECONDS: int = Field(30, description="After a redis failure, skip the lock for this long")

    # Monitoring
    MONITOR_POLL_INTERVAL_SECONDS: int = 5

settings = Settings()
