from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Optional

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    # Application
    APP_NAME: str = "PointsMall"
    APP_PORT: int = 9300
    DEBUG: bool = False

    # Database
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "pointsmall"
    POSTGRES_PORT: int = 5432
    DATABASE_URL_OVERRIDE: Optional[str] = Field(default=None, alias="DATABASE_URL")

    # Transactions
    LOCK_TIMEOUT_MS: int = 3000
    CONTENTION_MAX_RETRIES: int = 3
    CONTENTION_BACKOFF_MS: int = 50
    CONTENTION_BACKOFF_MAX_MS: int = 1000

    # Orders
    ORDER_NUMBER_PREFIX: str = "PM"
    AUTO_CONFIRM_DAYS: int = 7

    # Scheduler
    SCHEDULER_ENABLED: bool = True
    AUTO_CONFIRM_INTERVAL_MINUTES: int = 60
    COUPON_EXPIRY_INTERVAL_MINUTES: int = 60

    # Logging
    LOG_LEVEL: str = "INFO"
    LOGS_PATH: str = "/tmp/pointsmall_logs"
    LOG_MAX_BYTES: int = 50 * 1024 * 1024
    LOG_BACKUP_COUNT: int = 7

    @property
    def DATABASE_URL(self) -> str:
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        return f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

@lru_cache()
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
