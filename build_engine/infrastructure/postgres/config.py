#build_engine\infrastructure\postgres\config.py

from functools import lru_cache
from typing import Optional
from urllib.parse import quote_plus

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Connection settings for the build/deployment store, from POSTGRES_* variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Full URL wins over the individual parts (e.g. a managed database secret)
    url_override: Optional[str] = Field(default=None, alias="DATABASE_URL")

    postgres_user: Optional[str] = None
    postgres_password: Optional[str] = None
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "build_engine"
    postgres_sslmode: Optional[str] = None

    # Worker pools hold one connection per slot plus the poller
    pool_size: int = 10
    max_overflow: int = 20
    pool_timeout: int = 30
    pool_recycle: int = 3600

    # Claims and pointer writes are short; anything slower is a stuck lock
    statement_timeout_ms: int = 30000
    application_name: str = "build-engine"

    echo_sql: bool = False

    @property
    def database_url(self) -> str:
        if self.url_override:
            return self.url_override
        if not self.postgres_user:
            raise ValueError("POSTGRES_USER (or DATABASE_URL) must be set for postgres persistence")

        url = (
            f"postgresql+psycopg2://{quote_plus(self.postgres_user)}:"
            f"{quote_plus(self.postgres_password or '')}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )
        if self.postgres_sslmode:
            url += f"?sslmode={self.postgres_sslmode}"
        return url


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
    """Read on first use so importing the ORM never requires a database."""
    return DatabaseSettings()
