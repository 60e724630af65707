"""SiteProof application configuration via environment variables."""

from __future__ import annotations

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

DEFAULT_JWT_SECRET = "changeme-generate-a-real-secret"


class Settings(BaseSettings):
    """Global application settings loaded from environment / .env file."""

    # General
    siteproof_env: str = "development"
    siteproof_debug: bool = False
    log_level: str = "INFO"

    # Frontend origin(s) allowed by CORS, comma separated
    frontend_url: str = "http://localhost:5173"

    # Auth
    jwt_secret: str = DEFAULT_JWT_SECRET
    jwt_algorithm: str = "HS256"
    jwt_expire_hours: int = 24
    bcrypt_rounds: int = 12

    # PostgreSQL
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "siteproof"
    postgres_password: str = "siteproof_dev_password"
    postgres_db: str = "siteproof"

    # Full URL override, e.g. sqlite+aiosqlite:///:memory: for tests
    database_url_override: str = Field(default="", validation_alias="DATABASE_URL")
    db_pool_size: int = 10
    db_max_overflow: int = 20

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def database_url_sync(self) -> str:
        if self.database_url_override:
            return self.database_url_override.replace("+asyncpg", "").replace(
                "+aiosqlite", ""
            )
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # Background jobs
    scheduler_enabled: bool = True
    hold_point_escalation_hours: int = 48
    # Dashboard attention items
    stale_hold_point_days: int = 7

    # ── Derived helpers ───────────────────────────────────────────────────

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.frontend_url.split(",") if o.strip()]

    @property
    def is_production(self) -> bool:
        return self.siteproof_env == "production"

    @model_validator(mode="after")
    def _require_real_secret(self) -> "Settings":
        if self.is_production and self.jwt_secret == DEFAULT_JWT_SECRET:
            raise ValueError("JWT_SECRET must be set in production")
        return self

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "populate_by_name": True,
    }


settings = Settings()
