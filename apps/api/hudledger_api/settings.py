"""Application settings and configuration."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: Optional[str] = None
    postgres_user: str = "hudledger"
    postgres_password: str = "hudledger_dev_password"
    postgres_db: str = "hudledger"
    postgres_host: str = "localhost"
    postgres_port: int = 5432

    # Redis
    redis_url: str = "redis://localhost:6379/0"

    # Environment
    environment: str = "development"

    # Sessions
    jwt_secret_key: str = "dev-jwt-secret-change-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expiration_hours: int = 24
    session_cookie_name: str = "hudledger_session"

    # Snapshot cache (0 disables caching)
    snapshot_cache_ttl_seconds: int = 0

    # Ledger
    ledger_append_max_attempts: int = 5
    ledger_append_base_delay_seconds: float = 0.05
    ledger_append_max_delay_seconds: float = 1.0

    # Logging
    log_level: str = "INFO"

    # CORS
    cors_origins: list[str] = ["*"]
    cors_allow_credentials: bool = True
    cors_allow_methods: list[str] = ["*"]
    cors_allow_headers: list[str] = ["*"]

    @property
    def database_url_computed(self) -> str:
        """Compute database URL if not explicitly set."""
        if self.database_url:
            return self.database_url
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    def validate_production_settings(self):
        """Validate settings for non-development environments."""
        env = self.environment.lower()
        if env not in ("development", "test", "dev"):
            if self.jwt_secret_key.startswith("dev-"):
                raise ValueError(
                    "JWT_SECRET_KEY must be set explicitly outside development. "
                    "Do not use the default session secret."
                )
            if not self.database_url and self.postgres_password == "hudledger_dev_password":
                raise ValueError(
                    "POSTGRES_PASSWORD (or DATABASE_URL) is required in production. "
                    "Do not use default credentials."
                )
            if "*" in self.cors_origins and self.cors_allow_credentials:
                raise ValueError(
                    "CORS_ORIGINS must list explicit origins when credentials are allowed."
                )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
