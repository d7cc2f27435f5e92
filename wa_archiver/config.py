from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database Configuration
    # Either a full SQLAlchemy URL or the RDS_* parts of a PostgreSQL URL
    DATABASE_URL: Optional[str] = None
    RDS_USERNAME: str = ""
    RDS_PASSWORD: str = ""
    RDS_HOSTNAME: str = "localhost"
    RDS_PORT: int = 5432
    RDS_DB_NAME: str = ""

    # Logging Configuration
    LOG_LEVEL: str = "INFO"

    # Webhook Security - events without a valid signature are rejected
    WEBHOOK_SECRET: str = ""

    # Object store
    AWS_S3_BUCKET_NAME: str = ""
    AWS_REGION: str = "us-east-1"
    AWS_S3_ENDPOINT_URL: Optional[str] = None
    S3_WAIT_FOR_OBJECT: bool = True
    S3_WAIT_TIMEOUT_SECONDS: int = 60

    # Messaging bridge holding the live client session
    BRIDGE_URL: str = "http://localhost:8080"
    BRIDGE_TIMEOUT_SECONDS: float = 10.0

    @property
    def database_url(self) -> str:
        """Resolved SQLAlchemy URL, assembling a PostgreSQL URL from RDS_* when needed."""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql://{self.RDS_USERNAME}:{self.RDS_PASSWORD}"
            f"@{self.RDS_HOSTNAME}:{self.RDS_PORT}/{self.RDS_DB_NAME}"
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
