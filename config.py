"""
Application settings

Values come from environment variables (case-insensitive) or an env file
pointed to by ENV_FILE.
"""
import os
from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=os.getenv("ENV_FILE", ".env"),
        case_sensitive=False,
        extra="ignore",
    )

    # Store
    DATABASE_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "learnhub"
    DATABASE_TIMEOUT_MS: int = 5000
    DATABASE_TRANSACTIONS: bool = True

    # Tokens
    SECRET_KEY: str = "dev-secret-key-change-me"
    REFRESH_SECRET_KEY: str = "dev-refresh-secret-change-me"
    ACCESS_TOKEN_MINUTES: int = 60 * 24
    REFRESH_TOKEN_DAYS: int = 7
    BCRYPT_ROUNDS: int = 10

    # Bootstrap admin
    ADMIN_EMAIL: str = "admin@example.com"
    ADMIN_PASSWORD: str = "admin123"
    ADMIN_NAME: str = "System Admin"

    # HTTP
    CORS_ORIGINS: str = "http://localhost:3000"
    HOST: str = "0.0.0.0"
    PORT: int = 8080

    LOG_LEVEL: str = "INFO"

    @property
    def cors_origins(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
