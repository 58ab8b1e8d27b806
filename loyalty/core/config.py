from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent.parent  # project root
ENV_PATH = BASE_DIR / ".env"

# Load .env into the process environment first so plain os.getenv users see it too.
load_dotenv(dotenv_path=ENV_PATH)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="ignore",
        case_sensitive=False,
    )

    DATABASE_URL: str

    JWT_SECRET: str
    JWT_REFRESH_SECRET: str | None = None
    JWT_ALG: str = "HS256"
    JWT_ACCESS_MINUTES: int = 15
    JWT_REFRESH_DAYS: int = 7

    BCRYPT_ROUNDS: int = 12

    # lockout policy
    MAX_LOGIN_ATTEMPTS: int = 5
    LOCK_HOURS: int = 2

    PASSWORD_RESET_MINUTES: int = 60
    # dev only: echo the reset token back in /auth/forgot-password
    EXPOSE_RESET_TOKEN: bool = False

    MAX_MERCHANT_IMAGES: int = 5

    # comma separated
    CORS_ORIGINS: str = "http://localhost:3000,http://127.0.0.1:3000"

    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    @property
    def cors_origins(self) -> list[str]:
        return [part.strip() for part in self.CORS_ORIGINS.split(",") if part.strip()]

    @property
    def async_database_url(self) -> str:
        url = self.DATABASE_URL
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql+asyncpg://", 1)
        elif url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return url

    @property
    def refresh_secret(self) -> str:
        return self.JWT_REFRESH_SECRET or f"{self.JWT_SECRET}:refresh"


settings = Settings()
