from pathlib import Path

from fastapi import Request
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = Path(__file__).resolve().parent.parent / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    APP_NAME: str = "Compliance Crosswalk"
    APP_VERSION: str = "0.4.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str = "sqlite+aiosqlite:///./crosswalk.db"

    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:3000"

    # Mappings recomputed in parallel, one session each
    RECOMPUTE_CONCURRENCY: int = 4
    VERIFY_STORE_ON_STARTUP: bool = True
    # Alembic owns the schema in deployments; tests and local runs create it on startup
    AUTO_CREATE_SCHEMA: bool = True

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


def get_settings() -> Settings:
    return Settings()


def get_app_settings(request: Request) -> Settings:
    """Settings the running application was created with."""
    return request.app.state.settings
