from functools import lru_cache
from pathlib import Path
from typing import List

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

BACKEND_DIR = Path(__file__).resolve().parents[2]
REPO_ROOT = BACKEND_DIR.parent
ENV_FILES = [REPO_ROOT / ".env", BACKEND_DIR / ".env"]

for env_path in ENV_FILES:
    if env_path.exists():
        load_dotenv(env_path, override=False)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(case_sensitive=False, extra="allow")

    app_name: str = Field(default="Rewind", alias="APP_NAME")
    app_env: str = Field(default="dev", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    database_url: str = Field(default="sqlite:///./rewind.db", alias="DATABASE_URL")

    # Governed directory the encoder writes artifacts into
    export_root: str = Field(default="exports", alias="EXPORT_ROOT")

    # Worker notification channel
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    export_notify_channel: str = Field(default="clip_exports", alias="EXPORT_NOTIFY_CHANNEL")

    # Status channel / recovery
    export_poll_interval_ms: int = Field(default=500, alias="EXPORT_POLL_INTERVAL_MS")
    export_stale_minutes: int = Field(default=5, alias="EXPORT_STALE_MINUTES")
    default_export_storage_limit_bytes: int = Field(default=0, alias="DEFAULT_EXPORT_STORAGE_LIMIT_BYTES")

    jwt_secret: str = Field(default="", alias="JWT_SECRET")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    jwt_expires_minutes: int = Field(default=60, alias="JWT_EXPIRES_MINUTES")

    backend_cors_origins_raw: str = Field(default="http://localhost:5173", alias="BACKEND_CORS_ORIGINS")

    @property
    def backend_cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.backend_cors_origins_raw.split(",") if origin.strip()]

    @property
    def export_poll_interval(self) -> float:
        return max(self.export_poll_interval_ms, 0) / 1000.0


@lru_cache
def get_settings() -> Settings:
    settings = Settings()
    if not settings.jwt_secret:
        raise RuntimeError("JWT_SECRET is required in environment or .env")
    return settings
