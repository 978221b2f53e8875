# app/core/config.py
import os
from pydantic_settings import BaseSettings
from pydantic_settings import SettingsConfigDict
from typing import List
from functools import lru_cache

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra='ignore')

    # Application Settings
    APP_NAME: str = "Clinic Scheduling API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    DOCS_ENABLED: bool = True

    # Storage backend: memory | firestore | sql
    STORE_BACKEND: str = os.environ.get("STORE_BACKEND", "memory")
    STORE_TIMEOUT_SECONDS: float = 10.0

    # Database Settings (sql backend)
    DATABASE_URL: str = os.environ.get("DATABASE_URL", "sqlite:///./app/scheduling.db")

    # Firebase Settings (firestore backend and token verification)
    FIREBASE_PROJECT_ID: str = os.environ.get("FIREBASE_PROJECT_ID", "")
    FIREBASE_PRIVATE_KEY: str = os.environ.get("FIREBASE_PRIVATE_KEY", "").replace('\\n', '\n')
    FIREBASE_CLIENT_EMAIL: str = os.environ.get("FIREBASE_CLIENT_EMAIL", "")

    # Scheduling
    DEFAULT_SLOT_CAPACITY: int = 20
    DEFAULT_SLOT_MINUTES: int = 60
    CALENDAR_WINDOW_DAYS: int = 7
    CALENDAR_TIMEZONE: str = "UTC"

    # CORS Settings
    ALLOWED_ORIGINS: str = os.environ.get("ALLOWED_ORIGINS", "*")

    # Middleware settings
    GZIP_MIN_SIZE: int = 500

    # Logging Settings
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    def _split_csv(self, value: str) -> List[str]:
        if value is None:
            return []
        value = value.strip()
        if value == "":
            return []
        return [item.strip() for item in value.split(",")]

    @property
    def allowed_origins_list(self) -> List[str]:
        return self._split_csv(self.ALLOWED_ORIGINS)

@lru_cache()
def get_settings() -> Settings:
    return Settings()

settings: Settings = get_settings()
