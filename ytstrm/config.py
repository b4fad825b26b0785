import json
from pathlib import Path
from typing import List
from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError
from .models import CollectionEntry

class Settings(BaseSettings):
    # Public origin used in .strm files and rewritten manifests
    BASE_URL: str = "http://127.0.0.1:9080"

    # yt-dlp
    YTDLP_BINARY: str = "yt-dlp"

    # Scheduling
    CRON_SCHEDULE: str = "5 */2 * * *"
    RUN_CRON_AT_START: bool = False
    PER_COLLECTION_SCHEDULES: bool = False
    SCHEDULER_TIMEZONE: str = "UTC"
    COLLECTIONS_PATH: str = "/config/cron.json"

    # Library
    SHOWS_ROOT: str = "/shows"
    LIBRARY_INDEX_ENABLED: bool = True
    LIBRARY_INDEX_FILENAME: str = ".ytstrm-index.json"

    # Sync / Resolution
    CACHE_TTL_SECONDS: int = 3600  # 60 min
    SYNC_WINDOW_SIZE: int = 10

    # System
    LOG_LEVEL: str = "INFO"
    HTTP_SERVER_HOST: str = "0.0.0.0"
    HTTP_SERVER_PORT: int = 9080
    REQUEST_TIMEOUT_SECONDS: int = 30

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    @property
    def base_url(self) -> str:
        return self.BASE_URL.rstrip('/')

settings = Settings()


def load_collections(path: str) -> List[CollectionEntry]:
    """Read the list of collections to mirror from a JSON file.

    The file holds a JSON array, one object per playlist/channel:
    ``{"url": ..., "dir": ..., "schedule": ..., "options": {...}}``.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigError(f"Collections file not found at {config_path}")

    try:
        with open(config_path, 'r') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Failed to read collections file {config_path}: {e}") from e

    if not isinstance(data, list):
        raise ConfigError(f"Collections file {config_path} must contain a JSON array")

    try:
        return [CollectionEntry.model_validate(entry) for entry in data]
    except ValidationError as e:
        raise ConfigError(f"Invalid collection entry in {config_path}: {e}") from e
