from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel
from dotenv import load_dotenv

# Load environment variables from a local .env if present
load_dotenv()

DATA_DIR = Path(os.getenv("FEEDTUBE_DATA_DIR", str(Path.home() / ".feeding-tube")))


class Settings(BaseModel):
    database_url: str = os.getenv(
        "DATABASE_URL", f"sqlite+aiosqlite:///{DATA_DIR / 'data.db'}"
    )
    # Older installs kept their database and JSON files here
    legacy_db_path: Path = Path(
        os.getenv("FEEDTUBE_LEGACY_DB", str(Path.home() / ".youtube-cli" / "data.db"))
    )
    legacy_config_dir: Path = Path(
        os.getenv("FEEDTUBE_LEGACY_CONFIG_DIR", str(Path.home() / ".config" / "youtube-cli"))
    )
    db_busy_timeout: float = float(os.getenv("DB_BUSY_TIMEOUT", "5"))

    ytdlp_binary: str = os.getenv("YTDLP_BINARY", "yt-dlp")
    provider_timeout: float = float(os.getenv("PROVIDER_TIMEOUT", "60"))
    feed_timeout: float = float(os.getenv("FEED_TIMEOUT", "20"))

    list_max_items: int = int(os.getenv("PRIME_LIST_MAX_ITEMS", "5000"))
    list_attempts: int = 3
    list_base_delay: float = float(os.getenv("PRIME_LIST_BASE_DELAY", "2.0"))
    prime_batch_size: int = int(os.getenv("PRIME_BATCH_SIZE", "5"))
    prime_concurrency: int = int(os.getenv("PRIME_CONCURRENCY", "50"))
    batch_attempts: int = 2
    batch_base_delay: float = float(os.getenv("PRIME_BATCH_BASE_DELAY", "1.0"))
    refresh_wave_size: int = int(os.getenv("REFRESH_WAVE_SIZE", "20"))

    poll_interval: int = int(os.getenv("POLL_INTERVAL", "900"))
    page_size_default: int = int(os.getenv("PAGE_SIZE_DEFAULT", "100"))
    page_size_max: int = 1000
    app_host: str = os.getenv("APP_HOST", "127.0.0.1")
    app_port: int = int(os.getenv("APP_PORT", "8000"))
    log_level: str = os.getenv("LOG_LEVEL", "info")
    log_structured: bool = os.getenv("LOG_STRUCTURED", "0") == "1"


@lru_cache
def get_settings() -> Settings:
    return Settings()
