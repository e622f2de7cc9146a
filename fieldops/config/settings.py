from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from pathlib import Path
from typing import Optional, Literal
import platform


BASE_DIR = Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    database_url: str = f"sqlite:///{BASE_DIR}/data/db/fieldops.db"

    # Mode (read once at startup)
    db_mode: Literal["Local", "Remote", "local", "remote"] = "Local"
    db_server_url: str = ""                 # e.g. http://192.168.1.100:5002
    api_token: Optional[str] = None         # Bearer token issued by the server

    # Remote API client
    http_timeout_seconds: float = 30.0
    http_max_retries: int = 3

    # Sync Coordinator
    sync_interval_minutes: int = 15
    sync_batch_size: int = 50
    sync_backoff_base_seconds: float = 30.0
    sync_backoff_max_seconds: float = 900.0  # 15 minutes

    # Device registration
    device_name: str = Field(default_factory=lambda: platform.node() or "unknown")
    device_stale_days: int = 30
    app_version: str = "0.1.0"

    # Local status API
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    # Logging
    log_level: str = "INFO"
    log_file: Optional[Path] = BASE_DIR / "data" / "logs" / "fieldops.log"

    data_dir: Path = BASE_DIR / "data"

    def model_post_init(self, __context):
        (self.data_dir / "db").mkdir(parents=True, exist_ok=True)
        if self.log_file:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)


settings = Settings()
