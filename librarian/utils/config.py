"""
Configuration management for Sample Librarian.

Uses pydantic-settings to load configuration from environment variables
and .env files.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Filesystem boundary
    watch_dir: Path = Path("~/Downloads")
    library_dir: Path = Path("~/Music/Samples/Library")
    catalog_path: Path = Path("~/.local/share/sample-librarian/samples.db")

    # Logging Configuration
    log_level: str = "INFO"
    log_file: Optional[Path] = None
    log_rotation: str = "10 MB"

    # File classes
    binary_extensions: str = "wav"
    metadata_extension: str = "json"

    # Pairing window: poll interval (seconds) x attempts
    pairing_poll_interval: float = 0.5
    pairing_max_attempts: int = 10

    # Retry Configuration
    retry_attempts: int = 3
    retry_base_delay: float = 1.0  # seconds, doubled per attempt
    decode_timeout: float = 10.0

    # Error storm backpressure
    error_pause_threshold: int = 10
    error_pause_seconds: float = 30.0

    # Watcher Configuration
    event_queue_size: int = 100
    watch_health_interval: float = 5.0
    sweep_on_start: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def get_watch_dir(self) -> Path:
        return self.watch_dir.expanduser()

    def get_library_dir(self) -> Path:
        return self.library_dir.expanduser()

    def get_catalog_path(self) -> Path:
        return self.catalog_path.expanduser()

    def get_binary_extensions(self) -> set[str]:
        """Parse binary extensions into a set of lowercase suffixes without dots."""
        return {
            ext.strip().lstrip('.').lower()
            for ext in self.binary_extensions.split(',')
            if ext.strip()
        }

    def get_metadata_extension(self) -> str:
        return self.metadata_extension.strip().lstrip('.').lower()


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
