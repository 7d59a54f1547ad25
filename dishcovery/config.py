"""Configuration management for Dishcovery."""

from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="DISHCOVERY_",
        extra="ignore",
    )

    # Paths
    output_dir: Path = Field(default=Path("output"), description="Output directory for exports and thumbnails")
    data_dir: Path = Field(default=Path("data"), description="Working directory for decoded marker artifacts")

    log_level: str = Field(default="INFO", description="Log level for the CLI")

    # Rendering
    render_fps: int = Field(default=60, description="Target frame rate of the render loop")
    capture_settle_delay: float = Field(
        default=0.1,
        description="Seconds to wait after a model load before handing out the frame capture",
    )
    preview_width: int = Field(default=300, description="Fallback preview width when the host reports zero")
    preview_height: int = Field(default=300, description="Fallback preview height when the host reports zero")

    # Tracking backend
    tracker_backend: Optional[str] = Field(
        default=None,
        description="Entry point name of the tracking backend (first installed one if unset)",
    )
    tracker_filter_min_cf: float = Field(default=0.0001, description="Tracker jitter filter min cutoff")
    tracker_filter_beta: float = Field(default=0.001, description="Tracker jitter filter beta")

    # Bundle server
    web_host: str = Field(default="0.0.0.0", description="Bundle server host")
    web_port: int = Field(default=9880, description="Bundle server port")


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def configure(settings: Settings) -> None:
    """Override global settings."""
    global _settings
    _settings = settings
