"""Application configuration using pydantic-settings."""

from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be configured via:
    1. Environment variables (e.g., STORAGE_PATH=/my/path)
    2. .env file in the working directory
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # API settings
    api_title: str = "S3-Compatible File Server"
    api_version: str = "1.0.0"
    api_prefix: str = "/api"
    docs_url: str = "/api-docs"
    debug: bool = False

    # Server settings
    host: str = "localhost"
    port: int = 4568

    # Root directory holding one subdirectory per bucket
    storage_path: Path = Path("./storage")

    # Largest accepted PUT body in bytes (100 MiB)
    max_upload_size: int = 100 * 1024 * 1024

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"


# Global settings instance
settings = Settings()
