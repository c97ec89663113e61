"""Application configuration loaded from environment variables.

Uses ``pydantic-settings`` for automatic env-var loading, type coercion,
and ``.env`` file support.
"""

VERSION = "0.1.0"

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings -- sourced from environment / ``.env`` file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # -- remote generation / fix service --
    API_HOST: str = "http://host.docker.internal:5000"
    UPSTREAM_TIMEOUT_SECONDS: float = Field(default=600.0, gt=0)
    UPSTREAM_CONNECT_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0)
    # Retries on connect/transport errors and 429/502/503 only.
    UPSTREAM_MAX_RETRIES: int = Field(default=2, ge=0)

    # -- build toolchain --
    PLUGINS_BASE_DIR: str = "generated-plugins"
    MAVEN_EXECUTABLE: str = "mvn"
    BUILD_TIMEOUT_SECONDS: float = Field(default=600.0, gt=0)
    # Whole-run limit for one generation request.  0 disables it.
    RUN_TIMEOUT_SECONDS: float = Field(default=0.0, ge=0)
    FIX_MAX_ATTEMPTS: int = Field(default=50, ge=1)

    # -- tracking / request limits --
    TRACKER_CAPACITY: int = Field(default=10, ge=1)
    MAX_PROMPT_CHARS: int = Field(default=1000, ge=1)
    GENERATE_RATE_LIMIT: int = Field(default=5, ge=1)
    GENERATE_RATE_WINDOW_SECONDS: float = Field(default=60.0, gt=0)

    # -- server --
    HOST: str = "0.0.0.0"
    PORT: int = 3001
    CORS_ORIGINS: str = "*"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    @property
    def cors_origin_list(self) -> list[str]:
        """``CORS_ORIGINS`` split on commas, blanks dropped."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


settings = Settings()
