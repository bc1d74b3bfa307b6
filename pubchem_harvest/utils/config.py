"""
Configuration Utility - Environment Variables Management

Centralized configuration loading from .env files using pydantic-settings.
Type-safe access to all environment variables with validation.

Usage:
    from pubchem_harvest.utils.config import settings

    data_dir = settings.DATA_DIR
    jobs = settings.JOBS

Command line flags (see pubchem_harvest.cli) are merged over these values and
re-validated, so components always receive an explicit Settings instance
rather than reading the module-level one.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_URL_TEMPLATE = (
    "https://pubchem.ncbi.nlm.nih.gov/rest/pug_view/data/compound/{cid}/JSON/"
    "?response_type=save&response_basename=compound_CID_{cid}"
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Remote source
    API_URL_TEMPLATE: str = Field(default=DEFAULT_URL_TEMPLATE)
    API_TIMEOUT: float = Field(default=30.0, gt=0)

    # Download orchestration
    DOWNLOAD_START: int = Field(default=0, ge=0)
    DOWNLOAD_BLOCKS: int = Field(default=1, ge=0)
    BLOCK_SIZE: int = Field(default=20_000_000, gt=0)
    JOBS: int = Field(default=1, ge=1)
    ENABLE_DB: bool = Field(default=False)
    ENABLE_PROXY: bool = Field(default=False)
    PROXY_ROUTES: list[str] = Field(default_factory=lambda: [""])
    MAX_RETRIES: int = Field(default=16, ge=0)
    RETRY_BACKOFF_SECONDS: float = Field(default=3.0, ge=0)
    ACQUIRE_BACKOFF_SECONDS: float = Field(default=3.0, ge=0)
    BLOCK_PAUSE_SECONDS: float = Field(default=2.0, ge=0)
    MIN_ARTIFACT_BYTES: int = Field(default=1024, ge=0)

    # File System Paths
    DATA_DIR: str = Field(default="data")

    # Database Configuration
    SQLITE_PATH: str = Field(default="data/db/pubchem.db")
    SQLITE_TIMEOUT: float = Field(default=10.0, gt=0)

    # Extraction / persistence
    BATCH_SIZE: int = Field(default=1000, ge=1)
    SAVE_STEP: int = Field(default=1000, ge=1)

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")

    # Application Metadata
    APP_NAME: str = Field(default="pubchem-harvest")
    APP_VERSION: str = Field(default="0.1.0")

    @field_validator("PROXY_ROUTES")
    @classmethod
    def validate_routes(cls, v: list[str]) -> list[str]:
        """Strip whitespace and drop duplicate routes, keeping order."""
        routes: list[str] = []
        for route in v:
            route = route.strip()
            if route not in routes:
                routes.append(route)
        if not routes:
            raise ValueError("PROXY_ROUTES must contain at least one route")
        return routes

    @field_validator("LOG_FORMAT")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("json", "text"):
            raise ValueError("LOG_FORMAT must be 'json' or 'text'")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Singleton Settings instance
    """
    return Settings()


# Global settings instance
settings = get_settings()
