"""Service configuration loaded with Pydantic Settings.

Values come from the environment or a ``.env`` file. Besides the database
and logging options this holds where definitions live, how long the
preference snapshot is trusted, and the largest accepted upload.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Attributes:
        database_url: SQLAlchemy connection string
        database_pool_size: Number of connections to maintain in pool
        database_max_overflow: Maximum overflow connections beyond pool_size
        environment: Application environment (development, staging, production)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        definitions_dir: Directory holding survey and observer definitions
        preference_refresh_seconds: Lifetime of the preference cache snapshot
        max_upload_points: Largest batch accepted in a single upload
    """

    # Database Configuration
    database_url: str = Field(
        description="SQLAlchemy connection string"
    )
    database_pool_size: int = Field(
        default=5,
        description="Number of database connections in pool"
    )
    database_max_overflow: int = Field(
        default=10,
        description="Maximum overflow connections beyond pool size"
    )

    # Application Configuration
    environment: str = Field(
        default="development",
        description="Application environment"
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )
    definitions_dir: str = Field(
        default="./definitions",
        description="Path to survey and observer definitions"
    )
    preference_refresh_seconds: float = Field(
        default=300.0,
        description="Seconds between preference cache refreshes"
    )
    max_upload_points: int = Field(
        default=10000,
        ge=1,
        description="Maximum number of points in one upload"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment is one of the allowed values."""
        allowed = {"development", "staging", "production"}
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of {allowed}")
        return v.lower()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the allowed values."""
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"Log level must be one of {allowed}")
        return v_upper

    @field_validator("preference_refresh_seconds")
    @classmethod
    def validate_refresh(cls, v: float) -> float:
        """The cache may not be refreshed more than once per second."""
        if v < 1:
            raise ValueError("preference_refresh_seconds must be >= 1")
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings: Application settings singleton
    """
    return Settings()
