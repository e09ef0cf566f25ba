"""
Configuration management for the Call Forward Service.

Uses Pydantic BaseSettings for type-safe configuration loading from environment variables.
"""

from typing import Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from callforward.utils.logger import get_logger


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database Configuration
    database_url: str = Field(..., description="SQLAlchemy async connection string (asyncpg driver)")

    # Registry of known extensions and contexts
    registry_file: str = Field(default="config.yaml", description="YAML file with extensions and contexts")

    # FastAGI Configuration
    agi_host: str = Field(default="0.0.0.0", description="FastAGI bind address")
    agi_port: int = Field(default=4573, description="FastAGI bind port")
    agi_digest_secret: str = Field(..., description="Pre-shared secret for the SHA1 challenge")
    agi_digest_variable: str = Field(
        default="AGI_DIGEST_SECRET",
        description="Dialplan variable holding Asterisk's copy of the secret"
    )
    agi_result_variable: str = Field(
        default="CALL_FORWARDED_TO",
        description="Channel variable receiving the resolved destination"
    )
    agi_idle_timeout: float = Field(default=10.0, description="Seconds a read may stall before dropping the call")

    # Admin API Configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=3010, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")
    environment: str = Field(default="development", description="Environment: development or production")

    @field_validator("agi_digest_secret")
    @classmethod
    def validate_digest_secret(cls, v: str) -> str:
        """Refuse to run the challenge with an empty secret."""
        if not v:
            raise ValueError("agi_digest_secret must not be empty")
        return v

    @field_validator("agi_idle_timeout")
    @classmethod
    def validate_idle_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("agi_idle_timeout must be positive")
        return v

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment is either 'development' or 'production'."""
        if v not in ["development", "production"]:
            raise ValueError("environment must be either 'development' or 'production'")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v_upper

    @property
    def agi_bind_string(self) -> str:
        return f"{self.agi_host}:{self.agi_port}"


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get application settings singleton.

    Returns:
        Settings instance

    Raises:
        ValueError: If required configuration is missing
    """
    global _settings

    if _settings is None:
        try:
            _settings = Settings()
        except Exception as e:
            raise ValueError(f"Configuration error: {str(e)}")

        # Log loaded configuration (never the digest secret)
        logger = get_logger(__name__)
        logger.info("Configuration loaded successfully")
        logger.info(f"Environment: {_settings.environment}")
        logger.info(f"Admin API: {_settings.host}:{_settings.port}")
        logger.info(f"FastAGI: {_settings.agi_bind_string}")
        logger.info(f"Registry file: {_settings.registry_file}")
        logger.info(f"Log Level: {_settings.log_level}")

    return _settings


def reload_settings() -> Settings:
    """
    Reload settings (useful for testing).

    Returns:
        New Settings instance
    """
    global _settings
    _settings = None
    return get_settings()
