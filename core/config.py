"""
Centralized configuration management.
All environment variables and settings are defined here.
"""
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings
from pydantic import Field, field_validator


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = Field(default="Statement Ingestion Service", alias="APP_NAME")
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000)
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Generative model gateway
    model_gateway_url: str = Field(default="http://localhost:8081/invoke", alias="MODEL_GATEWAY_URL")
    model_api_key: str = Field(default="", alias="MODEL_API_KEY")
    model_id: str = Field(default="meta.llama3-8b-instruct-v1:0", alias="MODEL_ID")
    model_timeout: int = Field(default=60, alias="MODEL_TIMEOUT")
    model_temperature: float = Field(default=0.1, alias="MODEL_TEMPERATURE")
    model_top_p: float = Field(default=0.9, alias="MODEL_TOP_P")
    model_max_gen_len: int = Field(default=4000, alias="MODEL_MAX_GEN_LEN")
    model_verify_ssl: bool = Field(default=True, alias="MODEL_VERIFY_SSL")

    # Extraction service
    extraction_service_url: str = Field(default="http://localhost:8082", alias="EXTRACTION_SERVICE_URL")
    extraction_api_key: str = Field(default="", alias="EXTRACTION_API_KEY")
    extraction_timeout: int = Field(default=30, alias="EXTRACTION_TIMEOUT")
    raw_statements_bucket: str = Field(default="raw-statements", alias="RAW_STATEMENTS_BUCKET")

    # Polling schedule for extraction jobs (seconds)
    poll_initial_delay: float = Field(default=1.5, alias="POLL_INITIAL_DELAY")
    poll_backoff_multiplier: float = Field(default=1.5, alias="POLL_BACKOFF_MULTIPLIER")
    poll_max_delay: float = Field(default=8.0, alias="POLL_MAX_DELAY")
    poll_deadline: float = Field(default=240.0, alias="POLL_DEADLINE")

    # Upload convention
    upload_prefix: str = Field(default="uploads/", alias="UPLOAD_PREFIX")
    upload_extension: str = Field(default=".pdf", alias="UPLOAD_EXTENSION")

    # Storage
    database_path: str = Field(default="statements.db", alias="DATABASE_PATH")
    analytics_path: str = Field(default="analytics", alias="ANALYTICS_PATH")

    # Processing
    reprocess_policy: str = Field(default="keep", alias="REPROCESS_POLICY")
    category_match_threshold: float = Field(default=0.75, alias="CATEGORY_MATCH_THRESHOLD")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level is one of the standard levels."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v_upper

    @field_validator("port")
    @classmethod
    def validate_port(cls, v):
        """Validate port is in valid range."""
        if not (1 <= v <= 65535):
            raise ValueError("Port must be between 1 and 65535")
        return v

    @field_validator("poll_initial_delay", "poll_max_delay", "poll_deadline")
    @classmethod
    def validate_positive_interval(cls, v):
        """Polling intervals must be positive."""
        if v <= 0:
            raise ValueError("Polling intervals must be greater than zero")
        return v

    @field_validator("poll_backoff_multiplier")
    @classmethod
    def validate_multiplier(cls, v):
        """Backoff must never shrink the delay."""
        if v < 1.0:
            raise ValueError("Backoff multiplier must be at least 1.0")
        return v

    @field_validator("reprocess_policy")
    @classmethod
    def validate_reprocess_policy(cls, v):
        """Validate the policy applied to leftovers of a failed run."""
        v_lower = v.lower()
        if v_lower not in ("keep", "purge"):
            raise ValueError("Reprocess policy must be 'keep' or 'purge'")
        return v_lower

    @field_validator("category_match_threshold")
    @classmethod
    def validate_threshold(cls, v):
        """Validate similarity threshold range."""
        if not (0.0 < v <= 1.0):
            raise ValueError("Category match threshold must be in (0, 1]")
        return v

    class Config:
        """Pydantic configuration."""
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"
        protected_namespaces = ()

    def ensure_directories(self) -> None:
        """Ensure required directories exist."""
        Path(self.analytics_path).mkdir(parents=True, exist_ok=True)
        Path(self.database_path).parent.mkdir(parents=True, exist_ok=True)


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get application settings singleton.

    Returns:
        Settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()
        _settings.ensure_directories()
    return _settings


def reset_settings() -> None:
    """Reset settings singleton (useful for testing)."""
    global _settings
    _settings = None
