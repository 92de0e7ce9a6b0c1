"""
Configuration management for Decision Miner.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Application
    app_name: str = Field(default="Decision Miner", env="APP_NAME")
    debug: bool = Field(default=False, env="DEBUG")
    environment: str = Field(default="development", env="ENVIRONMENT")

    # API
    api_host: str = Field(default="0.0.0.0", env="API_HOST")
    api_port: int = Field(default=8000, env="API_PORT")
    api_workers: int = Field(default=1, env="API_WORKERS")

    # Database
    database_url: str = Field(
        default="sqlite:///./decision_miner.db", env="DATABASE_URL"
    )

    # Logging
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    log_format: str = Field(default="json", env="LOG_FORMAT")

    # GitHub
    github_token: Optional[str] = Field(default=None, env="GITHUB_TOKEN")
    github_api_url: str = Field(default="https://api.github.com", env="GITHUB_API_URL")
    github_timeout_seconds: float = Field(default=30.0, env="GITHUB_TIMEOUT_SECONDS")
    github_max_retries: int = Field(default=3, env="GITHUB_MAX_RETRIES")
    github_per_page: int = Field(default=50, env="GITHUB_PER_PAGE")
    github_max_pages: int = Field(default=20, env="GITHUB_MAX_PAGES")
    max_diff_bytes: int = Field(default=100_000, env="MAX_DIFF_BYTES")

    # Sync
    sync_lookback_days: int = Field(default=90, env="SYNC_LOOKBACK_DAYS")
    sync_overlap_minutes: int = Field(default=120, env="SYNC_OVERLAP_MINUTES")
    sync_max_duration_seconds: int = Field(
        default=1800,
        env="SYNC_MAX_DURATION_SECONDS",
        description="Runs stuck in 'syncing' longer than this are reconciled to 'error'.",
    )
    sync_include_commits: bool = Field(default=False, env="SYNC_INCLUDE_COMMITS")

    # Sieve
    sieve_threshold: int = Field(default=45, env="SIEVE_THRESHOLD")
    sieve_trivial_diff_lines: int = Field(default=10, env="SIEVE_TRIVIAL_DIFF_LINES")

    # LLM extraction
    anthropic_api_key: Optional[str] = Field(default=None, env="ANTHROPIC_API_KEY")
    openai_api_key: Optional[str] = Field(default=None, env="OPENAI_API_KEY")
    anthropic_api_url: str = Field(
        default="https://api.anthropic.com", env="ANTHROPIC_API_URL"
    )
    openai_api_url: str = Field(default="https://api.openai.com", env="OPENAI_API_URL")
    anthropic_model: str = Field(
        default="claude-sonnet-4-20250514", env="ANTHROPIC_MODEL"
    )
    openai_model: str = Field(default="gpt-4o", env="OPENAI_MODEL")
    extraction_timeout_seconds: float = Field(
        default=120.0, env="EXTRACTION_TIMEOUT_SECONDS"
    )
    extraction_max_retries: int = Field(default=2, env="EXTRACTION_MAX_RETRIES")

    # Extraction governor
    extraction_window_hours: int = Field(default=24, env="EXTRACTION_WINDOW_HOURS")
    extraction_max_calls: int = Field(default=20, env="EXTRACTION_MAX_CALLS")
    extraction_max_spend_usd: float = Field(
        default=5.0, env="EXTRACTION_MAX_SPEND_USD"
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings."""
    return settings
