"""
Application Configuration Module.

Manages application settings and environment variables using Pydantic for validation.
Provides centralized configuration management with type safety and validation.

Features:
- Environment variable loading and validation
- Secure credential management
- Commit fetching, payload and LLM pipeline limits
- Retry, pacing and screenshot settings
"""

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional
import os
from logger import LogManager


class Settings(BaseSettings):
    """
    Application configuration settings with validation.

    Manages and validates all application settings including:
    - Application identification
    - GitHub authentication and commit fetching limits
    - OpenAI configuration
    - Payload and chunking limits
    - Retry policy
    - Credit store location

    Attributes:
        app_name (str): Name of the application
        dev (bool): Debug mode flag
        log_dir (str): Directory for log files
        github_token (SecretStr): Installation-scoped GitHub API token
        github_repo_urls (str): Comma-separated repository URLs
        openai_api_key (SecretStr): OpenAI API key
        openai_llm_model (str): OpenAI LLM model to use
        db_path (str): SQLite database holding credits and milestones
    """

    # Application settings
    app_name: str = Field(default="SumGit", description="Application name")
    dev: bool = Field(default=False, description="Debug mode")
    log_dir: str = Field(default="logs", description="Logging directory")
    log_level: int = Field(default=20, description="Logging level, default info")

    # GitHub configuration
    github_token: SecretStr = Field(..., description="GitHub installation token")
    github_repo_urls: str = Field(
        default="", description="Comma-separated GitHub repository URLs to analyze"
    )
    commits_per_page: int = Field(default=100, description="Commits per API page")
    max_commit_pages: int = Field(
        default=50, description="Maximum commit pages fetched for a timeline"
    )
    max_commits_with_diff: int = Field(
        default=40, description="Commits enriched with diffs per run"
    )
    max_diff_bytes: int = Field(
        default=2000, description="Aggregate diff budget per fetched commit"
    )
    max_subrequests: Optional[int] = Field(
        default=None,
        description="Outbound call budget of the execution environment, unlimited if unset",
    )
    diff_fetch_delay: float = Field(
        default=0.1, description="Pause between diff fetches in seconds"
    )

    # OpenAI configuration
    openai_api_key: SecretStr = Field(..., description="OpenAI API key")
    openai_llm_model: str = Field(default="gpt-4o", description="OpenAI LLM model")
    openai_encoding_name: str = Field(default="o200k_base", description="Encoding name")
    openai_timeout: float = Field(
        default=120.0, description="Hard timeout for one completion in seconds"
    )
    openai_temperature: float = Field(default=0.7, description="Sampling temperature")
    openai_max_tokens: int = Field(default=4000, description="Max completion tokens")
    openai_max_requests_per_minute: int = Field(
        default=500, description="OpenAI max requests per minute"
    )
    openai_period: int = Field(default=60, description="OpenAI period in seconds")

    # Payload configuration
    payload_max_commits: int = Field(
        default=100, description="Candidate commits kept after ranking"
    )
    payload_max_diff_bytes: int = Field(
        default=1000, description="Per-commit diff limit inside the payload"
    )
    payload_max_bytes: int = Field(
        default=80 * 1024, description="Aggregate payload ceiling in bytes"
    )

    # Orchestration configuration
    chunk_delay: float = Field(
        default=0.5, description="Pause between monthly chunks in seconds"
    )
    max_retries: int = Field(default=3, description="Retries for retryable failures")
    retry_base_delay: float = Field(default=1.0, description="Backoff base in seconds")
    retry_jitter: float = Field(default=1.0, description="Max random jitter in seconds")
    max_screenshots: int = Field(
        default=2, description="Milestones captured per workflow run"
    )

    # Storage configuration
    db_path: str = Field(default="data/sumgit.db", description="SQLite database path")

    # Command-line run configuration
    user_id: str = Field(default="local", description="Account charged for runs")
    analysis_mode: str = Field(
        default="quick", description="Analysis run by the entry point: quick or timeline"
    )

    @field_validator("analysis_mode")
    def validate_mode(cls, v: str) -> str:
        if v.lower() not in ("quick", "timeline"):
            raise ValueError(f"analysis_mode must be 'quick' or 'timeline', got {v!r}")
        return v.lower()

    @property
    def repository_urls(self) -> List[str]:
        """
        Get list of repository URLs from configuration.

        Splits and cleans the comma-separated repository URLs string.

        Returns:
            List[str]: List of cleaned repository URLs
        """
        return [url.strip() for url in self.github_repo_urls.split(",") if url.strip()]

    @field_validator("db_path")
    def ensure_absolute_path(cls, v: str) -> str:
        """
        Ensure the database path is absolute.

        Args:
            v (str): Path to validate

        Returns:
            str: Absolute path to the database file
        """
        if v != ":memory:" and not os.path.isabs(v):
            return os.path.abspath(v)
        return v

    # Configure env file loading
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra fields in .env file
    )


# Create global settings instance
settings = Settings()

# Initialize logging configuration
logger = LogManager(
    app_name=settings.app_name.lower(),
    log_dir=settings.log_dir,
    development=settings.dev,
    level=settings.log_level,
).logger
