"""Configuration management for the Growth Co-Pilot agent."""

from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_file: str = Field(default="growth_copilot.db")
    database_url: Optional[str] = Field(default=None)  # Postgres for production

    # LLM provider
    anthropic_api_key: Optional[str] = Field(default=None)
    anthropic_model: str = Field(default="claude-haiku-4-5-20251001")
    anthropic_max_tokens: int = Field(default=4096)

    # Complaint extraction batching and pacing
    batch_size: int = Field(default=20, ge=1)
    batch_delay_seconds: float = Field(default=6.0, ge=0)
    rate_limit_max_retries: int = Field(default=5, ge=0)
    rate_limit_default_wait: float = Field(default=15.0, ge=0)
    rate_limit_hint_padding: float = Field(default=0.5, ge=0)
    review_body_max_chars: int = Field(default=1000)
    top_complaints_limit: int = Field(default=20)

    # App Store scraping
    top_apps_limit: int = Field(default=100)
    reviews_per_app: int = Field(default=50)
    max_review_rating: int = Field(default=3)
    app_store_country: str = Field(
        default="us",
        validation_alias=AliasChoices("APP_STORE_COUNTRY", "COUNTRY"),
    )
    scrape_concurrency: int = Field(default=10, ge=1)

    # Clustering steps
    opportunity_delay_seconds: float = Field(default=1.0)
    outcome_delay_seconds: float = Field(default=0.8)

    # HTTP Client Defaults
    http_timeout_seconds: float = Field(default=15.0)
    http_retries: int = Field(default=3)
    http_backoff: float = Field(default=0.5)

    # Logging
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False, description="Emit logs as JSON lines")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    def validate_llm_config(self) -> None:
        """Validate that the LLM provider is configured."""
        if not self.anthropic_api_key:
            raise ValueError(
                "No LLM configuration found. Set ANTHROPIC_API_KEY to enable "
                "complaint extraction and outcome clustering."
            )


# Global settings instance
settings = Settings()
