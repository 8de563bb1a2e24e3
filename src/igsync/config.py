"""Configuration management using pydantic-settings."""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Maximum plausible value of each account-level metric for a single day.
# The Graph API occasionally reports a lifetime total under a daily label;
# anything above these ceilings is dropped before it is stored.
DEFAULT_DAILY_METRIC_CEILINGS: dict[str, int] = {
    "reach": 500_000,
    "impressions": 1_000_000,
    "profile_views": 100_000,
    "accounts_engaged": 100_000,
    "website_clicks": 50_000,
    "follower_count": 10_000_000,
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_url: str = Field(
        default="sqlite:///igsync.db",
        description="Database connection URL",
    )

    # Credential decryption
    encryption_key: Optional[str] = Field(
        default=None,
        description="Server secret used to decrypt stored access tokens",
    )

    # Graph API hosts
    graph_api_version: str = Field(
        default="v24.0",
        description="Graph API version prefix",
    )
    facebook_graph_url: str = Field(
        default="https://graph.facebook.com",
        description="Host serving Facebook-issued (EAA) tokens",
    )
    instagram_graph_url: str = Field(
        default="https://graph.instagram.com",
        description="Host serving Instagram-issued (IG) tokens",
    )
    request_timeout_seconds: float = Field(
        default=15.0,
        description="Per-request HTTP timeout",
    )

    # Retry and pagination budget
    max_retry_attempts: int = Field(
        default=5,
        description="Attempts per request on transient upstream errors",
    )
    retry_backoff_seconds: float = Field(
        default=1.0,
        description="Base backoff, doubled on every retry",
    )
    max_media_pages: int = Field(
        default=20,
        description="Safety cap on media list pages",
    )
    media_page_size: int = Field(
        default=100,
        description="Items requested per media page",
    )
    max_posts: int = Field(
        default=500,
        description="Maximum media items kept per sync",
    )
    max_insights_posts: int = Field(
        default=200,
        description="Only the most recent N posts get per-item insights",
    )
    insights_batch_size: int = Field(
        default=50,
        description="Concurrent per-item insight requests",
    )
    max_stories: int = Field(
        default=25,
        description="Maximum stories requested",
    )
    stories_window_days: int = Field(
        default=2,
        description="Stories are fetched only when the window reaches this close to today",
    )
    max_insights_window_days: int = Field(
        default=30,
        description="Longest range accepted by a single daily-insights call",
    )

    # Cache policy
    cache_ttl_minutes: int = Field(
        default=60,
        description="How long a snapshot for today is served without refetching",
    )
    sync_lease_minutes: int = Field(
        default=10,
        description="A sync guard older than this is considered abandoned",
    )
    default_window_days: int = Field(
        default=30,
        description="Window length used when a request omits 'since'",
    )
    default_timezone: str = Field(
        default="UTC",
        description="Timezone used for accounts without a valid one",
    )
    daily_metric_ceilings: dict[str, int] = Field(
        default_factory=lambda: dict(DEFAULT_DAILY_METRIC_CEILINGS),
        description="Maximum plausible daily value per metric",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )

    @property
    def is_encryption_configured(self) -> bool:
        """Check if the credential encryption key is configured."""
        return bool(self.encryption_key)

    def api_base_url(self, host: str) -> str:
        """Versioned base URL for the 'facebook' or 'instagram' host."""
        root = self.instagram_graph_url if host == "instagram" else self.facebook_graph_url
        return f"{root.rstrip('/')}/{self.graph_api_version}"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
