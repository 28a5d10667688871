"""Configuration management using pydantic-settings."""
from datetime import datetime
from typing import Optional

from pydantic_settings import BaseSettings


def _compute_current_season() -> int:
    """
    Compute the current football season year.

    API-Football uses the starting year of the season (2025 for 2025-26).
    Football seasons run Aug-May, so Jan-Jul uses previous year's season code.
    """
    now = datetime.now()
    # If we're in Jan-Jul, we're still in last year's season
    if now.month <= 7:
        return now.year - 1
    return now.year


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API-Football configuration
    api_football_key: Optional[str] = None
    api_football_base_url: str = "https://v3.football.api-sports.io"
    api_football_host: str = "v3.football.api-sports.io"
    request_timeout_seconds: float = 30.0

    # Persistent cache (any SQLAlchemy URL)
    cache_database_url: str = "sqlite:///./sportshub_cache.db"

    # Request deduplication
    dedup_window_seconds: float = 5.0
    dedup_sweep_interval_seconds: float = 10.0

    # Team fixtures cache (stale-while-revalidate)
    team_fixtures_grace_seconds: int = 7200
    team_fixtures_last: int = 10
    refresh_delay_seconds: float = 2.0

    log_level: str = "INFO"

    # Premier League ID for API-Football
    premier_league_id: int = 39

    # Current season (single source of truth)
    # Computed dynamically: Jan-Jul = previous year, Aug-Dec = current year
    current_season: int = _compute_current_season()

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
