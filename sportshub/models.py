"""
Database models for the persistent cache
SQLAlchemy ORM models for raw API responses and derived team fixture lists
"""
from sqlalchemy import (
    Column, Integer, String, Text, DateTime, JSON, UniqueConstraint, Index
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class ApiFootballCache(Base):
    """
    Cached API-Football response - one row per (endpoint, params_key)
    Writes for the same identity upsert in place
    """
    __tablename__ = "api_football_cache"

    id = Column(Integer, primary_key=True, autoincrement=True)
    endpoint = Column(String(255), nullable=False)
    params_key = Column(Text, nullable=False)
    response_data = Column(JSON, nullable=False)
    cached_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    ttl_seconds = Column(Integer, nullable=False)
    hit_count = Column(Integer, nullable=False, default=0)

    # Constraints
    __table_args__ = (
        UniqueConstraint("endpoint", "params_key", name="uix_cache_key"),
    )

    def __repr__(self):
        return f"<ApiFootballCache(endpoint='{self.endpoint}', params_key='{self.params_key}', hits={self.hit_count})>"


class TeamFixturesCache(Base):
    """
    Recent fixtures for one team in one league/season
    Feeds the form strings on standings tables; served stale while refreshing
    """
    __tablename__ = "team_fixtures_cache"

    id = Column(Integer, primary_key=True, autoincrement=True)
    team_id = Column(Integer, nullable=False)
    league_id = Column(Integer, nullable=False)
    season = Column(Integer, nullable=False)
    fixtures = Column(JSON, nullable=False)
    cached_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    ttl_seconds = Column(Integer, nullable=False)

    # Constraints
    __table_args__ = (
        UniqueConstraint("team_id", "league_id", "season", name="uix_team_league_season"),
        Index("ix_team_fixtures_league_season", "league_id", "season"),
    )

    def __repr__(self):
        return f"<TeamFixturesCache(team_id={self.team_id}, league_id={self.league_id}, season={self.season})>"
