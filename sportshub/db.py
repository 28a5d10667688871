"""
Database connection and setup
Any SQLAlchemy URL works; SQLite by default
"""
import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from sportshub.models import Base

logger = logging.getLogger("db")


def make_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine for the cache database.

    Store calls run in worker threads, so SQLite connections must be
    usable outside the thread that created them.
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False  # Needed for SQLite
    return create_engine(database_url, connect_args=connect_args, echo=echo)


def make_session_factory(engine: Engine) -> sessionmaker:
    """Session factory bound to ``engine``."""
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine) -> None:
    """
    Initialize database - create all tables
    Safe to call multiple times (won't recreate existing tables)
    """
    Base.metadata.create_all(bind=engine)
    logger.info(f"Cache database initialized at: {engine.url.render_as_string(hide_password=True)}")
