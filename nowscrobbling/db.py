"""
Database connection and setup
SQLAlchemy engine for the shared key-value store
"""
import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from nowscrobbling.models import Base

logger = logging.getLogger("db")


def make_engine(database_url: str):
    """
    Create an engine for the given URL.

    SQLite needs check_same_thread disabled because the background refresher
    and request threads share the engine.
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(database_url, connect_args=connect_args, echo=False)


def init_db(engine) -> None:
    """
    Initialize database - create all tables
    Safe to call multiple times (won't recreate existing tables)
    """
    Base.metadata.create_all(bind=engine)
    logger.info(f"Key-value store initialized at: {engine.url}")


def make_session_factory(engine):
    """Session factory bound to the engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
