"""Database connection and session management."""

import os
from typing import Optional
from sqlalchemy import create_engine, Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

# Global engine instance
_engine: Optional[Engine] = None

# Base class for all database models
Base = declarative_base()


def get_database_engine(database_url: Optional[str] = None,
                        echo: bool = False,
                        connect_args: Optional[dict] = None) -> Engine:
    """Get or create database engine with configuration."""
    global _engine

    if _engine is None:
        _engine = create_database_engine(database_url, echo=echo, connect_args=connect_args)

    return _engine


def create_database_engine(database_url: Optional[str] = None,
                           echo: bool = False,
                           connect_args: Optional[dict] = None) -> Engine:
    """Create a new engine without touching the global one."""
    # Use provided URL or fall back to environment variable
    if database_url is None:
        database_url = os.getenv("RECORDFLOW_DATABASE_URL", "sqlite:///./recordflow.db")

    # Default connect args for SQLite
    if connect_args is None:
        if database_url.startswith("sqlite"):
            connect_args = {"check_same_thread": False}
        else:
            connect_args = {}

    # In-memory SQLite must share one connection; file databases keep a normal
    # pool so concurrent sessions get their own connections.
    if database_url.startswith("sqlite") and ":memory:" in database_url:
        return create_engine(
            database_url,
            connect_args=connect_args,
            poolclass=StaticPool,
            echo=echo
        )

    return create_engine(
        database_url,
        echo=echo,
        connect_args=connect_args
    )


def reset_database_engine():
    """Reset the global database engine (mainly for testing)."""
    global _engine
    if _engine:
        _engine.dispose()
    _engine = None


def configure_database(database_url: Optional[str] = None, echo: bool = False) -> Engine:
    """Replace the global engine and rebind the session factory to it."""
    reset_database_engine()
    new_engine = get_database_engine(database_url, echo=echo)
    SessionLocal.configure(bind=new_engine)
    return new_engine


# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=get_database_engine())


def create_tables(engine: Optional[Engine] = None):
    """Create all database tables."""
    from . import models  # noqa: F401  registers the tables on Base.metadata
    Base.metadata.create_all(bind=engine or get_database_engine())


def drop_tables(engine: Optional[Engine] = None):
    """Drop all database tables."""
    from . import models  # noqa: F401
    Base.metadata.drop_all(bind=engine or get_database_engine())
