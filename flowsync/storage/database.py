"""Database connection and session management."""

import os
from typing import Optional
from sqlalchemy import create_engine, Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

# Base class for all database models
Base = declarative_base()

# Global engine and session factory
engine: Optional[Engine] = None
SessionLocal: Optional[sessionmaker] = None


def get_database_engine(database_url: Optional[str] = None,
                        echo: bool = False,
                        connect_args: Optional[dict] = None) -> Engine:
    """Create a database engine with configuration."""
    if database_url is None:
        database_url = os.getenv("DATABASE_URL", "sqlite:///./flowsync.db")

    if connect_args is None:
        if database_url.startswith("sqlite"):
            connect_args = {"check_same_thread": False}
        else:
            connect_args = {}

    if database_url.startswith("sqlite"):
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


def configure_database(database_url: Optional[str] = None, echo: bool = False) -> Engine:
    """Bind the global engine and session factory to a database URL."""
    global engine, SessionLocal

    if engine is not None:
        engine.dispose()

    engine = get_database_engine(database_url, echo=echo)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    return engine


def reset_database_engine():
    """Reset the global database engine (mainly for testing)."""
    global engine, SessionLocal
    if engine:
        engine.dispose()
    engine = None
    SessionLocal = None


def _ensure_configured():
    if SessionLocal is None:
        configure_database()


def get_db():
    """Dependency to get database session."""
    _ensure_configured()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables():
    """Create all database tables."""
    # Register the models on Base.metadata
    from . import models  # noqa: F401

    _ensure_configured()
    Base.metadata.create_all(bind=engine)


def drop_tables():
    """Drop all database tables."""
    from . import models  # noqa: F401

    _ensure_configured()
    Base.metadata.drop_all(bind=engine)
