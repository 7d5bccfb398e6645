"""
db.py
=====
Handles database connection and session management for the check-in backend.
"""

import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from . import config

# Session factory; bound to an engine by configure_database()
SessionLocal = sessionmaker(autocommit=False, autoflush=False)

engine = None


def configure_database(url: str = None):
    """
    Create the engine for `url` and bind the session factory to it.
    Called at import time with the configured URL; tests call it again
    to point the application at a temporary database.
    """
    global engine

    url = url or config.DATABASE_URL
    connect_args = {}
    if url.startswith("sqlite"):
        # Create directory if it doesn't exist
        db_file = url.split("sqlite:///", 1)[-1]
        db_dir = os.path.dirname(db_file)
        if db_dir and db_file != ":memory:" and not os.path.exists(db_dir):
            os.makedirs(db_dir, exist_ok=True)
        # For SQLite, we must disable thread check
        connect_args = {"check_same_thread": False}

    if engine is not None:
        engine.dispose()
    engine = create_engine(url, connect_args=connect_args)
    SessionLocal.configure(bind=engine)
    return engine


def get_db():
    """
    Dependency injection generator.
    Yields a database session, closes when done.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(Base):
    """
    Initializes the database — creates tables if missing.
    Called once on FastAPI startup.
    """
    Base.metadata.create_all(bind=engine)


configure_database()
