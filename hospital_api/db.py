"""
db.py
=====
Handles database connection and session management for the records API.
"""

import os
from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from .config import Settings


class Database:
    """Engine + session factory built from explicit settings."""

    def __init__(self, settings: Settings):
        url = settings.database_url
        connect_args = {}
        if url.startswith("sqlite"):
            # Create directory if it doesn't exist
            db_path = url.split("///", 1)[-1]
            db_dir = os.path.dirname(db_path)
            if db_dir and not os.path.exists(db_dir):
                os.makedirs(db_dir, exist_ok=True)
            # For SQLite, we must disable thread check
            connect_args = {"check_same_thread": False}

        self.engine = create_engine(url, connect_args=connect_args)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def init_db(self, Base):
        """
        Initializes the database: creates tables if missing.
        Called once on FastAPI startup.
        """
        Base.metadata.create_all(bind=self.engine)

    def dispose(self):
        self.engine.dispose()


def get_db(request: Request):
    """
    Dependency injection generator.
    Yields a database session from the app's Database, closes when done.
    """
    db = request.app.state.db.SessionLocal()
    try:
        yield db
    finally:
        db.close()
