# database.py
"""
SQLAlchemy engine and session management for the local invoice cache.

This module provides:
- Engine construction from a database URL (SQLite by default)
- Session factory for dependency injection
- Connection utilities

The cache is never authoritative: everything in it is either derived from
the Hive blockchain or waiting to be written there.

Usage:
     from database import create_engine_from_url, create_session_factory, session_scope

     engine = create_engine_from_url(settings.database_url)
     SessionLocal = create_session_factory(engine)

     with session_scope(SessionLocal) as db:
          invoices = db.query(Invoice).all()
"""
import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


def create_engine_from_url(database_url: str, echo: bool = False) -> Engine:
     """
     Create the SQLAlchemy engine.

     SQLite connections are shared between the request threads and the
     payment monitor thread, and need foreign keys switched on for the
     invoice -> items/payments cascades.
     """
     kwargs = {"echo": echo}
     if database_url.startswith("sqlite"):
          kwargs["connect_args"] = {"check_same_thread": False}
          if database_url in ("sqlite://", "sqlite:///:memory:"):
               kwargs["poolclass"] = StaticPool
     else:
          kwargs.update(
               pool_size=5,
               max_overflow=10,
               pool_timeout=30,
               pool_recycle=1800,  # Recycle connections after 30 minutes
          )

     engine = create_engine(database_url, **kwargs)

     if database_url.startswith("sqlite"):
          @event.listens_for(engine, "connect")
          def _enable_foreign_keys(dbapi_connection, connection_record):
               cursor = dbapi_connection.cursor()
               cursor.execute("PRAGMA foreign_keys=ON")
               cursor.close()

     return engine


def create_session_factory(engine: Engine) -> sessionmaker:
     """Session factory bound to the given engine."""
     return sessionmaker(
          bind=engine,
          autocommit=False,
          autoflush=False,
          expire_on_commit=False,
     )


@contextmanager
def session_scope(session_factory: sessionmaker) -> Generator[Session, None, None]:
     """
     Context manager for database sessions (for use outside FastAPI routes).

     Usage:
          with session_scope(SessionLocal) as db:
               invoices = db.query(Invoice).all()

     Yields:
          Session: SQLAlchemy database session
     """
     session = session_factory()
     try:
          yield session
          session.commit()
     except Exception:
          session.rollback()
          raise
     finally:
          session.close()


def init_db(engine: Engine) -> None:
     """
     Initialize database tables.

     Creates all tables defined in the models if they don't exist.
     For production, use Alembic migrations instead.
     """
     from models import Base
     Base.metadata.create_all(bind=engine)


def check_connection(engine: Engine) -> bool:
     """
     Test database connectivity.

     Returns:
          bool: True if connection successful, False otherwise
     """
     try:
          with engine.connect() as conn:
               conn.execute(text("SELECT 1"))
          return True
     except Exception as e:
          logger.error("Database connection failed: %s", e)
          return False
