"""
Database Configuration and Connection
"""
import logging
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker, scoped_session
from sqlalchemy.pool import StaticPool

from eol_checker.config import DATABASE_URL

logger = logging.getLogger(__name__)

# Engine and session factory (initialized by init_db)
engine = None
SessionLocal = None


def create_database_if_not_exists(database_url: str):
    """
    Create the MySQL database if it doesn't exist.
    Other backends (SQLite in tests) create their storage on connect.
    """
    url = make_url(database_url)
    if not url.drivername.startswith('mysql'):
        return

    db_name = url.database
    try:
        # Connect without specifying database
        temp_engine = create_engine(
            url.set(database=None),
            connect_args={'connect_timeout': 10}
        )

        with temp_engine.connect() as conn:
            result = conn.execute(text("SHOW DATABASES LIKE :name"), {"name": db_name})
            if result.fetchone() is None:
                conn.execute(text(
                    f"CREATE DATABASE IF NOT EXISTS `{db_name}` CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci"
                ))
                conn.commit()
                logger.info(f"Database '{db_name}' created")

        temp_engine.dispose()
    except OperationalError:
        logger.error("Could not connect to MySQL server. Please ensure MySQL is running and credentials are correct.")
        raise


def _build_engine(database_url: str):
    url = make_url(database_url)
    if url.drivername.startswith('sqlite'):
        # In-memory SQLite must share one connection across threads
        return create_engine(
            database_url,
            connect_args={'check_same_thread': False},
            poolclass=StaticPool,
        )
    return create_engine(
        database_url,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,  # Verify connections before using
        connect_args={'connect_timeout': 10},
    )


def get_db_session():
    """
    Get a database session.
    Use in a context manager or ensure to close it:

    with get_db_session() as session:
        # Use session
        pass
    """
    if SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return SessionLocal()


def init_db(database_url: Optional[str] = None):
    """
    Initialize database - create database and all tables if they don't exist.
    Re-initializing with a different URL disposes the previous engine.
    """
    global engine, SessionLocal

    database_url = database_url or DATABASE_URL
    close_db()

    create_database_if_not_exists(database_url)
    engine = _build_engine(database_url)
    SessionLocal = scoped_session(sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine
    ))

    from eol_checker.database.models import Base
    Base.metadata.create_all(bind=engine)
    logger.info("Database and tables initialized")


def close_db():
    """
    Close database connections.
    """
    global SessionLocal, engine
    if SessionLocal is not None:
        SessionLocal.remove()
        SessionLocal = None
    if engine is not None:
        engine.dispose()
        engine = None
