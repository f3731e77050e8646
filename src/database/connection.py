"""Database connection and session management."""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from contextlib import contextmanager
from src.config import settings
import logging

logger = logging.getLogger(__name__)

# Create database engine
engine = create_engine(
    settings.database_url,
    echo=settings.database_echo,
    connect_args={"check_same_thread": False} if "sqlite" in settings.database_url else {}
)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Session:
    """Dependency to get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_session():
    """Context manager for database sessions."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception as e:
        logger.error(f"Database session error: {e}")
        db.rollback()
        raise
    finally:
        db.close()


def init_database(bind=None):
    """Initialize database tables."""
    from src.models.base import Base

    # Import all models to ensure they're registered
    from src.models import (  # noqa: F401
        bucket,
        document_type,
        barcode_pattern,
        document,
        unindexed_item,
        monitoring_config,
        poll_run_log,
    )

    # Create all tables
    Base.metadata.create_all(bind=bind or engine)

    logger.info("Database initialized successfully")
