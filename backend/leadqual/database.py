# backend/leadqual/database.py
import logging
from contextlib import contextmanager
from typing import Generator, Optional, Tuple

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base, Session
from sqlalchemy.exc import SQLAlchemyError, IntegrityError, OperationalError

from leadqual.config import settings  # OK: config should NOT import leadqual.database

logger = logging.getLogger(__name__)


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        # FastAPI serves requests from a threadpool
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True, "pool_recycle": 3600}


engine = create_engine(settings.DATABASE_URL, **_engine_kwargs(settings.DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context(session_factory=None) -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Usage:
        with get_db_context() as db:
            db.query(...)
            db.commit()

    Automatically handles session cleanup on exit.
    """
    db = (session_factory or SessionLocal)()
    try:
        yield db
    finally:
        db.close()


def safe_commit(db: Session, operation: str = "database operation") -> Tuple[bool, Optional[str]]:
    """
    Safely commit a database transaction with rollback on failure.

    Args:
        db: SQLAlchemy Session
        operation: Description of the operation for logging

    Returns:
        Tuple of (success: bool, error_message: Optional[str])

    Usage:
        db.add(model)
        success, error = safe_commit(db, "create lead")
        if not success:
            raise LeadStoreError(error)
    """
    try:
        db.commit()
        return True, None
    except IntegrityError as e:
        db.rollback()
        error_msg = f"Integrity error during {operation}: {str(e.orig)[:200]}"
        logger.error(error_msg)
        return False, error_msg
    except OperationalError as e:
        db.rollback()
        error_msg = f"Database operational error during {operation}: {str(e.orig)[:200]}"
        logger.error(error_msg)
        return False, error_msg
    except SQLAlchemyError as e:
        db.rollback()
        error_msg = f"Database error during {operation}: {str(e)[:200]}"
        logger.error(error_msg)
        return False, error_msg
