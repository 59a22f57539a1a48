"""Database session context manager.

Usage:
    with db_session() as db:
        batch = db.get(Batch, 1)
        db.commit()
"""

from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy.orm import Session

from cashbatch.utils.logging import get_logger

logger = get_logger(__name__)


@contextmanager
def db_session() -> Generator[Session, None, None]:
    """Context manager for database sessions with automatic cleanup.

    The session is rolled back when the block raises and always closed on
    exit. Callers commit explicitly.

    Raises:
        RuntimeError: If the database has not been initialized
    """
    from cashbatch.storage.database import base

    if base.SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    db = base.get_session()
    try:
        logger.debug("db_session_created", session_id=id(db))
        yield db
    except Exception as e:
        logger.error(
            "db_session_error_rollback",
            error=str(e),
            error_type=type(e).__name__,
            session_id=id(db),
        )
        db.rollback()
        raise
    finally:
        logger.debug("db_session_closed", session_id=id(db))
        db.close()
