"""
Database error handling utilities.

This module centralizes how the attempt repository and the services above it
react to persistence failures:
1. Roll back the database session on error
2. Log the error with context
3. Retry once when the failure is transient (deadlock, serialization
   failure, dropped connection)
4. Surface anything else as a RepositoryError, which the API maps to a
   generic 500 response

Exam errors (invalid state, out-of-range marks, ...) and integrity violations
are never retried: they pass through untouched so callers can act on them.

Usage:
    from app.core.db_error_handling import handle_db_error, transient_retry

    with handle_db_error(db, "finalize grading"):
        ...
        db.commit()

    class AttemptRepository:
        @transient_retry("close attempt")
        def close(self, attempt_id, status, now):
            ...
"""
import logging
from contextlib import contextmanager
from functools import wraps
from typing import Any, Callable, Generator, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exam.errors import ExamError, RepositoryError

logger = logging.getLogger(__name__)

# Type variable for decorator return type preservation
T = TypeVar("T")

# One retry after the first failure
MAX_TRANSIENT_RETRIES = 1


def is_transient(error: Exception) -> bool:
    """Whether a database error is worth retrying.

    OperationalError covers deadlocks, serialization failures and lost
    connections on both PostgreSQL and SQLite ("database is locked").
    """
    return isinstance(error, OperationalError)


def _safe_rollback(db: Session, operation_name: str) -> None:
    try:
        db.rollback()
    except SQLAlchemyError as rollback_error:
        logger.error(f"Rollback failed during {operation_name}: {rollback_error}")


@contextmanager
def handle_db_error(
    db: Session,
    operation_name: str,
    *,
    log_level: int = logging.ERROR,
) -> Generator[None, None, None]:
    """Context manager for handling database errors consistently.

    On any exception the session is rolled back. Exam errors and integrity
    violations are re-raised unchanged; other database errors are logged and
    wrapped in RepositoryError.

    Args:
        db: The SQLAlchemy database session to rollback on error.
        operation_name: Human-readable name of the operation for error messages
            and logging (e.g., "finalize grading", "record answer").
        log_level: Logging level for error messages. Defaults to logging.ERROR.

    Raises:
        RepositoryError: On any non-exam, non-integrity database failure.
    """
    try:
        yield
    except (ExamError, IntegrityError):
        _safe_rollback(db, operation_name)
        raise
    except SQLAlchemyError as e:
        _safe_rollback(db, operation_name)
        logger.log(log_level, f"Database error during {operation_name}: {e}", exc_info=True)
        raise RepositoryError(operation_name, e) from e


def run_with_transient_retry(
    db: Session, operation_name: str, operation: Callable[[], T]
) -> T:
    """Run a repository operation, retrying it once on a transient failure.

    Raises:
        RepositoryError: If the retry fails too, or on a non-transient
            database error.
    """
    attempts = 0
    while True:
        try:
            return operation()
        except (ExamError, IntegrityError):
            _safe_rollback(db, operation_name)
            raise
        except SQLAlchemyError as e:
            _safe_rollback(db, operation_name)
            if is_transient(e) and attempts < MAX_TRANSIENT_RETRIES:
                attempts += 1
                logger.warning(
                    f"Transient database error during {operation_name}, retrying: {e}"
                )
                continue
            logger.error(f"Database error during {operation_name}: {e}", exc_info=True)
            raise RepositoryError(operation_name, e) from e


class TransientRetryDecorator:
    """Decorator for repository methods whose instance holds the session as `self.db`."""

    def __init__(self, operation_name: str):
        self.operation_name = operation_name

    def __call__(self, func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(repo: Any, *args: Any, **kwargs: Any) -> T:
            return run_with_transient_retry(
                repo.db, self.operation_name, lambda: func(repo, *args, **kwargs)
            )

        return wrapper


transient_retry = TransientRetryDecorator
