"""
Graceful failure utilities.

Side effects that must never undo or block an exam state transition
(student notifications, metric recording) run inside `graceful_failure`:
1. Attempt the operation
2. Log any exception with context
3. Continue without raising

This is distinct from `db_error_handling.py`, which handles critical
persistence errors that roll back and surface to the caller.

Usage:
    from app.core.graceful_failure import graceful_failure

    with graceful_failure("notify student", logger, context={"attempt_id": 7}):
        notifier.notify(student_id, "results_published", payload)
"""

import logging
from contextlib import contextmanager
from typing import Any, Generator, Optional

from app.observability import metrics


@contextmanager
def graceful_failure(
    operation_name: str,
    logger: logging.Logger,
    *,
    log_level: int = logging.WARNING,
    exc_info: bool = False,
    context: Optional[dict[str, Any]] = None,
) -> Generator[None, None, None]:
    """Context manager for non-critical operations that should not block execution.

    Unlike `handle_db_error`, this does NOT roll back the database session or
    raise. Use it for work whose failure is acceptable once the attempt state
    has been committed.

    Args:
        operation_name: Human-readable name of the operation for logging
            (e.g., "notify student").
        logger: The logger instance to use for logging errors.
        log_level: Logging level for error messages. Defaults to WARNING.
        exc_info: Whether to include exception traceback in log. Defaults to False.
        context: Optional dictionary of additional context to include in log message
            (e.g., {"attempt_id": 123, "student_id": 456}).
    """
    try:
        yield
    except Exception as e:
        if context:
            context_str = ", ".join(f"{k}={v}" for k, v in context.items())
            message = f"Failed to {operation_name} ({context_str}): {e}"
        else:
            message = f"Failed to {operation_name}: {e}"

        logger.log(log_level, message, exc_info=exc_info)
        metrics.record_error(error_type="GracefulFailure")
