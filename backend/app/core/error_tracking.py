"""
Sentry error tracking.

The tracker is initialized from the application lifespan when SENTRY_DSN is
set. Until then every capture is a no-op, so local runs and tests never send
events.
"""
import logging
from typing import Any, Dict, Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

logger = logging.getLogger(__name__)


class ErrorTracker:
    """Thin wrapper around the Sentry SDK used by the exception handlers."""

    def __init__(self) -> None:
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def init(
        self,
        dsn: str,
        environment: str,
        release: Optional[str] = None,
        traces_sample_rate: float = 0.0,
    ) -> bool:
        """Initialize the Sentry SDK with the FastAPI/Starlette integrations.

        Returns:
            True if Sentry is ready, False if skipped (no DSN) or the SDK
            failed to initialize. Never raises.
        """
        if not dsn:
            logger.debug("Sentry initialization skipped (DSN not configured)")
            return False

        try:
            sentry_sdk.init(
                dsn=dsn,
                environment=environment,
                release=release,
                traces_sample_rate=traces_sample_rate,
                integrations=[
                    # Log records are already shipped by the JSON formatter
                    LoggingIntegration(level=None, event_level=None),
                    StarletteIntegration(transaction_style="endpoint"),
                    FastApiIntegration(transaction_style="endpoint"),
                ],
                send_default_pii=False,
            )
        except Exception as e:
            logger.error(f"Failed to initialize Sentry: {e}", exc_info=True)
            return False

        self._initialized = True
        logger.info(
            f"Sentry initialized for environment '{environment}' "
            f"with {traces_sample_rate * 100:.0f}% trace sampling"
        )
        return True

    def capture_error(
        self,
        exception: BaseException,
        *,
        context: Optional[Dict[str, Any]] = None,
        tags: Optional[Dict[str, str]] = None,
        level: str = "error",
    ) -> Optional[str]:
        """Send an exception to Sentry.

        Returns:
            The Sentry event id, or None if the tracker is not initialized.
        """
        if not self._initialized:
            return None

        with sentry_sdk.new_scope() as scope:
            if context:
                scope.set_context("additional", context)
            for key, value in (tags or {}).items():
                scope.set_tag(key, value)
            scope.level = level
            return sentry_sdk.capture_exception(exception)

    def flush(self, timeout: float = 2.0) -> None:
        """Deliver pending events before shutdown."""
        if self._initialized:
            sentry_sdk.flush(timeout=timeout)


error_tracker = ErrorTracker()
