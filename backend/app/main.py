"""
Main FastAPI application.
"""
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.v1 import metrics as metrics_endpoint
from app.api.v1.api import api_router
from app.core.config import settings
from app.core.error_tracking import error_tracker
from app.core.error_responses import (
    ErrorMessages,
    error_body,
    exam_error_body,
    status_for,
)
from app.core.exam.errors import ExamError
from app.core.logging_config import setup_logging
from app.middleware import RequestLoggingMiddleware
from app.observability import metrics

# Initialize logging configuration at startup
setup_logging()

logger = logging.getLogger(__name__)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan event handler.
    """
    logger.info(f"{settings.APP_NAME} {settings.APP_VERSION} starting (env={settings.ENV})")
    if settings.SENTRY_DSN:
        error_tracker.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENV,
            release=settings.APP_VERSION,
            traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        )
    yield
    logger.info(f"{settings.APP_NAME} shutting down")
    # Deliver pending Sentry events
    error_tracker.flush()


# OpenAPI tags metadata
tags_metadata = [
    {
        "name": "health",
        "description": "Health check endpoints for monitoring application status",
    },
    {
        "name": "test-taking",
        "description": "Student attempt lifecycle: start, answer, sections, submit and results",
    },
    {
        "name": "grading",
        "description": "Teacher grading queue, finalization, ranking, statistics and exports",
    },
]


def create_application() -> FastAPI:
    """
    Create and configure the FastAPI application.
    """
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        lifespan=lifespan,
        description=(
            "**Exam Engine API** - online examinations for schools and companies.\n\n"
            "This API provides:\n"
            "* Timed and sectioned test attempts with automatic submission\n"
            "* Automatic grading of objective questions\n"
            "* Teacher grading of subjective answers, ranking and result export\n\n"
            "## Identity\n\n"
            "Students identify with the `X-Student-Id` header; teachers with "
            "`X-User-Email` (and optionally `X-Company-Id`)."
        ),
        docs_url=f"{settings.API_V1_PREFIX}/docs",
        redoc_url=f"{settings.API_V1_PREFIX}/redoc",
        openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
        openapi_tags=tags_metadata,
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "OPTIONS"],
        allow_headers=[
            "Content-Type",
            "X-Student-Id",
            "X-User-Email",
            "X-Company-Id",
            "X-Request-ID",
        ],
    )

    # Configure Request Logging (assigns the request id)
    app.add_middleware(RequestLoggingMiddleware)

    # Include API router
    app.include_router(api_router, prefix=settings.API_V1_PREFIX)
    app.include_router(metrics_endpoint.router)

    @app.exception_handler(ExamError)
    async def exam_error_handler(request: Request, exc: ExamError):
        """
        Map exam engine errors to their HTTP status with the shared error body.
        """
        status_code = status_for(exc)
        metrics.record_error(error_type=exc.__class__.__name__)
        if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
            logger.error(
                f"{exc.code} on {request.method} {request.url.path}: {exc.message}",
                exc_info=getattr(exc, "original_error", None) or exc,
                extra={"error_code": exc.code},
            )
            error_tracker.capture_error(
                getattr(exc, "original_error", None) or exc,
                context={
                    "path": str(request.url.path),
                    "method": request.method,
                    "request_id": _request_id(request),
                },
                tags={"error_type": exc.__class__.__name__, "error_code": exc.code},
            )
        else:
            logger.info(
                f"{exc.code} on {request.method} {request.url.path}: {exc.message}",
                extra={"error_code": exc.code},
            )
        return JSONResponse(
            status_code=status_code,
            content=exam_error_body(exc, _request_id(request)),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
            error_tracker.capture_error(
                exc,
                context={
                    "path": str(request.url.path),
                    "method": request.method,
                    "status_code": exc.status_code,
                },
                tags={"error_type": "HTTPException"},
            )
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.detail, "http_error", None, _request_id(request)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        """
        Handle request validation errors.
        """
        errors = [
            {
                "loc": list(error.get("loc", [])),
                "msg": str(error.get("msg", "")),
                "type": str(error.get("type", "")),
            }
            for error in exc.errors()
        ]
        metrics.record_error(error_type="ValidationError")
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=error_body(
                ErrorMessages.VALIDATION_FAILED,
                "validation_error",
                {"errors": errors},
                _request_id(request),
            ),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """
        Handle unexpected exceptions.

        The request id is included in the response body and logged with the
        full exception so support can trace it.
        """
        request_id = _request_id(request)
        logger.exception(
            f"Unhandled exception [request_id={request_id}]: {exc}",
            extra={"request_id": request_id},
        )
        metrics.record_error(error_type=exc.__class__.__name__)
        error_tracker.capture_error(
            exc,
            context={
                "path": str(request.url.path),
                "method": request.method,
                "request_id": request_id,
            },
            tags={"error_type": exc.__class__.__name__},
        )

        # Don't leak internal details
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body(ErrorMessages.INTERNAL_ERROR, "internal_error", None, request_id),
        )

    return app


app = create_application()


@app.get("/")
async def root():
    """
    Root endpoint.
    """
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": f"{settings.API_V1_PREFIX}/docs",
    }
