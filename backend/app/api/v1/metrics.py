"""
Prometheus metrics endpoint.

This module provides a /metrics endpoint compatible with Prometheus scraping.
Metrics are collected by app.observability and exposed in Prometheus format.
"""
import logging
from fastapi import APIRouter, Response
from starlette.status import HTTP_503_SERVICE_UNAVAILABLE

from app.core.config import settings
from app.core.error_responses import ErrorMessages
from app.observability import PROMETHEUS_CONTENT_TYPE, metrics

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/metrics",
    include_in_schema=False,
    response_class=Response,
)
def prometheus_metrics() -> Response:
    """
    Prometheus metrics endpoint.

    Note: This endpoint is intentionally unauthenticated to allow Prometheus
    scrapers to collect metrics. No student identifiers are used as metric
    labels.

    Returns:
        Response: Metrics in Prometheus text format
    """
    if not settings.PROMETHEUS_METRICS_ENABLED:
        return Response(
            content=ErrorMessages.METRICS_DISABLED,
            media_type=PROMETHEUS_CONTENT_TYPE,
            status_code=HTTP_503_SERVICE_UNAVAILABLE,
        )

    try:
        return Response(content=metrics.render(), media_type=PROMETHEUS_CONTENT_TYPE)
    except Exception:
        logger.exception("Failed to generate Prometheus metrics")
        return Response(
            content=ErrorMessages.METRICS_FAILED,
            media_type=PROMETHEUS_CONTENT_TYPE,
            status_code=HTTP_503_SERVICE_UNAVAILABLE,
        )
