"""
Health check endpoint.
"""
import logging

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core import settings
from app.core.datetime_utils import utc_now
from app.models import get_db

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
def health_check(response: Response, db: Session = Depends(get_db)):
    """
    Health check endpoint.

    Reports 503 when the database cannot be reached, since no exam operation
    can succeed without it.
    """
    database = "ok"
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Health check database query failed: {e}")
        database = "unavailable"
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return {
        "status": "healthy" if database == "ok" else "degraded",
        "database": database,
        "timestamp": utc_now().isoformat(),
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
    }
