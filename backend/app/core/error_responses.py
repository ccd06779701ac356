"""
Standardized error responses for the exam API.

Engine and grading errors are ExamError subclasses with a stable `code`.
This module maps each code to an HTTP status and builds the JSON body every
error response shares:

    {"detail": <message>, "error": <code>, "context": {...}, "request_id": <id>}

Error Message Format Guidelines:
- Use sentence case (capitalize first letter only)
- End with a period for complete sentences
- Use "Please try again later." for transient server errors

Usage:
    from app.core.error_responses import error_body, status_for

    return JSONResponse(status_code=status_for(exc), content=error_body(...))
"""
from typing import Any, Dict, Optional

from fastapi import status

from app.core.exam.errors import ExamError


class ErrorMessages:
    """Centralized user-facing messages for errors raised outside the engine."""

    INTERNAL_ERROR = "Internal server error. Please try again later."
    VALIDATION_FAILED = "Request validation failed."
    MISSING_STUDENT_IDENTITY = "A valid X-Student-Id header is required."
    MISSING_GRADER_IDENTITY = "X-User-Email header is required for grading endpoints."
    METRICS_DISABLED = "# Prometheus endpoint not enabled (set PROMETHEUS_METRICS_ENABLED=true)\n"
    METRICS_FAILED = "# Error generating metrics\n"


# ExamError.code -> HTTP status
STATUS_BY_ERROR_CODE: Dict[str, int] = {
    "invalid_state": status.HTTP_409_CONFLICT,
    "attempt_limit_exceeded": status.HTTP_409_CONFLICT,
    "already_in_progress": status.HTTP_409_CONFLICT,
    "section_mismatch": status.HTTP_409_CONFLICT,
    "cannot_skip_sections": status.HTTP_409_CONFLICT,
    "review_not_allowed": status.HTTP_409_CONFLICT,
    "attempt_closed": status.HTTP_409_CONFLICT,
    "incomplete_grading": status.HTTP_409_CONFLICT,
    "marks_out_of_range": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "invalid_answer": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "not_found": status.HTTP_404_NOT_FOUND,
    "forbidden": status.HTTP_403_FORBIDDEN,
    "not_assigned": status.HTTP_403_FORBIDDEN,
    "internal_error": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def status_for(error: ExamError) -> int:
    """HTTP status for an exam error; unknown codes are server errors."""
    return STATUS_BY_ERROR_CODE.get(error.code, status.HTTP_500_INTERNAL_SERVER_ERROR)


def _json_safe(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_json_safe(v) for v in value]
    return str(value)


def error_body(
    detail: Any,
    code: str,
    context: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None,
) -> Dict[str, Any]:
    """The JSON body shared by every error response."""
    return {
        "detail": detail,
        "error": code,
        "context": _json_safe(context or {}),
        "request_id": request_id,
    }


def exam_error_body(error: ExamError, request_id: Optional[str] = None) -> Dict[str, Any]:
    """Error body for an ExamError; internal errors never expose their context."""
    if status_for(error) >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        return error_body(ErrorMessages.INTERNAL_ERROR, error.code, None, request_id)
    return error_body(error.message, error.code, error.context, request_id)
