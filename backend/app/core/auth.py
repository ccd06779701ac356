"""
FastAPI identity dependencies.

Authentication happens upstream (API gateway); requests arrive with the
caller's identity in headers:
- X-Student-Id: the student taking a test
- X-User-Email: the teacher grading a test
- X-Company-Id: optional company the teacher is acting for
"""
from typing import NoReturn, Optional

from fastapi import Header, HTTPException, status

from app.core.error_responses import ErrorMessages


def _raise_unauthorized(detail: str) -> NoReturn:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def get_student_id(
    x_student_id: Optional[str] = Header(None, alias="X-Student-Id"),
) -> int:
    """
    Student identity from the X-Student-Id header.

    Raises:
        HTTPException: 401 if the header is missing or not a positive integer
    """
    if x_student_id is None or not x_student_id.strip().isdigit():
        _raise_unauthorized(ErrorMessages.MISSING_STUDENT_IDENTITY)
    student_id = int(x_student_id.strip())
    if student_id <= 0:
        _raise_unauthorized(ErrorMessages.MISSING_STUDENT_IDENTITY)
    return student_id


def get_grader_email(
    x_user_email: Optional[str] = Header(None, alias="X-User-Email"),
) -> str:
    """
    Teacher identity from the X-User-Email header.

    Raises:
        HTTPException: 401 if the header is missing or blank
    """
    if x_user_email is None or not x_user_email.strip():
        _raise_unauthorized(ErrorMessages.MISSING_GRADER_IDENTITY)
    return x_user_email.strip().lower()


def get_company_scope(
    x_company_id: Optional[int] = Header(None, alias="X-Company-Id"),
) -> Optional[int]:
    return x_company_id
