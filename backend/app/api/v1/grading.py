"""
Grading and reporting endpoints for teachers.

Every endpoint requires the X-User-Email header of an active owner, admin or
teacher of the test's company.
"""
import logging
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query, Response

from app.core.auth import get_grader_email
from app.core.exam.grading_service import GradingService
from app.models.models import AttemptStatus
from app.schemas.exam import (
    DEFAULT_ATTEMPTS_PAGE_SIZE,
    MAX_ATTEMPTS_PAGE_SIZE,
    BulkGradeRequest,
    BulkGradeResponse,
    FinalizeResponse,
    GradeAnswerResponse,
    GradeRequest,
    LiveStatusResponse,
    PaginatedAttemptsResponse,
    PublishResponse,
    RanksResponse,
    TestStatsResponse,
    UngradedQuestion,
)

from app.api.v1.dependencies import get_grading_service

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/{test_id}/grading/ungraded", response_model=List[UngradedQuestion])
def get_ungraded_answers(
    test_id: int,
    grader_email: str = Depends(get_grader_email),
    service: GradingService = Depends(get_grading_service),
):
    """Subjective answers awaiting marks, grouped by question."""
    return service.get_ungraded_answers(test_id, grader_email)


@router.put(
    "/{test_id}/grading/attempts/{attempt_id}/answers/{question_id}",
    response_model=GradeAnswerResponse,
)
def grade_answer(
    test_id: int,
    attempt_id: int,
    question_id: int,
    request: GradeRequest,
    grader_email: str = Depends(get_grader_email),
    service: GradingService = Depends(get_grading_service),
):
    """
    Award marks to one answer. Re-grading before finalization overwrites.

    Raises:
        422: Marks outside 0..max_marks
        409: Attempt is not awaiting grading
    """
    return service.grade_answer(
        test_id, attempt_id, question_id, request.marks, request.feedback, grader_email
    )


@router.post(
    "/{test_id}/grading/questions/{question_id}/bulk",
    response_model=BulkGradeResponse,
)
def bulk_grade_question(
    test_id: int,
    question_id: int,
    request: BulkGradeRequest,
    grader_email: str = Depends(get_grader_email),
    service: GradingService = Depends(get_grading_service),
):
    """Grade one question across many attempts; failures are reported per attempt."""
    return service.bulk_grade_question(
        test_id,
        question_id,
        [grade.model_dump() for grade in request.grades],
        grader_email,
    )


@router.post("/{test_id}/grading/finalize", response_model=FinalizeResponse)
def finalize_grading(
    test_id: int,
    grader_email: str = Depends(get_grader_email),
    service: GradingService = Depends(get_grading_service),
):
    """
    Move every submitted attempt to graded and recompute ranks.

    Raises:
        409: Some subjective answer is still ungraded
    """
    return service.finalize_grading(test_id, grader_email)


@router.post("/{test_id}/grading/ranks", response_model=RanksResponse)
def compute_ranks(
    test_id: int,
    grader_email: str = Depends(get_grader_email),
    service: GradingService = Depends(get_grading_service),
):
    return service.compute_ranks(test_id, grader_email)


@router.get("/{test_id}/grading/stats", response_model=TestStatsResponse)
def get_test_stats(
    test_id: int,
    grader_email: str = Depends(get_grader_email),
    service: GradingService = Depends(get_grading_service),
):
    return service.get_test_stats(test_id, grader_email)


@router.get("/{test_id}/grading/live", response_model=LiveStatusResponse)
def get_live_status(
    test_id: int,
    grader_email: str = Depends(get_grader_email),
    service: GradingService = Depends(get_grading_service),
):
    return service.get_live_status(test_id, grader_email)


@router.get("/{test_id}/grading/attempts", response_model=PaginatedAttemptsResponse)
def list_attempts(
    test_id: int,
    page: int = Query(default=1, ge=1, description="Page number (1-based)"),
    limit: int = Query(
        default=DEFAULT_ATTEMPTS_PAGE_SIZE,
        ge=1,
        le=MAX_ATTEMPTS_PAGE_SIZE,
        description=f"Attempts per page (max {MAX_ATTEMPTS_PAGE_SIZE})",
    ),
    status: Optional[AttemptStatus] = Query(default=None, description="Filter by status"),
    student_id: Optional[int] = Query(default=None, ge=1, description="Filter by student"),
    search: Optional[str] = Query(
        default=None, max_length=100, description="Match student name or email"
    ),
    # Sorting
    sort_by: Literal["started_at", "submitted_at", "attempt_number", "status"] = Query(
        "started_at", description="Field to sort by"
    ),
    sort_order: Literal["asc", "desc"] = Query(
        "desc", description="Sort order (asc or desc)"
    ),
    grader_email: str = Depends(get_grader_email),
    service: GradingService = Depends(get_grading_service),
):
    """
    List a test's attempts with filtering, sorting and pagination.

    **Filters:** `status`, `student_id`, and `search` (student name or email).

    **Sorting:** `sort_by` (started_at, submitted_at, attempt_number, status)
    and `sort_order` (asc, desc). Defaults to newest first.
    """
    return service.list_attempts(
        test_id,
        grader_email,
        page=page,
        limit=limit,
        status=status,
        student_id=student_id,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
    )


@router.get("/{test_id}/grading/export.csv", response_class=Response)
def export_results_csv(
    test_id: int,
    grader_email: str = Depends(get_grader_email),
    service: GradingService = Depends(get_grading_service),
):
    """Graded attempts as CSV, best rank first."""
    content = service.export_results_csv(test_id, grader_email)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="test-{test_id}-results.csv"'},
    )


@router.post("/{test_id}/grading/publish", response_model=PublishResponse)
def publish_results(
    test_id: int,
    grader_email: str = Depends(get_grader_email),
    service: GradingService = Depends(get_grading_service),
):
    """
    Make results visible to students and notify them.

    Raises:
        409: Some attempts are still awaiting grading
    """
    return service.publish_results(test_id, grader_email)
