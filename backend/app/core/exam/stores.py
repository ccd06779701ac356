"""
SQL-backed implementations of the exam engine's collaborator ports.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from app.core.db_error_handling import handle_db_error
from app.core.datetime_utils import ensure_timezone_aware
from app.core.exam.types import (
    GradeBand,
    Scheduling,
    SectionDefinition,
    StudentContact,
    TestDefinition,
    TestOptions,
    build_grade_bands,
)
from app.models.models import (
    MANAGER_ROLES,
    ClassEnrollment,
    CompanyMembership,
    OnlineTest,
    Question,
    Student,
    TestAttempt,
)
from app.schemas.questions import QuestionSnapshot

logger = logging.getLogger(__name__)


def _aware(value):
    return ensure_timezone_aware(value) if value is not None else None


def _grade_bands_from_json(
    raw: Any, test_id: Optional[int]
) -> Optional[Tuple[GradeBand, ...]]:
    """Per-test grade band override, or None to use the configured bands."""
    if not raw:
        return None
    try:
        return build_grade_bands(raw)
    except ValueError as e:
        logger.warning(
            f"Ignoring invalid grade_bands on test {test_id}: {e}",
            extra={"test_id": test_id},
        )
        return None


def _options_from_json(
    raw: Dict[str, Any], default_passing_score: float, test_id: Optional[int] = None
) -> TestOptions:
    return TestOptions(
        randomize_questions=bool(raw.get("randomize_questions", False)),
        randomize_options=bool(raw.get("randomize_options", False)),
        instant_feedback=bool(raw.get("instant_feedback", False)),
        allow_review=bool(raw.get("allow_review", True)),
        show_results_after_completion=bool(
            raw.get("show_results_after_completion", True)
        ),
        max_attempts=int(raw.get("max_attempts", 1)),
        passing_score=float(raw.get("passing_score", default_passing_score)),
        grade_bands=_grade_bands_from_json(raw.get("grade_bands"), test_id),
    )


def definition_from_row(
    row: OnlineTest, default_passing_score: float = 40.0
) -> TestDefinition:
    """Map an online_tests row onto the engine's read-only definition."""
    sections = tuple(
        SectionDefinition(
            name=section.get("name") or f"Section {index + 1}",
            question_ids=tuple(int(qid) for qid in section.get("question_ids", [])),
            time_limit=section.get("time_limit"),
            instructions=section.get("instructions"),
            can_go_back=bool(section.get("can_go_back", True)),
        )
        for index, section in enumerate(row.sections or [])
    )
    return TestDefinition(
        id=row.id,
        company_id=row.company_id,
        title=row.title,
        mode=row.mode,
        status=row.status,
        sections=sections,
        scheduling=Scheduling(
            start_time=_aware(row.start_time),
            end_time=_aware(row.end_time),
            available_from=_aware(row.available_from),
            duration=row.duration_minutes or 0,
        ),
        options=_options_from_json(row.options or {}, default_passing_score, row.id),
        total_marks=row.total_marks or 0.0,
        total_questions=row.total_questions or 0,
        results_published=bool(row.results_published),
        is_public=bool(row.is_public),
        assigned_student_ids=tuple(int(sid) for sid in row.assigned_student_ids or []),
        assigned_class_ids=tuple(int(cid) for cid in row.assigned_class_ids or []),
    )


class SqlQuestionBank:
    def __init__(self, db: Session):
        self.db = db

    def get_questions_by_ids(self, ids: Sequence[int]) -> List[QuestionSnapshot]:
        if not ids:
            return []
        rows = self.db.scalars(select(Question).where(Question.id.in_(list(ids))))
        return [
            QuestionSnapshot(
                id=row.id,
                content=row.content,
                max_marks=row.max_marks,
                subject=row.subject,
                explanation=row.explanation,
                solution=row.solution,
            )
            for row in rows
        ]


class SqlTestDefinitionStore:
    def __init__(self, db: Session, default_passing_score: float = 40.0):
        self.db = db
        self.default_passing_score = default_passing_score

    def get_test_definition(self, test_id: int) -> Optional[TestDefinition]:
        row = self.db.get(OnlineTest, test_id)
        if row is None:
            return None
        return definition_from_row(row, self.default_passing_score)

    def count_student_attempts(self, test_id: int, student_id: int) -> int:
        return self.db.scalar(
            select(func.count(TestAttempt.id)).where(
                TestAttempt.test_id == test_id, TestAttempt.student_id == student_id
            )
        ) or 0

    def mark_results_published(self, test_id: int) -> None:
        with handle_db_error(self.db, "publish results"):
            self.db.execute(
                update(OnlineTest)
                .where(OnlineTest.id == test_id)
                .values(results_published=True)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()


class SqlMembershipChecker:
    def __init__(self, db: Session):
        self.db = db

    def is_manager_of(self, company_id: int, email: str) -> bool:
        membership = self.db.scalars(
            select(CompanyMembership).where(
                CompanyMembership.company_id == company_id,
                func.lower(CompanyMembership.email) == email.strip().lower(),
                CompanyMembership.is_active.is_(True),
            )
        ).first()
        return membership is not None and membership.role in MANAGER_ROLES


class SqlStudentDirectory:
    def __init__(self, db: Session):
        self.db = db

    def get_students(self, ids: Sequence[int]) -> Dict[int, StudentContact]:
        if not ids:
            return {}
        rows = self.db.scalars(select(Student).where(Student.id.in_(list(ids))))
        return {
            row.id: StudentContact(id=row.id, name=row.name, email=row.email)
            for row in rows
        }

    def is_in_any_class(self, student_id: int, class_ids: Sequence[int]) -> bool:
        if not class_ids:
            return False
        enrollment = self.db.scalars(
            select(ClassEnrollment.id).where(
                ClassEnrollment.student_id == student_id,
                ClassEnrollment.class_id.in_(list(class_ids)),
            )
        ).first()
        return enrollment is not None


class LoggingNotifier:
    """Notifier that records notifications in the application log."""

    def notify(self, student_id: int, kind: str, payload: Dict[str, Any]) -> None:
        logger.info(
            f"Notification {kind} for student {student_id}: {payload}",
            extra={"student_id": student_id},
        )
