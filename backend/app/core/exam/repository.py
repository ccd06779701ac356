"""
Attempt repository: the persistence boundary of the exam engine.

Every state change is a single conditional UPDATE ("transition if the row
still looks the way the caller saw it") whose rowcount decides whether the
caller won. Each write method commits its own transaction so a transient
failure can be rolled back and retried once without losing earlier work.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.orm import Session

from app.core.db_error_handling import transient_retry
from app.core.exam.types import AttemptResult
from app.models.models import (
    CLOSED_PENDING_GRADING,
    AttemptAnswer,
    AttemptStatus,
    QuestionKind,
    SUBJECTIVE_KINDS,
    Student,
    TestAttempt,
)

logger = logging.getLogger(__name__)

# Marker for "leave this answer column unchanged"
UNSET: Any = object()

# Columns the teacher-facing attempt list can be sorted by
ATTEMPT_SORT_COLUMNS = {
    "started_at": TestAttempt.started_at,
    "submitted_at": TestAttempt.submitted_at,
    "attempt_number": TestAttempt.attempt_number,
    "status": TestAttempt.status,
}


class AttemptRepository:
    """SQLAlchemy-backed storage of attempts and their answers."""

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, attempt_id: int) -> Optional[TestAttempt]:
        self.db.expire_all()
        return self.db.get(TestAttempt, attempt_id)

    def find_in_progress(self, test_id: int, student_id: int) -> Optional[TestAttempt]:
        return self.db.scalars(
            select(TestAttempt).where(
                TestAttempt.test_id == test_id,
                TestAttempt.student_id == student_id,
                TestAttempt.status == AttemptStatus.IN_PROGRESS,
            )
        ).first()

    def find_latest(
        self, test_id: int, student_id: int, attempt_number: Optional[int] = None
    ) -> Optional[TestAttempt]:
        query = select(TestAttempt).where(
            TestAttempt.test_id == test_id, TestAttempt.student_id == student_id
        )
        if attempt_number is not None:
            query = query.where(TestAttempt.attempt_number == attempt_number)
        return self.db.scalars(
            query.order_by(TestAttempt.attempt_number.desc())
        ).first()

    def answers_for(self, attempt_id: int) -> List[AttemptAnswer]:
        return list(
            self.db.scalars(
                select(AttemptAnswer)
                .where(AttemptAnswer.attempt_id == attempt_id)
                .order_by(AttemptAnswer.id)
            )
        )

    def get_answer(self, attempt_id: int, question_id: int) -> Optional[AttemptAnswer]:
        return self.db.scalars(
            select(AttemptAnswer).where(
                AttemptAnswer.attempt_id == attempt_id,
                AttemptAnswer.question_id == question_id,
            )
        ).first()

    def list_for_test(
        self, test_id: int, statuses: Optional[Sequence[AttemptStatus]] = None
    ) -> List[TestAttempt]:
        query = select(TestAttempt).where(TestAttempt.test_id == test_id)
        if statuses:
            query = query.where(TestAttempt.status.in_(list(statuses)))
        return list(self.db.scalars(query.order_by(TestAttempt.id)))

    def paginate(
        self,
        test_id: int,
        page: int,
        limit: int,
        status: Optional[AttemptStatus] = None,
        student_id: Optional[int] = None,
        search: Optional[str] = None,
        sort_by: str = "started_at",
        sort_order: str = "desc",
    ) -> Tuple[List[TestAttempt], int]:
        """
        One page of a test's attempts.

        `search` matches the student's name or email, case-insensitively.
        Ties on the sort column are broken by attempt id in the same direction.
        """
        query = select(TestAttempt).where(TestAttempt.test_id == test_id)
        if status is not None:
            query = query.where(TestAttempt.status == status)
        if student_id is not None:
            query = query.where(TestAttempt.student_id == student_id)
        if search:
            needle = search.strip().lower()
            query = query.join(Student, Student.id == TestAttempt.student_id).where(
                or_(
                    func.lower(Student.name).contains(needle, autoescape=True),
                    func.lower(Student.email).contains(needle, autoescape=True),
                )
            )

        total = self.db.scalar(select(func.count()).select_from(query.subquery())) or 0

        sort_column = ATTEMPT_SORT_COLUMNS[sort_by]
        if sort_order == "asc":
            query = query.order_by(sort_column.asc(), TestAttempt.id.asc())
        else:
            query = query.order_by(sort_column.desc(), TestAttempt.id.desc())
        items = list(self.db.scalars(query.offset((page - 1) * limit).limit(limit)))
        return items, total

    def count_by_status(self, test_id: int) -> Dict[str, int]:
        rows = self.db.execute(
            select(TestAttempt.status, func.count(TestAttempt.id))
            .where(TestAttempt.test_id == test_id)
            .group_by(TestAttempt.status)
        ).all()
        counts = {status.value: 0 for status in AttemptStatus}
        for status, count in rows:
            counts[AttemptStatus(status).value] = count
        return counts

    def ungraded_subjective_answers(
        self, test_id: int
    ) -> List[Tuple[AttemptAnswer, TestAttempt]]:
        """Subjective answers with no marks on attempts awaiting grading."""
        rows = self.db.execute(
            select(AttemptAnswer, TestAttempt)
            .join(TestAttempt, AttemptAnswer.attempt_id == TestAttempt.id)
            .where(
                TestAttempt.test_id == test_id,
                TestAttempt.status.in_(CLOSED_PENDING_GRADING),
                AttemptAnswer.question_type.in_(list(SUBJECTIVE_KINDS)),
                AttemptAnswer.marks_awarded.is_(None),
            )
            .order_by(AttemptAnswer.question_id, TestAttempt.submitted_at, TestAttempt.id)
        ).all()
        return [(answer, attempt) for answer, attempt in rows]

    def list_due(self, now: datetime, limit: int) -> List[TestAttempt]:
        """In-progress attempts whose attempt or active-section deadline has passed."""
        return list(
            self.db.scalars(
                select(TestAttempt)
                .where(
                    TestAttempt.status == AttemptStatus.IN_PROGRESS,
                    or_(
                        TestAttempt.deadline_at < now,
                        TestAttempt.section_deadline_at < now,
                    ),
                )
                .order_by(TestAttempt.id)
                .limit(limit)
            )
        )

    # =========================================================================
    # Writes
    # =========================================================================

    @transient_retry("create attempt")
    def create(
        self,
        *,
        test_id: int,
        student_id: int,
        attempt_number: int,
        started_at: datetime,
        deadline_at: Optional[datetime],
        section_deadline_at: Optional[datetime],
        question_order: List[int],
        option_orders: Dict[str, List[str]],
        sections: List[Dict[str, Any]],
    ) -> TestAttempt:
        """
        Insert a new in-progress attempt.

        Raises:
            IntegrityError: If another attempt with the same number, or another
                in-progress attempt for the same student and test, exists.
        """
        attempt = TestAttempt(
            test_id=test_id,
            student_id=student_id,
            attempt_number=attempt_number,
            status=AttemptStatus.IN_PROGRESS,
            started_at=started_at,
            deadline_at=deadline_at,
            section_deadline_at=section_deadline_at,
            question_order=question_order,
            option_orders=option_orders,
            current_section_index=0,
            sections=sections,
            result=None,
            version=1,
        )
        self.db.add(attempt)
        self.db.commit()
        self.db.refresh(attempt)
        return attempt

    @transient_retry("record answer")
    def upsert_answer(
        self,
        *,
        attempt_id: int,
        question_id: int,
        question_type: QuestionKind,
        section_index: int,
        max_marks: float,
        now: datetime,
        expected_section_index: Optional[int] = None,
        answer: Any = UNSET,
        flagged: Any = UNSET,
    ) -> bool:
        """
        Upsert one answer row while the attempt is still in progress.

        The attempt row is bumped first under the in-progress guard (and the
        expected section, when sections are strict), which both proves the
        attempt is open and serializes writers on that attempt.

        Returns:
            False if the attempt was closed or moved section in the meantime.
        """
        guard = [
            TestAttempt.id == attempt_id,
            TestAttempt.status == AttemptStatus.IN_PROGRESS,
        ]
        if expected_section_index is not None:
            guard.append(TestAttempt.current_section_index == expected_section_index)
        bumped = self.db.execute(
            update(TestAttempt)
            .where(*guard)
            .values(version=TestAttempt.version + 1)
            .execution_options(synchronize_session=False)
        )
        if bumped.rowcount != 1:
            self.db.rollback()
            return False

        row = self.get_answer(attempt_id, question_id)
        if row is None:
            row = AttemptAnswer(
                attempt_id=attempt_id,
                question_id=question_id,
                question_type=question_type,
                section_index=section_index,
                max_marks=max_marks,
                flagged=False,
            )
            self.db.add(row)
        if answer is not UNSET:
            row.answer = answer
            row.answered_at = now
        if flagged is not UNSET:
            row.flagged = flagged
        self.db.commit()
        return True

    @transient_retry("advance section")
    def move_section(
        self,
        attempt_id: int,
        *,
        expected_index: int,
        new_index: int,
        sections: List[Dict[str, Any]],
        section_deadline_at: Optional[datetime],
    ) -> bool:
        """Compare-and-swap on current_section_index; the index never decreases."""
        if new_index < expected_index:
            raise ValueError("current_section_index never decreases")
        result = self.db.execute(
            update(TestAttempt)
            .where(
                TestAttempt.id == attempt_id,
                TestAttempt.status == AttemptStatus.IN_PROGRESS,
                TestAttempt.current_section_index == expected_index,
            )
            .values(
                current_section_index=new_index,
                sections=sections,
                section_deadline_at=section_deadline_at,
                version=TestAttempt.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1

    @transient_retry("close attempt")
    def close(
        self,
        attempt_id: int,
        *,
        expected_version: int,
        status: AttemptStatus,
        submitted_at: datetime,
        sections: List[Dict[str, Any]],
        current_section_index: int,
    ) -> bool:
        """
        in_progress -> submitted | auto_submitted.

        Guarded on the version the caller read, so section progress computed
        from that read cannot overwrite a newer one.
        """
        if status not in CLOSED_PENDING_GRADING:
            raise ValueError(f"Cannot close an attempt as {status.value}")
        result = self.db.execute(
            update(TestAttempt)
            .where(
                TestAttempt.id == attempt_id,
                TestAttempt.status == AttemptStatus.IN_PROGRESS,
                TestAttempt.version == expected_version,
            )
            .values(
                status=status,
                submitted_at=submitted_at,
                sections=sections,
                current_section_index=current_section_index,
                section_deadline_at=None,
                version=TestAttempt.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1

    @transient_retry("record automatic grades")
    def record_auto_grades(
        self,
        attempt_id: int,
        grades: List[Tuple[int, bool, float]],
        graded_at: datetime,
    ) -> int:
        """Write (question_id, is_correct, marks) for answers not yet marked."""
        written = 0
        for question_id, is_correct, marks in grades:
            result = self.db.execute(
                update(AttemptAnswer)
                .where(
                    AttemptAnswer.attempt_id == attempt_id,
                    AttemptAnswer.question_id == question_id,
                    AttemptAnswer.marks_awarded.is_(None),
                )
                .values(
                    is_correct=is_correct,
                    marks_awarded=marks,
                    graded_by="auto",
                    graded_at=graded_at,
                )
                .execution_options(synchronize_session=False)
            )
            written += result.rowcount
        self.db.commit()
        return written

    @transient_retry("grade answer")
    def grade_answer(
        self,
        *,
        attempt_id: int,
        question_id: int,
        marks: float,
        is_correct: bool,
        feedback: Optional[str],
        grader_email: str,
        graded_at: datetime,
    ) -> bool:
        """Write manual marks, only while the attempt awaits grading."""
        pending = (
            select(TestAttempt.id)
            .where(
                TestAttempt.id == attempt_id,
                TestAttempt.status.in_(CLOSED_PENDING_GRADING),
            )
            .scalar_subquery()
        )
        result = self.db.execute(
            update(AttemptAnswer)
            .where(
                and_(
                    AttemptAnswer.attempt_id == pending,
                    AttemptAnswer.question_id == question_id,
                    AttemptAnswer.max_marks >= marks,
                )
            )
            .values(
                marks_awarded=marks,
                is_correct=is_correct,
                feedback=feedback,
                graded_by=grader_email,
                graded_at=graded_at,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1

    @transient_retry("mark attempt graded")
    def mark_graded(
        self,
        attempt_id: int,
        *,
        result: AttemptResult,
        graded_by: str,
        graded_at: datetime,
    ) -> bool:
        """submitted | auto_submitted -> graded, writing the result in the same UPDATE."""
        outcome = self.db.execute(
            update(TestAttempt)
            .where(
                TestAttempt.id == attempt_id,
                TestAttempt.status.in_(CLOSED_PENDING_GRADING),
            )
            .values(
                status=AttemptStatus.GRADED,
                result=dict(result),
                graded_by=graded_by,
                graded_at=graded_at,
                version=TestAttempt.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return outcome.rowcount == 1

    @transient_retry("update ranks")
    def update_results(self, results: List[Tuple[int, AttemptResult]]) -> int:
        """Rewrite results of graded attempts (rank/percentile refresh)."""
        updated = 0
        for attempt_id, result in results:
            outcome = self.db.execute(
                update(TestAttempt)
                .where(
                    TestAttempt.id == attempt_id,
                    TestAttempt.status == AttemptStatus.GRADED,
                )
                .values(result=dict(result), version=TestAttempt.version + 1)
                .execution_options(synchronize_session=False)
            )
            updated += outcome.rowcount
        self.db.commit()
        return updated
