"""
Teacher-facing grading workflow.

Subjective answers are queued per question, marked one by one or in bulk,
and promoted to graded in a single finalize pass that also ranks the cohort.
Every operation first checks that the caller manages the test's company.
"""
import logging
from typing import Any, Dict, List, Optional

from app.core.datetime_utils import ensure_timezone_aware
from app.core.exam.engine import ExamEngine
from app.core.exam.errors import (
    Forbidden,
    IncompleteGrading,
    InvalidState,
    MarksOutOfRange,
    NotFound,
)
from app.core.exam.grading import is_correct_for_marks
from app.core.exam.ports import MembershipChecker, StudentDirectory
from app.core.exam.results import (
    ExportRow,
    competition_ranks,
    render_results_csv,
    summarize_percentages,
)
from app.core.exam.types import TestDefinition
from app.core.graceful_failure import graceful_failure
from app.models.models import CLOSED_PENDING_GRADING, AttemptStatus
from app.observability import metrics

logger = logging.getLogger(__name__)


def _aware(value):
    return ensure_timezone_aware(value) if value is not None else None


class GradingService:
    """Grading queue, finalization, ranking and reporting for one test."""

    def __init__(
        self,
        engine: ExamEngine,
        membership: MembershipChecker,
        directory: StudentDirectory,
        company_scope: Optional[int] = None,
    ):
        """
        Args:
            engine: Engine sharing the request's repository and ports.
            membership: Decides whether a grader manages a company.
            directory: Student names and emails for listings and exports.
            company_scope: Company the caller is acting for, if stated. Tests
                of any other company are refused even for a manager.
        """
        self.engine = engine
        self.repository = engine.repository
        self.membership = membership
        self.directory = directory
        self.company_scope = company_scope

    def _authorize(self, test_id: int, grader_email: str) -> TestDefinition:
        definition = self.engine.get_definition(test_id)
        in_scope = self.company_scope is None or self.company_scope == definition.company_id
        if (
            not grader_email
            or not in_scope
            or not self.membership.is_manager_of(definition.company_id, grader_email)
        ):
            logger.warning(
                f"Grading access denied for {grader_email!r} on test {test_id}",
                extra={"test_id": test_id},
            )
            raise Forbidden(
                "Not authorized to manage this test",
                test_id=test_id,
                company_id=definition.company_id,
            )
        return definition

    # =========================================================================
    # Grading queue
    # =========================================================================

    def get_ungraded_answers(self, test_id: int, grader_email: str) -> List[Dict[str, Any]]:
        """Subjective answers still waiting for marks, grouped by question."""
        self._authorize(test_id, grader_email)
        groups: Dict[int, Dict[str, Any]] = {}
        for answer, attempt in self.repository.ungraded_subjective_answers(test_id):
            group = groups.get(answer.question_id)
            if group is None:
                group = groups[answer.question_id] = {
                    "question_id": answer.question_id,
                    "question_type": answer.question_type.value,
                    "max_marks": answer.max_marks,
                    "answers": [],
                }
            group["answers"].append(
                {
                    "attempt_id": attempt.id,
                    "student_id": attempt.student_id,
                    "answer": answer.answer,
                    "submitted_at": _aware(attempt.submitted_at),
                }
            )
        return list(groups.values())

    def grade_answer(
        self,
        test_id: int,
        attempt_id: int,
        question_id: int,
        marks: float,
        feedback: Optional[str],
        grader_email: str,
    ) -> Dict[str, Any]:
        """
        Record a teacher's marks for one answer. Re-grading overwrites.

        Raises:
            Forbidden: Caller does not manage the test.
            NotFound: Attempt or answer does not exist on this test.
            MarksOutOfRange: marks is outside [0, max_marks].
            InvalidState: Attempt is not awaiting grading.
        """
        self._authorize(test_id, grader_email)
        return self._grade_one(test_id, attempt_id, question_id, marks, feedback, grader_email)

    def _grade_one(
        self,
        test_id: int,
        attempt_id: int,
        question_id: int,
        marks: float,
        feedback: Optional[str],
        grader_email: str,
    ) -> Dict[str, Any]:
        attempt = self.repository.get(attempt_id)
        if attempt is None or attempt.test_id != test_id:
            raise NotFound("Attempt", attempt_id=attempt_id, test_id=test_id)
        row = self.repository.get_answer(attempt_id, question_id)
        if row is None:
            raise NotFound("Answer", attempt_id=attempt_id, question_id=question_id)
        if not 0 <= marks <= row.max_marks:
            raise MarksOutOfRange(
                marks, row.max_marks, attempt_id=attempt_id, question_id=question_id
            )
        if attempt.status not in CLOSED_PENDING_GRADING:
            raise InvalidState(
                f"Attempt is {attempt.status.value}; only submitted attempts can be graded",
                attempt_id=attempt_id,
                status=attempt.status.value,
            )

        is_correct = is_correct_for_marks(
            marks, row.max_marks, self.engine.settings.correctness_threshold
        )
        written = self.repository.grade_answer(
            attempt_id=attempt_id,
            question_id=question_id,
            marks=marks,
            is_correct=is_correct,
            feedback=feedback,
            grader_email=grader_email,
            graded_at=self.engine.clock(),
        )
        if not written:
            # Finalized between the read above and the update
            current = self.repository.get(attempt_id)
            raise InvalidState(
                "Attempt is no longer awaiting grading",
                attempt_id=attempt_id,
                status=current.status.value,
            )

        logger.info(
            f"Graded question {question_id} on attempt {attempt_id}: {marks}/{row.max_marks}",
            extra={"test_id": test_id, "attempt_id": attempt_id},
        )
        return {
            "attempt_id": attempt_id,
            "question_id": question_id,
            "marks_awarded": marks,
            "max_marks": row.max_marks,
            "is_correct": is_correct,
            "feedback": feedback,
        }

    def bulk_grade_question(
        self,
        test_id: int,
        question_id: int,
        grades: List[Dict[str, Any]],
        grader_email: str,
    ) -> Dict[str, Any]:
        """
        Grade one question across many attempts.

        Each entry is {attempt_id, marks, feedback}. A failed entry does not
        stop the others. MarksOutOfRange is raised only when nothing succeeded
        and every failure was an out-of-range mark.
        """
        self._authorize(test_id, grader_email)
        outcomes: List[Dict[str, Any]] = []
        range_errors: List[MarksOutOfRange] = []
        other_failures = 0

        for grade in grades:
            attempt_id = grade["attempt_id"]
            try:
                self._grade_one(
                    test_id,
                    attempt_id,
                    question_id,
                    grade["marks"],
                    grade.get("feedback"),
                    grader_email,
                )
            except MarksOutOfRange as e:
                range_errors.append(e)
                outcomes.append({"attempt_id": attempt_id, "success": False, "error": e.message})
            except (NotFound, InvalidState) as e:
                other_failures += 1
                outcomes.append({"attempt_id": attempt_id, "success": False, "error": e.message})
            else:
                outcomes.append({"attempt_id": attempt_id, "success": True, "error": None})

        graded_count = sum(1 for outcome in outcomes if outcome["success"])
        if graded_count == 0 and range_errors and other_failures == 0:
            raise range_errors[0]

        return {
            "question_id": question_id,
            "results": outcomes,
            "graded_count": graded_count,
            "failed_count": len(outcomes) - graded_count,
        }

    # =========================================================================
    # Finalization and ranking
    # =========================================================================

    def finalize_grading(self, test_id: int, grader_email: str) -> Dict[str, int]:
        """
        Promote every submitted attempt of the test to graded and re-rank.

        Raises:
            IncompleteGrading: Some subjective answer still has no marks.
        """
        definition = self._authorize(test_id, grader_email)
        pending = self.repository.list_for_test(test_id, CLOSED_PENDING_GRADING)

        # Attempts closed before their objective answers were marked
        for attempt in pending:
            self.engine.auto_grade_attempt(attempt.id)

        ungraded = self.repository.ungraded_subjective_answers(test_id)
        if ungraded:
            first_answer, first_attempt = ungraded[0]
            logger.info(
                f"Finalize refused for test {test_id}: {len(ungraded)} ungraded answers",
                extra={"test_id": test_id, "attempt_id": first_attempt.id},
            )
            raise IncompleteGrading(first_attempt.id, len(ungraded))

        graded_count = 0
        for attempt in pending:
            if self.engine.finish_grading(attempt.id, definition, graded_by=grader_email):
                graded_count += 1
        metrics.record_attempts_graded(graded_count, path="finalize")

        ranked_count = self._rank(test_id)
        logger.info(
            f"Finalized grading for test {test_id}: {graded_count} graded, "
            f"{ranked_count} ranked",
            extra={"test_id": test_id},
        )
        return {"graded_count": graded_count, "ranked_count": ranked_count}

    def compute_ranks(self, test_id: int, grader_email: str) -> Dict[str, int]:
        self._authorize(test_id, grader_email)
        return {"ranked_count": self._rank(test_id)}

    def _rank(self, test_id: int) -> int:
        graded = [
            attempt
            for attempt in self.repository.list_for_test(test_id, [AttemptStatus.GRADED])
            if attempt.result is not None
        ]
        if not graded:
            return 0
        positions = competition_ranks([attempt.result["percentage"] for attempt in graded])
        updates = []
        for attempt, (rank, percentile) in zip(graded, positions):
            result = dict(attempt.result)
            result["rank"] = rank
            result["percentile"] = percentile
            updates.append((attempt.id, result))
        return self.repository.update_results(updates)

    # =========================================================================
    # Reporting
    # =========================================================================

    def get_test_stats(self, test_id: int, grader_email: str) -> Dict[str, Any]:
        self._authorize(test_id, grader_email)
        results = [
            attempt.result
            for attempt in self.repository.list_for_test(test_id, [AttemptStatus.GRADED])
            if attempt.result is not None
        ]
        stats = summarize_percentages(
            [result["percentage"] for result in results],
            [result["is_passing"] for result in results],
            [result["grade"] for result in results],
        )
        stats["test_id"] = test_id
        stats["attempts_by_status"] = self.repository.count_by_status(test_id)
        return stats

    def get_live_status(self, test_id: int, grader_email: str) -> Dict[str, Any]:
        definition = self._authorize(test_id, grader_email)
        counts = self.repository.count_by_status(test_id)
        return {
            "test_id": test_id,
            "test_status": definition.status.value,
            "counts": counts,
            "total_attempts": sum(counts.values()),
            "in_progress": counts[AttemptStatus.IN_PROGRESS.value],
            "awaiting_grading": sum(counts[status.value] for status in CLOSED_PENDING_GRADING),
            "results_published": definition.results_published,
        }

    def list_attempts(
        self,
        test_id: int,
        grader_email: str,
        page: int = 1,
        limit: int = 20,
        status: Optional[AttemptStatus] = None,
        student_id: Optional[int] = None,
        search: Optional[str] = None,
        sort_by: str = "started_at",
        sort_order: str = "desc",
    ) -> Dict[str, Any]:
        """Paginated attempts for a test, filtered by status, student or name/email search."""
        self._authorize(test_id, grader_email)
        attempts, total = self.repository.paginate(
            test_id,
            page,
            limit,
            status=status,
            student_id=student_id,
            search=search,
            sort_by=sort_by,
            sort_order=sort_order,
        )
        students = self.directory.get_students(
            sorted({attempt.student_id for attempt in attempts})
        )
        items = []
        for attempt in attempts:
            student = students.get(attempt.student_id)
            result = attempt.result or {}
            items.append(
                {
                    "attempt_id": attempt.id,
                    "student_id": attempt.student_id,
                    "student_name": student.name if student else None,
                    "student_email": student.email if student else None,
                    "attempt_number": attempt.attempt_number,
                    "status": attempt.status.value,
                    "started_at": _aware(attempt.started_at),
                    "submitted_at": _aware(attempt.submitted_at),
                    "percentage": result.get("percentage"),
                    "grade": result.get("grade"),
                    "rank": result.get("rank"),
                }
            )
        return {"items": items, "total": total, "page": page, "limit": limit}

    def export_results_csv(self, test_id: int, grader_email: str) -> str:
        self._authorize(test_id, grader_email)
        graded = [
            attempt
            for attempt in self.repository.list_for_test(test_id, [AttemptStatus.GRADED])
            if attempt.result is not None
        ]
        students = self.directory.get_students(
            sorted({attempt.student_id for attempt in graded})
        )
        rows = [
            ExportRow(
                result=attempt.result,
                student_id=attempt.student_id,
                started_at=_aware(attempt.started_at),
                submitted_at=_aware(attempt.submitted_at),
            )
            for attempt in graded
        ]
        return render_results_csv(rows, students)

    def publish_results(self, test_id: int, grader_email: str) -> Dict[str, Any]:
        """
        Make results visible to students and notify each graded student.

        Raises:
            InvalidState: Some attempts are still awaiting grading.
        """
        self._authorize(test_id, grader_email)
        pending = self.repository.list_for_test(test_id, CLOSED_PENDING_GRADING)
        if pending:
            raise InvalidState(
                "Finalize grading before publishing results",
                test_id=test_id,
                pending_count=len(pending),
            )

        self.engine.definitions.mark_results_published(test_id)
        graded = self.repository.list_for_test(test_id, [AttemptStatus.GRADED])
        notified = 0
        for attempt in graded:
            with graceful_failure(
                "notify student of published results",
                logger,
                context={"test_id": test_id, "student_id": attempt.student_id},
            ):
                self.engine.notifier.notify(
                    attempt.student_id,
                    "results_published",
                    {"test_id": test_id, "attempt_id": attempt.id},
                )
                notified += 1

        logger.info(
            f"Published results for test {test_id} ({notified} students notified)",
            extra={"test_id": test_id},
        )
        return {"test_id": test_id, "results_published": True, "notified_count": notified}
