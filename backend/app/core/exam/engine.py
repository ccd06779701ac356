"""
ExamEngine: the per-student session state machine.

Lifecycle of an attempt:

    in_progress -> submitted | auto_submitted -> graded

The engine holds no attempt state between calls. Each operation loads the
attempt, runs lazy deadline enforcement (an expired attempt is auto-submitted,
an expired timed section is locked and the next one started, before anything
else happens), then applies its change through one of the repository's
conditional updates. When a conditional update loses a race the engine
re-reads the attempt and decides again.
"""
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError

from app.core.datetime_utils import ensure_timezone_aware, seconds_between, utc_now
from app.core.exam import deadlines
from app.core.exam.errors import (
    AttemptClosed,
    AttemptLimitExceeded,
    CannotSkipSections,
    InvalidState,
    NotAssigned,
    NotFound,
    RepositoryError,
    ReviewNotAllowed,
    SectionMismatch,
)
from app.core.exam.grading import auto_grade, parse_answer
from app.core.exam.ordering import build_option_orders, build_question_order
from app.core.exam.ports import (
    Notifier,
    QuestionBank,
    StudentDirectory,
    TestDefinitionStore,
)
from app.core.exam.repository import AttemptRepository
from app.core.exam.results import MarkedAnswer, compute_result
from app.core.exam.types import (
    AttemptResult,
    ExamSettings,
    SectionProgress,
    TestDefinition,
    dump_sections,
    load_sections,
)
from app.core.graceful_failure import graceful_failure
from app.models.models import (
    AttemptStatus,
    TestAttempt,
    TestLifecycleStatus,
    TestMode,
)
from app.observability import metrics
from app.schemas.questions import (
    QuestionSnapshot,
    correct_answer_view,
    public_content,
)

logger = logging.getLogger(__name__)

# Conditional updates retried after re-reading the attempt before giving up
MAX_TRANSITION_ATTEMPTS = 5

# Test status each mode may be started in
_STARTABLE_STATUSES = {
    TestMode.LIVE_MOCK: (TestLifecycleStatus.LIVE,),
    TestMode.ANYTIME_MOCK: (TestLifecycleStatus.LIVE, TestLifecycleStatus.SCHEDULED),
    TestMode.PRACTICE: (TestLifecycleStatus.LIVE, TestLifecycleStatus.COMPLETED),
    TestMode.CLASSROOM: (TestLifecycleStatus.LIVE,),
    TestMode.SECTION_TIMED: (TestLifecycleStatus.LIVE,),
}


def _aware(value):
    return ensure_timezone_aware(value) if value is not None else None


class ExamEngine:
    """Drives attempts through their lifecycle for one request."""

    def __init__(
        self,
        repository: AttemptRepository,
        question_bank: QuestionBank,
        definitions: TestDefinitionStore,
        notifier: Notifier,
        settings: Optional[ExamSettings] = None,
        clock: Callable = utc_now,
        directory: Optional[StudentDirectory] = None,
    ):
        self.repository = repository
        self.question_bank = question_bank
        self.definitions = definitions
        self.notifier = notifier
        # Needed only to admit students through class assignment
        self.directory = directory
        self.settings = settings or ExamSettings()
        self.clock = clock

    # =========================================================================
    # Lookups
    # =========================================================================

    def get_definition(self, test_id: int) -> TestDefinition:
        definition = self.definitions.get_test_definition(test_id)
        if definition is None:
            raise NotFound("Test", test_id=test_id)
        return definition

    def get_snapshots(self, question_ids: Sequence[int]) -> Dict[int, QuestionSnapshot]:
        """Snapshots by id. Raises NotFound if the bank is missing any of them."""
        snapshots = {
            snapshot.id: snapshot
            for snapshot in self.question_bank.get_questions_by_ids(list(question_ids))
        }
        missing = [qid for qid in question_ids if qid not in snapshots]
        if missing:
            raise NotFound("Question", question_ids=missing)
        return snapshots

    def _latest_or_404(self, test_id: int, student_id: int) -> TestAttempt:
        attempt = self.repository.find_latest(test_id, student_id)
        if attempt is None:
            raise NotFound("Attempt", test_id=test_id, student_id=student_id)
        return attempt

    def _open_attempt(self, test_id: int, student_id: int, definition: TestDefinition) -> TestAttempt:
        """
        The student's in-progress attempt after deadline enforcement.

        Raises:
            NotFound: If the student never started this test.
            AttemptClosed: If the latest attempt is (or just became) closed.
        """
        attempt = self.repository.find_in_progress(test_id, student_id)
        if attempt is None:
            latest = self._latest_or_404(test_id, student_id)
            raise AttemptClosed(latest.id, latest.status.value)
        attempt = self.enforce_deadlines(attempt, definition)
        if attempt.status != AttemptStatus.IN_PROGRESS:
            raise AttemptClosed(attempt.id, attempt.status.value)
        return attempt

    # =========================================================================
    # Start
    # =========================================================================

    def _check_accessible(self, definition: TestDefinition, now) -> None:
        allowed = _STARTABLE_STATUSES[definition.mode]
        if definition.status not in allowed:
            raise InvalidState(
                f"Test is not available ({definition.mode.value} test is "
                f"{definition.status.value})",
                test_id=definition.id,
                test_status=definition.status.value,
            )

        scheduling = definition.scheduling
        if definition.mode == TestMode.LIVE_MOCK:
            if scheduling.start_time and now < scheduling.start_time:
                raise InvalidState("Test has not started yet", test_id=definition.id)
            if scheduling.end_time and now > scheduling.end_time:
                raise InvalidState("Test has ended", test_id=definition.id)
        elif definition.mode == TestMode.ANYTIME_MOCK:
            if scheduling.available_from and now < scheduling.available_from:
                raise InvalidState("Test is not available yet", test_id=definition.id)
            if scheduling.end_time and now > scheduling.end_time:
                raise InvalidState("Test is no longer available", test_id=definition.id)

        if not definition.question_ids:
            raise InvalidState("Test has no questions", test_id=definition.id)

    def _is_assigned(self, definition: TestDefinition, student_id: int) -> bool:
        """Public tests admit everyone; private ones direct or class assignees."""
        if definition.is_public or student_id in definition.assigned_student_ids:
            return True
        if definition.assigned_class_ids and self.directory is not None:
            return self.directory.is_in_any_class(
                student_id, definition.assigned_class_ids
            )
        return False

    def start_attempt(self, test_id: int, student_id: int) -> Dict[str, Any]:
        """
        Start a new attempt, or resume the student's in-progress one.

        Raises:
            NotFound: Test or one of its questions does not exist.
            InvalidState: Test is not open for attempts.
            NotAssigned: Test is private and the student is neither assigned
                directly nor enrolled in an assigned class.
            AttemptLimitExceeded: The student used all allowed attempts.
        """
        definition = self.get_definition(test_id)
        now = self.clock()
        self._check_accessible(definition, now)
        if not self._is_assigned(definition, student_id):
            raise NotAssigned(test_id, student_id)

        existing = self.repository.find_in_progress(test_id, student_id)
        if existing is not None:
            existing = self.enforce_deadlines(existing, definition)
            if existing.status == AttemptStatus.IN_PROGRESS:
                return self._resume(existing, definition)

        prior_count = self.definitions.count_student_attempts(test_id, student_id)
        if prior_count >= definition.options.max_attempts:
            raise AttemptLimitExceeded(test_id, student_id, definition.options.max_attempts)

        attempt_number = prior_count + 1
        question_ids = definition.question_ids
        snapshots = self.get_snapshots(question_ids)

        question_order = build_question_order(
            question_ids,
            test_id,
            student_id,
            attempt_number,
            randomize=definition.options.randomize_questions,
            section_boundaries=[section.question_ids for section in definition.sections],
        )
        option_orders = build_option_orders(
            [snapshots[qid] for qid in question_order],
            test_id,
            student_id,
            attempt_number,
            randomize=definition.options.randomize_options,
        )
        sections = [SectionProgress() for _ in definition.sections]
        sections[0].started_at = now

        try:
            attempt = self.repository.create(
                test_id=test_id,
                student_id=student_id,
                attempt_number=attempt_number,
                started_at=now,
                deadline_at=deadlines.attempt_deadline(definition, now),
                section_deadline_at=deadlines.section_deadline(definition, sections, 0),
                question_order=question_order,
                option_orders=option_orders,
                sections=dump_sections(sections),
            )
        except IntegrityError:
            # A concurrent start won the unique index; resume its attempt
            logger.warning(
                f"Concurrent start for test {test_id}, student {student_id}; "
                "resuming the existing attempt"
            )
            existing = self.repository.find_in_progress(test_id, student_id)
            if existing is None:
                raise InvalidState(
                    "Another attempt was started concurrently; please retry",
                    test_id=test_id,
                )
            return self._resume(existing, definition)

        logger.info(
            f"Started attempt {attempt.id} (#{attempt_number}) on test {test_id} "
            f"for student {student_id}",
            extra={"test_id": test_id, "student_id": student_id, "attempt_id": attempt.id},
        )
        metrics.record_attempt_started(mode=definition.mode.value, resumed=False)
        return self._attempt_view(attempt, definition, snapshots=snapshots, resumed=False)

    def _resume(self, attempt: TestAttempt, definition: TestDefinition) -> Dict[str, Any]:
        metrics.record_attempt_started(mode=definition.mode.value, resumed=True)
        snapshots = self.get_snapshots(attempt.question_order)
        return self._attempt_view(attempt, definition, snapshots=snapshots, resumed=True)

    # =========================================================================
    # Answer / flag
    # =========================================================================

    def _question_section(
        self, attempt: TestAttempt, definition: TestDefinition, question_id: int
    ) -> int:
        if question_id not in attempt.question_order:
            raise NotFound("Question", question_id=question_id, attempt_id=attempt.id)
        section_index = definition.section_index_of(question_id) or 0
        if (
            definition.strict_sections
            and section_index != attempt.current_section_index
        ):
            raise SectionMismatch(question_id, section_index, attempt.current_section_index)
        return section_index

    def _write_answer_row(
        self,
        attempt: TestAttempt,
        definition: TestDefinition,
        snapshot: QuestionSnapshot,
        section_index: int,
        **changes: Any,
    ) -> None:
        expected_section = (
            attempt.current_section_index if definition.strict_sections else None
        )
        written = self.repository.upsert_answer(
            attempt_id=attempt.id,
            question_id=snapshot.id,
            question_type=snapshot.kind,
            section_index=section_index,
            max_marks=snapshot.max_marks,
            now=self.clock(),
            expected_section_index=expected_section,
            **changes,
        )
        if written:
            return
        fresh = self.repository.get(attempt.id)
        if fresh.status != AttemptStatus.IN_PROGRESS:
            raise AttemptClosed(fresh.id, fresh.status.value)
        raise SectionMismatch(snapshot.id, section_index, fresh.current_section_index)

    def answer(
        self, test_id: int, student_id: int, question_id: int, payload: Any
    ) -> Dict[str, Any]:
        """
        Record (or overwrite) the answer to one question.

        In practice mode with instant feedback, objective questions also get
        their correctness back, never the correct answer or explanation; nothing is written to the attempt's result.
        """
        definition = self.get_definition(test_id)
        attempt = self._open_attempt(test_id, student_id, definition)
        section_index = self._question_section(attempt, definition, question_id)
        snapshot = self.get_snapshots([question_id])[question_id]
        stored = parse_answer(snapshot, payload).model_dump()

        self._write_answer_row(attempt, definition, snapshot, section_index, answer=stored)
        metrics.record_answer()

        response: Dict[str, Any] = {
            "attempt_id": attempt.id,
            "question_id": question_id,
            "saved": True,
            "feedback": None,
        }
        if (
            definition.mode == TestMode.PRACTICE
            and definition.options.instant_feedback
            and snapshot.kind.is_objective
        ):
            is_correct, marks = auto_grade(snapshot, stored)
            response["feedback"] = {
                "is_correct": is_correct,
                "marks_awarded": marks,
                "max_marks": snapshot.max_marks,
            }
        return response

    def flag_question(
        self, test_id: int, student_id: int, question_id: int, flagged: bool
    ) -> Dict[str, Any]:
        definition = self.get_definition(test_id)
        attempt = self._open_attempt(test_id, student_id, definition)
        section_index = self._question_section(attempt, definition, question_id)
        snapshot = self.get_snapshots([question_id])[question_id]
        self._write_answer_row(attempt, definition, snapshot, section_index, flagged=flagged)
        return {"attempt_id": attempt.id, "question_id": question_id, "flagged": flagged}

    # =========================================================================
    # Sections
    # =========================================================================

    def advance_section(
        self, test_id: int, student_id: int, target_index: int
    ) -> Dict[str, Any]:
        """
        Lock the current section and start the next one.

        Raises:
            InvalidState: Sections are not strictly sequenced, or no such section.
            ReviewNotAllowed: target_index is behind the current section.
            CannotSkipSections: target_index is not exactly the next section.
        """
        definition = self.get_definition(test_id)
        attempt = self._open_attempt(test_id, student_id, definition)
        if not definition.strict_sections:
            raise InvalidState(
                "Section navigation is free in this test; nothing to advance",
                test_id=test_id,
            )

        for _ in range(MAX_TRANSITION_ATTEMPTS):
            current = attempt.current_section_index
            if target_index < current:
                raise ReviewNotAllowed(current, target_index)
            if target_index != current + 1:
                raise CannotSkipSections(current, target_index)
            if target_index >= len(definition.sections):
                raise InvalidState(
                    f"Section {target_index} does not exist",
                    test_id=test_id,
                    section_count=len(definition.sections),
                )

            now = self.clock()
            sections = load_sections(attempt.sections)
            leaving = sections[current]
            leaving.completed_at = now
            leaving.time_spent = seconds_between(leaving.started_at or now, now)
            leaving.is_locked = True
            sections[target_index].started_at = now

            if self.repository.move_section(
                attempt.id,
                expected_index=current,
                new_index=target_index,
                sections=dump_sections(sections),
                section_deadline_at=deadlines.section_deadline(
                    definition, sections, target_index
                ),
            ):
                logger.info(
                    f"Attempt {attempt.id} advanced to section {target_index}",
                    extra={"attempt_id": attempt.id},
                )
                return self.get_section_status(test_id, student_id)

            attempt = self.repository.get(attempt.id)
            if attempt.status != AttemptStatus.IN_PROGRESS:
                raise AttemptClosed(attempt.id, attempt.status.value)

        raise RepositoryError(
            "advance section", RuntimeError("too many concurrent section updates")
        )

    def start_section(
        self, test_id: int, student_id: int, section_index: int
    ) -> Dict[str, Any]:
        """
        Enter a section.

        With strict sections, entering the current section is a no-op and
        entering another one is advance_section. With free navigation, the
        section's first visit is recorded.
        """
        definition = self.get_definition(test_id)
        attempt = self._open_attempt(test_id, student_id, definition)
        if not 0 <= section_index < len(definition.sections):
            raise InvalidState(
                f"Section {section_index} does not exist",
                test_id=test_id,
                section_count=len(definition.sections),
            )

        if definition.strict_sections and section_index != attempt.current_section_index:
            return self.advance_section(test_id, student_id, section_index)

        sections = load_sections(attempt.sections)
        if sections[section_index].started_at is None:
            sections[section_index].started_at = self.clock()
            current = attempt.current_section_index
            self.repository.move_section(
                attempt.id,
                expected_index=current,
                new_index=max(current, section_index),
                sections=dump_sections(sections),
                section_deadline_at=deadlines.section_deadline(
                    definition, sections, max(current, section_index)
                ),
            )
        return self.get_section_status(test_id, student_id)

    def get_section_status(self, test_id: int, student_id: int) -> Dict[str, Any]:
        definition = self.get_definition(test_id)
        attempt = self._latest_or_404(test_id, student_id)
        attempt = self.enforce_deadlines(attempt, definition)
        return {
            "attempt_id": attempt.id,
            "status": attempt.status.value,
            "current_section_index": attempt.current_section_index,
            "sections": self._section_views(attempt, definition),
        }

    # =========================================================================
    # Deadline enforcement
    # =========================================================================

    def enforce_deadlines(self, attempt: TestAttempt, definition: TestDefinition) -> TestAttempt:
        """
        Bring an attempt up to date with the clock.

        Past the attempt deadline (or the last timed section's) the attempt is
        auto-submitted. Past an earlier timed section's deadline the section is
        locked at its deadline and the next one starts at that same instant.
        Returns the attempt as it is after enforcement.
        """
        for _ in range(MAX_TRANSITION_ATTEMPTS):
            if attempt.status != AttemptStatus.IN_PROGRESS:
                return attempt

            now = self.clock()
            sections = load_sections(attempt.sections)
            check = deadlines.check_deadlines(
                definition,
                _aware(attempt.deadline_at),
                sections,
                attempt.current_section_index,
                now,
            )
            if not check.needs_action:
                return attempt

            if check.auto_submit:
                logger.info(
                    f"Attempt {attempt.id} is past its deadline; auto-submitting",
                    extra={"attempt_id": attempt.id},
                )
                try:
                    self._close_and_grade(attempt, definition, AttemptStatus.AUTO_SUBMITTED)
                except AttemptClosed:
                    pass
                return self.repository.get(attempt.id)

            updated, new_index = deadlines.apply_section_cutovers(
                definition, sections, check.expired_sections
            )
            if self.repository.move_section(
                attempt.id,
                expected_index=attempt.current_section_index,
                new_index=new_index,
                sections=dump_sections(updated),
                section_deadline_at=deadlines.section_deadline(definition, updated, new_index),
            ):
                for _expired in check.expired_sections:
                    metrics.record_section_auto_advanced()
                logger.info(
                    f"Attempt {attempt.id} section time expired; moved to section {new_index}",
                    extra={"attempt_id": attempt.id},
                )
            attempt = self.repository.get(attempt.id)

        return attempt

    def enforce_attempt(self, attempt_id: int) -> str:
        """
        Run deadline enforcement for one attempt by id (used by the sweep).

        Returns "auto_submitted", "section_advanced" or "unchanged".
        """
        attempt = self.repository.get(attempt_id)
        if attempt is None:
            raise NotFound("Attempt", attempt_id=attempt_id)
        if attempt.status != AttemptStatus.IN_PROGRESS:
            return "unchanged"
        definition = self.get_definition(attempt.test_id)
        section_before = attempt.current_section_index
        after = self.enforce_deadlines(attempt, definition)
        if after.status != AttemptStatus.IN_PROGRESS:
            return "auto_submitted"
        if after.current_section_index != section_before:
            return "section_advanced"
        return "unchanged"

    # =========================================================================
    # Submit / auto-submit
    # =========================================================================

    def submit(self, test_id: int, student_id: int) -> Dict[str, Any]:
        """Close the attempt at the student's request. Safe to retry."""
        return self._submit(test_id, student_id, AttemptStatus.SUBMITTED)

    def auto_submit(self, test_id: int, student_id: int) -> Dict[str, Any]:
        """Close the attempt because time ran out. Safe to retry."""
        return self._submit(test_id, student_id, AttemptStatus.AUTO_SUBMITTED)

    def _submit(
        self, test_id: int, student_id: int, status: AttemptStatus
    ) -> Dict[str, Any]:
        definition = self.get_definition(test_id)
        attempt = self.repository.find_in_progress(test_id, student_id)
        if attempt is None:
            attempt = self._latest_or_404(test_id, student_id)
            return self._submission_view(attempt, definition, already_closed=True)

        attempt = self.enforce_deadlines(attempt, definition)
        try:
            attempt = self._close_and_grade(attempt, definition, status)
        except AttemptClosed as e:
            # Lost the race against another submit or the deadline enforcer
            logger.info(
                f"Attempt {e.attempt_id} was already closed ({e.status}); "
                f"treating {status.value} as done",
                extra={"attempt_id": e.attempt_id},
            )
            attempt = self.repository.get(e.attempt_id)
            return self._submission_view(attempt, definition, already_closed=True)
        return self._submission_view(attempt, definition, already_closed=False)

    def _close_and_grade(
        self, attempt: TestAttempt, definition: TestDefinition, status: AttemptStatus
    ) -> TestAttempt:
        """
        Close an in-progress attempt, then auto-grade it.

        Raises:
            AttemptClosed: If the attempt was closed by someone else first.
        """
        for _ in range(MAX_TRANSITION_ATTEMPTS):
            if attempt.status != AttemptStatus.IN_PROGRESS:
                raise AttemptClosed(attempt.id, attempt.status.value)

            now = self.clock()
            sections = load_sections(attempt.sections)
            index = attempt.current_section_index
            check = deadlines.check_deadlines(definition, None, sections, index, now)
            if check.expired_sections:
                sections, index = deadlines.apply_section_cutovers(
                    definition, sections, check.expired_sections
                )
            closed_sections = deadlines.close_all_sections(definition, sections, now)

            if self.repository.close(
                attempt.id,
                expected_version=attempt.version,
                status=status,
                submitted_at=now,
                sections=dump_sections(closed_sections),
                current_section_index=index,
            ):
                break
            attempt = self.repository.get(attempt.id)
        else:
            raise RepositoryError(
                "close attempt", RuntimeError("too many concurrent attempt updates")
            )

        automatic = status == AttemptStatus.AUTO_SUBMITTED
        metrics.record_attempt_submitted(automatic=automatic)
        logger.info(
            f"Attempt {attempt.id} {status.value}",
            extra={"attempt_id": attempt.id, "test_id": attempt.test_id},
        )

        self.auto_grade_attempt(attempt.id)
        if not self._has_subjective_questions(attempt):
            if self.finish_grading(attempt.id, definition, graded_by="auto"):
                metrics.record_attempts_graded(1, path="auto")

        closed = self.repository.get(attempt.id)
        with graceful_failure(
            "notify student of submission", logger, context={"attempt_id": closed.id}
        ):
            self.notifier.notify(
                closed.student_id,
                "attempt_submitted",
                {
                    "test_id": closed.test_id,
                    "attempt_id": closed.id,
                    "status": closed.status.value,
                },
            )
        return closed

    # =========================================================================
    # Grading hooks
    # =========================================================================

    def _has_subjective_questions(self, attempt: TestAttempt) -> bool:
        snapshots = self.get_snapshots(attempt.question_order)
        return any(not snapshot.kind.is_objective for snapshot in snapshots.values())

    def auto_grade_attempt(self, attempt_id: int) -> int:
        """
        Mark every answer that needs no human: objective answers and blank rows.

        Idempotent: rows that already carry marks are left alone.
        """
        answers = self.repository.answers_for(attempt_id)
        snapshots = self.get_snapshots([answer.question_id for answer in answers])
        grades = []
        for answer in answers:
            if answer.marks_awarded is not None:
                continue
            snapshot = snapshots[answer.question_id]
            if answer.answer is not None and not snapshot.kind.is_objective:
                continue
            is_correct, marks = auto_grade(snapshot, answer.answer)
            grades.append((answer.question_id, bool(is_correct), float(marks)))
        if not grades:
            return 0
        return self.repository.record_auto_grades(attempt_id, grades, self.clock())

    def build_result(self, attempt: TestAttempt, definition: TestDefinition) -> AttemptResult:
        snapshots = self.get_snapshots(attempt.question_order)
        answers = [
            MarkedAnswer(question_id=row.question_id, marks_awarded=row.marks_awarded)
            for row in self.repository.answers_for(attempt.id)
        ]
        return compute_result(
            definition,
            attempt.question_order,
            answers,
            snapshots,
            definition.options.grade_bands or self.settings.grade_bands,
        )

    def finish_grading(
        self, attempt_id: int, definition: TestDefinition, graded_by: str
    ) -> bool:
        """
        Compute the result and move a closed attempt to graded.

        Returns False if the attempt was not awaiting grading (already graded
        by a concurrent caller).
        """
        attempt = self.repository.get(attempt_id)
        result = self.build_result(attempt, definition)
        return self.repository.mark_graded(
            attempt_id, result=result, graded_by=graded_by, graded_at=self.clock()
        )

    # =========================================================================
    # Reads
    # =========================================================================

    def get_attempt_state(self, test_id: int, student_id: int) -> Dict[str, Any]:
        definition = self.get_definition(test_id)
        attempt = self.repository.find_in_progress(test_id, student_id)
        if attempt is None:
            attempt = self._latest_or_404(test_id, student_id)
        attempt = self.enforce_deadlines(attempt, definition)
        return self._attempt_view(attempt, definition)

    def result_visible(self, attempt: TestAttempt, definition: TestDefinition) -> bool:
        return attempt.status == AttemptStatus.GRADED and (
            definition.options.show_results_after_completion
            or definition.results_published
        )

    def get_result(
        self, test_id: int, student_id: int, attempt_number: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Result of the student's latest (or given) attempt.

        The result is withheld until the attempt is graded and the test shows
        results on completion or has published them. Correct answers,
        explanations and solutions are only included when the test allows
        review.
        """
        definition = self.get_definition(test_id)
        attempt = self.repository.find_latest(test_id, student_id, attempt_number)
        if attempt is None:
            raise NotFound(
                "Attempt",
                test_id=test_id,
                student_id=student_id,
                attempt_number=attempt_number,
            )
        attempt = self.enforce_deadlines(attempt, definition)

        visible = self.result_visible(attempt, definition)
        payload: Dict[str, Any] = {
            "attempt_id": attempt.id,
            "attempt_number": attempt.attempt_number,
            "status": attempt.status.value,
            "started_at": _aware(attempt.started_at),
            "submitted_at": _aware(attempt.submitted_at),
            "result": attempt.result if visible else None,
            "review": None,
        }
        if visible and definition.options.allow_review:
            payload["review"] = self._review(attempt)
        return payload

    def _review(self, attempt: TestAttempt) -> List[Dict[str, Any]]:
        snapshots = self.get_snapshots(attempt.question_order)
        answers = {row.question_id: row for row in self.repository.answers_for(attempt.id)}
        review = []
        for qid in attempt.question_order:
            snapshot = snapshots[qid]
            row = answers.get(qid)
            review.append(
                {
                    "question_id": qid,
                    "question": public_content(
                        snapshot, attempt.option_orders.get(str(qid))
                    ),
                    "answer": row.answer if row else None,
                    "is_correct": row.is_correct if row else False,
                    "marks_awarded": row.marks_awarded if row else 0.0,
                    "max_marks": snapshot.max_marks,
                    "feedback": row.feedback if row else None,
                    "correct_answer": correct_answer_view(snapshot),
                    "explanation": snapshot.explanation,
                    "solution": snapshot.solution,
                }
            )
        return review

    # =========================================================================
    # Views
    # =========================================================================

    def _section_views(
        self, attempt: TestAttempt, definition: TestDefinition
    ) -> List[Dict[str, Any]]:
        now = self.clock()
        progress = load_sections(attempt.sections)
        answered = {
            row.question_id
            for row in self.repository.answers_for(attempt.id)
            if row.answer is not None
        }
        order = attempt.question_order
        views = []
        for index, section in enumerate(definition.sections):
            state = progress[index] if index < len(progress) else SectionProgress()
            section_questions = [qid for qid in order if qid in section.question_ids]
            remaining = None
            if (
                attempt.status == AttemptStatus.IN_PROGRESS
                and index == attempt.current_section_index
            ):
                remaining = deadlines.time_remaining_seconds(
                    [deadlines.section_deadline(definition, progress, index)], now
                )
            views.append(
                {
                    "index": index,
                    "name": section.name,
                    "instructions": section.instructions,
                    "time_limit": section.time_limit,
                    "can_go_back": section.can_go_back,
                    "question_ids": section_questions,
                    "started_at": state.started_at,
                    "completed_at": state.completed_at,
                    "time_spent": state.time_spent,
                    "is_locked": state.is_locked,
                    "time_remaining_seconds": remaining,
                    "answered_count": sum(1 for qid in section_questions if qid in answered),
                    "question_count": len(section_questions),
                }
            )
        return views

    def _attempt_view(
        self,
        attempt: TestAttempt,
        definition: TestDefinition,
        snapshots: Optional[Dict[int, QuestionSnapshot]] = None,
        resumed: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """Student-facing attempt state. Grading fields are never included."""
        now = self.clock()
        answers = self.repository.answers_for(attempt.id)
        in_progress = attempt.status == AttemptStatus.IN_PROGRESS
        progress = load_sections(attempt.sections)
        remaining = None
        if in_progress:
            remaining = deadlines.time_remaining_seconds(
                [
                    _aware(attempt.deadline_at),
                    deadlines.section_deadline(
                        definition, progress, attempt.current_section_index
                    ),
                ],
                now,
            )

        view: Dict[str, Any] = {
            "attempt_id": attempt.id,
            "test_id": attempt.test_id,
            "attempt_number": attempt.attempt_number,
            "status": attempt.status.value,
            "resumed": resumed,
            "started_at": _aware(attempt.started_at),
            "submitted_at": _aware(attempt.submitted_at),
            "deadline_at": _aware(attempt.deadline_at),
            "time_remaining_seconds": remaining,
            "current_section_index": attempt.current_section_index,
            "question_order": list(attempt.question_order),
            "option_orders": dict(attempt.option_orders or {}),
            "sections": self._section_views(attempt, definition),
            "answers": [
                {
                    "question_id": row.question_id,
                    "answer": row.answer,
                    "flagged": row.flagged,
                    "answered_at": _aware(row.answered_at),
                }
                for row in answers
            ],
            "flagged_questions": [row.question_id for row in answers if row.flagged],
            "questions": None,
        }
        if snapshots is not None:
            view["questions"] = [
                {
                    "id": qid,
                    "section_index": definition.section_index_of(qid) or 0,
                    "max_marks": snapshots[qid].max_marks,
                    "subject": snapshots[qid].subject,
                    **public_content(
                        snapshots[qid], attempt.option_orders.get(str(qid))
                    ),
                }
                for qid in attempt.question_order
            ]
        return view

    def _submission_view(
        self, attempt: TestAttempt, definition: TestDefinition, already_closed: bool
    ) -> Dict[str, Any]:
        return {
            "attempt_id": attempt.id,
            "status": attempt.status.value,
            "submitted_at": _aware(attempt.submitted_at),
            "already_closed": already_closed,
            "result": attempt.result if self.result_visible(attempt, definition) else None,
        }
