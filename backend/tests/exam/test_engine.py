"""
Tests for the ExamEngine attempt lifecycle against the SQLite test database.
"""
from datetime import timedelta
from unittest.mock import patch

import pytest

from app.core.exam.engine import ExamEngine
from app.core.exam.errors import (
    AttemptClosed,
    AttemptLimitExceeded,
    CannotSkipSections,
    InvalidAnswer,
    InvalidState,
    NotAssigned,
    NotFound,
    ReviewNotAllowed,
    SectionMismatch,
)
from app.core.exam.repository import AttemptRepository
from app.core.exam.stores import SqlQuestionBank, SqlTestDefinitionStore
from app.models.models import (
    AttemptStatus,
    ClassEnrollment,
    TestLifecycleStatus,
    TestMode,
)


def choice(label):
    return {"kind": "choice", "selected": label}


def text(value):
    return {"kind": "text", "text": value}


@pytest.fixture
def student(make_student):
    return make_student()


@pytest.fixture
def mixed_test(make_question, make_test):
    """One objective and one subjective question in a single section."""
    mcq = make_question("mcq_single", max_marks=2)
    essay = make_question("short_answer", max_marks=5)
    return make_test([[mcq.id, essay.id]])


@pytest.fixture
def objective_test(make_question, make_test):
    mcq = make_question("mcq_single", max_marks=2)
    tf = make_question("true_false", max_marks=1)
    return make_test([[mcq.id, tf.id]])


@pytest.fixture
def sectioned_test(make_question, make_test):
    """Three timed sections of ten minutes; the last holds a subjective question."""
    q1 = make_question("mcq_single")
    q2 = make_question("true_false")
    q3 = make_question("short_answer", max_marks=4)
    return make_test(
        [
            {"question_ids": [q1.id], "time_limit": 10},
            {"question_ids": [q2.id], "time_limit": 10},
            {"question_ids": [q3.id], "time_limit": 10},
        ],
        mode=TestMode.SECTION_TIMED,
    )


def question_ids(test):
    return [qid for section in test.sections for qid in section["question_ids"]]


class TestStartAttempt:
    def test_start_returns_questions_without_answer_data(self, exam_engine, mixed_test, student):
        state = exam_engine.start_attempt(mixed_test.id, student.id)

        assert state["status"] == "in_progress"
        assert state["attempt_number"] == 1
        assert state["resumed"] is False
        assert state["question_order"] == question_ids(mixed_test)
        assert state["deadline_at"] is None
        assert state["time_remaining_seconds"] is None
        mcq_view = state["questions"][0]
        assert [option["label"] for option in mcq_view["options"]] == ["A", "B", "C", "D"]
        assert "correct_option" not in mcq_view
        assert "model_answer" not in state["questions"][1]

    def test_second_start_resumes_same_attempt(self, exam_engine, mixed_test, student):
        first = exam_engine.start_attempt(mixed_test.id, student.id)
        exam_engine.answer(mixed_test.id, student.id, question_ids(mixed_test)[0], choice("B"))

        second = exam_engine.start_attempt(mixed_test.id, student.id)

        assert second["attempt_id"] == first["attempt_id"]
        assert second["resumed"] is True
        assert second["question_order"] == first["question_order"]
        assert second["answers"][0]["answer"] == choice("B")

    def test_timed_test_has_deadline(self, exam_engine, make_question, make_test, student, clock):
        test = make_test([[make_question().id]], duration_minutes=30)

        state = exam_engine.start_attempt(test.id, student.id)

        assert state["deadline_at"] == clock.now + timedelta(minutes=30)
        assert state["time_remaining_seconds"] == 1800

    def test_attempt_limit(self, exam_engine, objective_test, student):
        exam_engine.start_attempt(objective_test.id, student.id)
        exam_engine.submit(objective_test.id, student.id)

        with pytest.raises(AttemptLimitExceeded) as exc_info:
            exam_engine.start_attempt(objective_test.id, student.id)

        assert exc_info.value.context["max_attempts"] == 1

    def test_next_attempt_when_allowed(self, exam_engine, make_question, make_test, student):
        test = make_test(
            [[make_question().id]], options={"max_attempts": 2, "randomize_options": True}
        )
        first = exam_engine.start_attempt(test.id, student.id)
        exam_engine.submit(test.id, student.id)

        second = exam_engine.start_attempt(test.id, student.id)

        assert second["attempt_number"] == 2
        assert second["attempt_id"] != first["attempt_id"]
        assert second["resumed"] is False

    def test_concurrent_start_resumes_the_winner(self, exam_engine, make_question, make_test, student, clock):
        """The in-progress unique index rejects the loser, who resumes the winner."""
        test = make_test([[make_question().id]], options={"max_attempts": 3})
        repository = exam_engine.repository
        winner = repository.create(
            test_id=test.id,
            student_id=student.id,
            attempt_number=1,
            started_at=clock.now,
            deadline_at=None,
            section_deadline_at=None,
            question_order=question_ids(test),
            option_orders={},
            sections=[{"started_at": clock.now.isoformat(), "completed_at": None, "time_spent": 0, "is_locked": False}],
        )
        winner_id = winner.id

        # The loser's first lookup ran before the winner's insert committed
        with patch.object(repository, "find_in_progress", side_effect=[None, winner]):
            state = exam_engine.start_attempt(test.id, student.id)

        assert state["attempt_id"] == winner_id
        assert state["resumed"] is True
        assert exam_engine.definitions.count_student_attempts(test.id, student.id) == 1

    def test_draft_test_cannot_be_started(self, exam_engine, make_question, make_test, student):
        test = make_test([[make_question().id]], status=TestLifecycleStatus.DRAFT)

        with pytest.raises(InvalidState):
            exam_engine.start_attempt(test.id, student.id)

    def test_live_mock_before_start_time(self, exam_engine, make_question, make_test, student, clock):
        test = make_test(
            [[make_question().id]],
            mode=TestMode.LIVE_MOCK,
            start_time=clock.now + timedelta(hours=1),
        )

        with pytest.raises(InvalidState, match="not started"):
            exam_engine.start_attempt(test.id, student.id)

    def test_private_test_requires_assignment(self, exam_engine, make_question, make_test, make_student):
        assigned = make_student()
        outsider = make_student()
        test = make_test(
            [[make_question().id]], is_public=False, assigned_student_ids=[assigned.id]
        )

        with pytest.raises(NotAssigned):
            exam_engine.start_attempt(test.id, outsider.id)
        assert exam_engine.start_attempt(test.id, assigned.id)["status"] == "in_progress"

    def test_private_test_admits_assigned_class(
        self, db_session, exam_engine, make_question, make_test, make_student
    ):
        enrolled = make_student()
        other_class = make_student()
        db_session.add_all(
            [
                ClassEnrollment(class_id=31, student_id=enrolled.id),
                ClassEnrollment(class_id=32, student_id=other_class.id),
            ]
        )
        db_session.commit()
        test = make_test(
            [[make_question().id]], is_public=False, assigned_class_ids=[30, 31]
        )

        assert exam_engine.start_attempt(test.id, enrolled.id)["status"] == "in_progress"
        with pytest.raises(NotAssigned):
            exam_engine.start_attempt(test.id, other_class.id)

    def test_class_assignment_needs_directory(
        self, db_session, make_question, make_test, make_student, clock, notifier
    ):
        enrolled = make_student()
        db_session.add(ClassEnrollment(class_id=31, student_id=enrolled.id))
        db_session.commit()
        test = make_test([[make_question().id]], is_public=False, assigned_class_ids=[31])
        engine = ExamEngine(
            repository=AttemptRepository(db_session),
            question_bank=SqlQuestionBank(db_session),
            definitions=SqlTestDefinitionStore(db_session),
            notifier=notifier,
            clock=clock,
        )

        with pytest.raises(NotAssigned):
            engine.start_attempt(test.id, enrolled.id)

    def test_unknown_test(self, exam_engine, student):
        with pytest.raises(NotFound):
            exam_engine.start_attempt(999, student.id)


class TestAnswers:
    def test_answer_overwrites_previous(self, exam_engine, mixed_test, student):
        exam_engine.start_attempt(mixed_test.id, student.id)
        mcq_id = question_ids(mixed_test)[0]

        exam_engine.answer(mixed_test.id, student.id, mcq_id, choice("A"))
        saved = exam_engine.answer(mixed_test.id, student.id, mcq_id, choice("B"))

        assert saved["saved"] is True
        assert saved["feedback"] is None
        state = exam_engine.get_attempt_state(mixed_test.id, student.id)
        assert len(state["answers"]) == 1
        assert state["answers"][0]["answer"] == choice("B")
        assert set(state["answers"][0]) == {"question_id", "answer", "flagged", "answered_at"}

    def test_wrong_answer_kind_is_rejected(self, exam_engine, mixed_test, student):
        exam_engine.start_attempt(mixed_test.id, student.id)

        with pytest.raises(InvalidAnswer):
            exam_engine.answer(mixed_test.id, student.id, question_ids(mixed_test)[0], text("B"))

    def test_question_outside_attempt(self, exam_engine, mixed_test, student, make_question):
        exam_engine.start_attempt(mixed_test.id, student.id)
        stray = make_question()

        with pytest.raises(NotFound):
            exam_engine.answer(mixed_test.id, student.id, stray.id, choice("A"))

    def test_answer_without_attempt(self, exam_engine, mixed_test, student):
        with pytest.raises(NotFound):
            exam_engine.answer(mixed_test.id, student.id, question_ids(mixed_test)[0], choice("A"))

    def test_flag_question(self, exam_engine, mixed_test, student):
        exam_engine.start_attempt(mixed_test.id, student.id)
        essay_id = question_ids(mixed_test)[1]

        exam_engine.flag_question(mixed_test.id, student.id, essay_id, True)

        state = exam_engine.get_attempt_state(mixed_test.id, student.id)
        assert state["flagged_questions"] == [essay_id]
        assert state["answers"][0]["answer"] is None

    def test_answer_after_deadline_auto_submits(self, exam_engine, make_question, make_test, student, clock):
        mcq = make_question()
        essay = make_question("essay", max_marks=10)
        test = make_test([[mcq.id, essay.id]], duration_minutes=30)
        exam_engine.start_attempt(test.id, student.id)
        exam_engine.answer(test.id, student.id, mcq.id, choice("B"))

        clock.advance(minutes=31)
        with pytest.raises(AttemptClosed) as exc_info:
            exam_engine.answer(test.id, student.id, essay.id, text("Late"))

        assert exc_info.value.status == "auto_submitted"
        state = exam_engine.get_attempt_state(test.id, student.id)
        assert state["status"] == "auto_submitted"
        assert state["answers"][0]["answer"] == choice("B")

    @pytest.mark.parametrize("allow_review", [True, False])
    def test_practice_mode_instant_feedback(
        self, exam_engine, make_question, make_test, student, allow_review
    ):
        mcq = make_question(explanation="2 + 2 = 4")
        test = make_test(
            [[mcq.id]],
            mode=TestMode.PRACTICE,
            options={"instant_feedback": True, "allow_review": allow_review, "max_attempts": 3},
        )
        exam_engine.start_attempt(test.id, student.id)

        saved = exam_engine.answer(test.id, student.id, mcq.id, choice("A"))

        # Correctness only; the answer key stays hidden while attempts remain
        assert saved["feedback"] == {
            "is_correct": False,
            "marks_awarded": 0.0,
            "max_marks": 1.0,
        }

    def test_no_feedback_outside_practice(self, exam_engine, make_question, make_test, student):
        mcq = make_question()
        test = make_test([[mcq.id]], options={"instant_feedback": True})
        exam_engine.start_attempt(test.id, student.id)

        assert exam_engine.answer(test.id, student.id, mcq.id, choice("B"))["feedback"] is None


class TestSections:
    def test_advance_locks_current_section(self, exam_engine, sectioned_test, student, clock):
        exam_engine.start_attempt(sectioned_test.id, student.id)
        clock.advance(minutes=4)

        status = exam_engine.advance_section(sectioned_test.id, student.id, 1)

        assert status["current_section_index"] == 1
        first, second = status["sections"][0], status["sections"][1]
        assert first["is_locked"] is True
        assert first["time_spent"] == 240
        assert second["started_at"] == clock.now
        assert second["time_remaining_seconds"] == 600

    def test_cannot_skip_sections(self, exam_engine, sectioned_test, student):
        exam_engine.start_attempt(sectioned_test.id, student.id)

        with pytest.raises(CannotSkipSections):
            exam_engine.advance_section(sectioned_test.id, student.id, 2)

    def test_cannot_go_back(self, exam_engine, sectioned_test, student):
        exam_engine.start_attempt(sectioned_test.id, student.id)
        exam_engine.advance_section(sectioned_test.id, student.id, 1)

        with pytest.raises(ReviewNotAllowed):
            exam_engine.advance_section(sectioned_test.id, student.id, 0)

    def test_answer_in_other_section_is_rejected(self, exam_engine, sectioned_test, student):
        exam_engine.start_attempt(sectioned_test.id, student.id)
        q2 = question_ids(sectioned_test)[1]

        with pytest.raises(SectionMismatch) as exc_info:
            exam_engine.answer(sectioned_test.id, student.id, q2, {"kind": "boolean", "value": True})

        assert exc_info.value.context == {
            "question_id": q2,
            "question_section": 1,
            "current_section": 0,
        }

    def test_expired_section_auto_advances(self, exam_engine, sectioned_test, student, clock):
        start = clock.now
        exam_engine.start_attempt(sectioned_test.id, student.id)
        clock.advance(minutes=11)

        status = exam_engine.get_section_status(sectioned_test.id, student.id)

        assert status["status"] == "in_progress"
        assert status["current_section_index"] == 1
        assert status["sections"][0]["is_locked"] is True
        assert status["sections"][0]["time_spent"] == 600
        assert status["sections"][1]["started_at"] == start + timedelta(minutes=10)
        assert status["sections"][1]["time_remaining_seconds"] == 540

    def test_answer_to_expired_section_is_rejected(self, exam_engine, sectioned_test, student, clock):
        exam_engine.start_attempt(sectioned_test.id, student.id)
        clock.advance(minutes=11)

        with pytest.raises(SectionMismatch):
            exam_engine.answer(sectioned_test.id, student.id, question_ids(sectioned_test)[0], choice("B"))

    def test_all_sections_expired_auto_submits(self, exam_engine, sectioned_test, student, clock):
        exam_engine.start_attempt(sectioned_test.id, student.id)
        clock.advance(minutes=45)

        status = exam_engine.get_section_status(sectioned_test.id, student.id)

        assert status["status"] == "auto_submitted"
        assert [s["time_spent"] for s in status["sections"]] == [600, 600, 600]
        assert all(s["is_locked"] for s in status["sections"])

    def test_free_navigation_has_nothing_to_advance(self, exam_engine, make_question, make_test, student):
        test = make_test([[make_question().id], [make_question().id]])
        exam_engine.start_attempt(test.id, student.id)

        with pytest.raises(InvalidState):
            exam_engine.advance_section(test.id, student.id, 1)

    def test_start_section_records_first_visit(self, exam_engine, make_question, make_test, student, clock):
        test = make_test([[make_question().id], [make_question().id]])
        exam_engine.start_attempt(test.id, student.id)
        clock.advance(minutes=2)

        status = exam_engine.start_section(test.id, student.id, 1)

        assert status["current_section_index"] == 1
        assert status["sections"][1]["started_at"] == clock.now


class TestSubmit:
    def test_objective_test_is_graded_on_submit(self, exam_engine, objective_test, student, notifier):
        exam_engine.start_attempt(objective_test.id, student.id)
        mcq_id, tf_id = question_ids(objective_test)
        exam_engine.answer(objective_test.id, student.id, mcq_id, choice("B"))
        exam_engine.answer(objective_test.id, student.id, tf_id, {"kind": "boolean", "value": False})

        submission = exam_engine.submit(objective_test.id, student.id)

        assert submission["status"] == "graded"
        assert submission["already_closed"] is False
        assert submission["result"]["marks_obtained"] == 2.0
        assert submission["result"]["total_marks"] == 3.0
        assert submission["result"]["percentage"] == 66.7
        assert submission["result"]["grade"] == "C"
        assert notifier.kinds() == ["attempt_submitted"]

    def test_subjective_test_waits_for_grading(self, exam_engine, mixed_test, student):
        exam_engine.start_attempt(mixed_test.id, student.id)

        submission = exam_engine.submit(mixed_test.id, student.id)

        assert submission["status"] == "submitted"
        assert submission["result"] is None

    def test_submit_is_idempotent(self, exam_engine, mixed_test, student, notifier):
        first = exam_engine.start_attempt(mixed_test.id, student.id)
        exam_engine.submit(mixed_test.id, student.id)

        again = exam_engine.submit(mixed_test.id, student.id)

        assert again["attempt_id"] == first["attempt_id"]
        assert again["already_closed"] is True
        assert again["status"] == "submitted"
        assert notifier.kinds() == ["attempt_submitted"]

    def test_auto_submit_after_manual_submit_keeps_manual_status(self, exam_engine, mixed_test, student):
        exam_engine.start_attempt(mixed_test.id, student.id)
        exam_engine.submit(mixed_test.id, student.id)

        late = exam_engine.auto_submit(mixed_test.id, student.id)

        assert late["already_closed"] is True
        assert late["status"] == "submitted"

    def test_losing_the_close_race_reports_already_closed(self, exam_engine, mixed_test, student, db_session):
        """A stale version loses the conditional update; the caller sees the winner's result."""
        exam_engine.start_attempt(mixed_test.id, student.id)
        attempt = exam_engine.repository.find_in_progress(mixed_test.id, student.id)
        stale_version = attempt.version
        exam_engine.answer(mixed_test.id, student.id, question_ids(mixed_test)[0], choice("B"))

        closed = exam_engine.repository.close(
            attempt.id,
            expected_version=stale_version,
            status=AttemptStatus.SUBMITTED,
            submitted_at=exam_engine.clock(),
            sections=[],
            current_section_index=0,
        )

        assert closed is False
        assert exam_engine.repository.get(attempt.id).status.value == "in_progress"

    def test_blank_objective_rows_are_zeroed(self, exam_engine, objective_test, student):
        exam_engine.start_attempt(objective_test.id, student.id)
        mcq_id = question_ids(objective_test)[0]
        exam_engine.flag_question(objective_test.id, student.id, mcq_id, True)

        submission = exam_engine.submit(objective_test.id, student.id)

        assert submission["result"]["marks_obtained"] == 0.0
        row = exam_engine.repository.get_answer(submission["attempt_id"], mcq_id)
        assert row.marks_awarded == 0.0
        assert row.is_correct is False

    def test_notification_failure_does_not_block_submit(self, db_session, objective_test, student, clock):
        engine = ExamEngine(
            repository=AttemptRepository(db_session),
            question_bank=SqlQuestionBank(db_session),
            definitions=SqlTestDefinitionStore(db_session),
            notifier=BrokenNotifier(),
            clock=clock,
        )
        engine.start_attempt(objective_test.id, student.id)

        submission = engine.submit(objective_test.id, student.id)

        assert submission["status"] == "graded"


class BrokenNotifier:
    def notify(self, student_id, kind, payload):
        raise ConnectionError("mail relay down")


class TestResults:
    def test_result_hidden_until_published(self, exam_engine, make_question, make_test, student):
        test = make_test(
            [[make_question().id]], options={"show_results_after_completion": False}
        )
        exam_engine.start_attempt(test.id, student.id)
        submission = exam_engine.submit(test.id, student.id)

        assert submission["status"] == "graded"
        assert submission["result"] is None
        assert exam_engine.get_result(test.id, student.id)["result"] is None

        exam_engine.definitions.mark_results_published(test.id)

        assert exam_engine.get_result(test.id, student.id)["result"]["percentage"] == 0.0

    def test_review_includes_correct_answers(self, exam_engine, make_question, make_test, student):
        mcq = make_question(explanation="Count them", solution="4")
        test = make_test([[mcq.id]])
        exam_engine.start_attempt(test.id, student.id)
        exam_engine.answer(test.id, student.id, mcq.id, choice("C"))
        exam_engine.submit(test.id, student.id)

        payload = exam_engine.get_result(test.id, student.id)

        assert payload["result"]["grade"] == "U"
        (item,) = payload["review"]
        assert item["answer"] == choice("C")
        assert item["is_correct"] is False
        assert item["correct_answer"] == "B"
        assert item["explanation"] == "Count them"
        assert item["solution"] == "4"

    def test_no_review_when_disallowed(self, exam_engine, make_question, make_test, student):
        test = make_test([[make_question().id]], options={"allow_review": False})
        exam_engine.start_attempt(test.id, student.id)
        exam_engine.submit(test.id, student.id)

        payload = exam_engine.get_result(test.id, student.id)

        assert payload["result"] is not None
        assert payload["review"] is None

    def test_in_progress_attempt_has_no_result(self, exam_engine, mixed_test, student):
        exam_engine.start_attempt(mixed_test.id, student.id)

        payload = exam_engine.get_result(mixed_test.id, student.id)

        assert payload["status"] == "in_progress"
        assert payload["result"] is None

    def test_specific_attempt_number(self, exam_engine, make_question, make_test, student):
        mcq = make_question()
        test = make_test([[mcq.id]], options={"max_attempts": 2})
        exam_engine.start_attempt(test.id, student.id)
        exam_engine.submit(test.id, student.id)
        exam_engine.start_attempt(test.id, student.id)
        exam_engine.answer(test.id, student.id, mcq.id, choice("B"))
        exam_engine.submit(test.id, student.id)

        first = exam_engine.get_result(test.id, student.id, attempt_number=1)
        latest = exam_engine.get_result(test.id, student.id)

        assert first["result"]["percentage"] == 0.0
        assert latest["attempt_number"] == 2
        assert latest["result"]["percentage"] == 100.0

    def test_no_attempt(self, exam_engine, mixed_test, student):
        with pytest.raises(NotFound):
            exam_engine.get_result(mixed_test.id, student.id)


class TestFrozenQuestionOrder:
    def test_grading_uses_order_recorded_at_start(
        self, db_session, exam_engine, make_question, make_test, student
    ):
        questions = [make_question("mcq_single", max_marks=2) for _ in range(4)]
        replacement = make_question("mcq_single", max_marks=50)
        original_ids = [q.id for q in questions]
        test = make_test([original_ids], options={"randomize_questions": True})

        started = exam_engine.start_attempt(test.id, student.id)
        frozen = started["question_order"]
        assert sorted(frozen) == sorted(original_ids)
        for qid in frozen:
            exam_engine.answer(test.id, student.id, qid, choice("B"))

        # The author reorders the test and swaps a question mid-attempt
        test.sections = [
            {
                "name": "Section 1",
                "question_ids": [replacement.id] + list(reversed(original_ids[1:])),
            }
        ]
        db_session.commit()

        submission = exam_engine.submit(test.id, student.id)

        attempt = exam_engine.repository.get(started["attempt_id"])
        assert attempt.question_order == frozen
        assert submission["result"]["total_marks"] == 8.0
        assert submission["result"]["marks_obtained"] == 8.0
        assert submission["result"]["percentage"] == 100.0

        review = exam_engine.get_result(test.id, student.id)["review"]
        assert [item["question_id"] for item in review] == frozen
        assert replacement.id not in [item["question_id"] for item in review]
