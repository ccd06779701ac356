"""
Automatic grading of objective question types.

`auto_grade` compares a frozen student answer with the question snapshot's
canonical answer. Subjective types are never auto-graded: they return
(None, None) and wait for a teacher.
"""
import logging
import re
from typing import Any, Optional, Tuple

from pydantic import ValidationError

from app.core.exam.errors import InvalidAnswer
from app.schemas.questions import (
    ANSWER_KIND_BY_QUESTION,
    BooleanAnswer,
    ChoiceAnswer,
    ChoicesAnswer,
    FillInBlankContent,
    MatchesAnswer,
    MatchTheColumnContent,
    McqMultiContent,
    McqSingleContent,
    NumberAnswer,
    NumericContent,
    QuestionSnapshot,
    TextAnswer,
    TrueFalseContent,
    answer_payload_adapter,
)

logger = logging.getLogger(__name__)

GradeOutcome = Tuple[Optional[bool], Optional[float]]

# Floating-point slack when comparing numeric answers against tolerance
_NUMERIC_EPSILON = 1e-9


def parse_answer(snapshot: QuestionSnapshot, raw: Any) -> Any:
    """
    Validate a raw answer payload against the question's accepted kind.

    Raises:
        InvalidAnswer: If the payload is malformed or of the wrong kind.
    """
    try:
        payload = answer_payload_adapter.validate_python(raw)
    except ValidationError as e:
        raise InvalidAnswer(
            f"Malformed answer for question {snapshot.id}: {e.error_count()} errors",
            question_id=snapshot.id,
        ) from e

    expected = ANSWER_KIND_BY_QUESTION[snapshot.kind]
    if payload.kind != expected:
        raise InvalidAnswer(
            f"Question {snapshot.id} ({snapshot.kind.value}) expects a "
            f"'{expected}' answer, got '{payload.kind}'",
            question_id=snapshot.id,
            expected_kind=expected,
        )

    content = snapshot.content
    if isinstance(content, (McqSingleContent, McqMultiContent)):
        selected = [payload.selected] if isinstance(payload, ChoiceAnswer) else payload.selected
        unknown = sorted(set(selected) - set(content.labels))
        if unknown:
            raise InvalidAnswer(
                f"Unknown option labels {unknown} for question {snapshot.id}",
                question_id=snapshot.id,
            )
    return payload


def _marks(correct: bool, max_marks: float) -> GradeOutcome:
    return correct, (max_marks if correct else 0.0)


def _normalize_text(value: str, case_sensitive: bool) -> str:
    value = value.strip()
    return value if case_sensitive else value.lower()


def _grade_fill_in_blank(content: FillInBlankContent, answer: TextAnswer) -> bool:
    given = answer.text.strip()
    if content.match_mode == "regex":
        flags = 0 if content.case_sensitive else re.IGNORECASE
        patterns = [content.correct_answer, *content.accepted_answers]
        for pattern in patterns:
            try:
                if re.fullmatch(pattern, given, flags):
                    return True
            except re.error as e:
                logger.warning(f"Invalid answer pattern {pattern!r}: {e}")
        return False

    accepted = {
        _normalize_text(candidate, content.case_sensitive)
        for candidate in [content.correct_answer, *content.accepted_answers]
    }
    return _normalize_text(given, content.case_sensitive) in accepted


def _grade_matches(
    content: MatchTheColumnContent, answer: MatchesAnswer, max_marks: float
) -> GradeOutcome:
    total = len(content.pairs)
    correct = sum(
        1 for left, right in content.pairs.items() if answer.pairs.get(left) == right
    )
    marks = round(max_marks * correct / total, 2) if total else 0.0
    return correct == total, marks


def auto_grade(snapshot: QuestionSnapshot, raw_answer: Any) -> GradeOutcome:
    """
    Grade one answer.

    Returns:
        (is_correct, marks_awarded). A missing answer on any question type is
        (False, 0.0). Subjective types with an answer return (None, None).
    """
    if raw_answer is None:
        return False, 0.0

    if not snapshot.kind.is_objective:
        return None, None

    answer = parse_answer(snapshot, raw_answer)
    content = snapshot.content
    max_marks = snapshot.max_marks

    if isinstance(content, McqSingleContent) and isinstance(answer, ChoiceAnswer):
        return _marks(answer.selected == content.correct_option, max_marks)
    if isinstance(content, McqMultiContent) and isinstance(answer, ChoicesAnswer):
        return _marks(set(answer.selected) == set(content.correct_options), max_marks)
    if isinstance(content, TrueFalseContent) and isinstance(answer, BooleanAnswer):
        return _marks(answer.value is content.correct_answer, max_marks)
    if isinstance(content, NumericContent) and isinstance(answer, NumberAnswer):
        delta = abs(answer.value - content.correct_value)
        return _marks(delta <= content.tolerance + _NUMERIC_EPSILON, max_marks)
    if isinstance(content, FillInBlankContent) and isinstance(answer, TextAnswer):
        return _marks(_grade_fill_in_blank(content, answer), max_marks)
    if isinstance(content, MatchTheColumnContent) and isinstance(answer, MatchesAnswer):
        return _grade_matches(content, answer, max_marks)

    # parse_answer guarantees the pairing above for every objective kind
    raise InvalidAnswer(
        f"No grading rule for question type {snapshot.kind.value}",
        question_id=snapshot.id,
    )


def is_correct_for_marks(marks: float, max_marks: float, threshold: float) -> bool:
    """Correctness reported for a manually graded answer."""
    return marks > threshold * max_marks