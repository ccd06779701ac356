"""
Tests for automatic grading of objective questions.
"""
import pytest

from app.core.exam.errors import InvalidAnswer
from app.core.exam.grading import auto_grade, is_correct_for_marks, parse_answer
from app.schemas.questions import QuestionSnapshot


def snapshot(content, max_marks=2.0, question_id=1):
    return QuestionSnapshot(id=question_id, content=content, max_marks=max_marks)


class TestParseAnswer:
    def test_accepts_matching_kind(self, question_contents):
        payload = parse_answer(
            snapshot(question_contents["mcq_single"]), {"kind": "choice", "selected": "B"}
        )

        assert payload.selected == "B"

    def test_rejects_wrong_kind(self, question_contents):
        with pytest.raises(InvalidAnswer) as exc_info:
            parse_answer(snapshot(question_contents["numeric"]), {"kind": "text", "text": "3"})

        assert exc_info.value.context["expected_kind"] == "number"

    def test_rejects_malformed_payload(self, question_contents):
        with pytest.raises(InvalidAnswer):
            parse_answer(snapshot(question_contents["numeric"]), {"kind": "number"})

    def test_rejects_unknown_option_label(self, question_contents):
        with pytest.raises(InvalidAnswer, match="Unknown option labels"):
            parse_answer(
                snapshot(question_contents["mcq_multi"]),
                {"kind": "choices", "selected": ["A", "Z"]},
            )


class TestChoiceQuestions:
    def test_mcq_single(self, question_contents):
        question = snapshot(question_contents["mcq_single"])

        assert auto_grade(question, {"kind": "choice", "selected": "B"}) == (True, 2.0)
        assert auto_grade(question, {"kind": "choice", "selected": "A"}) == (False, 0.0)

    def test_mcq_multi_requires_exact_set(self, question_contents):
        question = snapshot(question_contents["mcq_multi"])

        assert auto_grade(question, {"kind": "choices", "selected": ["C", "A"]}) == (True, 2.0)
        assert auto_grade(question, {"kind": "choices", "selected": ["A"]}) == (False, 0.0)
        assert auto_grade(
            question, {"kind": "choices", "selected": ["A", "B", "C"]}
        ) == (False, 0.0)

    def test_true_false(self, question_contents):
        question = snapshot(question_contents["true_false"], max_marks=1.0)

        assert auto_grade(question, {"kind": "boolean", "value": True}) == (True, 1.0)
        assert auto_grade(question, {"kind": "boolean", "value": False}) == (False, 0.0)


class TestNumeric:
    @pytest.mark.parametrize(
        "value,expected",
        [
            (3.14, True),
            (3.15, True),  # exactly at tolerance
            (3.13, True),
            (3.16, False),
            (-3.14, False),
        ],
    )
    def test_tolerance(self, question_contents, value, expected):
        question = snapshot(question_contents["numeric"])

        is_correct, _ = auto_grade(question, {"kind": "number", "value": value})

        assert is_correct is expected

    def test_zero_tolerance_means_exact(self, question_contents):
        content = {**question_contents["numeric"], "tolerance": 0.0, "correct_value": 12}
        question = snapshot(content)

        assert auto_grade(question, {"kind": "number", "value": 12.0}) == (True, 2.0)
        assert auto_grade(question, {"kind": "number", "value": 12.001}) == (False, 0.0)


class TestFillInBlank:
    def test_exact_match_is_trimmed_and_case_insensitive(self, question_contents):
        question = snapshot(question_contents["fill_in_blank"])

        assert auto_grade(question, {"kind": "text", "text": "  paris "}) == (True, 2.0)
        assert auto_grade(question, {"kind": "text", "text": "Lyon"}) == (False, 0.0)

    def test_case_sensitive(self, question_contents):
        content = {**question_contents["fill_in_blank"], "case_sensitive": True}
        question = snapshot(content)

        assert auto_grade(question, {"kind": "text", "text": "paris"}) == (False, 0.0)
        assert auto_grade(question, {"kind": "text", "text": "Paris"}) == (True, 2.0)

    def test_accepted_alternatives(self, question_contents):
        content = {**question_contents["fill_in_blank"], "accepted_answers": ["Paree"]}

        assert auto_grade(snapshot(content), {"kind": "text", "text": "paree"})[0] is True

    def test_regex_mode_matches_whole_answer(self, question_contents):
        content = {
            **question_contents["fill_in_blank"],
            "match_mode": "regex",
            "correct_answer": r"colou?r",
        }
        question = snapshot(content)

        assert auto_grade(question, {"kind": "text", "text": "Color"})[0] is True
        assert auto_grade(question, {"kind": "text", "text": "colour"})[0] is True
        assert auto_grade(question, {"kind": "text", "text": "colors"})[0] is False

    def test_invalid_pattern_counts_as_no_match(self, question_contents):
        content = {
            **question_contents["fill_in_blank"],
            "match_mode": "regex",
            "correct_answer": "([unclosed",
        }

        assert auto_grade(snapshot(content), {"kind": "text", "text": "x"}) == (False, 0.0)


class TestMatchTheColumn:
    def test_all_pairs_correct(self, question_contents):
        question = snapshot(question_contents["match_the_column"], max_marks=4.0)
        answer = {"kind": "matches", "pairs": dict(question_contents["match_the_column"]["pairs"])}

        assert auto_grade(question, answer) == (True, 4.0)

    def test_partial_credit_per_pair(self, question_contents):
        question = snapshot(question_contents["match_the_column"], max_marks=3.0)
        answer = {
            "kind": "matches",
            "pairs": {"France": "Paris", "Japan": "Tokyo", "Kenya": "Lima", "Peru": "Nairobi"},
        }

        is_correct, marks = auto_grade(question, answer)

        assert is_correct is False
        assert marks == 1.5

    def test_partial_credit_is_rounded(self, question_contents):
        content = {
            **question_contents["match_the_column"],
            "pairs": {"a": "1", "b": "2", "c": "3"},
        }
        answer = {"kind": "matches", "pairs": {"a": "1"}}

        assert auto_grade(snapshot(content, max_marks=1.0), answer) == (False, 0.33)


class TestSubjectiveAndBlank:
    def test_subjective_answer_waits_for_teacher(self, question_contents):
        question = snapshot(question_contents["essay"], max_marks=10.0)

        assert auto_grade(question, {"kind": "text", "text": "Alliances..."}) == (None, None)

    @pytest.mark.parametrize("question_type", ["mcq_single", "numeric", "essay"])
    def test_blank_answer_scores_zero(self, question_contents, question_type):
        assert auto_grade(snapshot(question_contents[question_type]), None) == (False, 0.0)


class TestIsCorrectForMarks:
    def test_any_positive_mark_with_zero_threshold(self):
        assert is_correct_for_marks(0.5, 10, 0.0) is True
        assert is_correct_for_marks(0, 10, 0.0) is False

    def test_threshold_is_strict(self):
        assert is_correct_for_marks(5, 10, 0.5) is False
        assert is_correct_for_marks(5.5, 10, 0.5) is True
