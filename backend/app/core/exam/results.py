"""
Result computation for graded attempts.

Pure functions over answer rows and question snapshots:
- compute_result: totals, section/subject breakdowns, percentage, grade, pass/fail
- competition_ranks: shared ranks for ties, next rank = 1-based position
- summarize_percentages: cohort statistics
- render_results_csv: the teacher-facing export
"""
import csv
import io
import statistics
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from app.core.datetime_utils import seconds_between
from app.core.exam.types import (
    AttemptResult,
    GradeBand,
    ScoreBreakdown,
    StudentContact,
    TestDefinition,
)
from app.schemas.questions import QuestionSnapshot

CSV_HEADER = [
    "Rank",
    "Name",
    "Email",
    "Total Score",
    "Percentage",
    "Grade",
    "Time Taken (min)",
]

UNASSIGNED_SUBJECT = "General"


@dataclass(frozen=True)
class MarkedAnswer:
    """The grading-relevant part of an answer row."""

    question_id: int
    marks_awarded: Optional[float]


def grade_for(percentage: float, bands: Sequence[GradeBand]) -> str:
    """
    Letter for a percentage: the first band (highest first) whose minimum is met.

    Percentages below every minimum get the lowest band.
    """
    ordered = sorted(bands, key=lambda b: b.min_percentage, reverse=True)
    for band in ordered:
        if percentage >= band.min_percentage:
            return band.letter
    return ordered[-1].letter if ordered else ""


def percentage_of(obtained: float, total: float) -> float:
    if total <= 0:
        return 0.0
    return round(obtained / total * 100, 1)


def _breakdown(
    names: List[str],
    question_ids_by_name: Dict[str, List[int]],
    marks_by_question: Dict[int, float],
    snapshots: Dict[int, QuestionSnapshot],
) -> List[ScoreBreakdown]:
    rows: List[ScoreBreakdown] = []
    for name in names:
        question_ids = question_ids_by_name[name]
        rows.append(
            ScoreBreakdown(
                name=name,
                marks_obtained=round(
                    sum(marks_by_question.get(qid, 0.0) for qid in question_ids), 2
                ),
                total_marks=round(
                    sum(snapshots[qid].max_marks for qid in question_ids if qid in snapshots),
                    2,
                ),
            )
        )
    return rows


def compute_result(
    definition: TestDefinition,
    question_order: Sequence[int],
    answers: Iterable[MarkedAnswer],
    snapshots: Dict[int, QuestionSnapshot],
    grade_bands: Sequence[GradeBand],
) -> AttemptResult:
    """
    Result for one attempt, resolved against its frozen question order.

    Rank and percentile start as None; they are filled in by
    competition_ranks once the cohort is ranked.
    """
    marks_by_question: Dict[int, float] = {}
    for answer in answers:
        if answer.question_id in question_order:
            marks_by_question[answer.question_id] = answer.marks_awarded or 0.0

    marks_obtained = round(sum(marks_by_question.values()), 2)
    total_marks = definition.total_marks or round(
        sum(snapshots[qid].max_marks for qid in question_order if qid in snapshots), 2
    )
    percentage = percentage_of(marks_obtained, total_marks)

    objective_marks = round(
        sum(
            marks
            for qid, marks in marks_by_question.items()
            if qid in snapshots and snapshots[qid].kind.is_objective
        ),
        2,
    )

    # Sections keep definition order; questions are matched by id so the
    # attempt's shuffled order does not matter here.
    attempt_questions = set(question_order)
    section_names: List[str] = []
    section_questions: Dict[str, List[int]] = {}
    for index, section in enumerate(definition.sections):
        name = section.name or f"Section {index + 1}"
        section_names.append(name)
        section_questions[name] = [
            qid for qid in section.question_ids if qid in attempt_questions
        ]

    subject_names: List[str] = []
    subject_questions: Dict[str, List[int]] = {}
    for qid in question_order:
        snapshot = snapshots.get(qid)
        subject = (snapshot.subject if snapshot else None) or UNASSIGNED_SUBJECT
        if subject not in subject_questions:
            subject_names.append(subject)
            subject_questions[subject] = []
        subject_questions[subject].append(qid)

    return AttemptResult(
        total_marks=total_marks,
        marks_obtained=marks_obtained,
        percentage=percentage,
        grade=grade_for(percentage, grade_bands),
        is_passing=percentage >= definition.options.passing_score,
        rank=None,
        percentile=None,
        section_scores=_breakdown(
            section_names, section_questions, marks_by_question, snapshots
        ),
        subject_scores=_breakdown(
            subject_names, subject_questions, marks_by_question, snapshots
        ),
        objective_marks=objective_marks,
        subjective_marks=round(marks_obtained - objective_marks, 2),
    )


def competition_ranks(percentages: Sequence[float]) -> List[Tuple[int, float]]:
    """
    Competition ("1224") ranking.

    Returns (rank, percentile) for each input, in input order. Equal
    percentages share a rank; the next distinct percentage ranks at its
    1-based position in the sorted list.
    """
    n = len(percentages)
    order = sorted(range(n), key=lambda i: percentages[i], reverse=True)
    ranks = [0] * n
    previous: Optional[float] = None
    current_rank = 0
    for position, index in enumerate(order, start=1):
        if previous is None or percentages[index] != previous:
            current_rank = position
            previous = percentages[index]
        ranks[index] = current_rank
    return [(rank, round((n - rank) / n * 100, 2)) for rank in ranks]


def summarize_percentages(
    percentages: Sequence[float], passing_flags: Sequence[bool], grades: Sequence[str]
) -> Dict[str, object]:
    """Cohort statistics over graded attempts."""
    if not percentages:
        return {
            "graded_count": 0,
            "average_percentage": None,
            "median_percentage": None,
            "highest_percentage": None,
            "lowest_percentage": None,
            "pass_rate": None,
            "grade_distribution": {},
        }
    distribution: Dict[str, int] = {}
    for grade in grades:
        distribution[grade] = distribution.get(grade, 0) + 1
    return {
        "graded_count": len(percentages),
        "average_percentage": round(statistics.fmean(percentages), 1),
        "median_percentage": round(statistics.median(percentages), 1),
        "highest_percentage": max(percentages),
        "lowest_percentage": min(percentages),
        "pass_rate": round(sum(1 for p in passing_flags if p) / len(passing_flags) * 100, 1),
        "grade_distribution": distribution,
    }


@dataclass(frozen=True)
class ExportRow:
    result: AttemptResult
    student_id: int
    started_at: datetime
    submitted_at: Optional[datetime]


def _format_number(value: float) -> str:
    return f"{value:g}"


def render_results_csv(
    rows: Sequence[ExportRow], students: Dict[int, StudentContact]
) -> str:
    """
    CSV export of graded attempts, best rank first.

    Unranked rows sort after ranked ones by percentage descending.
    """
    ordered = sorted(
        rows,
        key=lambda row: (
            row.result.get("rank") is None,
            row.result.get("rank") or 0,
            -row.result["percentage"],
        ),
    )
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for row in ordered:
        result = row.result
        student = students.get(row.student_id)
        minutes_taken = (
            round(seconds_between(row.started_at, row.submitted_at) / 60)
            if row.submitted_at is not None
            else ""
        )
        writer.writerow(
            [
                result.get("rank") if result.get("rank") is not None else "",
                student.name if student else "",
                student.email if student else "",
                f"{_format_number(result['marks_obtained'])}/"
                f"{_format_number(result['total_marks'])}",
                result["percentage"],
                result["grade"],
                minutes_taken,
            ]
        )
    return buffer.getvalue()
