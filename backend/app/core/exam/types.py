"""
Domain types shared by the exam engine modules.

Test definitions come from an external store and are read-only here; they are
modelled as frozen dataclasses so a definition loaded once at the start of an
operation cannot drift while the operation runs.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple, TypedDict

from app.core.datetime_utils import from_iso, to_iso
from app.models.models import TestLifecycleStatus, TestMode


@dataclass(frozen=True)
class GradeBand:
    """Letter awarded to percentages at or above `min_percentage`."""

    min_percentage: float
    letter: str


DEFAULT_GRADE_BANDS: Tuple[GradeBand, ...] = (
    GradeBand(90.0, "A*"),
    GradeBand(80.0, "A"),
    GradeBand(70.0, "B"),
    GradeBand(60.0, "C"),
    GradeBand(50.0, "D"),
    GradeBand(0.0, "U"),
)


def build_grade_bands(pairs: Sequence[Sequence[Any]]) -> Tuple[GradeBand, ...]:
    """
    Build grade bands from (min_percentage, letter) pairs, highest first.

    Raises:
        ValueError: If there are no bands, a pair is malformed, the minimums
            are not strictly descending, or the last band does not start at 0.
    """
    if not pairs:
        raise ValueError("Grade bands must contain at least one band")
    try:
        bands = tuple(GradeBand(float(minimum), str(letter)) for minimum, letter in pairs)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Grade bands must be (min_percentage, letter) pairs: {e}") from e
    minimums = [band.min_percentage for band in bands]
    if any(a <= b for a, b in zip(minimums, minimums[1:])):
        raise ValueError(
            f"Grade band minimums must be strictly descending, got {minimums}"
        )
    if minimums[-1] != 0:
        raise ValueError(f"The last grade band must start at 0, got {minimums[-1]}")
    return bands


@dataclass(frozen=True)
class ExamSettings:
    """Grading configuration handed to the engine at construction time."""

    grade_bands: Tuple[GradeBand, ...] = DEFAULT_GRADE_BANDS
    # Manually graded answers count as correct when
    # marks > correctness_threshold * max_marks.
    correctness_threshold: float = 0.0

    @classmethod
    def from_pairs(
        cls,
        bands: List[Tuple[float, str]],
        correctness_threshold: float = 0.0,
    ) -> "ExamSettings":
        return cls(
            grade_bands=build_grade_bands(bands),
            correctness_threshold=correctness_threshold,
        )


@dataclass(frozen=True)
class SectionDefinition:
    name: str
    question_ids: Tuple[int, ...]
    time_limit: Optional[float] = None  # minutes; None or 0 = untimed
    instructions: Optional[str] = None
    can_go_back: bool = True

    @property
    def is_timed(self) -> bool:
        return bool(self.time_limit) and self.time_limit > 0


@dataclass(frozen=True)
class Scheduling:
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    available_from: Optional[datetime] = None
    duration: int = 0  # minutes; 0 = no attempt-level limit


@dataclass(frozen=True)
class TestOptions:
    randomize_questions: bool = False
    randomize_options: bool = False
    instant_feedback: bool = False
    allow_review: bool = True
    show_results_after_completion: bool = True
    max_attempts: int = 1
    passing_score: float = 40.0
    grade_bands: Optional[Tuple[GradeBand, ...]] = None


@dataclass(frozen=True)
class TestDefinition:
    """Read-only view of an online test as supplied by the definition store."""

    id: int
    company_id: int
    mode: TestMode
    status: TestLifecycleStatus
    sections: Tuple[SectionDefinition, ...]
    scheduling: Scheduling = field(default_factory=Scheduling)
    options: TestOptions = field(default_factory=TestOptions)
    total_marks: float = 0.0
    total_questions: int = 0
    results_published: bool = False
    title: str = ""
    is_public: bool = True
    assigned_student_ids: Tuple[int, ...] = ()
    assigned_class_ids: Tuple[int, ...] = ()

    @property
    def question_ids(self) -> List[int]:
        """All question ids in definition order (sections concatenated)."""
        return [qid for section in self.sections for qid in section.question_ids]

    @property
    def strict_sections(self) -> bool:
        """Whether answering is gated to the current section only."""
        return self.mode == TestMode.SECTION_TIMED or not self.options.allow_review

    def section_index_of(self, question_id: int) -> Optional[int]:
        for index, section in enumerate(self.sections):
            if question_id in section.question_ids:
                return index
        return None


@dataclass(frozen=True)
class StudentContact:
    id: int
    name: str
    email: str


@dataclass
class SectionProgress:
    """Per-attempt progress through one section, stored as JSON on the attempt."""

    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    time_spent: int = 0  # seconds
    is_locked: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": to_iso(self.started_at),
            "completed_at": to_iso(self.completed_at),
            "time_spent": self.time_spent,
            "is_locked": self.is_locked,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SectionProgress":
        return cls(
            started_at=from_iso(data.get("started_at")),
            completed_at=from_iso(data.get("completed_at")),
            time_spent=int(data.get("time_spent") or 0),
            is_locked=bool(data.get("is_locked")),
        )


def load_sections(raw: Optional[List[Dict[str, Any]]]) -> List[SectionProgress]:
    return [SectionProgress.from_dict(item) for item in raw or []]


def dump_sections(sections: List[SectionProgress]) -> List[Dict[str, Any]]:
    return [section.to_dict() for section in sections]


class ScoreBreakdown(TypedDict):
    name: str
    marks_obtained: float
    total_marks: float


class AttemptResult(TypedDict):
    """Computed result stored on a graded attempt."""

    total_marks: float
    marks_obtained: float
    percentage: float
    grade: str
    is_passing: bool
    rank: Optional[int]
    percentile: Optional[float]
    section_scores: List[ScoreBreakdown]
    subject_scores: List[ScoreBreakdown]
    objective_marks: float
    subjective_marks: float
