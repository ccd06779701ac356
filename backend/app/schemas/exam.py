"""
Pydantic schemas for the test-taking and grading endpoints.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from app.schemas.questions import AnswerPayload

DEFAULT_ATTEMPTS_PAGE_SIZE = 20
MAX_ATTEMPTS_PAGE_SIZE = 100


# =============================================================================
# Requests
# =============================================================================


class AnswerRequest(BaseModel):
    """Schema for saving the answer to one question."""

    answer: AnswerPayload = Field(
        ..., description="Answer payload; `kind` must match the question type"
    )


class FlagRequest(BaseModel):
    flagged: bool = Field(True, description="Whether the question is flagged for review")


class AdvanceSectionRequest(BaseModel):
    target_index: int = Field(..., ge=0, description="Index of the section to move to")


class GradeRequest(BaseModel):
    """Schema for a teacher's marks on one answer."""

    # Range is checked against the question's max marks by the grading service
    marks: float = Field(..., description="Marks awarded (0 to the question's max marks)")
    feedback: Optional[str] = Field(None, max_length=10_000, description="Feedback for the student")


class BulkGradeItem(GradeRequest):
    attempt_id: int = Field(..., description="Attempt whose answer is graded")


class BulkGradeRequest(BaseModel):
    grades: List[BulkGradeItem] = Field(..., min_length=1, description="Marks per attempt")


# =============================================================================
# Student-facing responses
# =============================================================================


class SectionView(BaseModel):
    index: int
    name: str
    instructions: Optional[str] = None
    time_limit: Optional[float] = Field(None, description="Section time limit in minutes")
    can_go_back: bool = True
    question_ids: List[int]
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    time_spent: int = Field(0, description="Seconds spent in the section")
    is_locked: bool = False
    time_remaining_seconds: Optional[int] = Field(
        None, description="Seconds left in the section (current timed section only)"
    )
    answered_count: int = 0
    question_count: int = 0


class SavedAnswer(BaseModel):
    """A saved answer without any grading fields."""

    question_id: int
    answer: Optional[Dict[str, Any]] = None
    flagged: bool = False
    answered_at: Optional[datetime] = None


class AttemptStateResponse(BaseModel):
    """Schema for the student's view of an attempt."""

    attempt_id: int = Field(..., description="Attempt ID")
    test_id: int = Field(..., description="Test ID")
    attempt_number: int = Field(..., description="1-based attempt number for this student")
    status: str = Field(
        ..., description="Attempt status (in_progress, submitted, auto_submitted, graded)"
    )
    resumed: Optional[bool] = Field(
        None, description="On start: whether an existing attempt was resumed"
    )
    started_at: datetime
    submitted_at: Optional[datetime] = None
    deadline_at: Optional[datetime] = Field(None, description="Attempt deadline, if timed")
    time_remaining_seconds: Optional[int] = Field(
        None, description="Seconds until the sooner of the attempt and section deadlines"
    )
    current_section_index: int
    question_order: List[int]
    option_orders: Dict[str, List[str]] = Field(
        default_factory=dict, description="Option label order per question id"
    )
    sections: List[SectionView]
    answers: List[SavedAnswer]
    flagged_questions: List[int]
    questions: Optional[List[Dict[str, Any]]] = Field(
        None, description="Questions in attempt order, answer data stripped (on start)"
    )


class SectionStatusResponse(BaseModel):
    attempt_id: int
    status: str
    current_section_index: int
    sections: List[SectionView]


class InstantFeedback(BaseModel):
    """Practice-mode feedback for an objective answer."""

    is_correct: Optional[bool] = None
    marks_awarded: Optional[float] = None
    max_marks: float


class AnswerSavedResponse(BaseModel):
    attempt_id: int
    question_id: int
    saved: bool = True
    feedback: Optional[InstantFeedback] = None


class FlagResponse(BaseModel):
    attempt_id: int
    question_id: int
    flagged: bool


class ScoreBreakdownSchema(BaseModel):
    name: str
    marks_obtained: float
    total_marks: float


class AttemptResultSchema(BaseModel):
    """Computed result of a graded attempt."""

    total_marks: float
    marks_obtained: float
    percentage: float
    grade: str
    is_passing: bool
    rank: Optional[int] = None
    percentile: Optional[float] = None
    section_scores: List[ScoreBreakdownSchema] = Field(default_factory=list)
    subject_scores: List[ScoreBreakdownSchema] = Field(default_factory=list)
    objective_marks: float = 0.0
    subjective_marks: float = 0.0


class SubmissionResponse(BaseModel):
    attempt_id: int
    status: str
    submitted_at: Optional[datetime] = None
    already_closed: bool = Field(
        False, description="True when the attempt had already been closed (idempotent submit)"
    )
    result: Optional[AttemptResultSchema] = Field(
        None, description="Result, when graded and visible to the student"
    )


class ReviewItem(BaseModel):
    question_id: int
    question: Dict[str, Any]
    answer: Optional[Dict[str, Any]] = None
    is_correct: Optional[bool] = None
    marks_awarded: Optional[float] = None
    max_marks: float
    feedback: Optional[str] = None
    correct_answer: Any = None
    explanation: Optional[str] = None
    solution: Optional[str] = None


class AttemptResultResponse(BaseModel):
    attempt_id: int
    attempt_number: int
    status: str
    started_at: datetime
    submitted_at: Optional[datetime] = None
    result: Optional[AttemptResultSchema] = Field(
        None, description="Withheld until graded and visible"
    )
    review: Optional[List[ReviewItem]] = Field(
        None, description="Per-question review (only when the test allows review)"
    )


# =============================================================================
# Teacher-facing responses
# =============================================================================


class UngradedAnswer(BaseModel):
    attempt_id: int
    student_id: int
    answer: Optional[Dict[str, Any]] = None
    submitted_at: Optional[datetime] = None


class UngradedQuestion(BaseModel):
    question_id: int
    question_type: str
    max_marks: float
    answers: List[UngradedAnswer]


class GradeAnswerResponse(BaseModel):
    attempt_id: int
    question_id: int
    marks_awarded: float
    max_marks: float
    is_correct: bool
    feedback: Optional[str] = None


class BulkGradeOutcome(BaseModel):
    attempt_id: int
    success: bool
    error: Optional[str] = None


class BulkGradeResponse(BaseModel):
    question_id: int
    results: List[BulkGradeOutcome]
    graded_count: int
    failed_count: int


class FinalizeResponse(BaseModel):
    graded_count: int = Field(..., description="Attempts moved to graded by this call")
    ranked_count: int = Field(..., description="Graded attempts re-ranked")


class RanksResponse(BaseModel):
    ranked_count: int


class TestStatsResponse(BaseModel):
    test_id: int
    graded_count: int
    average_percentage: Optional[float] = None
    median_percentage: Optional[float] = None
    highest_percentage: Optional[float] = None
    lowest_percentage: Optional[float] = None
    pass_rate: Optional[float] = Field(None, description="Percentage of graded attempts passing")
    grade_distribution: Dict[str, int] = Field(default_factory=dict)
    attempts_by_status: Dict[str, int] = Field(default_factory=dict)


class LiveStatusResponse(BaseModel):
    test_id: int
    test_status: str
    counts: Dict[str, int]
    total_attempts: int
    in_progress: int
    awaiting_grading: int
    results_published: bool


class AttemptSummary(BaseModel):
    attempt_id: int
    student_id: int
    student_name: Optional[str] = None
    student_email: Optional[str] = None
    attempt_number: int
    status: str
    started_at: datetime
    submitted_at: Optional[datetime] = None
    percentage: Optional[float] = None
    grade: Optional[str] = None
    rank: Optional[int] = None


class PaginatedAttemptsResponse(BaseModel):
    items: List[AttemptSummary]
    total: int = Field(..., description="Total attempts matching the filter")
    page: int
    limit: int


class PublishResponse(BaseModel):
    test_id: int
    results_published: bool
    notified_count: int
