"""
Exam engine error taxonomy.

Every failure the engine surfaces to a caller is an ExamError subclass carrying
a stable machine-readable `code` and a `context` dict naming what was violated
(which attempt, which question, which bound). The API layer maps each code to
an HTTP status in app.core.error_responses.
"""
from typing import Any, Optional


class ExamError(Exception):
    """Base class for all exam engine errors."""

    code = "exam_error"

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.context = {k: v for k, v in context.items() if v is not None}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "detail": self.message, "context": self.context}


class InvalidState(ExamError):
    """Operation not valid for the current test or attempt status."""

    code = "invalid_state"


class AttemptLimitExceeded(ExamError):
    code = "attempt_limit_exceeded"

    def __init__(self, test_id: int, student_id: int, max_attempts: int):
        super().__init__(
            f"Maximum attempts ({max_attempts}) reached for this test",
            test_id=test_id,
            student_id=student_id,
            max_attempts=max_attempts,
        )


class AlreadyInProgress(ExamError):
    """An in-progress attempt exists. start_attempt resumes it instead of raising."""

    code = "already_in_progress"

    def __init__(self, attempt_id: int):
        super().__init__(
            "An attempt for this test is already in progress", attempt_id=attempt_id
        )
        self.attempt_id = attempt_id


class SectionMismatch(ExamError):
    code = "section_mismatch"

    def __init__(self, question_id: int, question_section: int, current_section: int):
        super().__init__(
            f"Question {question_id} belongs to section {question_section}, "
            f"but section {current_section} is active",
            question_id=question_id,
            question_section=question_section,
            current_section=current_section,
        )


class CannotSkipSections(ExamError):
    code = "cannot_skip_sections"

    def __init__(self, current_section: int, target_section: int):
        super().__init__(
            f"Cannot move from section {current_section} to section {target_section}; "
            "sections must be completed in order",
            current_section=current_section,
            target_section=target_section,
        )


class ReviewNotAllowed(ExamError):
    code = "review_not_allowed"

    def __init__(self, current_section: int, target_section: int):
        super().__init__(
            f"Section {target_section} is locked; going back is not allowed",
            current_section=current_section,
            target_section=target_section,
        )


class AttemptClosed(ExamError):
    """The attempt is no longer in progress."""

    code = "attempt_closed"

    def __init__(self, attempt_id: int, status: Optional[str] = None):
        super().__init__(
            "This attempt has already been submitted",
            attempt_id=attempt_id,
            status=status,
        )
        self.attempt_id = attempt_id
        self.status = status


class MarksOutOfRange(ExamError):
    code = "marks_out_of_range"

    def __init__(
        self,
        marks: float,
        max_marks: float,
        attempt_id: Optional[int] = None,
        question_id: Optional[int] = None,
    ):
        super().__init__(
            f"Marks must be between 0 and {max_marks}, got {marks}",
            marks=marks,
            min_marks=0,
            max_marks=max_marks,
            attempt_id=attempt_id,
            question_id=question_id,
        )


class IncompleteGrading(ExamError):
    code = "incomplete_grading"

    def __init__(self, attempt_id: int, ungraded_count: int):
        super().__init__(
            f"Attempt {attempt_id} still has ungraded subjective answers "
            f"({ungraded_count} ungraded answers in total)",
            attempt_id=attempt_id,
            ungraded_count=ungraded_count,
        )


class NotFound(ExamError):
    code = "not_found"

    def __init__(self, resource: str, **context: Any):
        super().__init__(f"{resource} not found", resource=resource, **context)


class InvalidAnswer(ExamError):
    """The answer payload does not fit the question type."""

    code = "invalid_answer"


class Forbidden(ExamError):
    code = "forbidden"


class NotAssigned(ExamError):
    code = "not_assigned"

    def __init__(self, test_id: int, student_id: int):
        super().__init__(
            "Student is not assigned to this test",
            test_id=test_id,
            student_id=student_id,
        )


class RepositoryError(ExamError):
    """Persistence failure that survived the transient retry."""

    code = "internal_error"

    def __init__(self, operation_name: str, original_error: Exception):
        super().__init__(f"Failed to {operation_name}", operation=operation_name)
        self.operation_name = operation_name
        self.original_error = original_error
