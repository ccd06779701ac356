"""
Online examination engine.

Submodules:
- engine: per-student attempt lifecycle (start, answer, sections, submit)
- grading_service: teacher grading queue, finalization, ranks and exports
- sweeper: batch enforcement of expired deadlines
- repository / stores: persistence and the default port implementations

Only the error taxonomy and domain types are re-exported here; import the
service modules directly.
"""
from app.core.exam.errors import (
    AlreadyInProgress,
    AttemptClosed,
    AttemptLimitExceeded,
    CannotSkipSections,
    ExamError,
    Forbidden,
    IncompleteGrading,
    InvalidAnswer,
    InvalidState,
    MarksOutOfRange,
    NotAssigned,
    NotFound,
    RepositoryError,
    ReviewNotAllowed,
    SectionMismatch,
)
from app.core.exam.types import (
    AttemptResult,
    ExamSettings,
    GradeBand,
    TestDefinition,
)

__all__ = [
    "AlreadyInProgress",
    "AttemptClosed",
    "AttemptLimitExceeded",
    "AttemptResult",
    "CannotSkipSections",
    "ExamError",
    "ExamSettings",
    "Forbidden",
    "GradeBand",
    "IncompleteGrading",
    "InvalidAnswer",
    "InvalidState",
    "MarksOutOfRange",
    "NotAssigned",
    "NotFound",
    "RepositoryError",
    "ReviewNotAllowed",
    "SectionMismatch",
    "TestDefinition",
]
