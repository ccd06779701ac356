"""
Collaborator interfaces consumed by the exam engine.

The engine never looks these up itself; they are passed in at construction.
SQL-backed implementations live in app.core.exam.stores.
"""
from typing import Any, Dict, List, Optional, Protocol, Sequence

from app.core.exam.types import StudentContact, TestDefinition
from app.schemas.questions import QuestionSnapshot


class QuestionBank(Protocol):
    def get_questions_by_ids(self, ids: Sequence[int]) -> List[QuestionSnapshot]:
        """Return snapshots for the ids that exist; unknown ids are omitted."""
        ...


class TestDefinitionStore(Protocol):
    def get_test_definition(self, test_id: int) -> Optional[TestDefinition]: ...

    def count_student_attempts(self, test_id: int, student_id: int) -> int: ...

    def mark_results_published(self, test_id: int) -> None: ...


class MembershipChecker(Protocol):
    def is_manager_of(self, company_id: int, email: str) -> bool: ...


class Notifier(Protocol):
    def notify(self, student_id: int, kind: str, payload: Dict[str, Any]) -> None:
        """Deliver a notification. Callers treat failures as non-fatal."""
        ...


class StudentDirectory(Protocol):
    def get_students(self, ids: Sequence[int]) -> Dict[int, StudentContact]: ...

    def is_in_any_class(self, student_id: int, class_ids: Sequence[int]) -> bool: ...
