"""
Pytest configuration and shared fixtures for testing.
"""
import copy
import logging
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# Use SQLite for tests: path is relative to this file so the .db lands inside
# tests/ regardless of the working directory. Set before the app is imported
# so the application engine never points at PostgreSQL.
_TEST_DB = Path(__file__).parent / "test.db"
SQLALCHEMY_DATABASE_URL = f"sqlite:///{_TEST_DB}"
os.environ.setdefault("DATABASE_URL", SQLALCHEMY_DATABASE_URL)


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests that require a live PostgreSQL database",
    )


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    if config.getoption("--run-integration"):
        return
    skip_integration = pytest.mark.skip(reason="need --run-integration option to run")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app.core.exam.engine import ExamEngine  # noqa: E402
from app.core.exam.grading_service import GradingService  # noqa: E402
from app.core.exam.repository import AttemptRepository  # noqa: E402
from app.core.exam.stores import (  # noqa: E402
    SqlMembershipChecker,
    SqlQuestionBank,
    SqlStudentDirectory,
    SqlTestDefinitionStore,
)
from app.main import app  # noqa: E402
from app.models import (  # noqa: E402
    Base,
    CompanyMembership,
    MembershipRole,
    OnlineTest,
    Question,
    QuestionKind,
    Student,
    TestLifecycleStatus,
    TestMode,
    get_db,
)

engine = create_engine(
    SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False}
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

COMPANY_ID = 7
TEACHER_EMAIL = "teacher@school.example"
START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Clock callable handed to the engine; tests move time explicitly."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[tuple] = []

    def notify(self, student_id: int, kind: str, payload: Dict[str, Any]) -> None:
        if self.fail:
            raise RuntimeError("notification backend unavailable")
        self.sent.append((student_id, kind, payload))

    def kinds(self) -> List[str]:
        return [kind for _, kind, _ in self.sent]


# Canonical content per question type
QUESTION_CONTENTS: Dict[str, Dict[str, Any]] = {
    "mcq_single": {
        "type": "mcq_single",
        "text": "What is 2 + 2?",
        "options": [
            {"label": "A", "text": "3"},
            {"label": "B", "text": "4"},
            {"label": "C", "text": "5"},
            {"label": "D", "text": "22"},
        ],
        "correct_option": "B",
    },
    "mcq_multi": {
        "type": "mcq_multi",
        "text": "Which of these are prime?",
        "options": [
            {"label": "A", "text": "2"},
            {"label": "B", "text": "4"},
            {"label": "C", "text": "7"},
        ],
        "correct_options": ["A", "C"],
    },
    "true_false": {
        "type": "true_false",
        "text": "Water boils at 100 C at sea level.",
        "correct_answer": True,
    },
    "numeric": {
        "type": "numeric",
        "text": "Value of pi to two decimals?",
        "correct_value": 3.14,
        "tolerance": 0.01,
    },
    "fill_in_blank": {
        "type": "fill_in_blank",
        "text": "The capital of France is ____.",
        "correct_answer": "Paris",
    },
    "match_the_column": {
        "type": "match_the_column",
        "text": "Match the country to its capital.",
        "pairs": {"France": "Paris", "Japan": "Tokyo", "Kenya": "Nairobi", "Peru": "Lima"},
    },
    "short_answer": {
        "type": "short_answer",
        "text": "Explain photosynthesis in one paragraph.",
        "model_answer": "Plants turn light, water and CO2 into glucose and oxygen.",
    },
    "essay": {
        "type": "essay",
        "text": "Discuss the causes of the First World War.",
        "word_limit": 800,
    },
}


@pytest.fixture(scope="function")
def db_session():
    """
    Create a fresh database session for each test.
    """
    # Create all tables
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        # Drop all tables after test
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db_session):
    """
    Create a test client with database dependency override.

    Request sessions come from the same test.db file where db_session
    creates data.
    """

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def propagate_app_logs():
    """setup_logging stops "app" logs from reaching caplog's root handler."""
    app_logger = logging.getLogger("app")
    previous = app_logger.propagate
    app_logger.propagate = True
    yield
    app_logger.propagate = previous


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def exam_engine(db_session, clock, notifier) -> ExamEngine:
    """Engine wired to the SQL stores of the test database."""
    return ExamEngine(
        repository=AttemptRepository(db_session),
        question_bank=SqlQuestionBank(db_session),
        definitions=SqlTestDefinitionStore(db_session),
        notifier=notifier,
        clock=clock,
        directory=SqlStudentDirectory(db_session),
    )


@pytest.fixture
def grading_service(db_session, exam_engine) -> GradingService:
    return GradingService(
        exam_engine,
        membership=SqlMembershipChecker(db_session),
        directory=SqlStudentDirectory(db_session),
    )


@pytest.fixture
def make_student(db_session):
    """Factory creating students with unique emails."""
    created = []

    def _make(name: Optional[str] = None) -> Student:
        number = len(created) + 1
        student = Student(
            name=name or f"Student {number}",
            email=f"student{number}@school.example",
        )
        db_session.add(student)
        db_session.commit()
        db_session.refresh(student)
        created.append(student)
        return student

    return _make


@pytest.fixture
def make_question(db_session):
    """Factory creating question bank entries from QUESTION_CONTENTS or raw content."""

    def _make(
        question_type: str = "mcq_single",
        max_marks: float = 1.0,
        subject: Optional[str] = None,
        content: Optional[Dict[str, Any]] = None,
        explanation: Optional[str] = None,
        solution: Optional[str] = None,
    ) -> Question:
        content = content or QUESTION_CONTENTS[question_type]
        question = Question(
            company_id=COMPANY_ID,
            question_type=QuestionKind(content["type"]),
            content=content,
            max_marks=max_marks,
            subject=subject,
            explanation=explanation,
            solution=solution,
        )
        db_session.add(question)
        db_session.commit()
        db_session.refresh(question)
        return question

    return _make


@pytest.fixture
def make_test(db_session):
    """
    Factory creating online tests.

    `sections` is a list of question id lists, or of full section dicts when
    a section needs a time limit or instructions.
    """

    def _make(
        sections: List[Any],
        mode: TestMode = TestMode.CLASSROOM,
        status: TestLifecycleStatus = TestLifecycleStatus.LIVE,
        duration_minutes: int = 0,
        options: Optional[Dict[str, Any]] = None,
        **fields: Any,
    ) -> OnlineTest:
        section_dicts = []
        for index, section in enumerate(sections):
            if isinstance(section, dict):
                section_dicts.append({"name": f"Section {index + 1}", **section})
            else:
                section_dicts.append(
                    {"name": f"Section {index + 1}", "question_ids": list(section)}
                )
        test = OnlineTest(
            company_id=fields.pop("company_id", COMPANY_ID),
            title=fields.pop("title", "Unit test"),
            mode=mode,
            status=status,
            sections=section_dicts,
            duration_minutes=duration_minutes,
            options=options or {},
            total_questions=sum(len(s["question_ids"]) for s in section_dicts),
            **fields,
        )
        db_session.add(test)
        db_session.commit()
        db_session.refresh(test)
        return test

    return _make


@pytest.fixture
def make_member(db_session):
    def _make(
        email: str = TEACHER_EMAIL,
        role: MembershipRole = MembershipRole.TEACHER,
        company_id: int = COMPANY_ID,
        is_active: bool = True,
    ) -> CompanyMembership:
        membership = CompanyMembership(
            company_id=company_id, email=email, role=role, is_active=is_active
        )
        db_session.add(membership)
        db_session.commit()
        return membership

    return _make


@pytest.fixture
def teacher(make_member) -> str:
    """Email of an active teacher of COMPANY_ID."""
    make_member()
    return TEACHER_EMAIL


@pytest.fixture
def question_contents() -> Dict[str, Dict[str, Any]]:
    return copy.deepcopy(QUESTION_CONTENTS)


@pytest.fixture
def company_id() -> int:
    return COMPANY_ID
