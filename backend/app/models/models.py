"""
Database models for the exam engine.

`test_attempts` and `attempt_answers` are owned by the engine. The remaining
tables back the default SQL implementations of the collaborator ports
(question bank, test definition store, membership check, student directory).
"""
from sqlalchemy import (
    JSON,
    Column,
    Integer,
    String,
    Boolean,
    DateTime,
    ForeignKey,
    Text,
    Enum,
    Float,
    UniqueConstraint,
    Index,
    CheckConstraint,
    text,
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
import enum

from .base import Base


def _values(enum_cls):
    return [member.value for member in enum_cls]


def _enum_column_type(enum_cls, length: int = 32) -> Enum:
    """Store enum values (not member names) so raw SQL filters read naturally."""
    return Enum(
        enum_cls,
        values_callable=_values,
        native_enum=False,
        length=length,
        validate_strings=True,
    )


def _now() -> datetime:
    return datetime.now(timezone.utc)


class QuestionKind(str, enum.Enum):
    """Question type enumeration."""

    MCQ_SINGLE = "mcq_single"
    MCQ_MULTI = "mcq_multi"
    TRUE_FALSE = "true_false"
    NUMERIC = "numeric"
    FILL_IN_BLANK = "fill_in_blank"
    MATCH_THE_COLUMN = "match_the_column"
    SHORT_ANSWER = "short_answer"
    LONG_ANSWER = "long_answer"
    ESSAY = "essay"
    CREATIVE_WRITING = "creative_writing"

    @property
    def is_objective(self) -> bool:
        return self in OBJECTIVE_KINDS

    @property
    def has_options(self) -> bool:
        return self in (QuestionKind.MCQ_SINGLE, QuestionKind.MCQ_MULTI)


OBJECTIVE_KINDS = frozenset(
    {
        QuestionKind.MCQ_SINGLE,
        QuestionKind.MCQ_MULTI,
        QuestionKind.TRUE_FALSE,
        QuestionKind.NUMERIC,
        QuestionKind.FILL_IN_BLANK,
        QuestionKind.MATCH_THE_COLUMN,
    }
)
SUBJECTIVE_KINDS = frozenset(set(QuestionKind) - OBJECTIVE_KINDS)


class TestMode(str, enum.Enum):
    """Delivery mode of an online test."""

    LIVE_MOCK = "live_mock"
    ANYTIME_MOCK = "anytime_mock"
    PRACTICE = "practice"
    CLASSROOM = "classroom"
    SECTION_TIMED = "section_timed"


class TestLifecycleStatus(str, enum.Enum):
    """Publication status of an online test."""

    DRAFT = "draft"
    SCHEDULED = "scheduled"
    LIVE = "live"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class AttemptStatus(str, enum.Enum):
    """Attempt lifecycle: in_progress -> submitted | auto_submitted -> graded."""

    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    AUTO_SUBMITTED = "auto_submitted"
    GRADED = "graded"


CLOSED_PENDING_GRADING = (AttemptStatus.SUBMITTED, AttemptStatus.AUTO_SUBMITTED)


class MembershipRole(str, enum.Enum):
    """Role of a user within a company."""

    OWNER = "owner"
    ADMIN = "admin"
    TEACHER = "teacher"
    STUDENT = "student"


MANAGER_ROLES = (MembershipRole.OWNER, MembershipRole.ADMIN, MembershipRole.TEACHER)


class Student(Base):
    """Student directory entry used for result exports and notifications."""

    __tablename__ = "students"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True, index=True)
    created_at = Column(DateTime(timezone=True), default=_now, nullable=False)

    attempts = relationship("TestAttempt", back_populates="student")


class ClassEnrollment(Base):
    """Membership of a student in a class; tests can be assigned to whole classes."""

    __tablename__ = "class_enrollments"

    id = Column(Integer, primary_key=True, index=True)
    class_id = Column(Integer, nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("students.id"), nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("class_id", "student_id", name="uq_class_enrollments_student"),
    )


class CompanyMembership(Base):
    """Membership of an email address in a company with a role."""

    __tablename__ = "company_memberships"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, nullable=False, index=True)
    email = Column(String(255), nullable=False)
    role = Column(_enum_column_type(MembershipRole), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    __table_args__ = (
        UniqueConstraint("company_id", "email", name="uq_company_memberships_email"),
    )


class Question(Base):
    """Question bank entry.

    `content` holds the type-specific payload (options, correct answer data)
    validated by app.schemas.questions.
    """

    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, nullable=True, index=True)
    question_type = Column(_enum_column_type(QuestionKind), nullable=False)
    content = Column(JSON, nullable=False)
    max_marks = Column(Float, nullable=False, default=1.0)
    subject = Column(String(100), nullable=True)
    explanation = Column(Text, nullable=True)
    solution = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_now, nullable=False)

    __table_args__ = (
        CheckConstraint("max_marks >= 0", name="ck_questions_max_marks_non_negative"),
    )


class OnlineTest(Base):
    """Online test definition: sections, scheduling window and options."""

    __tablename__ = "online_tests"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, nullable=False, index=True)
    title = Column(String(255), nullable=False)
    mode = Column(_enum_column_type(TestMode), nullable=False)
    status = Column(
        _enum_column_type(TestLifecycleStatus),
        default=TestLifecycleStatus.DRAFT,
        nullable=False,
        index=True,
    )
    # [{name, question_ids, time_limit, instructions, can_go_back}, ...]
    sections = Column(JSON, nullable=False, default=list)

    # Scheduling window
    start_time = Column(DateTime(timezone=True), nullable=True)
    end_time = Column(DateTime(timezone=True), nullable=True)
    available_from = Column(DateTime(timezone=True), nullable=True)
    duration_minutes = Column(Integer, nullable=False, default=0)  # 0 = untimed

    # {randomize_questions, randomize_options, instant_feedback, allow_review,
    #  show_results_after_completion, max_attempts, passing_score, grade_bands}
    options = Column(JSON, nullable=False, default=dict)

    is_public = Column(Boolean, default=True, nullable=False)
    assigned_student_ids = Column(JSON, nullable=False, default=list)
    assigned_class_ids = Column(JSON, nullable=False, default=list)

    total_marks = Column(Float, nullable=False, default=0)
    total_questions = Column(Integer, nullable=False, default=0)
    results_published = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_now, nullable=False)

    attempts = relationship("TestAttempt", back_populates="test")


class TestAttempt(Base):
    """One student's pass through a test.

    Status only moves forward; every transition is a conditional UPDATE
    issued by app.core.exam.repository.
    """

    __tablename__ = "test_attempts"

    id = Column(Integer, primary_key=True, index=True)
    test_id = Column(
        Integer, ForeignKey("online_tests.id", ondelete="RESTRICT"), nullable=False
    )
    student_id = Column(
        Integer, ForeignKey("students.id", ondelete="RESTRICT"), nullable=False
    )
    attempt_number = Column(Integer, nullable=False)
    status = Column(
        _enum_column_type(AttemptStatus),
        default=AttemptStatus.IN_PROGRESS,
        nullable=False,
        index=True,
    )
    started_at = Column(DateTime(timezone=True), nullable=False)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    deadline_at = Column(DateTime(timezone=True), nullable=True, index=True)
    # Deadline of the active timed section; cleared when the attempt closes
    section_deadline_at = Column(DateTime(timezone=True), nullable=True, index=True)

    # Frozen at start; never rewritten
    question_order = Column(JSON, nullable=False)
    option_orders = Column(JSON, nullable=False, default=dict)

    current_section_index = Column(Integer, nullable=False, default=0)
    # [{started_at, completed_at, time_spent, is_locked}, ...] (ISO timestamps)
    sections = Column(JSON, nullable=False, default=list)

    result = Column(JSON(none_as_null=True), nullable=True)
    graded_by = Column(String(255), nullable=True)
    graded_at = Column(DateTime(timezone=True), nullable=True)

    # Bumped by every conditional update
    version = Column(Integer, nullable=False, default=1)

    test = relationship("OnlineTest", back_populates="attempts")
    student = relationship("Student", back_populates="attempts")
    answers = relationship(
        "AttemptAnswer",
        back_populates="attempt",
        order_by="AttemptAnswer.id",
    )

    __table_args__ = (
        UniqueConstraint(
            "test_id",
            "student_id",
            "attempt_number",
            name="uq_test_attempts_test_student_number",
        ),
        # At most one in-progress attempt per student per test
        Index(
            "uq_test_attempts_one_in_progress",
            "test_id",
            "student_id",
            unique=True,
            postgresql_where=text("status = 'in_progress'"),
            sqlite_where=text("status = 'in_progress'"),
        ),
        Index("ix_test_attempts_test_status", "test_id", "status"),
        CheckConstraint(
            "(status = 'graded' AND result IS NOT NULL) "
            "OR (status <> 'graded' AND result IS NULL)",
            name="ck_test_attempts_result_iff_graded",
        ),
        CheckConstraint("attempt_number >= 1", name="ck_test_attempts_number_positive"),
    )


class AttemptAnswer(Base):
    """A student's answer to one question within an attempt (one row per question)."""

    __tablename__ = "attempt_answers"

    id = Column(Integer, primary_key=True, index=True)
    attempt_id = Column(
        Integer, ForeignKey("test_attempts.id", ondelete="CASCADE"), nullable=False
    )
    question_id = Column(Integer, nullable=False)
    question_type = Column(_enum_column_type(QuestionKind), nullable=False)
    section_index = Column(Integer, nullable=False, default=0)
    answer = Column(JSON(none_as_null=True), nullable=True)
    flagged = Column(Boolean, default=False, nullable=False)

    # Grading (null until graded)
    is_correct = Column(Boolean, nullable=True)
    marks_awarded = Column(Float, nullable=True)
    max_marks = Column(Float, nullable=False)
    feedback = Column(Text, nullable=True)
    graded_by = Column(String(255), nullable=True)
    graded_at = Column(DateTime(timezone=True), nullable=True)

    answered_at = Column(DateTime(timezone=True), nullable=True)

    attempt = relationship("TestAttempt", back_populates="answers")

    __table_args__ = (
        UniqueConstraint(
            "attempt_id", "question_id", name="uq_attempt_answers_attempt_question"
        ),
        CheckConstraint(
            "marks_awarded IS NULL OR (marks_awarded >= 0 AND marks_awarded <= max_marks)",
            name="ck_attempt_answers_marks_in_range",
        ),
    )
