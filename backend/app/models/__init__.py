"""
Models package for the exam engine backend.
"""
from .base import Base, engine, SessionLocal, get_db
from .models import (
    Student,
    ClassEnrollment,
    CompanyMembership,
    Question,
    OnlineTest,
    TestAttempt,
    AttemptAnswer,
    QuestionKind,
    TestMode,
    TestLifecycleStatus,
    AttemptStatus,
    MembershipRole,
)

__all__ = [
    "Base",
    "engine",
    "SessionLocal",
    "get_db",
    "Student",
    "ClassEnrollment",
    "CompanyMembership",
    "Question",
    "OnlineTest",
    "TestAttempt",
    "AttemptAnswer",
    "QuestionKind",
    "TestMode",
    "TestLifecycleStatus",
    "AttemptStatus",
    "MembershipRole",
]
