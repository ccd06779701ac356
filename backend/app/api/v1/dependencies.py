"""
Per-request construction of the exam engine and grading service.

Everything shares the request's database session; nothing is cached between
requests.
"""
from typing import Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from app.core.auth import get_company_scope
from app.core.config import settings
from app.core.exam.engine import ExamEngine
from app.core.exam.grading_service import GradingService
from app.core.exam.repository import AttemptRepository
from app.core.exam.stores import (
    LoggingNotifier,
    SqlMembershipChecker,
    SqlQuestionBank,
    SqlStudentDirectory,
    SqlTestDefinitionStore,
)
from app.core.exam.types import ExamSettings
from app.models import get_db


def get_exam_settings() -> ExamSettings:
    return ExamSettings.from_pairs(settings.GRADE_BANDS, settings.CORRECTNESS_THRESHOLD)


def get_exam_engine(
    db: Session = Depends(get_db),
    exam_settings: ExamSettings = Depends(get_exam_settings),
) -> ExamEngine:
    return ExamEngine(
        repository=AttemptRepository(db),
        question_bank=SqlQuestionBank(db),
        definitions=SqlTestDefinitionStore(db, settings.DEFAULT_PASSING_SCORE),
        notifier=LoggingNotifier(),
        settings=exam_settings,
        directory=SqlStudentDirectory(db),
    )


def get_grading_service(
    engine: ExamEngine = Depends(get_exam_engine),
    db: Session = Depends(get_db),
    company_scope: Optional[int] = Depends(get_company_scope),
) -> GradingService:
    return GradingService(
        engine,
        membership=SqlMembershipChecker(db),
        directory=SqlStudentDirectory(db),
        company_scope=company_scope,
    )
