"""
Expired-attempt sweep.

Lazy enforcement closes an expired attempt the next time anyone touches it.
The sweep covers attempts nobody touches again (a student who closed the tab):
it finds in-progress attempts whose attempt or section deadline has passed and
runs the same enforcement on each. Enforcement is idempotent, so overlapping
sweeps and concurrent student requests are harmless.
"""
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from app.core.exam.engine import ExamEngine
from app.core.exam.errors import ExamError
from app.observability import metrics

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 500


@dataclass
class SweepReport:
    examined: int = 0
    auto_submitted: int = 0
    sections_advanced: int = 0
    unchanged: int = 0
    failed: int = 0

    @property
    def outcome(self) -> str:
        if self.failed == 0:
            return "success"
        if self.failed < self.examined:
            return "partial"
        return "failed"

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def sweep_expired_attempts(
    engine: ExamEngine,
    now: Optional[datetime] = None,
    limit: int = DEFAULT_BATCH_SIZE,
) -> SweepReport:
    """Enforce deadlines on up to `limit` overdue in-progress attempts."""
    now = now or engine.clock()
    report = SweepReport()
    due = engine.repository.list_due(now, limit)
    logger.info(f"Sweep found {len(due)} overdue attempts")

    for attempt_id in [attempt.id for attempt in due]:
        report.examined += 1
        try:
            outcome = engine.enforce_attempt(attempt_id)
        except (ExamError, SQLAlchemyError) as e:
            report.failed += 1
            engine.repository.db.rollback()
            logger.error(
                f"Failed to enforce deadlines on attempt {attempt_id}: {e}",
                exc_info=True,
                extra={"attempt_id": attempt_id},
            )
            continue

        if outcome == "auto_submitted":
            report.auto_submitted += 1
        elif outcome == "section_advanced":
            report.sections_advanced += 1
        else:
            report.unchanged += 1

    metrics.record_sweep(report.outcome)
    logger.info(f"Sweep finished: {report.to_dict()}")
    return report
