"""
Cron job: auto-submit expired exam attempts.

Runs every minute. Finds in-progress attempts whose attempt deadline or timed
section deadline has passed and enforces it: expired sections are locked and
the next section started, expired attempts are auto-submitted and graded.

Exit codes:
    0 - Success (including nothing to do)
    1 - Some attempts could not be processed
    2 - Fatal error (imports, database, or every attempt failed)
"""
import json
import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("sweep_expired_attempts_cron")


def main() -> int:
    # Defer imports so config/import failures produce exit code 2
    try:
        from app.core.config import settings
        from app.core.datetime_utils import utc_now
        from app.core.exam.engine import ExamEngine
        from app.core.exam.repository import AttemptRepository
        from app.core.exam.stores import (
            LoggingNotifier,
            SqlQuestionBank,
            SqlTestDefinitionStore,
        )
        from app.core.exam.sweeper import sweep_expired_attempts
        from app.core.exam.types import ExamSettings
        from app.models.base import SessionLocal
    except Exception as exc:
        logger.error("Failed to import required modules: %s", exc)
        return 2

    try:
        db = SessionLocal()
    except Exception as exc:
        logger.error("Failed to create database session: %s", exc)
        return 2

    try:
        engine = ExamEngine(
            repository=AttemptRepository(db),
            question_bank=SqlQuestionBank(db),
            definitions=SqlTestDefinitionStore(db, settings.DEFAULT_PASSING_SCORE),
            notifier=LoggingNotifier(),
            settings=ExamSettings.from_pairs(
                settings.GRADE_BANDS, settings.CORRECTNESS_THRESHOLD
            ),
        )
        now = utc_now()
        report = sweep_expired_attempts(engine, now=now, limit=settings.SWEEP_BATCH_SIZE)

        heartbeat = {
            "type": "HEARTBEAT",
            "service": "sweep_expired_attempts_cron",
            "outcome": report.outcome,
            **report.to_dict(),
            "swept_at": now.isoformat(),
        }
        print(json.dumps(heartbeat), flush=True)

        if report.outcome == "success":
            return 0
        if report.outcome == "partial":
            return 1
        return 2

    except Exception as exc:
        logger.error("Unexpected error during expired-attempt sweep: %s", exc)
        return 2
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
