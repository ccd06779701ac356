"""
Custom application metrics instrumentation for Prometheus.

This module provides custom metrics for monitoring exam activity:
- Attempts started, submitted (manual vs. automatic) and graded
- Answers recorded and sections auto-advanced by the deadline enforcer
- Exam error rates by error code
- Expired-attempt sweep outcomes

Usage:
    from app.observability import metrics

    metrics.record_attempt_started(mode="live_mock", resumed=False)
    metrics.record_attempt_submitted(automatic=True)
    metrics.record_error(error_type="AttemptClosed")
"""
import logging
from typing import Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)

PROMETHEUS_CONTENT_TYPE = CONTENT_TYPE_LATEST

# Grading finalization touches every attempt of a test, so buckets go up to a
# few thousand attempts.
_GRADED_BATCH_BUCKETS = (1, 5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000)


class ApplicationMetrics:
    """
    Application-level metrics backed by prometheus_client collectors.

    Collectors are registered once against a registry (the process-wide default
    unless one is supplied). Recording methods never raise.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry or REGISTRY
        self._attempts_started = Counter(
            "exam_attempts_started_total",
            "Attempts started or resumed",
            ["mode", "resumed"],
            registry=self.registry,
        )
        self._attempts_submitted = Counter(
            "exam_attempts_submitted_total",
            "Attempts closed by a student or by the deadline enforcer",
            ["trigger"],
            registry=self.registry,
        )
        self._attempts_graded = Counter(
            "exam_attempts_graded_total",
            "Attempts transitioned to graded",
            ["path"],
            registry=self.registry,
        )
        self._answers_recorded = Counter(
            "exam_answers_recorded_total",
            "Answer upserts accepted",
            registry=self.registry,
        )
        self._sections_auto_advanced = Counter(
            "exam_sections_auto_advanced_total",
            "Sections locked because their time limit passed",
            registry=self.registry,
        )
        self._errors = Counter(
            "exam_errors_total",
            "Exam errors surfaced to callers",
            ["error_type"],
            registry=self.registry,
        )
        self._sweep_runs = Counter(
            "exam_sweep_runs_total",
            "Expired-attempt sweep runs",
            ["outcome"],
            registry=self.registry,
        )
        self._finalize_batch = Histogram(
            "exam_finalize_batch_size",
            "Attempts graded per finalize call",
            buckets=_GRADED_BATCH_BUCKETS,
            registry=self.registry,
        )

    def record_attempt_started(self, mode: str, resumed: bool) -> None:
        self._safe(
            lambda: self._attempts_started.labels(
                mode=mode, resumed=str(resumed).lower()
            ).inc()
        )

    def record_attempt_submitted(self, automatic: bool) -> None:
        trigger = "auto" if automatic else "manual"
        self._safe(lambda: self._attempts_submitted.labels(trigger=trigger).inc())

    def record_attempts_graded(self, count: int, path: str) -> None:
        """
        Record attempts moved to graded.

        Args:
            count: Number of attempts graded
            path: "auto" for purely objective tests graded at submission,
                "finalize" for teacher finalization
        """
        if count <= 0:
            return
        self._safe(lambda: self._attempts_graded.labels(path=path).inc(count))
        if path == "finalize":
            self._safe(lambda: self._finalize_batch.observe(count))

    def record_answer(self) -> None:
        self._safe(self._answers_recorded.inc)

    def record_section_auto_advanced(self) -> None:
        self._safe(self._sections_auto_advanced.inc)

    def record_error(self, error_type: str) -> None:
        self._safe(lambda: self._errors.labels(error_type=error_type).inc())

    def record_sweep(self, outcome: str) -> None:
        self._safe(lambda: self._sweep_runs.labels(outcome=outcome).inc())

    def render(self) -> bytes:
        """Current metrics in Prometheus text exposition format."""
        return generate_latest(self.registry)

    @staticmethod
    def _safe(record) -> None:
        try:
            record()
        except Exception as e:
            logger.debug(f"Failed to record metric: {e}")


metrics = ApplicationMetrics()
