"""
Unit tests for ApplicationMetrics methods in app.observability.

Each test uses its own CollectorRegistry so counters start from zero and
never clash with the process-wide registry used by the app.
"""

import pytest
from prometheus_client import CollectorRegistry

from app.observability import ApplicationMetrics


@pytest.fixture
def registry():
    return CollectorRegistry()


@pytest.fixture
def app_metrics(registry):
    return ApplicationMetrics(registry=registry)


def sample(registry, name, labels=None):
    return registry.get_sample_value(name, labels or {})


class TestAttemptCounters:
    def test_record_attempt_started_labels_mode_and_resume(self, app_metrics, registry):
        app_metrics.record_attempt_started(mode="live_mock", resumed=False)
        app_metrics.record_attempt_started(mode="live_mock", resumed=True)
        app_metrics.record_attempt_started(mode="live_mock", resumed=True)

        assert sample(
            registry, "exam_attempts_started_total", {"mode": "live_mock", "resumed": "false"}
        ) == 1
        assert sample(
            registry, "exam_attempts_started_total", {"mode": "live_mock", "resumed": "true"}
        ) == 2

    def test_record_attempt_submitted_distinguishes_trigger(self, app_metrics, registry):
        app_metrics.record_attempt_submitted(automatic=True)
        app_metrics.record_attempt_submitted(automatic=False)

        assert sample(registry, "exam_attempts_submitted_total", {"trigger": "auto"}) == 1
        assert sample(registry, "exam_attempts_submitted_total", {"trigger": "manual"}) == 1

    def test_record_answer_and_section_advance(self, app_metrics, registry):
        app_metrics.record_answer()
        app_metrics.record_answer()
        app_metrics.record_section_auto_advanced()

        assert sample(registry, "exam_answers_recorded_total") == 2
        assert sample(registry, "exam_sections_auto_advanced_total") == 1


class TestRecordAttemptsGraded:
    """Unit tests for record_attempts_graded()."""

    def test_finalize_path_observes_batch_size(self, app_metrics, registry):
        app_metrics.record_attempts_graded(12, path="finalize")

        assert sample(registry, "exam_attempts_graded_total", {"path": "finalize"}) == 12
        assert sample(registry, "exam_finalize_batch_size_count") == 1
        assert sample(registry, "exam_finalize_batch_size_sum") == 12

    def test_auto_path_does_not_touch_histogram(self, app_metrics, registry):
        app_metrics.record_attempts_graded(1, path="auto")

        assert sample(registry, "exam_attempts_graded_total", {"path": "auto"}) == 1
        assert sample(registry, "exam_finalize_batch_size_count") == 0

    def test_zero_count_is_ignored(self, app_metrics, registry):
        app_metrics.record_attempts_graded(0, path="finalize")

        assert sample(registry, "exam_attempts_graded_total", {"path": "finalize"}) is None


class TestErrorsAndSweeps:
    def test_record_error(self, app_metrics, registry):
        app_metrics.record_error(error_type="AttemptClosed")

        assert sample(registry, "exam_errors_total", {"error_type": "AttemptClosed"}) == 1

    def test_record_sweep(self, app_metrics, registry):
        app_metrics.record_sweep("partial")

        assert sample(registry, "exam_sweep_runs_total", {"outcome": "partial"}) == 1


class TestRender:
    def test_render_returns_exposition_text(self, app_metrics):
        app_metrics.record_answer()

        body = app_metrics.render()

        assert isinstance(body, bytes)
        assert b"exam_answers_recorded_total 1.0" in body

    def test_recording_never_raises(self, app_metrics):
        """A broken collector is logged and ignored."""
        app_metrics._answers_recorded = None

        app_metrics.record_answer()
