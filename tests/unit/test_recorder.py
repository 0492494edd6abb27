"""Unit tests for approval/services/recorder.py"""
from unittest.mock import MagicMock

import pytest

from config import Settings
from approval.exceptions import MetricsError, StoreError
from approval.models.domain import Evaluation, EvaluationStatus, NewEvaluation
from approval.repositories.base import EvaluationStore, MetricsSink
from approval.services.recorder import EvaluationRecorder


def _new_evaluation() -> NewEvaluation:
    return NewEvaluation(
        user_id="user-1",
        rule_id="rule-1",
        chapter_id="1",
        score=85,
        threshold=80,
        status=EvaluationStatus.APPROVED,
        attempt_number=1,
    )


def _recorder(metrics_async: bool = False):
    store = MagicMock(spec=EvaluationStore)
    sink = MagicMock(spec=MetricsSink)
    settings = Settings(_env_file=None, metrics_async=metrics_async)
    return EvaluationRecorder(store, sink, settings), store, sink


class TestRecord:
    def test_creates_then_attaches_feedback(self):
        recorder, store, _ = _recorder()
        staged = Evaluation(id="eval-1", **_new_evaluation().model_dump())
        store.create.return_value = staged
        store.update_feedback.return_value = staged.model_copy(update={"feedback": "Nice"})

        result = recorder.record(_new_evaluation(), "Nice")

        store.update_feedback.assert_called_once_with("eval-1", "Nice")
        assert result.feedback == "Nice"
        store.rollback.assert_not_called()

    def test_feedback_failure_rolls_back(self):
        recorder, store, _ = _recorder()
        store.create.return_value = Evaluation(id="eval-1", **_new_evaluation().model_dump())
        store.update_feedback.side_effect = StoreError("update feedback", RuntimeError("x"))

        with pytest.raises(StoreError):
            recorder.record(_new_evaluation(), "Nice")
        store.rollback.assert_called_once()

    def test_create_failure_rolls_back(self):
        recorder, store, _ = _recorder()
        store.create.side_effect = StoreError("create evaluation", RuntimeError("x"))

        with pytest.raises(StoreError):
            recorder.record(_new_evaluation(), "Nice")
        store.update_feedback.assert_not_called()
        store.rollback.assert_called_once()


class TestEmitMetrics:
    def test_accuracy_and_attempts(self):
        recorder, _, sink = _recorder()
        recorder.emit_metrics("user-1", "1", 85, 2)

        samples = sink.create_bulk.call_args[0][0]
        assert [(s.metric_type, s.value) for s in samples] == [("accuracy", 85), ("attempts", 2)]

    def test_speed_when_time_spent(self):
        recorder, _, sink = _recorder()
        recorder.emit_metrics("user-1", "1", 85, 1, time_spent=240)

        samples = sink.create_bulk.call_args[0][0]
        assert samples[-1].metric_type == "speed"
        assert samples[-1].value == 240

    def test_zero_time_spent_emits_no_speed(self):
        recorder, _, sink = _recorder()
        recorder.emit_metrics("user-1", "1", 85, 1, time_spent=0)
        assert len(sink.create_bulk.call_args[0][0]) == 2

    def test_sink_failure_is_swallowed(self, caplog):
        recorder, _, sink = _recorder()
        sink.create_bulk.side_effect = MetricsError(RuntimeError("sink down"))

        recorder.emit_metrics("user-1", "1", 85, 1)

        assert "Failed to record" in caplog.text

    def test_background_write_uses_its_own_sink(self):
        recorder, _, sink = _recorder(metrics_async=True)
        background = MagicMock(spec=MetricsSink)
        sink.open_background.return_value = background

        thread = recorder.emit_metrics("user-1", "1", 85, 1)
        thread.join(timeout=5)

        background.create_bulk.assert_called_once()
        background.close.assert_called_once()
        sink.create_bulk.assert_not_called()

    def test_background_failure_is_swallowed(self):
        recorder, _, sink = _recorder(metrics_async=True)
        background = MagicMock(spec=MetricsSink)
        background.create_bulk.side_effect = RuntimeError("sink down")
        sink.open_background.return_value = background

        thread = recorder.emit_metrics("user-1", "1", 85, 1)
        thread.join(timeout=5)

        assert not thread.is_alive()
        background.close.assert_called_once()

    def test_without_background_sink_writes_synchronously(self):
        recorder, _, sink = _recorder(metrics_async=True)
        sink.open_background.return_value = None

        assert recorder.emit_metrics("user-1", "1", 85, 1) is None
        sink.create_bulk.assert_called_once()
        sink.close.assert_not_called()
