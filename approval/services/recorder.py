"""
Evaluation recorder.

Persists an evaluation and its feedback as one logical write, then emits
best-effort metric samples. Metric failures are logged and never reach the
caller.
"""
import logging
import threading
from typing import List, Optional

from config import Settings, get_settings
from approval.models.domain import Evaluation, MetricSample, NewEvaluation
from approval.repositories.base import EvaluationStore, MetricsSink

logger = logging.getLogger(__name__)


class EvaluationRecorder:
    """Writes evaluations to the store and samples to the metrics sink."""

    def __init__(self, evaluation_store: EvaluationStore, metrics_sink: MetricsSink,
                 settings: Optional[Settings] = None):
        self.evaluation_store = evaluation_store
        self.metrics_sink = metrics_sink
        self.settings = settings or get_settings()

    def record(self, evaluation: NewEvaluation, feedback: str) -> Evaluation:
        """
        Create the evaluation and attach its feedback.

        If either step fails the staged record is rolled back and the error
        is re-raised, so no record ever exists without feedback.
        """
        try:
            staged = self.evaluation_store.create(evaluation)
            return self.evaluation_store.update_feedback(staged.id, feedback)
        except Exception:
            self.evaluation_store.rollback()
            raise

    def emit_metrics(self, user_id: str, chapter_id: str, score: float,
                     attempt_number: int,
                     time_spent: Optional[float] = None) -> Optional[threading.Thread]:
        """
        Emit accuracy, attempts and (when time_spent is set) speed samples.

        Background writes need a sink with its own session. When the sink
        has none, samples are written synchronously after the evaluation.

        Returns the writer thread when metrics are written in the background.
        """
        samples = [
            MetricSample.accuracy(user_id, chapter_id, score),
            MetricSample.attempts(user_id, chapter_id, attempt_number),
        ]
        if time_spent:
            samples.append(MetricSample.speed(user_id, chapter_id, time_spent))

        if self.settings.metrics_async:
            background_sink = self.metrics_sink.open_background()
            if background_sink is not None:
                thread = threading.Thread(
                    target=self._write_metrics_in_background,
                    args=(background_sink, samples),
                    daemon=True,
                )
                thread.start()
                return thread
            logger.debug("Metrics sink has no background session, writing synchronously")

        self._write_metrics(self.metrics_sink, samples)
        return None

    def _write_metrics(self, sink: MetricsSink, samples: List[MetricSample]) -> None:
        try:
            sink.create_bulk(samples)
        except Exception as e:
            logger.warning(
                f"Failed to record {len(samples)} approval metrics for user "
                f"{samples[0].user_id} chapter {samples[0].chapter_id}: {e}"
            )

    def _write_metrics_in_background(self, sink: MetricsSink,
                                     samples: List[MetricSample]) -> None:
        try:
            self._write_metrics(sink, samples)
        finally:
            sink.close()
