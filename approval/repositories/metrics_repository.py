"""Approval metrics data access layer."""
import logging
from typing import Callable, List, Optional, Union
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session as DBSession, scoped_session

from approval.exceptions import MetricsError
from approval.models.domain import MetricSample
from approval.models.entities import ApprovalMetric
from approval.utils import dump_json
from .base import MetricsSink
from .session import SessionRepository

logger = logging.getLogger(__name__)


class MetricsRepository(SessionRepository, MetricsSink):
    """Writes telemetry samples to approval_metrics."""

    def __init__(self, db: Union[DBSession, scoped_session],
                 session_factory: Optional[Callable[[], DBSession]] = None):
        super().__init__(db)
        self.session_factory = session_factory
        self._owns_session = False

    def create_bulk(self, samples: List[MetricSample]) -> None:
        """
        Insert samples in one transaction.

        Raises:
            MetricsError: If the write fails; nothing is kept in that case
        """
        if not samples:
            return
        rows = [
            ApprovalMetric(
                id=str(uuid4()),
                user_id=sample.user_id,
                chapter_id=sample.chapter_id,
                metric_type=sample.metric_type,
                value=sample.value,
                unit=sample.unit,
                description=sample.description,
                additional_data_json=dump_json(sample.additional_data),
                recorded_at=sample.recorded_at,
            )
            for sample in samples
        ]
        try:
            self.db.add_all(rows)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise MetricsError(e) from e

    def open_background(self) -> Optional["MetricsRepository"]:
        """
        Sink for a background thread, never sharing the caller's session.

        A session factory yields a fresh session owned by the returned sink;
        a scoped_session already gives each thread its own. A plain session
        cannot be handed to another thread, so None is returned.
        """
        if self.session_factory is not None:
            sink = MetricsRepository(self.session_factory())
            sink._owns_session = True
            return sink
        if isinstance(self.db, scoped_session):
            return self
        return None

    def close(self) -> None:
        if self._owns_session:
            self.db.close()
        else:
            super().close()
