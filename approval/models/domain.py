"""Domain models for business logic."""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from approval.constants import METRIC_ACCURACY, METRIC_ATTEMPTS, METRIC_SPEED


class EvaluationStatus(str, Enum):
    """Outcome of an evaluation attempt.

    PENDING is kept for records created by other workflows; the decision
    engine only ever produces APPROVED or REJECTED.
    """
    APPROVED = "approved"
    REJECTED = "rejected"
    PENDING = "pending"


class Rule(BaseModel):
    """Approval rule for a chapter, or a global rule when chapter_id is None."""
    id: str
    chapter_id: Optional[str] = None
    min_score_threshold: float
    max_attempts: int = 1
    allow_error_carryover: bool = False
    is_active: bool = True
    metadata: Optional[Dict[str, Any]] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class NewEvaluation(BaseModel):
    """Everything the recorder knows about an attempt before it is stored."""
    user_id: str
    rule_id: str
    chapter_id: str
    score: float
    threshold: float
    status: EvaluationStatus
    attempt_number: int = Field(..., ge=1)
    errors_from_previous_attempts: int = Field(0, ge=0)
    evaluation_data: Optional[Dict[str, Any]] = None
    evaluated_at: datetime = Field(default_factory=datetime.utcnow)


class Evaluation(NewEvaluation):
    """Stored evaluation attempt."""
    id: str
    feedback: Optional[str] = None

    @property
    def adjusted_score(self) -> float:
        return max(0, self.score - self.errors_from_previous_attempts)

    def is_approved(self) -> bool:
        return self.status == EvaluationStatus.APPROVED

    def is_rejected(self) -> bool:
        return self.status == EvaluationStatus.REJECTED


class ChapterEvaluationStats(BaseModel):
    """Aggregate over every evaluation recorded for a chapter."""
    total_evaluations: int = 0
    approved_count: int = 0
    rejected_count: int = 0
    average_score: float = 0.0
    average_adjusted_score: float = 0.0
    average_attempts: float = 0.0


class MetricSample(BaseModel):
    """Telemetry sample handed to a metrics sink."""
    user_id: str
    chapter_id: str
    metric_type: str
    value: float
    unit: Optional[str] = None
    description: Optional[str] = None
    additional_data: Optional[Dict[str, Any]] = None
    recorded_at: datetime = Field(default_factory=datetime.utcnow)

    @classmethod
    def accuracy(cls, user_id: str, chapter_id: str, score: float) -> "MetricSample":
        return cls(
            user_id=user_id,
            chapter_id=chapter_id,
            metric_type=METRIC_ACCURACY,
            value=score,
            unit="percentage",
            description="User accuracy percentage for chapter",
        )

    @classmethod
    def attempts(cls, user_id: str, chapter_id: str, attempt_number: int) -> "MetricSample":
        return cls(
            user_id=user_id,
            chapter_id=chapter_id,
            metric_type=METRIC_ATTEMPTS,
            value=attempt_number,
            unit="count",
            description="Number of attempts for chapter completion",
        )

    @classmethod
    def speed(cls, user_id: str, chapter_id: str, time_spent: float) -> "MetricSample":
        return cls(
            user_id=user_id,
            chapter_id=chapter_id,
            metric_type=METRIC_SPEED,
            value=time_spent,
            unit="seconds",
            description="Time spent completing chapter",
        )
