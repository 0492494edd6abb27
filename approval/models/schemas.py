"""Pydantic request/response schemas for the engine's public operations."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from approval.constants import (
    DEFAULT_ERROR_CARRYOVER,
    DEFAULT_HISTORY_LIMIT,
    DEFAULT_MAX_ATTEMPTS,
)
from .domain import Evaluation, EvaluationStatus, Rule


class EvaluateRequest(BaseModel):
    """A learner's score submission for a chapter.

    Range checks live in the guard functions, not here, so that a bad score
    surfaces as an ApprovalValidationError.
    """
    user_id: str
    chapter_id: str
    score: float
    time_spent: Optional[float] = None  # seconds
    additional_data: Optional[Dict[str, Any]] = None


class EvaluateResponse(BaseModel):
    """Complete decision payload for one evaluation."""
    evaluation_id: str
    status: EvaluationStatus
    score: float
    adjusted_score: float
    threshold: float
    attempt_number: int
    errors_carried_over: int
    feedback: str
    can_retry: bool
    max_attempts: int


class BatchEvaluationError(BaseModel):
    """A request from a batch that could not be evaluated."""
    request: EvaluateRequest
    error: str
    error_type: str


class BatchEvaluateResponse(BaseModel):
    results: List[EvaluateResponse] = Field(default_factory=list)
    errors: List[BatchEvaluationError] = Field(default_factory=list)


class ConfigureRuleRequest(BaseModel):
    """Create a rule, or update the active rule already covering the same scope."""
    chapter_id: Optional[str] = None  # None = global rule
    min_score_threshold: float
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    allow_error_carryover: bool = DEFAULT_ERROR_CARRYOVER
    is_active: bool = True
    special_requirements: Optional[Dict[str, Any]] = None
    description: Optional[str] = None


class UpdateRuleRequest(BaseModel):
    """Partial rule update. Only explicitly provided fields are applied."""
    min_score_threshold: Optional[float] = None
    max_attempts: Optional[int] = None
    allow_error_carryover: Optional[bool] = None
    is_active: Optional[bool] = None
    special_requirements: Optional[Dict[str, Any]] = None
    description: Optional[str] = None


class RuleResponse(BaseModel):
    """Rule as shown to administrators."""
    id: str
    chapter_id: Optional[str] = None
    min_score_threshold: float
    max_attempts: int
    allow_error_carryover: bool
    is_active: bool
    special_requirements: Optional[Dict[str, Any]] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_rule(cls, rule: Rule) -> "RuleResponse":
        return cls(
            id=rule.id,
            chapter_id=rule.chapter_id,
            min_score_threshold=rule.min_score_threshold,
            max_attempts=rule.max_attempts,
            allow_error_carryover=rule.allow_error_carryover,
            is_active=rule.is_active,
            special_requirements=rule.metadata,
            description=rule.description,
            created_at=rule.created_at,
            updated_at=rule.updated_at,
        )


class DeleteRuleResult(BaseModel):
    rule_id: str
    deactivated: bool  # True when the rule was kept because evaluations reference it


class EvaluationHistoryRequest(BaseModel):
    user_id: str
    chapter_id: Optional[str] = None
    status: Optional[EvaluationStatus] = None
    limit: int = DEFAULT_HISTORY_LIMIT
    offset: int = 0


class EvaluationHistoryItem(BaseModel):
    id: str
    chapter_id: str
    score: float
    adjusted_score: float
    threshold: float
    status: EvaluationStatus
    attempt_number: int
    errors_from_previous_attempts: int
    feedback: Optional[str] = None
    evaluated_at: datetime
    evaluation_data: Optional[Dict[str, Any]] = None

    @classmethod
    def from_evaluation(cls, evaluation: Evaluation) -> "EvaluationHistoryItem":
        return cls(
            id=evaluation.id,
            chapter_id=evaluation.chapter_id,
            score=evaluation.score,
            adjusted_score=evaluation.adjusted_score,
            threshold=evaluation.threshold,
            status=evaluation.status,
            attempt_number=evaluation.attempt_number,
            errors_from_previous_attempts=evaluation.errors_from_previous_attempts,
            feedback=evaluation.feedback,
            evaluated_at=evaluation.evaluated_at,
            evaluation_data=evaluation.evaluation_data,
        )


class EvaluationHistoryResponse(BaseModel):
    evaluations: List[EvaluationHistoryItem]
    total: int
    has_more: bool


class ChapterStatsResponse(BaseModel):
    chapter_id: str
    total_evaluations: int
    approved_count: int
    failed_count: int
    pending_count: int = 0
    average_score: float
    average_adjusted_score: float
    approval_rate: float  # percentage
    average_attempts: float


class UserApprovalSummary(BaseModel):
    user_id: str
    total_evaluations: int
    approved_evaluations: int
    approval_rate: float  # percentage
    average_score: float
    chapters_completed: List[str]
    current_streak: int
    last_evaluation: Optional[EvaluationHistoryItem] = None


class AttemptEligibility(BaseModel):
    can_attempt: bool
    reason: Optional[str] = None
    attempts_remaining: Optional[int] = None
