"""Approval models - ORM entities, domain records and API schemas."""
from .domain import (
    EvaluationStatus,
    Rule,
    NewEvaluation,
    Evaluation,
    ChapterEvaluationStats,
    MetricSample,
)
from .schemas import (
    EvaluateRequest,
    EvaluateResponse,
    BatchEvaluationError,
    BatchEvaluateResponse,
    ConfigureRuleRequest,
    UpdateRuleRequest,
    RuleResponse,
    DeleteRuleResult,
    EvaluationHistoryRequest,
    EvaluationHistoryItem,
    EvaluationHistoryResponse,
    ChapterStatsResponse,
    UserApprovalSummary,
    AttemptEligibility,
)

__all__ = [
    "EvaluationStatus",
    "Rule",
    "NewEvaluation",
    "Evaluation",
    "ChapterEvaluationStats",
    "MetricSample",
    "EvaluateRequest",
    "EvaluateResponse",
    "BatchEvaluationError",
    "BatchEvaluateResponse",
    "ConfigureRuleRequest",
    "UpdateRuleRequest",
    "RuleResponse",
    "DeleteRuleResult",
    "EvaluationHistoryRequest",
    "EvaluationHistoryItem",
    "EvaluationHistoryResponse",
    "ChapterStatsResponse",
    "UserApprovalSummary",
    "AttemptEligibility",
]
