"""Data access layer - collaborator interfaces and their SQLAlchemy repositories."""
from .base import Store, RuleStore, EvaluationStore, MetricsSink, UserDirectory
from .session import SessionRepository
from .rule_repository import RuleRepository
from .evaluation_repository import EvaluationRepository
from .metrics_repository import MetricsRepository
from .user_repository import UserRepository

__all__ = [
    "Store",
    "RuleStore",
    "EvaluationStore",
    "MetricsSink",
    "UserDirectory",
    "SessionRepository",
    "RuleRepository",
    "EvaluationRepository",
    "MetricsRepository",
    "UserRepository",
]
