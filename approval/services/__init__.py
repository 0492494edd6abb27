"""Approval services - decision pipeline, rule administration and read side."""
from .cache import ApprovalCache
from .key_lock import KeyedLock
from .rule_resolver import ResolvedRule, RuleResolver
from .attempt_tracker import AttemptTracker
from .carryover import ErrorCarryoverCalculator, calculate_carryover
from .decision import Decision, decide
from .feedback import generate_feedback
from .recorder import EvaluationRecorder
from .evaluation_service import ApprovalEngine
from .rule_config_service import RuleConfigService
from .factory import ApprovalServices, create_approval_services

__all__ = [
    "ApprovalCache",
    "KeyedLock",
    "ResolvedRule",
    "RuleResolver",
    "AttemptTracker",
    "ErrorCarryoverCalculator",
    "calculate_carryover",
    "Decision",
    "decide",
    "generate_feedback",
    "EvaluationRecorder",
    "ApprovalEngine",
    "RuleConfigService",
    "ApprovalServices",
    "create_approval_services",
]
