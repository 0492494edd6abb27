"""
Guard functions run before any store access.

Each guard raises ApprovalValidationError on the first problem it finds and
returns None otherwise.
"""
import math
from typing import Any, Dict, Iterable, Optional

from approval.constants import (
    MAX_ATTEMPTS,
    MAX_SCORE,
    MAX_THRESHOLD,
    MIN_ATTEMPTS,
    MIN_SCORE,
    MIN_THRESHOLD,
)
from approval.exceptions import ApprovalValidationError
from approval.models.schemas import ConfigureRuleRequest, EvaluateRequest

# Rule columns that may be updated but never cleared
REQUIRED_RULE_FIELDS = ("min_score_threshold", "max_attempts", "allow_error_carryover", "is_active")


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and not math.isnan(value)
    )


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def validate_evaluation_request(request: EvaluateRequest) -> None:
    """Reject submissions with missing ids or an out-of-range score."""
    if _is_blank(request.user_id) or _is_blank(request.chapter_id):
        raise ApprovalValidationError("User ID and Chapter ID are required")

    if not _is_number(request.score) or not MIN_SCORE <= request.score <= MAX_SCORE:
        raise ApprovalValidationError(
            f"Score must be between {MIN_SCORE} and {MAX_SCORE}", field="score"
        )

    if request.time_spent is not None:
        if not _is_number(request.time_spent) or request.time_spent < 0:
            raise ApprovalValidationError("Time spent cannot be negative", field="time_spent")


def validate_threshold(threshold: Any) -> None:
    if not _is_number(threshold) or not MIN_THRESHOLD <= threshold <= MAX_THRESHOLD:
        raise ApprovalValidationError(
            f"Minimum score threshold must be between {MIN_THRESHOLD} and {MAX_THRESHOLD}",
            field="min_score_threshold",
        )


def validate_max_attempts(max_attempts: Any) -> None:
    if (
        not isinstance(max_attempts, int)
        or isinstance(max_attempts, bool)
        or not MIN_ATTEMPTS <= max_attempts <= MAX_ATTEMPTS
    ):
        raise ApprovalValidationError(
            f"Maximum attempts must be between {MIN_ATTEMPTS} and {MAX_ATTEMPTS}",
            field="max_attempts",
        )


def validate_critical_threshold(chapter_id: Optional[str], threshold: float,
                                critical_chapters: Iterable[str],
                                critical_threshold: float) -> None:
    """Critical chapters may only be configured with the critical threshold."""
    if chapter_id is not None and chapter_id in set(critical_chapters):
        if threshold < critical_threshold:
            raise ApprovalValidationError(
                f"Chapter {chapter_id} is critical and requires a "
                f"{critical_threshold:g}% threshold",
                field="min_score_threshold",
            )


def validate_rule_configuration(request: ConfigureRuleRequest,
                                critical_chapters: Iterable[str],
                                critical_threshold: float) -> None:
    """Validate a create-or-update rule request."""
    validate_threshold(request.min_score_threshold)
    validate_max_attempts(request.max_attempts)

    # None means "global"; an empty string is a mistake
    if request.chapter_id is not None and _is_blank(request.chapter_id):
        raise ApprovalValidationError("Chapter ID cannot be empty", field="chapter_id")

    validate_critical_threshold(
        request.chapter_id, request.min_score_threshold, critical_chapters, critical_threshold
    )


def validate_rule_update(fields: Dict[str, Any], chapter_id: Optional[str],
                         critical_chapters: Iterable[str],
                         critical_threshold: float) -> None:
    """Validate only the fields present in a partial update."""
    for name in REQUIRED_RULE_FIELDS:
        if name in fields and fields[name] is None:
            raise ApprovalValidationError(f"{name} cannot be null", field=name)

    if "min_score_threshold" in fields:
        validate_threshold(fields["min_score_threshold"])
        validate_critical_threshold(
            chapter_id, fields["min_score_threshold"], critical_chapters, critical_threshold
        )

    if "max_attempts" in fields:
        validate_max_attempts(fields["max_attempts"])
