"""
Exception hierarchy for the approval engine.

Exception Hierarchy:
    ApprovalEngineError (base)
    ├── ApprovalValidationError
    ├── NotFoundError
    │   ├── UserNotFoundError
    │   └── RuleNotFoundError
    ├── StoreError
    │   └── AttemptConflictError
    └── MetricsError
"""
from typing import Optional

from fastapi import HTTPException, status


class ApprovalEngineError(Exception):
    """Base exception for all approval engine errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=self.message
        )


class ApprovalValidationError(ApprovalEngineError):
    """Raised when input is malformed. Never reaches the stores."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, {"field": field} if field else None)
        self.field = field

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=self.message
        )


class NotFoundError(ApprovalEngineError):
    """Base for missing users and rules."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=self.message
        )


class UserNotFoundError(NotFoundError):
    """Raised when the evaluated user does not exist."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User with ID {user_id} not found")


class RuleNotFoundError(NotFoundError):
    """Raised when no rule applies to a chapter, or a rule id is unknown."""

    def __init__(self, chapter_id: Optional[str] = None, rule_id: Optional[str] = None):
        self.chapter_id = chapter_id
        self.rule_id = rule_id
        if rule_id is not None:
            message = f"Approval rule {rule_id} not found"
        else:
            message = f"No approval rule found for chapter {chapter_id}"
        super().__init__(message)


class StoreError(ApprovalEngineError):
    """Raised when a persistence operation fails."""

    def __init__(self, operation: str, original_error: Exception):
        self.operation = operation
        self.original_error = original_error
        super().__init__(f"Store {operation} failed: {str(original_error)}")

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database operation failed"
        )


class AttemptConflictError(StoreError):
    """Raised when an attempt number was already taken for the user and chapter."""

    def __init__(self, user_id: str, chapter_id: str, attempt_number: int,
                 original_error: Optional[Exception] = None):
        self.user_id = user_id
        self.chapter_id = chapter_id
        self.attempt_number = attempt_number
        super().__init__(
            "create evaluation",
            original_error or Exception(
                f"attempt {attempt_number} already recorded for user {user_id} "
                f"on chapter {chapter_id}"
            ),
        )

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Duplicate evaluation detected for user {self.user_id} "
                   f"on chapter {self.chapter_id}"
        )


class MetricsError(ApprovalEngineError):
    """Raised by metrics sinks. The engine logs it and carries on."""

    def __init__(self, original_error: Exception):
        self.original_error = original_error
        super().__init__(f"Approval metrics error: {str(original_error)}")
