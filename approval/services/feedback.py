"""Learner-facing feedback text."""
from approval.models.domain import EvaluationStatus
from approval.utils import format_score


def generate_feedback(status: EvaluationStatus, adjusted_score: float, threshold: float,
                      attempt_number: int, carryover: int) -> str:
    """Build the feedback message stored with an evaluation."""
    score_text = format_score(adjusted_score)
    threshold_text = format_score(threshold)

    if status == EvaluationStatus.APPROVED:
        if attempt_number == 1:
            return (
                f"Excellent! You passed on your first attempt with {score_text}% "
                f"(required: {threshold_text}%)."
            )
        return (
            f"Congratulations! You passed on attempt {attempt_number} with "
            f"{score_text}% (required: {threshold_text}%)."
        )

    if status == EvaluationStatus.PENDING:
        return f"Your evaluation is pending review. This was attempt number {attempt_number}."

    gap = format_score(round(threshold - adjusted_score, 2))
    message = (
        f"You did not reach the required score. You scored {score_text}% and need "
        f"{threshold_text}% ({gap} points short)."
    )
    if carryover > 0:
        message += f" A penalty of {carryover} points was applied for previous attempts."
    message += f" This was attempt number {attempt_number}."
    return message
