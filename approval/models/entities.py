"""SQLAlchemy ORM database models."""
from datetime import datetime
from sqlalchemy import (
    Column, String, Integer, Float, Text, DateTime, Boolean, ForeignKey, Index,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class User(Base):
    """Learner table - only what the engine needs to confirm a user exists."""
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String, unique=True, nullable=True)
    name = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    evaluations = relationship("ApprovalEvaluation", back_populates="user")


class ApprovalRule(Base):
    """Approval rule - pass threshold, retry budget and carryover policy per chapter or global."""
    __tablename__ = "approval_rules"

    id = Column(String, primary_key=True)
    chapter_id = Column(String, nullable=True)  # NULL = global rule
    min_score_threshold = Column(Float, nullable=False)
    max_attempts = Column(Integer, default=1, nullable=False)
    allow_error_carryover = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    metadata_json = Column(Text, nullable=True)  # JSON: special requirements
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    evaluations = relationship("ApprovalEvaluation", back_populates="rule")

    __table_args__ = (
        Index("idx_rule_chapter", "chapter_id"),
        Index("idx_rule_active", "is_active"),
    )


class ApprovalEvaluation(Base):
    """One row per evaluation attempt. Append-only."""
    __tablename__ = "approval_evaluations"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    rule_id = Column(String, ForeignKey("approval_rules.id"), nullable=False)
    chapter_id = Column(String, nullable=False)
    score = Column(Float, nullable=False)  # raw submitted score
    threshold = Column(Float, nullable=False)  # effective threshold applied
    status = Column(String, nullable=False, default="pending")
    attempt_number = Column(Integer, nullable=False, default=1)
    errors_from_previous_attempts = Column(Integer, nullable=False, default=0)
    feedback = Column(Text, nullable=True)
    evaluation_data_json = Column(Text, nullable=True)  # JSON: caller extension data
    evaluated_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="evaluations")
    rule = relationship("ApprovalRule", back_populates="evaluations")

    __table_args__ = (
        UniqueConstraint(
            "user_id", "chapter_id", "attempt_number",
            name="uq_evaluation_user_chapter_attempt",
        ),
        Index("idx_evaluation_user", "user_id"),
        Index("idx_evaluation_chapter", "chapter_id"),
        Index("idx_evaluation_rule", "rule_id"),
        Index("idx_evaluation_evaluated_at", "evaluated_at"),
    )


class ApprovalMetric(Base):
    """Telemetry sample - accuracy, attempts, speed. Non-authoritative."""
    __tablename__ = "approval_metrics"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False)
    chapter_id = Column(String, nullable=False)
    metric_type = Column(String(100), nullable=False)
    value = Column(Float, nullable=False)
    unit = Column(String(50), nullable=True)
    description = Column(Text, nullable=True)
    additional_data_json = Column(Text, nullable=True)
    recorded_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_metric_user_chapter_type", "user_id", "chapter_id", "metric_type"),
        Index("idx_metric_recorded_at", "recorded_at"),
    )
