from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from assessment_engine.db.base_class import Base
from assessment_engine.models.constants import (
    FEEDBACK_TIMING_VALUES,
    RETAKE_POLICY_VALUES,
    SELECTION_MODE_VALUES,
    SHOW_CORRECT_ANSWERS_VALUES,
    sql_in,
)
from assessment_engine.models.mixins import AuditUserMixin, JSONDocument, TimestampMixin, UUIDPrimaryKeyMixin


class Assessment(UUIDPrimaryKeyMixin, TimestampMixin, AuditUserMixin, Base):
    __tablename__ = 'assessments'
    __table_args__ = (
        CheckConstraint(
            f'selection_mode in ({sql_in(SELECTION_MODE_VALUES)})',
            name='assessment_selection_mode_values',
        ),
        CheckConstraint(
            f'retake_policy in ({sql_in(RETAKE_POLICY_VALUES)})',
            name='assessment_retake_policy_values',
        ),
        CheckConstraint(
            f'show_correct_answers in ({sql_in(SHOW_CORRECT_ANSWERS_VALUES)})',
            name='assessment_show_correct_answers_values',
        ),
        CheckConstraint(
            f'feedback_timing in ({sql_in(FEEDBACK_TIMING_VALUES)})',
            name='assessment_feedback_timing_values',
        ),
        CheckConstraint('question_count >= 1', name='assessment_question_count_positive'),
        CheckConstraint('max_attempts is null or max_attempts >= 1', name='assessment_max_attempts_positive'),
        CheckConstraint('passing_score >= 0 and passing_score <= 100', name='assessment_passing_score_range'),
    )

    title: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # question selection
    bank_ids: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    question_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    selection_mode: Mapped[str] = mapped_column(String(20), nullable=False, default='sequential')
    filter_tags: Mapped[list[str] | None] = mapped_column(JSONDocument, nullable=True)
    filter_difficulties: Mapped[list[str] | None] = mapped_column(JSONDocument, nullable=True)

    # timing
    time_limit_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    show_timer: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    auto_submit_on_expiry: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # attempts
    max_attempts: Mapped[int | None] = mapped_column(Integer, nullable=True)
    retake_policy: Mapped[str] = mapped_column(String(30), nullable=False, default='anytime')
    cooldown_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # scoring
    passing_score: Mapped[float] = mapped_column(Float, nullable=False, default=70)
    show_score: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    show_correct_answers: Mapped[str] = mapped_column(String(30), nullable=False, default='after_submit')
    partial_credit: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # feedback
    show_feedback: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    feedback_timing: Mapped[str] = mapped_column(String(30), nullable=False, default='after_submit')
    show_explanations: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    is_published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    is_archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


Index('ix_assessments_published_archived', Assessment.is_published, Assessment.is_archived)
