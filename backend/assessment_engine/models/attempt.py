import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from assessment_engine.db.base_class import Base
from assessment_engine.models.assessment import Assessment
from assessment_engine.models.constants import ATTEMPT_STATUS_VALUES, sql_in
from assessment_engine.models.mixins import JSONDocument, TimestampMixin, UUIDPrimaryKeyMixin


_IN_PROGRESS_ONLY = text("status = 'in_progress'")


class AssessmentAttempt(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = 'assessment_attempts'
    __table_args__ = (
        UniqueConstraint(
            'assessment_id', 'learner_id', 'attempt_number', name='uq_assessment_attempt_number'
        ),
        CheckConstraint(
            f'status in ({sql_in(ATTEMPT_STATUS_VALUES)})',
            name='assessment_attempt_status_values',
        ),
        CheckConstraint('attempt_number >= 1', name='assessment_attempt_number_positive'),
        CheckConstraint('time_spent_seconds >= 0', name='assessment_attempt_time_spent_non_negative'),
        # At most one open attempt per learner and assessment.
        Index(
            'uq_assessment_attempt_in_progress',
            'assessment_id',
            'learner_id',
            unique=True,
            postgresql_where=_IN_PROGRESS_ONLY,
            sqlite_where=_IN_PROGRESS_ONLY,
        ),
    )

    assessment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey('assessments.id', ondelete='RESTRICT'), nullable=False
    )
    learner_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    enrollment_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    module_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    learning_unit_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    attempt_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default='in_progress')

    # timing
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_activity_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    time_spent_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    time_limit_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # scoring
    raw_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    percentage_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    passed: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    grading_complete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    requires_manual_grading: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {'version_id_col': version}

    assessment: Mapped['Assessment'] = relationship()
    questions: Mapped[list['AssessmentAttemptQuestion']] = relationship(
        back_populates='attempt',
        cascade='all, delete-orphan',
        order_by='AssessmentAttemptQuestion.question_index',
    )


class AssessmentAttemptQuestion(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """One question record of an attempt; the snapshot and points possible never change."""

    __tablename__ = 'assessment_attempt_questions'
    __table_args__ = (
        UniqueConstraint('attempt_id', 'question_index', name='uq_assessment_attempt_question_order'),
        CheckConstraint('points_possible >= 0', name='assessment_attempt_question_possible_non_negative'),
        CheckConstraint(
            'points_earned is null or points_earned >= 0',
            name='assessment_attempt_question_earned_non_negative',
        ),
    )

    attempt_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey('assessment_attempts.id', ondelete='CASCADE'), nullable=False
    )
    question_index: Mapped[int] = mapped_column(Integer, nullable=False)
    question_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey('questions.id', ondelete='SET NULL'), nullable=True
    )
    question_snapshot: Mapped[dict[str, Any]] = mapped_column(JSONDocument, nullable=False, default=dict)
    response: Mapped[Any | None] = mapped_column(JSONDocument, nullable=True)
    is_correct: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    points_earned: Mapped[float | None] = mapped_column(Float, nullable=True)
    points_possible: Mapped[float] = mapped_column(Float, nullable=False)
    graded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    graded_by: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    feedback: Mapped[str | None] = mapped_column(Text, nullable=True)

    attempt: Mapped['AssessmentAttempt'] = relationship(back_populates='questions')


Index('ix_assessment_attempts_learner_status', AssessmentAttempt.learner_id, AssessmentAttempt.status)
Index('ix_assessment_attempts_assessment_status', AssessmentAttempt.assessment_id, AssessmentAttempt.status)
Index('ix_assessment_attempts_enrollment_id', AssessmentAttempt.enrollment_id)
Index('ix_assessment_attempt_questions_attempt_id', AssessmentAttemptQuestion.attempt_id)
