from typing import Any

from sqlalchemy import Boolean, CheckConstraint, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from assessment_engine.db.base_class import Base
from assessment_engine.models.constants import DIFFICULTY_VALUES, QUESTION_TYPE_VALUES, sql_in
from assessment_engine.models.mixins import AuditUserMixin, JSONDocument, TimestampMixin, UUIDPrimaryKeyMixin


class Question(UUIDPrimaryKeyMixin, TimestampMixin, AuditUserMixin, Base):
    """Question bank entry. Authored elsewhere; the attempt engine only reads it."""

    __tablename__ = 'questions'
    __table_args__ = (
        CheckConstraint(
            f'question_type in ({sql_in(QUESTION_TYPE_VALUES)})',
            name='question_type_values',
        ),
        CheckConstraint('points >= 0', name='question_points_non_negative'),
        CheckConstraint(
            f'difficulty is null or difficulty in ({sql_in(DIFFICULTY_VALUES)})',
            name='question_difficulty_values',
        ),
    )

    bank_ids: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    question_text: Mapped[str] = mapped_column(Text, nullable=False)
    question_type: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    options: Mapped[list[Any]] = mapped_column(JSONDocument, nullable=False, default=list)
    # str for single-answer types, list[str] for multi-answer / accepted variants,
    # dict[str, str] for matching. Absent for essays.
    correct_answer: Mapped[Any | None] = mapped_column(JSONDocument, nullable=True)
    points: Mapped[float] = mapped_column(Float, nullable=False, default=1)
    tags: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    difficulty: Mapped[str | None] = mapped_column(String(20), nullable=True, index=True)
    explanation: Mapped[str | None] = mapped_column(Text, nullable=True)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


Index('ix_questions_active_order', Question.is_active, Question.order_index)
