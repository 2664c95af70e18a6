from __future__ import annotations

import copy
import random
from typing import Any

from sqlalchemy import Select, or_, select, type_coerce
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Session

from assessment_engine.core.errors import PolicyViolationError
from assessment_engine.models.attempt import AssessmentAttemptQuestion
from assessment_engine.models.question import Question
from assessment_engine.services.assessment_policy import SelectionPolicy


def _accepted_answers(correct_answer: Any) -> list[str]:
    if correct_answer is None or isinstance(correct_answer, dict):
        return []
    if isinstance(correct_answer, (list, tuple)):
        return [str(item) for item in correct_answer]
    return [str(correct_answer)]


def _is_eligible(question: Question, selection: SelectionPolicy) -> bool:
    bank_ids = set(selection.bank_ids)
    if not bank_ids.intersection(question.bank_ids or []):
        return False
    if selection.filter_tags and not set(selection.filter_tags).intersection(question.tags or []):
        return False
    if selection.filter_difficulties and question.difficulty not in selection.filter_difficulties:
        return False
    return True


def pool_query(selection: SelectionPolicy, *, dialect_name: str = 'sqlite') -> Select:
    query = select(Question).where(Question.is_active.is_(True))
    if selection.filter_difficulties:
        query = query.where(Question.difficulty.in_(selection.filter_difficulties))
    if dialect_name == 'postgresql':
        bank_ids = type_coerce(Question.bank_ids, JSONB)
        query = query.where(or_(*[bank_ids.contains([bank_id]) for bank_id in selection.bank_ids]))
        if selection.filter_tags:
            tags = type_coerce(Question.tags, JSONB)
            query = query.where(or_(*[tags.contains([tag]) for tag in selection.filter_tags]))
    return query.order_by(Question.order_index.asc(), Question.created_at.asc(), Question.id.asc())


def resolve_question_pool(db: Session, selection: SelectionPolicy) -> list[Question]:
    """Return the eligible questions for a selection policy, in bank order."""
    if not selection.bank_ids:
        return []
    # JSON array membership is only pushed down on PostgreSQL; other backends filter the rows here.
    candidates = db.scalars(pool_query(selection, dialect_name=db.get_bind().dialect.name)).all()
    return [question for question in candidates if _is_eligible(question, selection)]


def select_questions(
    pool: list[Question],
    selection: SelectionPolicy,
    *,
    rng: random.Random | None = None,
) -> list[Question]:
    count = selection.question_count
    if len(pool) < count:
        raise PolicyViolationError(
            f'Not enough questions available: {count} required, {len(pool)} eligible',
            code='INSUFFICIENT_QUESTIONS',
        )
    if selection.selection_mode == 'random':
        return (rng or random).sample(pool, count)
    return pool[:count]


def snapshot_question(question: Question) -> dict[str, Any]:
    return {
        'question_text': question.question_text,
        'question_type': question.question_type,
        'options': copy.deepcopy(question.options or []),
        'correct_answer': copy.deepcopy(question.correct_answer),
        'accepted_answers': _accepted_answers(question.correct_answer),
        'points': float(question.points),
        'explanation': question.explanation,
        'tags': list(question.tags or []),
        'difficulty': question.difficulty,
    }


def build_question_records(
    db: Session,
    selection: SelectionPolicy,
    *,
    rng: random.Random | None = None,
) -> list[AssessmentAttemptQuestion]:
    pool = resolve_question_pool(db, selection)
    selected = select_questions(pool, selection, rng=rng)
    records = []
    for idx, question in enumerate(selected):
        snapshot = snapshot_question(question)
        records.append(
            AssessmentAttemptQuestion(
                question_index=idx,
                question_id=question.id,
                question_snapshot=snapshot,
                points_possible=snapshot['points'],
            )
        )
    return records


def public_question_view(record: AssessmentAttemptQuestion) -> dict[str, Any]:
    snapshot = record.question_snapshot or {}
    return {
        'index': record.question_index,
        'question_id': record.question_id,
        'question_text': snapshot.get('question_text', ''),
        'question_type': snapshot.get('question_type', ''),
        'options': snapshot.get('options') or None,
        'points': record.points_possible,
        'response': record.response,
    }
