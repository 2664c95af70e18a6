from __future__ import annotations

import logging
import math
import random
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.exc import StaleDataError

from assessment_engine.core.config import settings
from assessment_engine.core.errors import (
    AttemptEngineError,
    AuthorizationDeniedError,
    NotFoundError,
    PolicyViolationError,
)
from assessment_engine.models.attempt import AssessmentAttempt, AssessmentAttemptQuestion
from assessment_engine.models.constants import (
    ATTEMPT_STATUS_ABANDONED,
    ATTEMPT_STATUS_GRADED,
    ATTEMPT_STATUS_IN_PROGRESS,
    ATTEMPT_STATUS_SUBMITTED,
)
from assessment_engine.services.assessment_policy import (
    AssessmentPolicy,
    get_assessment_policy,
    get_published_policy,
)
from assessment_engine.services.auto_grader import grade_response
from assessment_engine.services.question_snapshot import build_question_records
from assessment_engine.services.score_aggregator import aggregate, apply_score


logger = logging.getLogger(__name__)

FINISHED_STATUSES = (ATTEMPT_STATUS_SUBMITTED, ATTEMPT_STATUS_GRADED)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything stored is UTC.
    return value if value.tzinfo else value.replace(tzinfo=UTC)


def _elapsed_seconds(attempt: AssessmentAttempt, now: datetime) -> float:
    return max(0.0, (now - _aware(attempt.started_at)).total_seconds())


def _is_expired(attempt: AssessmentAttempt, now: datetime) -> bool:
    return bool(attempt.time_limit_seconds) and _elapsed_seconds(attempt, now) > attempt.time_limit_seconds


def _flush(db: Session) -> None:
    try:
        db.flush()
    except StaleDataError as exc:
        db.rollback()
        logger.warning('Concurrent write on assessment attempt rejected: %s', exc)
        raise PolicyViolationError(
            'Attempt was modified concurrently; reload it and try again',
            code='CONCURRENT_MODIFICATION',
        ) from exc


def get_attempt(db: Session, attempt_id: UUID, *, for_update: bool = False) -> AssessmentAttempt:
    query = (
        select(AssessmentAttempt)
        .where(AssessmentAttempt.id == attempt_id)
        .options(selectinload(AssessmentAttempt.questions))
    )
    if for_update:
        # Refresh an instance already in the identity map with the locked row state.
        query = query.with_for_update().execution_options(populate_existing=True)
    attempt = db.scalar(query)
    if not attempt:
        raise NotFoundError('Attempt not found', code='ATTEMPT_NOT_FOUND')
    return attempt


def _find_in_progress(db: Session, *, assessment_id: UUID, learner_id: UUID) -> AssessmentAttempt | None:
    return db.scalar(
        select(AssessmentAttempt)
        .where(
            AssessmentAttempt.assessment_id == assessment_id,
            AssessmentAttempt.learner_id == learner_id,
            AssessmentAttempt.status == ATTEMPT_STATUS_IN_PROGRESS,
        )
        .options(selectinload(AssessmentAttempt.questions))
    )


def _count_attempts(db: Session, *, assessment_id: UUID, learner_id: UUID) -> int:
    return int(
        db.scalar(
            select(func.count())
            .select_from(AssessmentAttempt)
            .where(AssessmentAttempt.assessment_id == assessment_id, AssessmentAttempt.learner_id == learner_id)
        )
        or 0
    )


def _check_retake_policy(
    db: Session, policy: AssessmentPolicy, *, learner_id: UUID, prior_count: int, now: datetime
) -> None:
    if prior_count == 0:
        return
    retake_policy = policy.attempts.retake_policy
    if retake_policy == 'instructor_unlock':
        raise PolicyViolationError('Instructor must unlock retake', code='INSTRUCTOR_UNLOCK_REQUIRED')
    if retake_policy == 'after_cooldown' and policy.attempts.cooldown_minutes:
        last_submitted_at = db.scalar(
            select(func.max(AssessmentAttempt.submitted_at)).where(
                AssessmentAttempt.assessment_id == policy.assessment_id,
                AssessmentAttempt.learner_id == learner_id,
            )
        )
        if last_submitted_at is None:
            return
        available_at = _aware(last_submitted_at) + timedelta(minutes=policy.attempts.cooldown_minutes)
        if now < available_at:
            raise PolicyViolationError(
                f'Must wait before starting a new attempt (available at {available_at.isoformat()})',
                code='COOLDOWN_ACTIVE',
            )


def start_attempt(
    db: Session,
    *,
    assessment_id: UUID,
    learner_id: UUID,
    enrollment_id: UUID,
    module_id: UUID | None = None,
    learning_unit_id: UUID | None = None,
    rng: random.Random | None = None,
) -> AssessmentAttempt:
    policy = get_published_policy(db, assessment_id)
    now = _utcnow()

    if _find_in_progress(db, assessment_id=assessment_id, learner_id=learner_id):
        raise PolicyViolationError(
            'An attempt is already in progress for this assessment', code='ATTEMPT_IN_PROGRESS'
        )

    prior_count = _count_attempts(db, assessment_id=assessment_id, learner_id=learner_id)
    if not policy.attempts.is_unlimited and prior_count >= policy.attempts.max_attempts:
        raise PolicyViolationError('Maximum attempts reached for this assessment', code='MAX_ATTEMPTS_REACHED')
    _check_retake_policy(db, policy, learner_id=learner_id, prior_count=prior_count, now=now)

    records = build_question_records(db, policy.selection, rng=rng)

    attempt = AssessmentAttempt(
        assessment_id=assessment_id,
        learner_id=learner_id,
        enrollment_id=enrollment_id,
        module_id=module_id,
        learning_unit_id=learning_unit_id,
        attempt_number=prior_count + 1,
        status=ATTEMPT_STATUS_IN_PROGRESS,
        started_at=now,
        last_activity_at=now,
        time_spent_seconds=0,
        time_limit_seconds=policy.timing.time_limit_seconds,
        grading_complete=False,
        requires_manual_grading=False,
        questions=records,
    )
    db.add(attempt)
    try:
        db.flush()
    except IntegrityError as exc:
        # Lost a race against a concurrent start: the in-progress or attempt-number index fired.
        db.rollback()
        logger.warning(
            'Concurrent start rejected assessment_id=%s learner_id=%s', assessment_id, learner_id
        )
        raise PolicyViolationError(
            'An attempt is already in progress for this assessment', code='ATTEMPT_IN_PROGRESS'
        ) from exc

    logger.info(
        'Attempt started attempt_id=%s assessment_id=%s learner_id=%s number=%s',
        attempt.id,
        assessment_id,
        learner_id,
        attempt.attempt_number,
    )
    return attempt


def get_current_attempt(db: Session, *, assessment_id: UUID, learner_id: UUID) -> AssessmentAttempt | None:
    return _find_in_progress(db, assessment_id=assessment_id, learner_id=learner_id)


def time_remaining_seconds(attempt: AssessmentAttempt, *, now: datetime | None = None) -> int | None:
    if not attempt.time_limit_seconds or attempt.status != ATTEMPT_STATUS_IN_PROGRESS:
        return None
    remaining = attempt.time_limit_seconds - _elapsed_seconds(attempt, now or _utcnow())
    return max(0, int(remaining))


def _resolve_record(attempt: AssessmentAttempt, item: dict[str, Any]) -> AssessmentAttemptQuestion:
    question_id = item.get('question_id')
    if question_id is not None:
        for record in attempt.questions:
            if record.question_id is not None and str(record.question_id) == str(question_id):
                return record
    else:
        index = item.get('question_index')
        if isinstance(index, int) and 0 <= index < len(attempt.questions):
            return attempt.questions[index]
    raise PolicyViolationError('Response refers to a question outside this attempt', code='UNKNOWN_QUESTION')


def save_progress(db: Session, *, attempt_id: UUID, responses: list[dict[str, Any]]) -> AssessmentAttempt:
    attempt = get_attempt(db, attempt_id, for_update=True)
    if attempt.status != ATTEMPT_STATUS_IN_PROGRESS:
        raise PolicyViolationError('Attempt is not in progress', code='ATTEMPT_NOT_IN_PROGRESS')

    now = _utcnow()
    if _is_expired(attempt, now):
        logger.warning('Save rejected after time limit attempt_id=%s', attempt.id)
        raise PolicyViolationError('Time limit exceeded', code='TIME_LIMIT_EXCEEDED')

    updates = [(_resolve_record(attempt, item), item.get('response')) for item in responses]
    for record, response in updates:
        record.response = response

    attempt.time_spent_seconds = int(_elapsed_seconds(attempt, now))
    attempt.last_activity_at = now
    _flush(db)
    return attempt


def _finalize_submission(db: Session, attempt: AssessmentAttempt, policy: AssessmentPolicy, now: datetime) -> None:
    attempt.submitted_at = now
    attempt.time_spent_seconds = int(_elapsed_seconds(attempt, now))
    attempt.last_activity_at = now

    requires_manual = False
    for record in attempt.questions:
        result = grade_response(
            record.question_snapshot or {},
            record.response,
            record.points_possible,
            partial_credit=policy.scoring.partial_credit,
        )
        if result.requires_manual:
            requires_manual = True
            record.is_correct = None
            record.points_earned = None
            continue
        record.is_correct = result.is_correct
        record.points_earned = result.points_earned
        record.graded_at = now

    summary = aggregate(attempt.questions, policy.scoring.passing_score)
    apply_score(attempt, summary)
    attempt.requires_manual_grading = requires_manual
    attempt.status = ATTEMPT_STATUS_GRADED if summary.grading_complete else ATTEMPT_STATUS_SUBMITTED
    _flush(db)


def submit_attempt(db: Session, *, attempt_id: UUID) -> AssessmentAttempt:
    attempt = get_attempt(db, attempt_id, for_update=True)
    if attempt.status == ATTEMPT_STATUS_ABANDONED:
        raise PolicyViolationError('Attempt is not in progress', code='ATTEMPT_NOT_IN_PROGRESS')
    if attempt.status != ATTEMPT_STATUS_IN_PROGRESS:
        raise PolicyViolationError('Attempt has already been submitted', code='ALREADY_SUBMITTED')

    policy = get_assessment_policy(db, attempt.assessment_id)
    _finalize_submission(db, attempt, policy, _utcnow())
    logger.info(
        'Attempt submitted attempt_id=%s learner_id=%s status=%s manual=%s',
        attempt.id,
        attempt.learner_id,
        attempt.status,
        attempt.requires_manual_grading,
    )
    return attempt


def grade_question(
    db: Session,
    *,
    attempt_id: UUID,
    question_index: int,
    points_earned: float,
    feedback: str | None,
    grader_id: UUID,
) -> AssessmentAttempt:
    attempt = get_attempt(db, attempt_id, for_update=True)
    if attempt.status != ATTEMPT_STATUS_SUBMITTED:
        raise PolicyViolationError('Attempt must be submitted before grading', code='ATTEMPT_NOT_SUBMITTED')
    if question_index < 0 or question_index >= len(attempt.questions):
        raise PolicyViolationError('Invalid question index', code='INVALID_QUESTION_INDEX')

    record = attempt.questions[question_index]
    if not math.isfinite(points_earned):
        raise PolicyViolationError('Score must be a number', code='INVALID_SCORE')
    if points_earned < 0:
        raise PolicyViolationError('Score cannot be negative', code='INVALID_SCORE')
    if points_earned > record.points_possible:
        raise PolicyViolationError('Score cannot exceed points possible', code='SCORE_EXCEEDS_POSSIBLE')

    now = _utcnow()
    record.points_earned = float(points_earned)
    record.is_correct = float(points_earned) == float(record.points_possible)
    record.feedback = feedback
    record.graded_by = grader_id
    record.graded_at = now

    policy = get_assessment_policy(db, attempt.assessment_id)
    summary = aggregate(attempt.questions, policy.scoring.passing_score)
    apply_score(attempt, summary)
    if summary.grading_complete:
        attempt.status = ATTEMPT_STATUS_GRADED
    attempt.last_activity_at = now
    _flush(db)

    logger.info(
        'Question graded attempt_id=%s index=%s grader_id=%s status=%s',
        attempt.id,
        question_index,
        grader_id,
        attempt.status,
    )
    return attempt


def _can_show_correct_answers(db: Session, attempt: AssessmentAttempt, policy: AssessmentPolicy) -> bool:
    mode = policy.scoring.show_correct_answers
    if mode == 'never' or attempt.status not in FINISHED_STATUSES:
        return False
    if mode == 'after_all_attempts':
        if policy.attempts.is_unlimited:
            return False
        used = _count_attempts(db, assessment_id=attempt.assessment_id, learner_id=attempt.learner_id)
        return used >= policy.attempts.max_attempts
    return True


def _can_show_feedback(attempt: AssessmentAttempt, policy: AssessmentPolicy) -> bool:
    if not policy.feedback.show_feedback:
        return False
    if policy.feedback.feedback_timing == 'after_grading':
        return attempt.status == ATTEMPT_STATUS_GRADED
    return attempt.status in FINISHED_STATUSES


def get_attempt_results(
    db: Session,
    *,
    attempt_id: UUID,
    viewer_id: UUID,
    is_staff: bool = False,
) -> dict[str, Any]:
    """Results projection, redacted by the assessment's visibility settings.

    Staff see everything; a learner sees only their own finished attempts.
    """
    attempt = get_attempt(db, attempt_id)
    if not is_staff and attempt.learner_id != viewer_id:
        raise AuthorizationDeniedError('Access denied: attempt belongs to another learner')
    if not is_staff and attempt.status == ATTEMPT_STATUS_IN_PROGRESS:
        raise PolicyViolationError('Attempt has not been submitted yet', code='ATTEMPT_NOT_COMPLETE')

    policy = get_assessment_policy(db, attempt.assessment_id)
    show_correct = is_staff or _can_show_correct_answers(db, attempt, policy)
    show_score = is_staff or policy.scoring.show_score
    show_feedback = is_staff or _can_show_feedback(attempt, policy)
    show_explanations = is_staff or policy.feedback.show_explanations

    questions = []
    for record in attempt.questions:
        snapshot = record.question_snapshot or {}
        questions.append(
            {
                'index': record.question_index,
                'question_id': record.question_id,
                'question_text': snapshot.get('question_text', ''),
                'question_type': snapshot.get('question_type', ''),
                'response': record.response,
                'is_correct': record.is_correct if show_score else None,
                'correct_answer': snapshot.get('correct_answer') if show_correct else None,
                'points_earned': record.points_earned if show_score else None,
                'points_possible': record.points_possible,
                'feedback': record.feedback if show_feedback else None,
                'explanation': snapshot.get('explanation') if show_explanations else None,
            }
        )

    return {
        'attempt_id': attempt.id,
        'assessment_id': attempt.assessment_id,
        'assessment_title': policy.title,
        'learner_id': attempt.learner_id,
        'attempt_number': attempt.attempt_number,
        'status': attempt.status,
        'show_correct_answers': show_correct,
        'show_score': show_score,
        'scoring': {
            'raw_score': attempt.raw_score if show_score else None,
            'percentage_score': attempt.percentage_score if show_score else None,
            'passed': attempt.passed if show_score else None,
            'grading_complete': attempt.grading_complete,
            'requires_manual_grading': attempt.requires_manual_grading,
        },
        'timing': {
            'started_at': attempt.started_at,
            'submitted_at': attempt.submitted_at,
            'time_spent_seconds': attempt.time_spent_seconds,
            'time_limit_seconds': attempt.time_limit_seconds,
        },
        'questions': questions,
    }


def list_attempts(
    db: Session,
    *,
    assessment_id: UUID,
    learner_id: UUID | None = None,
    status: str | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[AssessmentAttempt], int]:
    base = select(AssessmentAttempt).where(AssessmentAttempt.assessment_id == assessment_id)
    if learner_id:
        base = base.where(AssessmentAttempt.learner_id == learner_id)
    if status:
        base = base.where(AssessmentAttempt.status == status)

    total = db.scalar(select(func.count()).select_from(base.subquery()))
    items = db.scalars(
        base.order_by(AssessmentAttempt.started_at.desc(), AssessmentAttempt.attempt_number.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    ).all()
    return list(items), int(total or 0)


def abandon_attempt(db: Session, *, attempt_id: UUID) -> AssessmentAttempt:
    attempt = get_attempt(db, attempt_id, for_update=True)
    if attempt.status != ATTEMPT_STATUS_IN_PROGRESS:
        raise PolicyViolationError('Attempt is not in progress', code='ATTEMPT_NOT_IN_PROGRESS')
    now = _utcnow()
    attempt.status = ATTEMPT_STATUS_ABANDONED
    attempt.time_spent_seconds = int(_elapsed_seconds(attempt, now))
    attempt.last_activity_at = now
    _flush(db)
    logger.info('Attempt abandoned attempt_id=%s learner_id=%s', attempt.id, attempt.learner_id)
    return attempt


def _expired_attempt_ids(db: Session, *, now: datetime, limit: int) -> list[UUID]:
    # One cutoff per distinct frozen limit keeps the expiry test in SQL on every backend.
    time_limits = db.scalars(
        select(AssessmentAttempt.time_limit_seconds)
        .where(
            AssessmentAttempt.status == ATTEMPT_STATUS_IN_PROGRESS,
            AssessmentAttempt.time_limit_seconds > 0,
        )
        .distinct()
    ).all()
    if not time_limits:
        return []
    expired = or_(
        *[
            and_(
                AssessmentAttempt.time_limit_seconds == seconds,
                AssessmentAttempt.started_at < now - timedelta(seconds=seconds),
            )
            for seconds in time_limits
        ]
    )
    return list(
        db.scalars(
            select(AssessmentAttempt.id)
            .where(AssessmentAttempt.status == ATTEMPT_STATUS_IN_PROGRESS, expired)
            .order_by(AssessmentAttempt.started_at.asc())
            .limit(limit)
        ).all()
    )


def sweep_expired_attempts(
    db: Session, *, now: datetime | None = None, limit: int | None = None
) -> dict[str, int]:
    """Close in-progress attempts whose frozen time limit has elapsed.

    Attempts on assessments with auto-submit enabled are submitted and graded;
    the rest are abandoned. Each attempt is committed on its own.
    """
    now = now or _utcnow()
    limit = limit or settings.ATTEMPT_SWEEP_BATCH_SIZE
    expired_ids = _expired_attempt_ids(db, now=now, limit=limit)

    outcome = {'submitted': 0, 'abandoned': 0, 'skipped': 0}
    policies: dict[UUID, AssessmentPolicy] = {}
    for attempt_id in expired_ids:
        try:
            attempt = get_attempt(db, attempt_id, for_update=True)
            if attempt.status != ATTEMPT_STATUS_IN_PROGRESS:
                outcome['skipped'] += 1
                continue
            if attempt.assessment_id not in policies:
                policies[attempt.assessment_id] = get_assessment_policy(db, attempt.assessment_id)
            policy = policies[attempt.assessment_id]

            if policy.timing.auto_submit_on_expiry:
                _finalize_submission(db, attempt, policy, now)
                outcome['submitted'] += 1
            else:
                attempt.status = ATTEMPT_STATUS_ABANDONED
                attempt.time_spent_seconds = int(_elapsed_seconds(attempt, now))
                attempt.last_activity_at = now
                _flush(db)
                outcome['abandoned'] += 1
            db.commit()
        except AttemptEngineError as exc:
            db.rollback()
            outcome['skipped'] += 1
            logger.warning('Expired attempt sweep skipped attempt_id=%s: %s', attempt_id, exc.message)

    logger.info(
        'Expired attempt sweep finished submitted=%s abandoned=%s skipped=%s',
        outcome['submitted'],
        outcome['abandoned'],
        outcome['skipped'],
    )
    return outcome
