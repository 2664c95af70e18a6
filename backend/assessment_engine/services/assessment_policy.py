from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from assessment_engine.core.errors import NotFoundError
from assessment_engine.models.assessment import Assessment


@dataclass(frozen=True)
class SelectionPolicy:
    bank_ids: tuple[str, ...]
    question_count: int
    selection_mode: str
    filter_tags: tuple[str, ...] = ()
    filter_difficulties: tuple[str, ...] = ()


@dataclass(frozen=True)
class TimingPolicy:
    time_limit_seconds: int | None
    show_timer: bool
    auto_submit_on_expiry: bool


@dataclass(frozen=True)
class AttemptsPolicy:
    max_attempts: int | None
    retake_policy: str
    cooldown_minutes: int | None = None

    @property
    def is_unlimited(self) -> bool:
        return self.max_attempts is None


@dataclass(frozen=True)
class ScoringPolicy:
    passing_score: float
    show_score: bool
    show_correct_answers: str
    partial_credit: bool


@dataclass(frozen=True)
class FeedbackPolicy:
    show_feedback: bool
    feedback_timing: str
    show_explanations: bool


@dataclass(frozen=True)
class AssessmentPolicy:
    """Immutable view of an assessment's configuration, as seen by the attempt engine."""

    assessment_id: UUID
    title: str
    is_published: bool
    selection: SelectionPolicy
    timing: TimingPolicy
    attempts: AttemptsPolicy
    scoring: ScoringPolicy
    feedback: FeedbackPolicy


def policy_from_assessment(assessment: Assessment) -> AssessmentPolicy:
    return AssessmentPolicy(
        assessment_id=assessment.id,
        title=assessment.title,
        is_published=bool(assessment.is_published) and not assessment.is_archived,
        selection=SelectionPolicy(
            bank_ids=tuple(assessment.bank_ids or []),
            question_count=assessment.question_count,
            selection_mode=assessment.selection_mode,
            filter_tags=tuple(assessment.filter_tags or []),
            filter_difficulties=tuple(assessment.filter_difficulties or []),
        ),
        timing=TimingPolicy(
            time_limit_seconds=assessment.time_limit_seconds,
            show_timer=assessment.show_timer,
            auto_submit_on_expiry=assessment.auto_submit_on_expiry,
        ),
        attempts=AttemptsPolicy(
            max_attempts=assessment.max_attempts,
            retake_policy=assessment.retake_policy,
            cooldown_minutes=assessment.cooldown_minutes,
        ),
        scoring=ScoringPolicy(
            passing_score=float(assessment.passing_score),
            show_score=assessment.show_score,
            show_correct_answers=assessment.show_correct_answers,
            partial_credit=assessment.partial_credit,
        ),
        feedback=FeedbackPolicy(
            show_feedback=assessment.show_feedback,
            feedback_timing=assessment.feedback_timing,
            show_explanations=assessment.show_explanations,
        ),
    )


def get_assessment_policy(db: Session, assessment_id: UUID) -> AssessmentPolicy:
    assessment = db.scalar(select(Assessment).where(Assessment.id == assessment_id))
    if not assessment:
        raise NotFoundError('Assessment not found', code='ASSESSMENT_NOT_FOUND')
    return policy_from_assessment(assessment)


def get_published_policy(db: Session, assessment_id: UUID) -> AssessmentPolicy:
    # Unpublished and missing are reported the same way.
    assessment = db.scalar(
        select(Assessment).where(
            Assessment.id == assessment_id,
            Assessment.is_published.is_(True),
            Assessment.is_archived.is_(False),
        )
    )
    if not assessment:
        raise NotFoundError('Assessment not found or not published', code='ASSESSMENT_NOT_FOUND')
    return policy_from_assessment(assessment)
