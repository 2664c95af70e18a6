from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from assessment_engine.api.deps import CurrentIdentity, get_current_identity, require_staff
from assessment_engine.core.config import settings
from assessment_engine.core.errors import AuthorizationDeniedError
from assessment_engine.db.session import get_db
from assessment_engine.models.attempt import AssessmentAttempt
from assessment_engine.models.constants import ATTEMPT_STATUS_VALUES
from assessment_engine.schemas.attempt import (
    AttemptListResponse,
    AttemptOut,
    AttemptQuestionOut,
    AttemptResponsesUpdate,
    AttemptResultsOut,
    AttemptStartIn,
    AttemptStartOut,
    GradeQuestionIn,
)
from assessment_engine.schemas.common import ErrorOut, PaginationMeta
from assessment_engine.services import attempt_service
from assessment_engine.services.assessment_policy import get_assessment_policy
from assessment_engine.services.question_snapshot import public_question_view


router = APIRouter(
    tags=['attempts'],
    responses={
        status.HTTP_400_BAD_REQUEST: {'model': ErrorOut},
        status.HTTP_403_FORBIDDEN: {'model': ErrorOut},
        status.HTTP_404_NOT_FOUND: {'model': ErrorOut},
    },
)


def _ensure_owner(attempt: AssessmentAttempt, identity: CurrentIdentity) -> None:
    if attempt.learner_id != identity.user_id:
        raise AuthorizationDeniedError('Access denied: attempt belongs to another learner')


def _attempt_view(db: Session, attempt: AssessmentAttempt) -> AttemptStartOut:
    policy = get_assessment_policy(db, attempt.assessment_id)
    return AttemptStartOut(
        attempt=AttemptOut.model_validate(attempt),
        questions=[AttemptQuestionOut(**public_question_view(record)) for record in attempt.questions],
        time_remaining_seconds=attempt_service.time_remaining_seconds(attempt),
        show_timer=policy.timing.show_timer,
    )


@router.post(
    '/assessments/{assessment_id}/attempts',
    response_model=AttemptStartOut,
    status_code=status.HTTP_201_CREATED,
)
def start_attempt(
    assessment_id: UUID,
    payload: AttemptStartIn,
    db: Session = Depends(get_db),
    identity: CurrentIdentity = Depends(get_current_identity),
) -> AttemptStartOut:
    attempt = attempt_service.start_attempt(
        db,
        assessment_id=assessment_id,
        learner_id=identity.user_id,
        enrollment_id=payload.enrollment_id,
        module_id=payload.module_id,
        learning_unit_id=payload.learning_unit_id,
    )
    db.commit()
    return _attempt_view(db, attempt)


@router.get('/assessments/{assessment_id}/attempts/current', response_model=AttemptStartOut)
def get_current_attempt(
    assessment_id: UUID,
    db: Session = Depends(get_db),
    identity: CurrentIdentity = Depends(get_current_identity),
) -> AttemptStartOut:
    attempt = attempt_service.get_current_attempt(db, assessment_id=assessment_id, learner_id=identity.user_id)
    if not attempt:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='No attempt in progress')
    return _attempt_view(db, attempt)


@router.get('/assessments/{assessment_id}/attempts', response_model=AttemptListResponse)
def list_attempts(
    assessment_id: UUID,
    learner_id: UUID | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias='status'),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
    identity: CurrentIdentity = Depends(get_current_identity),
) -> AttemptListResponse:
    if status_filter and status_filter not in ATTEMPT_STATUS_VALUES:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail='Unknown attempt status')
    effective_learner_id = learner_id if identity.is_staff else identity.user_id

    items, total = attempt_service.list_attempts(
        db,
        assessment_id=assessment_id,
        learner_id=effective_learner_id,
        status=status_filter,
        page=page,
        page_size=page_size,
    )
    return AttemptListResponse(
        items=[AttemptOut.model_validate(item) for item in items],
        meta=PaginationMeta(page=page, page_size=page_size, total=total),
    )


@router.put('/attempts/{attempt_id}/responses', response_model=AttemptOut)
def save_responses(
    attempt_id: UUID,
    payload: AttemptResponsesUpdate,
    db: Session = Depends(get_db),
    identity: CurrentIdentity = Depends(get_current_identity),
) -> AttemptOut:
    _ensure_owner(attempt_service.get_attempt(db, attempt_id), identity)
    attempt = attempt_service.save_progress(
        db,
        attempt_id=attempt_id,
        responses=[item.model_dump() for item in payload.responses],
    )
    db.commit()
    return AttemptOut.model_validate(attempt)


@router.post('/attempts/{attempt_id}/submit', response_model=AttemptOut)
def submit_attempt(
    attempt_id: UUID,
    db: Session = Depends(get_db),
    identity: CurrentIdentity = Depends(get_current_identity),
) -> AttemptOut:
    _ensure_owner(attempt_service.get_attempt(db, attempt_id), identity)
    attempt = attempt_service.submit_attempt(db, attempt_id=attempt_id)
    db.commit()
    return AttemptOut.model_validate(attempt)


@router.post('/attempts/{attempt_id}/abandon', response_model=AttemptOut)
def abandon_attempt(
    attempt_id: UUID,
    db: Session = Depends(get_db),
    identity: CurrentIdentity = Depends(get_current_identity),
) -> AttemptOut:
    if not identity.is_staff:
        _ensure_owner(attempt_service.get_attempt(db, attempt_id), identity)
    attempt = attempt_service.abandon_attempt(db, attempt_id=attempt_id)
    db.commit()
    return AttemptOut.model_validate(attempt)


@router.get('/attempts/{attempt_id}/results', response_model=AttemptResultsOut)
def get_attempt_results(
    attempt_id: UUID,
    db: Session = Depends(get_db),
    identity: CurrentIdentity = Depends(get_current_identity),
) -> AttemptResultsOut:
    results = attempt_service.get_attempt_results(
        db, attempt_id=attempt_id, viewer_id=identity.user_id, is_staff=identity.is_staff
    )
    return AttemptResultsOut.model_validate(results)


@router.post('/attempts/{attempt_id}/questions/{question_index}/grade', response_model=AttemptOut)
def grade_question(
    attempt_id: UUID,
    payload: GradeQuestionIn,
    question_index: int,
    db: Session = Depends(get_db),
    identity: CurrentIdentity = Depends(require_staff),
) -> AttemptOut:
    attempt = attempt_service.grade_question(
        db,
        attempt_id=attempt_id,
        question_index=question_index,
        points_earned=payload.points_earned,
        feedback=payload.feedback,
        grader_id=identity.user_id,
    )
    db.commit()
    return AttemptOut.model_validate(attempt)
