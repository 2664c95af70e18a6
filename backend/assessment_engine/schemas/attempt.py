from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from assessment_engine.schemas.common import BaseSchema, PaginationMeta


class AttemptStartIn(BaseModel):
    enrollment_id: UUID
    module_id: UUID | None = None
    learning_unit_id: UUID | None = None


class AttemptResponseIn(BaseModel):
    question_id: UUID | None = None
    question_index: int | None = Field(default=None, ge=0)
    response: Any = None

    @model_validator(mode='after')
    def _require_target(self) -> 'AttemptResponseIn':
        if self.question_id is None and self.question_index is None:
            raise ValueError('question_id or question_index is required')
        return self


class AttemptResponsesUpdate(BaseModel):
    responses: list[AttemptResponseIn] = Field(default_factory=list)


class GradeQuestionIn(BaseModel):
    points_earned: float = Field(ge=0)
    feedback: str | None = Field(default=None, max_length=2000)


class AttemptOut(BaseSchema):
    id: UUID
    assessment_id: UUID
    learner_id: UUID
    enrollment_id: UUID
    module_id: UUID | None
    learning_unit_id: UUID | None
    attempt_number: int
    status: str
    started_at: datetime
    last_activity_at: datetime
    submitted_at: datetime | None
    time_spent_seconds: int
    time_limit_seconds: int | None
    raw_score: float | None
    percentage_score: float | None
    passed: bool | None
    grading_complete: bool
    requires_manual_grading: bool


class AttemptQuestionOut(BaseModel):
    index: int
    question_id: UUID | None
    question_text: str
    question_type: str
    options: list[Any] | None
    points: float
    response: Any = None


class AttemptStartOut(BaseModel):
    attempt: AttemptOut
    questions: list[AttemptQuestionOut]
    time_remaining_seconds: int | None = None
    show_timer: bool = False


class AttemptListResponse(BaseModel):
    items: list[AttemptOut]
    meta: PaginationMeta


class AttemptResultQuestionOut(BaseModel):
    index: int
    question_id: UUID | None
    question_text: str
    question_type: str
    response: Any = None
    is_correct: bool | None
    correct_answer: Any = None
    points_earned: float | None
    points_possible: float
    feedback: str | None
    explanation: str | None


class AttemptResultScoringOut(BaseModel):
    raw_score: float | None
    percentage_score: float | None
    passed: bool | None
    grading_complete: bool
    requires_manual_grading: bool


class AttemptResultTimingOut(BaseModel):
    started_at: datetime
    submitted_at: datetime | None
    time_spent_seconds: int
    time_limit_seconds: int | None


class AttemptResultsOut(BaseModel):
    attempt_id: UUID
    assessment_id: UUID
    assessment_title: str
    learner_id: UUID
    attempt_number: int
    status: str
    show_correct_answers: bool
    show_score: bool
    scoring: AttemptResultScoringOut
    timing: AttemptResultTimingOut
    questions: list[AttemptResultQuestionOut]
