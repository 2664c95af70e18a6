from assessment_engine.schemas.attempt import (
    AttemptListResponse,
    AttemptOut,
    AttemptQuestionOut,
    AttemptResponseIn,
    AttemptResponsesUpdate,
    AttemptResultsOut,
    AttemptStartIn,
    AttemptStartOut,
    GradeQuestionIn,
)
from assessment_engine.schemas.common import BaseSchema, ErrorOut, PaginationMeta

__all__ = [
    'AttemptListResponse',
    'AttemptOut',
    'AttemptQuestionOut',
    'AttemptResponseIn',
    'AttemptResponsesUpdate',
    'AttemptResultsOut',
    'AttemptStartIn',
    'AttemptStartOut',
    'BaseSchema',
    'ErrorOut',
    'GradeQuestionIn',
    'PaginationMeta',
]
