from assessment_engine.db.base_class import Base
from assessment_engine.models.assessment import Assessment
from assessment_engine.models.attempt import AssessmentAttempt, AssessmentAttemptQuestion
from assessment_engine.models.question import Question


__all__ = [
    'Assessment',
    'AssessmentAttempt',
    'AssessmentAttemptQuestion',
    'Base',
    'Question',
]
