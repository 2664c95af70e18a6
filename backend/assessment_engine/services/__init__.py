from assessment_engine.services import (
    assessment_policy,
    attempt_service,
    auto_grader,
    question_snapshot,
    score_aggregator,
)

__all__ = [
    'assessment_policy',
    'attempt_service',
    'auto_grader',
    'question_snapshot',
    'score_aggregator',
]
