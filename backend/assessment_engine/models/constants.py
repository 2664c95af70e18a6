QUESTION_TYPE_VALUES = [
    'multiple-choice',
    'true-false',
    'short-answer',
    'fill-blank',
    'matching',
    'essay',
]
DIFFICULTY_VALUES = ['beginner', 'intermediate', 'advanced']

SELECTION_MODE_VALUES = ['sequential', 'random']
RETAKE_POLICY_VALUES = ['anytime', 'after_cooldown', 'instructor_unlock']
SHOW_CORRECT_ANSWERS_VALUES = ['never', 'after_submit', 'after_all_attempts']
FEEDBACK_TIMING_VALUES = ['immediate', 'after_submit', 'after_grading']

ATTEMPT_STATUS_IN_PROGRESS = 'in_progress'
ATTEMPT_STATUS_SUBMITTED = 'submitted'
ATTEMPT_STATUS_GRADED = 'graded'
ATTEMPT_STATUS_ABANDONED = 'abandoned'
ATTEMPT_STATUS_VALUES = [
    ATTEMPT_STATUS_IN_PROGRESS,
    ATTEMPT_STATUS_SUBMITTED,
    ATTEMPT_STATUS_GRADED,
    ATTEMPT_STATUS_ABANDONED,
]

STAFF_ROLE_VALUES = ['instructor', 'grader', 'admin']


def sql_in(values: list[str]) -> str:
    return ', '.join(f"'{value}'" for value in values)
