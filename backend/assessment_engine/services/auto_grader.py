"""Grading rules for objective question types.

Every function here is pure: it looks only at the frozen question snapshot and
the learner's response. Subjective types are reported back as needing a human
grader and are left ungraded.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


EXACT_MATCH_TYPES = {'multiple-choice', 'true-false'}
TEXT_MATCH_TYPES = {'short-answer', 'fill-blank'}
MAPPING_TYPES = {'matching'}
OBJECTIVE_TYPES = EXACT_MATCH_TYPES | TEXT_MATCH_TYPES | MAPPING_TYPES


@dataclass(frozen=True)
class GradeResult:
    is_correct: bool | None
    points_earned: float | None
    requires_manual: bool = False


MANUAL = GradeResult(is_correct=None, points_earned=None, requires_manual=True)


def requires_manual_grading(question_type: str | None) -> bool:
    return question_type not in OBJECTIVE_TYPES


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)


def _is_blank(response: Any) -> bool:
    if response is None:
        return True
    if isinstance(response, str):
        return not response.strip()
    if isinstance(response, (list, tuple, dict)):
        return len(response) == 0
    return False


def _all_or_nothing(is_correct: bool, points_possible: float) -> GradeResult:
    return GradeResult(is_correct=is_correct, points_earned=points_possible if is_correct else 0.0)


def _grade_exact(
    correct: Any, response: Any, points_possible: float, partial_credit: bool
) -> GradeResult:
    if isinstance(response, (list, tuple)):
        expected = {_as_text(item) for item in (correct if isinstance(correct, (list, tuple)) else [correct])}
        given = {_as_text(item) for item in response}
        is_correct = bool(expected) and given == expected
        if is_correct or not partial_credit or not expected:
            return _all_or_nothing(is_correct, points_possible)
        hits = len(given & expected)
        wrong = len(given - expected)
        fraction = max(0, hits - wrong) / len(expected)
        return GradeResult(is_correct=False, points_earned=round(points_possible * fraction, 2))

    if isinstance(correct, (list, tuple)):
        # A single scalar answer can only match a single-option key.
        is_correct = len(correct) == 1 and _as_text(correct[0]) == _as_text(response)
    else:
        is_correct = correct is not None and _as_text(correct) == _as_text(response)
    return _all_or_nothing(is_correct, points_possible)


def _grade_text(accepted: list[str], response: Any, points_possible: float) -> GradeResult:
    if not isinstance(response, str):
        return _all_or_nothing(False, points_possible)
    candidate = response.strip().casefold()
    is_correct = any(candidate == answer.strip().casefold() for answer in accepted)
    return _all_or_nothing(is_correct, points_possible)


def _grade_mapping(
    correct: Any, response: Any, points_possible: float, partial_credit: bool
) -> GradeResult:
    if not isinstance(correct, dict) or not correct or not isinstance(response, dict):
        return _all_or_nothing(False, points_possible)
    expected = {str(key): _as_text(value) for key, value in correct.items()}
    given = {str(key): _as_text(value) for key, value in response.items()}
    is_correct = given == expected
    if is_correct or not partial_credit:
        return _all_or_nothing(is_correct, points_possible)
    matched = sum(1 for key, value in expected.items() if given.get(key) == value)
    return GradeResult(is_correct=False, points_earned=round(points_possible * matched / len(expected), 2))


def grade_response(
    snapshot: dict[str, Any],
    response: Any,
    points_possible: float,
    *,
    partial_credit: bool = False,
) -> GradeResult:
    question_type = snapshot.get('question_type')
    if requires_manual_grading(question_type):
        return MANUAL

    if _is_blank(response):
        return _all_or_nothing(False, points_possible)

    if question_type in EXACT_MATCH_TYPES:
        return _grade_exact(snapshot.get('correct_answer'), response, points_possible, partial_credit)
    if question_type in TEXT_MATCH_TYPES:
        accepted = snapshot.get('accepted_answers')
        if accepted is None:
            correct = snapshot.get('correct_answer')
            if correct is None:
                accepted = []
            elif isinstance(correct, list):
                accepted = [str(item) for item in correct]
            else:
                accepted = [str(correct)]
        return _grade_text(accepted, response, points_possible)
    return _grade_mapping(snapshot.get('correct_answer'), response, points_possible, partial_credit)
