from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from assessment_engine.models.attempt import AssessmentAttempt, AssessmentAttemptQuestion


@dataclass(frozen=True)
class ScoreSummary:
    raw_score: float
    total_possible: float
    percentage_score: float
    passed: bool | None
    grading_complete: bool


def aggregate(records: Iterable[AssessmentAttemptQuestion], passing_score: float) -> ScoreSummary:
    """Recompute the attempt score from the current per-question points.

    Ungraded records add nothing to the raw score but still count toward the
    total possible. `passed` stays undefined until every record is graded.
    """
    raw_score = 0.0
    total_possible = 0.0
    grading_complete = True
    for record in records:
        total_possible += float(record.points_possible or 0)
        if record.points_earned is None:
            grading_complete = False
        else:
            raw_score += float(record.points_earned)

    percentage = raw_score / total_possible * 100 if total_possible > 0 else 0.0
    passed = percentage >= float(passing_score) if grading_complete else None
    return ScoreSummary(
        raw_score=round(raw_score, 2),
        total_possible=round(total_possible, 2),
        percentage_score=round(percentage, 2),
        passed=passed,
        grading_complete=grading_complete,
    )


def apply_score(attempt: AssessmentAttempt, summary: ScoreSummary) -> None:
    attempt.raw_score = summary.raw_score
    attempt.percentage_score = summary.percentage_score
    attempt.passed = summary.passed
    attempt.grading_complete = summary.grading_complete
