from assessment_engine.models.attempt import AssessmentAttemptQuestion
from assessment_engine.services.score_aggregator import aggregate


def _record(points_possible: float, points_earned: float | None) -> AssessmentAttemptQuestion:
    return AssessmentAttemptQuestion(points_possible=points_possible, points_earned=points_earned)


def test_all_graded_computes_percentage_and_pass() -> None:
    summary = aggregate([_record(10, 10), _record(5, 0)], passing_score=60)
    assert summary.raw_score == 10
    assert summary.total_possible == 15
    assert summary.percentage_score == 66.67
    assert summary.grading_complete is True
    assert summary.passed is True


def test_ungraded_record_leaves_passed_undefined() -> None:
    summary = aggregate([_record(10, 10), _record(20, None)], passing_score=70)
    assert summary.raw_score == 10
    assert summary.total_possible == 30
    assert summary.percentage_score == 33.33
    assert summary.grading_complete is False
    assert summary.passed is None


def test_pass_threshold_is_inclusive() -> None:
    summary = aggregate([_record(10, 7), _record(10, 7)], passing_score=70)
    assert summary.percentage_score == 70.0
    assert summary.passed is True


def test_rounding_does_not_turn_a_fail_into_a_pass() -> None:
    # 2/3 is 66.666..., which rounds to 66.67 but must still fail a 66.67 bar.
    summary = aggregate([_record(3, 2)], passing_score=66.67)
    assert summary.percentage_score == 66.67
    assert summary.passed is False


def test_zero_possible_points_scores_zero_percent() -> None:
    summary = aggregate([_record(0, 0)], passing_score=0)
    assert summary.percentage_score == 0.0
    assert summary.passed is True
