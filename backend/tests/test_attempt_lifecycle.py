from datetime import timedelta

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from assessment_engine.core.errors import AuthorizationDeniedError, NotFoundError, PolicyViolationError
from assessment_engine.models.assessment import Assessment
from assessment_engine.models.attempt import AssessmentAttempt
from assessment_engine.models.question import Question
from assessment_engine.services import attempt_service
from tests.conftest import make_assessment, make_question, new_id


def _start(db: Session, assessment: Assessment, learner_id) -> AssessmentAttempt:
    attempt = attempt_service.start_attempt(
        db, assessment_id=assessment.id, learner_id=learner_id, enrollment_id=new_id()
    )
    db.commit()
    return attempt


def _submit(db: Session, attempt: AssessmentAttempt) -> AssessmentAttempt:
    attempt = attempt_service.submit_attempt(db, attempt_id=attempt.id)
    db.commit()
    return attempt


def _answer(db: Session, attempt: AssessmentAttempt, *answers) -> AssessmentAttempt:
    attempt = attempt_service.save_progress(
        db,
        attempt_id=attempt.id,
        responses=[{'question_index': idx, 'response': answer} for idx, answer in enumerate(answers)],
    )
    db.commit()
    return attempt


def _policy_error(exc_info: pytest.ExceptionInfo) -> str:
    return exc_info.value.code


@pytest.fixture()
def objective_assessment(db_session: Session) -> Assessment:
    make_question(db_session, question_text='Pick A', correct_answer='A', points=10.0, order_index=0)
    make_question(db_session, question_text='Pick B', correct_answer='B', points=5.0, order_index=1)
    return make_assessment(db_session)


@pytest.fixture()
def essay_assessment(db_session: Session) -> Assessment:
    make_question(db_session, question_text='Pick A', correct_answer='A', points=10.0, order_index=0)
    make_question(
        db_session,
        question_text='Explain photosynthesis.',
        question_type='essay',
        options=[],
        correct_answer=None,
        points=20.0,
        order_index=1,
    )
    return make_assessment(db_session)


def test_start_freezes_questions_and_time_limit(db_session: Session, objective_assessment: Assessment) -> None:
    objective_assessment.time_limit_seconds = 600
    db_session.commit()
    learner_id = new_id()

    attempt = _start(db_session, objective_assessment, learner_id)

    assert attempt.status == 'in_progress'
    assert attempt.attempt_number == 1
    assert attempt.time_limit_seconds == 600
    assert [record.points_possible for record in attempt.questions] == [10.0, 5.0]
    assert attempt.questions[0].question_snapshot['question_text'] == 'Pick A'
    assert attempt_service.get_current_attempt(
        db_session, assessment_id=objective_assessment.id, learner_id=learner_id
    ).id == attempt.id


@pytest.mark.parametrize('edited_limit', [3600, None])
def test_time_limit_edits_do_not_reach_open_attempt(
    db_session: Session, objective_assessment: Assessment, edited_limit: int | None
) -> None:
    objective_assessment.time_limit_seconds = 60
    db_session.commit()
    attempt = _start(db_session, objective_assessment, new_id())

    attempt.started_at = attempt.started_at - timedelta(seconds=30)
    db_session.commit()
    attempt = _answer(db_session, attempt, 'A')
    assert 30 <= attempt.time_spent_seconds < 60

    objective_assessment.time_limit_seconds = edited_limit
    attempt.started_at = attempt.started_at - timedelta(seconds=90)
    db_session.commit()

    with pytest.raises(PolicyViolationError) as exc_info:
        _answer(db_session, attempt, 'B')
    assert _policy_error(exc_info) == 'TIME_LIMIT_EXCEEDED'
    assert attempt.time_limit_seconds == 60
    assert attempt.questions[0].response == 'A'


def test_unpublished_assessment_cannot_be_started(db_session: Session) -> None:
    make_question(db_session)
    make_question(db_session, order_index=1)
    draft = make_assessment(db_session, is_published=False)

    with pytest.raises(NotFoundError) as exc_info:
        _start(db_session, draft, new_id())
    assert exc_info.value.message == 'Assessment not found or not published'


def test_second_start_while_in_progress_is_rejected(db_session: Session, objective_assessment: Assessment) -> None:
    learner_id = new_id()
    _start(db_session, objective_assessment, learner_id)

    with pytest.raises(PolicyViolationError) as exc_info:
        _start(db_session, objective_assessment, learner_id)
    assert _policy_error(exc_info) == 'ATTEMPT_IN_PROGRESS'


def test_racing_start_is_stopped_by_in_progress_index(
    db_session: Session, objective_assessment: Assessment, monkeypatch: pytest.MonkeyPatch
) -> None:
    learner_id = new_id()
    _start(db_session, objective_assessment, learner_id)

    # Simulate a concurrent request that read before the first attempt was visible.
    monkeypatch.setattr(attempt_service, '_find_in_progress', lambda *args, **kwargs: None)
    with pytest.raises(PolicyViolationError) as exc_info:
        _start(db_session, objective_assessment, learner_id)
    assert _policy_error(exc_info) == 'ATTEMPT_IN_PROGRESS'

    total = db_session.scalar(select(func.count()).select_from(AssessmentAttempt))
    assert total == 1


def test_attempt_numbers_increase_and_max_attempts_is_enforced(db_session: Session) -> None:
    make_question(db_session)
    make_question(db_session, order_index=1)
    assessment = make_assessment(db_session, max_attempts=2)
    learner_id = new_id()

    first = _submit(db_session, _start(db_session, assessment, learner_id))
    second = _submit(db_session, _start(db_session, assessment, learner_id))
    assert (first.attempt_number, second.attempt_number) == (1, 2)

    with pytest.raises(PolicyViolationError) as exc_info:
        _start(db_session, assessment, learner_id)
    assert _policy_error(exc_info) == 'MAX_ATTEMPTS_REACHED'

    # Another learner has their own allowance.
    assert _start(db_session, assessment, new_id()).attempt_number == 1


def test_instructor_unlock_policy_blocks_retake(db_session: Session) -> None:
    make_question(db_session)
    make_question(db_session, order_index=1)
    assessment = make_assessment(db_session, retake_policy='instructor_unlock')
    learner_id = new_id()
    _submit(db_session, _start(db_session, assessment, learner_id))

    with pytest.raises(PolicyViolationError) as exc_info:
        _start(db_session, assessment, learner_id)
    assert _policy_error(exc_info) == 'INSTRUCTOR_UNLOCK_REQUIRED'


def test_cooldown_policy_waits_after_last_submission(db_session: Session) -> None:
    make_question(db_session)
    make_question(db_session, order_index=1)
    assessment = make_assessment(db_session, retake_policy='after_cooldown', cooldown_minutes=30)
    learner_id = new_id()
    first = _submit(db_session, _start(db_session, assessment, learner_id))

    with pytest.raises(PolicyViolationError) as exc_info:
        _start(db_session, assessment, learner_id)
    assert _policy_error(exc_info) == 'COOLDOWN_ACTIVE'

    first.submitted_at = first.submitted_at - timedelta(minutes=31)
    db_session.commit()
    assert _start(db_session, assessment, learner_id).attempt_number == 2


def test_insufficient_questions_blocks_start(db_session: Session) -> None:
    make_question(db_session)
    assessment = make_assessment(db_session, question_count=3)

    with pytest.raises(PolicyViolationError) as exc_info:
        _start(db_session, assessment, new_id())
    assert _policy_error(exc_info) == 'INSUFFICIENT_QUESTIONS'
    assert db_session.scalar(select(func.count()).select_from(AssessmentAttempt)) == 0


def test_save_progress_by_question_id_and_rejects_unknown_question(
    db_session: Session, objective_assessment: Assessment
) -> None:
    attempt = _start(db_session, objective_assessment, new_id())
    first_question_id = attempt.questions[0].question_id

    attempt = attempt_service.save_progress(
        db_session,
        attempt_id=attempt.id,
        responses=[{'question_id': first_question_id, 'response': 'A'}],
    )
    db_session.commit()
    assert attempt.questions[0].response == 'A'
    assert attempt.questions[1].response is None

    with pytest.raises(PolicyViolationError) as exc_info:
        attempt_service.save_progress(
            db_session,
            attempt_id=attempt.id,
            responses=[
                {'question_index': 1, 'response': 'B'},
                {'question_id': new_id(), 'response': 'C'},
            ],
        )
    assert _policy_error(exc_info) == 'UNKNOWN_QUESTION'
    assert attempt.questions[1].response is None


def test_save_after_time_limit_is_rejected_but_submit_is_accepted(
    db_session: Session, objective_assessment: Assessment
) -> None:
    objective_assessment.time_limit_seconds = 60
    db_session.commit()
    attempt = _answer(db_session, _start(db_session, objective_assessment, new_id()), 'A', 'B')

    attempt.started_at = attempt.started_at - timedelta(seconds=120)
    db_session.commit()

    with pytest.raises(PolicyViolationError) as exc_info:
        attempt_service.save_progress(
            db_session, attempt_id=attempt.id, responses=[{'question_index': 0, 'response': 'C'}]
        )
    assert _policy_error(exc_info) == 'TIME_LIMIT_EXCEEDED'
    assert attempt.questions[0].response == 'A'

    attempt = _submit(db_session, attempt)
    assert attempt.status == 'graded'
    assert attempt.percentage_score == 100.0


def test_submit_grades_objective_questions(db_session: Session, objective_assessment: Assessment) -> None:
    attempt = _answer(db_session, _start(db_session, objective_assessment, new_id()), 'A', 'C')

    attempt = _submit(db_session, attempt)

    assert attempt.status == 'graded'
    assert attempt.raw_score == 10.0
    assert attempt.percentage_score == 66.67
    assert attempt.passed is False
    assert attempt.grading_complete is True
    assert attempt.requires_manual_grading is False
    assert attempt.submitted_at is not None
    assert [record.is_correct for record in attempt.questions] == [True, False]

    with pytest.raises(PolicyViolationError) as exc_info:
        _submit(db_session, attempt)
    assert _policy_error(exc_info) == 'ALREADY_SUBMITTED'

    with pytest.raises(PolicyViolationError) as exc_info:
        _answer(db_session, attempt, 'B')
    assert _policy_error(exc_info) == 'ATTEMPT_NOT_IN_PROGRESS'


def test_points_possible_is_frozen_at_start(db_session: Session, objective_assessment: Assessment) -> None:
    attempt = _start(db_session, objective_assessment, new_id())
    question_id = attempt.questions[0].question_id
    db_session.execute(
        update(Question).where(Question.id == question_id).values(points=50.0, correct_answer='D')
    )
    db_session.commit()

    attempt = _submit(db_session, _answer(db_session, attempt, 'A', 'B'))
    assert attempt.raw_score == 15.0
    assert [record.points_possible for record in attempt.questions] == [10.0, 5.0]


def test_essay_waits_for_manual_grading(db_session: Session, essay_assessment: Assessment) -> None:
    attempt = _answer(db_session, _start(db_session, essay_assessment, new_id()), 'A', 'Light to sugar.')

    attempt = _submit(db_session, attempt)
    assert attempt.status == 'submitted'
    assert attempt.requires_manual_grading is True
    assert attempt.grading_complete is False
    assert attempt.passed is None
    assert attempt.raw_score == 10.0
    assert attempt.questions[1].points_earned is None

    grader_id = new_id()
    attempt = attempt_service.grade_question(
        db_session,
        attempt_id=attempt.id,
        question_index=1,
        points_earned=15,
        feedback='Good outline, missing detail.',
        grader_id=grader_id,
    )
    db_session.commit()

    assert attempt.status == 'graded'
    assert attempt.raw_score == 25.0
    assert attempt.percentage_score == 83.33
    assert attempt.passed is True
    assert attempt.grading_complete is True
    essay = attempt.questions[1]
    assert essay.graded_by == grader_id
    assert essay.is_correct is False
    assert essay.feedback == 'Good outline, missing detail.'


def test_grade_question_validation(db_session: Session, essay_assessment: Assessment) -> None:
    attempt = _start(db_session, essay_assessment, new_id())

    with pytest.raises(PolicyViolationError) as exc_info:
        attempt_service.grade_question(
            db_session, attempt_id=attempt.id, question_index=1, points_earned=5, feedback=None, grader_id=new_id()
        )
    assert _policy_error(exc_info) == 'ATTEMPT_NOT_SUBMITTED'

    attempt = _submit(db_session, _answer(db_session, attempt, 'A', 'Essay body'))

    cases = [
        (1, 25, 'SCORE_EXCEEDS_POSSIBLE'),
        (7, 5, 'INVALID_QUESTION_INDEX'),
        (-1, 5, 'INVALID_QUESTION_INDEX'),
        (1, -2, 'INVALID_SCORE'),
        (1, float('nan'), 'INVALID_SCORE'),
        (1, float('inf'), 'INVALID_SCORE'),
    ]
    for question_index, points, code in cases:
        with pytest.raises(PolicyViolationError) as exc_info:
            attempt_service.grade_question(
                db_session,
                attempt_id=attempt.id,
                question_index=question_index,
                points_earned=points,
                feedback=None,
                grader_id=new_id(),
            )
        assert _policy_error(exc_info) == code
    assert attempt.questions[1].points_earned is None
    assert attempt.status == 'submitted'


def test_results_access_and_visibility(db_session: Session, essay_assessment: Assessment) -> None:
    essay_assessment.show_correct_answers = 'never'
    essay_assessment.feedback_timing = 'after_grading'
    db_session.commit()
    learner_id = new_id()
    attempt = _start(db_session, essay_assessment, learner_id)

    with pytest.raises(PolicyViolationError) as exc_info:
        attempt_service.get_attempt_results(db_session, attempt_id=attempt.id, viewer_id=learner_id)
    assert _policy_error(exc_info) == 'ATTEMPT_NOT_COMPLETE'

    attempt = _submit(db_session, _answer(db_session, attempt, 'A', 'Essay body'))

    with pytest.raises(AuthorizationDeniedError):
        attempt_service.get_attempt_results(db_session, attempt_id=attempt.id, viewer_id=new_id())

    attempt.questions[1].feedback = 'Draft note'
    db_session.commit()

    results = attempt_service.get_attempt_results(db_session, attempt_id=attempt.id, viewer_id=learner_id)
    assert results['show_correct_answers'] is False
    assert results['scoring']['raw_score'] == 10.0
    assert results['scoring']['passed'] is None
    assert [question['correct_answer'] for question in results['questions']] == [None, None]
    assert results['questions'][1]['feedback'] is None
    assert results['questions'][0]['explanation'] == 'A is the documented answer.'

    staff_view = attempt_service.get_attempt_results(
        db_session, attempt_id=attempt.id, viewer_id=new_id(), is_staff=True
    )
    assert staff_view['show_correct_answers'] is True
    assert staff_view['questions'][0]['correct_answer'] == 'A'
    assert staff_view['questions'][1]['feedback'] == 'Draft note'


def test_results_hide_scores_when_configured(db_session: Session, objective_assessment: Assessment) -> None:
    objective_assessment.show_score = False
    objective_assessment.show_explanations = False
    db_session.commit()
    learner_id = new_id()
    attempt = _submit(db_session, _answer(db_session, _start(db_session, objective_assessment, learner_id), 'A', 'B'))

    results = attempt_service.get_attempt_results(db_session, attempt_id=attempt.id, viewer_id=learner_id)
    assert results['scoring']['percentage_score'] is None
    assert results['scoring']['passed'] is None
    assert results['questions'][0]['points_earned'] is None
    assert results['questions'][0]['is_correct'] is None
    assert results['questions'][0]['explanation'] is None
    assert results['questions'][0]['correct_answer'] == 'A'


def test_correct_answers_after_all_attempts(db_session: Session) -> None:
    make_question(db_session)
    make_question(db_session, order_index=1)
    assessment = make_assessment(db_session, max_attempts=2, show_correct_answers='after_all_attempts')
    learner_id = new_id()

    first = _submit(db_session, _start(db_session, assessment, learner_id))
    results = attempt_service.get_attempt_results(db_session, attempt_id=first.id, viewer_id=learner_id)
    assert results['show_correct_answers'] is False

    _submit(db_session, _start(db_session, assessment, learner_id))
    results = attempt_service.get_attempt_results(db_session, attempt_id=first.id, viewer_id=learner_id)
    assert results['show_correct_answers'] is True
    assert results['questions'][0]['correct_answer'] == 'A'


def test_list_attempts_paginates_newest_first(db_session: Session) -> None:
    make_question(db_session)
    make_question(db_session, order_index=1)
    assessment = make_assessment(db_session, max_attempts=None)
    learner_id = new_id()
    for _ in range(3):
        _submit(db_session, _start(db_session, assessment, learner_id))
    _start(db_session, assessment, new_id())

    items, total = attempt_service.list_attempts(
        db_session, assessment_id=assessment.id, learner_id=learner_id, page=1, page_size=2
    )
    assert total == 3
    assert [item.attempt_number for item in items] == [3, 2]

    items, total = attempt_service.list_attempts(
        db_session, assessment_id=assessment.id, status='in_progress', page=1, page_size=10
    )
    assert total == 1
    assert items[0].learner_id != learner_id


def test_abandon_attempt_frees_the_slot(db_session: Session, objective_assessment: Assessment) -> None:
    learner_id = new_id()
    attempt = _start(db_session, objective_assessment, learner_id)

    attempt = attempt_service.abandon_attempt(db_session, attempt_id=attempt.id)
    db_session.commit()
    assert attempt.status == 'abandoned'

    with pytest.raises(PolicyViolationError) as exc_info:
        _submit(db_session, attempt)
    assert _policy_error(exc_info) == 'ATTEMPT_NOT_IN_PROGRESS'

    assert _start(db_session, objective_assessment, learner_id).attempt_number == 2


def _bump_version(db: Session, attempt_id, **values) -> None:
    # Another writer commits a change behind this session's back.
    table = AssessmentAttempt.__table__
    db.execute(update(table).where(table.c.id == attempt_id).values(version=table.c.version + 1, **values))


def test_write_between_read_and_flush_is_reported_as_concurrent_modification(
    db_session: Session, objective_assessment: Assessment, monkeypatch: pytest.MonkeyPatch
) -> None:
    attempt = _start(db_session, objective_assessment, new_id())
    resolve_record = attempt_service._resolve_record

    def resolve_after_concurrent_write(locked_attempt, item):
        _bump_version(db_session, locked_attempt.id)
        return resolve_record(locked_attempt, item)

    monkeypatch.setattr(attempt_service, '_resolve_record', resolve_after_concurrent_write)
    with pytest.raises(PolicyViolationError) as exc_info:
        attempt_service.save_progress(
            db_session, attempt_id=attempt.id, responses=[{'question_index': 0, 'response': 'A'}]
        )
    assert _policy_error(exc_info) == 'CONCURRENT_MODIFICATION'


def test_locked_read_sees_submission_committed_after_earlier_load(
    db_session: Session, objective_assessment: Assessment
) -> None:
    attempt = _start(db_session, objective_assessment, new_id())
    # The ownership check loads the attempt before the locked read.
    loaded = attempt_service.get_attempt(db_session, attempt.id)
    assert loaded.status == 'in_progress'

    _bump_version(db_session, attempt.id, status='submitted', submitted_at=loaded.started_at)
    db_session.commit()

    with pytest.raises(PolicyViolationError) as exc_info:
        _submit(db_session, attempt)
    assert _policy_error(exc_info) == 'ALREADY_SUBMITTED'
    assert loaded.status == 'submitted'


def test_sweep_submits_or_abandons_expired_attempts(db_session: Session) -> None:
    make_question(db_session)
    make_question(db_session, correct_answer='B', points=5.0, order_index=1)
    auto_submit = make_assessment(
        db_session, title='Timed, auto submit', time_limit_seconds=60, auto_submit_on_expiry=True
    )
    no_submit = make_assessment(db_session, title='Timed, abandon', time_limit_seconds=60)
    untimed = make_assessment(db_session, title='Untimed')

    expired_submit = _answer(db_session, _start(db_session, auto_submit, new_id()), 'A', 'A')
    expired_abandon = _start(db_session, no_submit, new_id())
    fresh = _start(db_session, auto_submit, new_id())
    open_ended = _start(db_session, untimed, new_id())
    for attempt in (expired_submit, expired_abandon):
        attempt.started_at = attempt.started_at - timedelta(minutes=5)
    db_session.commit()

    outcome = attempt_service.sweep_expired_attempts(db_session)

    assert outcome == {'submitted': 1, 'abandoned': 1, 'skipped': 0}
    assert expired_submit.status == 'graded'
    assert expired_submit.percentage_score == 66.67
    assert expired_abandon.status == 'abandoned'
    assert fresh.status == 'in_progress'
    assert open_ended.status == 'in_progress'


def test_sweep_batch_takes_oldest_expired_attempts_first(db_session: Session) -> None:
    make_question(db_session)
    make_question(db_session, order_index=1)
    short = make_assessment(db_session, title='One minute', time_limit_seconds=60)
    long = make_assessment(db_session, title='One hour', time_limit_seconds=3600)

    oldest = _start(db_session, short, new_id())
    newer = _start(db_session, short, new_id())
    within_hour = _start(db_session, long, new_id())
    oldest.started_at = oldest.started_at - timedelta(minutes=30)
    newer.started_at = newer.started_at - timedelta(minutes=10)
    within_hour.started_at = within_hour.started_at - timedelta(minutes=40)
    db_session.commit()

    outcome = attempt_service.sweep_expired_attempts(db_session, limit=1)
    assert outcome == {'submitted': 0, 'abandoned': 1, 'skipped': 0}
    assert oldest.status == 'abandoned'
    assert newer.status == 'in_progress'

    outcome = attempt_service.sweep_expired_attempts(db_session)
    assert outcome == {'submitted': 0, 'abandoned': 1, 'skipped': 0}
    assert newer.status == 'abandoned'
    assert within_hour.status == 'in_progress'
