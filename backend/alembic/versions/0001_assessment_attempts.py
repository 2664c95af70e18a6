"""create question bank, assessment and attempt tables

Revision ID: 0001_assessment_attempts
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = '0001_assessment_attempts'
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def _audit_users() -> list[sa.Column]:
    return [
        sa.Column('created_by', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('updated_by', postgresql.UUID(as_uuid=True), nullable=True),
    ]


def _jsonb_list(name: str, nullable: bool = False) -> sa.Column:
    if nullable:
        return sa.Column(name, postgresql.JSONB(astext_type=sa.Text()), nullable=True)
    return sa.Column(
        name, postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'[]'::jsonb")
    )


def upgrade() -> None:
    op.create_table(
        'questions',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        _jsonb_list('bank_ids'),
        sa.Column('question_text', sa.Text(), nullable=False),
        sa.Column('question_type', sa.String(length=30), nullable=False),
        _jsonb_list('options'),
        sa.Column('correct_answer', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('points', sa.Float(), nullable=False, server_default='1'),
        _jsonb_list('tags'),
        sa.Column('difficulty', sa.String(length=20), nullable=True),
        sa.Column('explanation', sa.Text(), nullable=True),
        sa.Column('order_index', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        *_timestamps(),
        *_audit_users(),
        sa.CheckConstraint(
            "question_type in ('multiple-choice', 'true-false', 'short-answer', 'fill-blank', 'matching', 'essay')",
            name='question_type_values',
        ),
        sa.CheckConstraint('points >= 0', name='question_points_non_negative'),
        sa.CheckConstraint(
            "difficulty is null or difficulty in ('beginner', 'intermediate', 'advanced')",
            name='question_difficulty_values',
        ),
    )
    op.create_index('ix_questions_question_type', 'questions', ['question_type'])
    op.create_index('ix_questions_difficulty', 'questions', ['difficulty'])
    op.create_index('ix_questions_active_order', 'questions', ['is_active', 'order_index'])

    op.create_table(
        'assessments',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        _jsonb_list('bank_ids'),
        sa.Column('question_count', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('selection_mode', sa.String(length=20), nullable=False, server_default='sequential'),
        _jsonb_list('filter_tags', nullable=True),
        _jsonb_list('filter_difficulties', nullable=True),
        sa.Column('time_limit_seconds', sa.Integer(), nullable=True),
        sa.Column('show_timer', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('auto_submit_on_expiry', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('max_attempts', sa.Integer(), nullable=True),
        sa.Column('retake_policy', sa.String(length=30), nullable=False, server_default='anytime'),
        sa.Column('cooldown_minutes', sa.Integer(), nullable=True),
        sa.Column('passing_score', sa.Float(), nullable=False, server_default='70'),
        sa.Column('show_score', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('show_correct_answers', sa.String(length=30), nullable=False, server_default='after_submit'),
        sa.Column('partial_credit', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('show_feedback', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('feedback_timing', sa.String(length=30), nullable=False, server_default='after_submit'),
        sa.Column('show_explanations', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('is_published', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('is_archived', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('published_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        *_audit_users(),
        sa.CheckConstraint("selection_mode in ('sequential', 'random')", name='assessment_selection_mode_values'),
        sa.CheckConstraint(
            "retake_policy in ('anytime', 'after_cooldown', 'instructor_unlock')",
            name='assessment_retake_policy_values',
        ),
        sa.CheckConstraint(
            "show_correct_answers in ('never', 'after_submit', 'after_all_attempts')",
            name='assessment_show_correct_answers_values',
        ),
        sa.CheckConstraint(
            "feedback_timing in ('immediate', 'after_submit', 'after_grading')",
            name='assessment_feedback_timing_values',
        ),
        sa.CheckConstraint('question_count >= 1', name='assessment_question_count_positive'),
        sa.CheckConstraint('max_attempts is null or max_attempts >= 1', name='assessment_max_attempts_positive'),
        sa.CheckConstraint('passing_score >= 0 and passing_score <= 100', name='assessment_passing_score_range'),
    )
    op.create_index('ix_assessments_title', 'assessments', ['title'])
    op.create_index('ix_assessments_is_published', 'assessments', ['is_published'])
    op.create_index('ix_assessments_is_archived', 'assessments', ['is_archived'])
    op.create_index('ix_assessments_published_archived', 'assessments', ['is_published', 'is_archived'])

    op.create_table(
        'assessment_attempts',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column('assessment_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('learner_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('enrollment_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('module_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('learning_unit_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('attempt_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('status', sa.String(length=30), nullable=False, server_default='in_progress'),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_activity_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('time_spent_seconds', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('time_limit_seconds', sa.Integer(), nullable=True),
        sa.Column('raw_score', sa.Float(), nullable=True),
        sa.Column('percentage_score', sa.Float(), nullable=True),
        sa.Column('passed', sa.Boolean(), nullable=True),
        sa.Column('grading_complete', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('requires_manual_grading', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['assessment_id'], ['assessments.id'], ondelete='RESTRICT'),
        sa.UniqueConstraint('assessment_id', 'learner_id', 'attempt_number', name='uq_assessment_attempt_number'),
        sa.CheckConstraint(
            "status in ('in_progress', 'submitted', 'graded', 'abandoned')",
            name='assessment_attempt_status_values',
        ),
        sa.CheckConstraint('attempt_number >= 1', name='assessment_attempt_number_positive'),
        sa.CheckConstraint('time_spent_seconds >= 0', name='assessment_attempt_time_spent_non_negative'),
    )
    op.create_index(
        'uq_assessment_attempt_in_progress',
        'assessment_attempts',
        ['assessment_id', 'learner_id'],
        unique=True,
        postgresql_where=sa.text("status = 'in_progress'"),
    )
    op.create_index('ix_assessment_attempts_learner_status', 'assessment_attempts', ['learner_id', 'status'])
    op.create_index('ix_assessment_attempts_assessment_status', 'assessment_attempts', ['assessment_id', 'status'])
    op.create_index('ix_assessment_attempts_enrollment_id', 'assessment_attempts', ['enrollment_id'])

    op.create_table(
        'assessment_attempt_questions',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column('attempt_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('question_index', sa.Integer(), nullable=False),
        sa.Column('question_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column(
            'question_snapshot',
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column('response', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('is_correct', sa.Boolean(), nullable=True),
        sa.Column('points_earned', sa.Float(), nullable=True),
        sa.Column('points_possible', sa.Float(), nullable=False),
        sa.Column('graded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('graded_by', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('feedback', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['attempt_id'], ['assessment_attempts.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['question_id'], ['questions.id'], ondelete='SET NULL'),
        sa.UniqueConstraint('attempt_id', 'question_index', name='uq_assessment_attempt_question_order'),
        sa.CheckConstraint('points_possible >= 0', name='assessment_attempt_question_possible_non_negative'),
        sa.CheckConstraint(
            'points_earned is null or points_earned >= 0',
            name='assessment_attempt_question_earned_non_negative',
        ),
    )
    op.create_index(
        'ix_assessment_attempt_questions_attempt_id', 'assessment_attempt_questions', ['attempt_id']
    )


def downgrade() -> None:
    op.drop_index('ix_assessment_attempt_questions_attempt_id', table_name='assessment_attempt_questions')
    op.drop_table('assessment_attempt_questions')

    op.drop_index('ix_assessment_attempts_enrollment_id', table_name='assessment_attempts')
    op.drop_index('ix_assessment_attempts_assessment_status', table_name='assessment_attempts')
    op.drop_index('ix_assessment_attempts_learner_status', table_name='assessment_attempts')
    op.drop_index('uq_assessment_attempt_in_progress', table_name='assessment_attempts')
    op.drop_table('assessment_attempts')

    op.drop_index('ix_assessments_published_archived', table_name='assessments')
    op.drop_index('ix_assessments_is_archived', table_name='assessments')
    op.drop_index('ix_assessments_is_published', table_name='assessments')
    op.drop_index('ix_assessments_title', table_name='assessments')
    op.drop_table('assessments')

    op.drop_index('ix_questions_active_order', table_name='questions')
    op.drop_index('ix_questions_difficulty', table_name='questions')
    op.drop_index('ix_questions_question_type', table_name='questions')
    op.drop_table('questions')
