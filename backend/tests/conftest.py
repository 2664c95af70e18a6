import os
import uuid
from collections.abc import Generator
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite://')
os.environ.setdefault('JWT_SECRET_KEY', 'test-access-secret-32-chars-min-0001')
os.environ.setdefault('APP_ENV', 'test')
os.environ.setdefault('CORS_ORIGINS', 'http://localhost:3001')
os.environ.setdefault('LOG_LEVEL', 'WARNING')

from assessment_engine.core.security import create_access_token
from assessment_engine.db.base import Base
from assessment_engine.db.session import get_db
from assessment_engine.main import app
from assessment_engine.models.assessment import Assessment
from assessment_engine.models.question import Question


BANK_ID = 'bank-general'

engine = create_engine(
    'sqlite://',
    connect_args={'check_same_thread': False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture(autouse=True)
def setup_database() -> Generator[None, None, None]:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    yield

    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def _override_db() -> Generator[Session, None, None]:
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = _override_db

    with TestClient(app) as api_client:
        yield api_client

    app.dependency_overrides.clear()


def make_question(db: Session, **overrides: Any) -> Question:
    values: dict[str, Any] = {
        'bank_ids': [BANK_ID],
        'question_text': 'Which option is correct?',
        'question_type': 'multiple-choice',
        'options': ['A', 'B', 'C', 'D'],
        'correct_answer': 'A',
        'points': 10.0,
        'tags': [],
        'difficulty': 'beginner',
        'explanation': 'A is the documented answer.',
        'order_index': 0,
        'is_active': True,
    }
    values.update(overrides)
    question = Question(**values)
    db.add(question)
    db.commit()
    return question


def make_assessment(db: Session, **overrides: Any) -> Assessment:
    values: dict[str, Any] = {
        'title': 'Module 1 Quiz',
        'bank_ids': [BANK_ID],
        'question_count': 2,
        'selection_mode': 'sequential',
        'time_limit_seconds': None,
        'show_timer': True,
        'auto_submit_on_expiry': False,
        'max_attempts': 3,
        'retake_policy': 'anytime',
        'cooldown_minutes': None,
        'passing_score': 70.0,
        'show_score': True,
        'show_correct_answers': 'after_submit',
        'partial_credit': False,
        'show_feedback': True,
        'feedback_timing': 'after_submit',
        'show_explanations': True,
        'is_published': True,
        'is_archived': False,
    }
    values.update(overrides)
    assessment = Assessment(**values)
    db.add(assessment)
    db.commit()
    return assessment


def new_id() -> uuid.UUID:
    return uuid.uuid4()


def token_for(user_id: uuid.UUID, *roles: str) -> str:
    return create_access_token(str(user_id), roles=list(roles or ('learner',)))


def auth_header(access_token: str) -> dict[str, str]:
    return {'Authorization': f'Bearer {access_token}'}
