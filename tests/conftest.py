"""Shared pytest fixtures for StudyBuddy matching tests."""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import app.models  # noqa: F401  (registers every table on Base.metadata)
from app.database import Base
from app.models import (
    CharacteristicProfile,
    Course,
    GroupVisibility,
    QuizOption,
    QuizQuestion,
    QuizStatus,
    StudyGroup,
    User,
)
from app.roles import to_json


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Fresh SQLite database file per test (separate connections see each
    other's commits, which the recompute workers rely on)."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'studybuddy.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_user(db_session):
    counter = {"n": 0}

    async def _make_user(courses=(), scores=None, status=QuizStatus.COMPLETED):
        counter["n"] += 1
        user = User(
            email=f"student{counter['n']}@uni.test",
            display_name=f"Student {counter['n']}",
        )
        user.courses.extend(courses)
        db_session.add(user)
        await db_session.flush()
        if scores is not None:
            db_session.add(
                CharacteristicProfile(
                    user_id=user.id,
                    role_scores=to_json(scores),
                    quiz_status=status.value,
                    total_questions=3,
                    answered_questions=3 if status is QuizStatus.COMPLETED else 0,
                )
            )
            await db_session.flush()
        return user

    return _make_user


@pytest.fixture
def make_group(db_session):
    async def _make_group(course, members=(), max_size=6, visibility=GroupVisibility.OPEN, name=None):
        group = StudyGroup(
            name=name or f"{course.code} study group",
            course_id=course.id,
            max_size=max_size,
            visibility=visibility.value,
        )
        group.members.extend(members)
        db_session.add(group)
        await db_session.flush()
        return group

    return _make_group


@pytest_asyncio.fixture
async def course(db_session):
    course = Course(code="CS101", name="Intro to Computer Science")
    db_session.add(course)
    await db_session.flush()
    return course


@pytest_asyncio.fixture
async def quiz_questions(db_session):
    """Three active questions:

    Q1: A -> LEADER 1.0           B -> CHALLENGER 1.0
    Q2: A -> LEADER 0.5, PLANNER 1.0   B -> CHALLENGER 0.8
    Q3: A -> EXPERT 1.0, LEADER 0.0    B -> CREATIVE 0.6
    """
    layout = [
        ("How do you start a group project?", [
            ("I assign tasks to everyone", {"LEADER": 1.0}),
            ("I question whether the plan makes sense", {"CHALLENGER": 1.0}),
        ]),
        ("A deadline is two days away. You...", [
            ("Draw up a schedule", {"LEADER": 0.5, "PLANNER": 1.0}),
            ("Push back on the scope", {"CHALLENGER": 0.8}),
        ]),
        ("What do you bring to a study session?", [
            ("Deep knowledge of the material", {"EXPERT": 1.0, "LEADER": 0.0}),
            ("Fresh ideas", {"CREATIVE": 0.6}),
        ]),
    ]
    questions = []
    for q_index, (text, options) in enumerate(layout):
        question = QuizQuestion(question_text=text, order_index=q_index, active=True)
        for o_index, (option_text, weights) in enumerate(options):
            question.options.append(
                QuizOption(option_text=option_text, order_index=o_index, role_weights=weights)
            )
        db_session.add(question)
        questions.append(question)
    await db_session.flush()
    return questions
