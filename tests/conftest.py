"""Root conftest for all tests.

Shared fixtures: an isolated in-memory SQLite database per test, a
SqlRemoteStore bound to it, and factories for templates.
"""

from collections.abc import Callable
from typing import Any

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from coachcore.db import models
from coachcore.db.models import Base
from coachcore.db.session import make_session_factory
from coachcore.store.sql import SqlRemoteStore

TRAINER_ID = "trainer-1"


def catalog_ref(workout_id: str) -> dict[str, Any]:
    return {"source": "workoutsTable", "workoutId": workout_id}


def program_state(weeks: list[list[dict[str, Any]]], phase_title: str = "Phase 1") -> dict[str, Any]:
    """Single-phase program state from a list of weeks, each a list of raw day dicts."""
    return {"phases": [{"title": phase_title, "weeks": [{"days": days} for days in weeks]}]}


@pytest.fixture
def engine() -> Engine:
    """In-memory SQLite shared across worker threads."""
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return make_session_factory(engine)


@pytest.fixture
def store(session_factory: sessionmaker[Session]) -> SqlRemoteStore:
    return SqlRemoteStore(session_factory=session_factory)


@pytest.fixture
def make_workout_template(session_factory: sessionmaker[Session]) -> Callable[..., str]:
    """Insert a workout template; `sets` maps exercise id to its authored set count."""

    def _make(
        workout_id: str = "w-1",
        sets: dict[str, int] | None = None,
        title: str = "Workout",
        series_id: str = "s-1",
    ) -> str:
        exercises = [
            {"id": exercise_id, "title": exercise_id.upper(), "sets": [{} for _ in range(count)]}
            for exercise_id, count in (sets or {"squat": 2}).items()
        ]
        with session_factory() as session:
            session.add(
                models.WorkoutTemplate(
                    id=workout_id,
                    trainer_id=TRAINER_ID,
                    title=title,
                    state={"series": [{"id": series_id, "exercises": exercises}]},
                )
            )
            session.commit()
        return workout_id

    return _make


@pytest.fixture
def make_program_template(session_factory: sessionmaker[Session]) -> Callable[..., str]:
    def _make(program_id: str = "p-1", state: dict[str, Any] | None = None, title: str = "Program") -> str:
        with session_factory() as session:
            session.add(
                models.ProgramTemplate(
                    id=program_id,
                    owner_trainer_id=TRAINER_ID,
                    title=title,
                    state=state or {"phases": []},
                )
            )
            session.commit()
        return program_id

    return _make


@pytest.fixture
def two_week_program(make_workout_template, make_program_template) -> str:
    """Program with 9 authored days; days d1, d3, d8 reference catalog workouts."""
    make_workout_template("w-a")
    make_workout_template("w-b")
    state = program_state(
        [
            [
                {"id": "d1", "workouts": [catalog_ref("w-a")]},
                {"id": "d2"},
                {"id": "d3", "workoutRef": catalog_ref("w-b")},
                {"id": "d4"},
                {"id": "d5"},
                {"id": "d6"},
                {"id": "d7"},
            ],
            [
                {"id": "d8", "workouts": [{"source": "legacy", "inlineWorkoutId": "x"}, catalog_ref("w-a")]},
                {"id": "d9", "workouts": [{"source": "legacy", "inlineWorkoutId": "y"}]},
            ],
        ]
    )
    return make_program_template("p-1", state=state)
