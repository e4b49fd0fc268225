"""Pytest configuration and fixtures for workout engine tests."""

from datetime import timedelta
from typing import AsyncGenerator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.clock import utc_now
from app.core.config import Settings
from app.core.db import init_db
from app.engine.calculations import total_volume
from app.engine.session import ActiveWorkoutSession
from app.main import app as main_app
from app.schemas.workouts import (
    ExerciseBlock,
    PerformedSet,
    SupersetBlock,
    SupersetExercise,
    WorkoutLogOut,
)
from app.services.store import WorkoutStore, new_id


# -------------------------------------------------------------------------
# Database Fixtures
# -------------------------------------------------------------------------


@pytest.fixture
async def async_engine(tmp_path):
    """File-backed SQLite engine, fresh per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def store(session_factory) -> WorkoutStore:
    return WorkoutStore(session_factory)


# -------------------------------------------------------------------------
# Session Fixtures
# -------------------------------------------------------------------------


class RecordingNotifier:
    """Device notifier that records every cue it receives."""

    def __init__(self):
        self.events: list[tuple] = []

    def timer_near_zero(self, seconds_left: int) -> None:
        self.events.append(("timer_near_zero", seconds_left))

    def timer_complete(self) -> None:
        self.events.append(("timer_complete",))

    def session_saved(self) -> None:
        self.events.append(("session_saved",))

    def names(self) -> list[str]:
        return [e[0] for e in self.events]


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        DEFAULT_REST_BETWEEN_SETS_SEC=60,
        DEFAULT_TRANSITION_SEC=90,
        AUTO_START_REST_TIMER=True,
        TIMER_TICK_MS=10,
        CRASH_RECOVERY_INTERVAL_SEC=0.05,
    )


@pytest.fixture
def devices() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
async def workout_session(store, test_settings, devices) -> AsyncGenerator[ActiveWorkoutSession, None]:
    session = ActiveWorkoutSession(store, test_settings, devices)
    yield session
    session.reset()


@pytest.fixture
def app(store, workout_session) -> FastAPI:
    """The API wired to the per-test store and session."""
    main_app.state.store = store
    main_app.state.workout_session = workout_session
    yield main_app


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# -------------------------------------------------------------------------
# Template Fixtures
# -------------------------------------------------------------------------


@pytest.fixture
async def bench(store):
    return await store.create_exercise("Bench Press")


@pytest.fixture
async def row(store):
    return await store.create_exercise("Barbell Row")


@pytest.fixture
def bench_block(bench) -> ExerciseBlock:
    return ExerciseBlock(
        id="b1",
        exercise_id=bench.id,
        sets=2,
        reps_min=8,
        reps_max=12,
        rest_between_sets_sec=90,
    )


@pytest.fixture
def superset_block(bench, row) -> SupersetBlock:
    return SupersetBlock(
        id="s1",
        sets=2,
        exercises=[
            SupersetExercise(exercise_id=bench.id, reps_min=8, reps_max=10),
            SupersetExercise(exercise_id=row.id, reps_min=8, reps_max=10),
        ],
        rest_between_exercises_sec=30,
        rest_between_supersets_sec=120,
    )


@pytest.fixture
async def bench_template(store, bench_block):
    return await store.create_template("Push Day", [bench_block])


# -------------------------------------------------------------------------
# Log Fixtures
# -------------------------------------------------------------------------


@pytest.fixture
def make_log(store):
    """
    Factory that saves a workout log.

    Sets are given as (exercise_id, exercise_name, weight_g, reps_done).
    """

    async def _make(sets, started_at=None, blocks=None, save=True) -> WorkoutLogOut:
        started = started_at or utc_now()
        performed = [
            PerformedSet(
                exercise_id=exercise_id,
                exercise_name_snapshot=name,
                block_path="block-0",
                set_index=i,
                reps_target_min=1,
                reps_target_max=12,
                reps_done=reps,
                weight_g=weight_g,
            )
            for i, (exercise_id, name, weight_g, reps) in enumerate(sets)
        ]
        log = WorkoutLogOut(
            id=new_id(),
            status="completed",
            template_name="Test Workout",
            template_snapshot=blocks or [],
            performed_sets=performed,
            started_at=started,
            ended_at=started + timedelta(minutes=45),
            duration_sec=45 * 60,
            total_volume_g=total_volume(performed),
        )
        if save:
            await store.add_log(log)
        return log

    return _make
