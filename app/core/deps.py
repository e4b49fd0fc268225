from fastapi import Request

from app.engine.session import ActiveWorkoutSession
from app.services.store import WorkoutStore


def get_store(request: Request) -> WorkoutStore:
    return request.app.state.store


def get_workout_session(request: Request) -> ActiveWorkoutSession:
    return request.app.state.workout_session
