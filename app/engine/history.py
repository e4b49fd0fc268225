"""Lookups over saved logs used to prefill weights for the next session."""

import asyncio
from collections.abc import Iterable

from app.schemas.workouts import PerformedSet
from app.services.store import WorkoutStore


async def get_last_performed_sets(store: WorkoutStore, exercise_id: str) -> list[PerformedSet]:
    """Sets of this exercise from the most recent log that contains it."""
    latest = await store.latest_history_for_exercise(exercise_id)
    if latest is None:
        return []
    log = await store.get_log(latest.log_id)
    if log is None:
        return []
    return [s for s in log.performed_sets if s.exercise_id == exercise_id]


async def get_last_performed_sets_for_multiple(
    store: WorkoutStore, exercise_ids: Iterable[str]
) -> dict[str, list[PerformedSet]]:
    """
    Batched variant of get_last_performed_sets.

    Looks up only the latest history row per exercise, then loads each
    distinct log once. Exercises with no history are left out.
    """
    unique_ids = sorted({e for e in exercise_ids if e})
    if not unique_ids:
        return {}

    latest = await asyncio.gather(*(store.latest_history_for_exercise(e) for e in unique_ids))
    log_id_by_exercise = {
        exercise_id: entry.log_id
        for exercise_id, entry in zip(unique_ids, latest)
        if entry is not None
    }
    logs = await store.bulk_get_logs(log_id_by_exercise.values())

    result: dict[str, list[PerformedSet]] = {}
    for exercise_id, log_id in log_id_by_exercise.items():
        log = logs.get(log_id)
        if log is None:
            continue
        sets = [s for s in log.performed_sets if s.exercise_id == exercise_id]
        if sets:
            result[exercise_id] = sets
    return result
