import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.core.deps import get_store, get_workout_session
from app.core.errors import SessionStateError, WorkoutPersistenceError
from app.engine.completion import run_completion_pipeline
from app.engine.history import get_last_performed_sets, get_last_performed_sets_for_multiple
from app.engine.session import ActiveWorkoutSession, load_crash_recovery
from app.engine.steps import template_exercise_ids
from app.schemas.workouts import (
    AdjustTimerIn,
    LogSetIn,
    SkipSetIn,
    StartSessionIn,
    StartTimerIn,
    UpdateSetIn,
)
from app.services.store import WorkoutStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workouts", tags=["workouts"])


def _conflict(e: SessionStateError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


# --- Active session ---

@router.post("/session/start")
async def start_session(
    payload: StartSessionIn,
    session: ActiveWorkoutSession = Depends(get_workout_session),
    store: WorkoutStore = Depends(get_store),
):
    template = await store.get_template(payload.template_id)
    if not template:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Template not found")

    names = await store.get_exercise_names(template_exercise_ids(template.blocks))
    started = session.start_workout(
        template.id,
        template.name,
        template.blocks,
        template.default_rest_between_sets_sec,
        session.settings.DEFAULT_REST_BETWEEN_SETS_SEC,
        session.settings.DEFAULT_TRANSITION_SEC,
        exercise_names=names,
    )
    if not started:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A workout is already in progress")

    session.start_autosave()
    return {"started": True, "session": session.state()}


@router.get("/session")
async def get_session_state(session: ActiveWorkoutSession = Depends(get_workout_session)):
    return session.state()


@router.post("/session/sets")
async def log_set(payload: LogSetIn, session: ActiveWorkoutSession = Depends(get_workout_session)):
    try:
        performed = session.record_set_and_advance(
            payload.weight_g, payload.reps_done, payload.entry_elapsed_sec
        )
    except SessionStateError as e:
        raise _conflict(e)
    return {"logged": True, "set": performed, "session": session.state()}


@router.post("/session/skip")
async def skip_set(payload: SkipSetIn, session: ActiveWorkoutSession = Depends(get_workout_session)):
    try:
        session.skip_set(payload.entry_elapsed_sec)
    except SessionStateError as e:
        raise _conflict(e)
    return session.state()


@router.put("/session/sets/{exercise_step_index}")
async def update_set(
    exercise_step_index: int,
    payload: UpdateSetIn,
    session: ActiveWorkoutSession = Depends(get_workout_session),
):
    try:
        performed = session.edit_set(exercise_step_index, payload.weight_g, payload.reps_done)
    except SessionStateError as e:
        raise _conflict(e)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Set not found")
    return {"updated": True, "set": performed}


@router.post("/session/timer/start")
async def start_timer(payload: StartTimerIn, session: ActiveWorkoutSession = Depends(get_workout_session)):
    try:
        started = session.start_rest_timer(payload.entry_elapsed_sec)
    except SessionStateError as e:
        raise _conflict(e)
    return {"started": started, "session": session.state()}


@router.post("/session/timer/skip")
async def skip_timer(session: ActiveWorkoutSession = Depends(get_workout_session)):
    try:
        session.skip_rest()
    except SessionStateError as e:
        raise _conflict(e)
    return session.state()


@router.post("/session/timer/adjust")
async def adjust_timer(payload: AdjustTimerIn, session: ActiveWorkoutSession = Depends(get_workout_session)):
    try:
        session.adjust_timer(payload.delta_sec)
    except SessionStateError as e:
        raise _conflict(e)
    return session.state()


@router.post("/session/timer/pause")
async def pause_timer(session: ActiveWorkoutSession = Depends(get_workout_session)):
    try:
        paused = session.pause_timer()
    except SessionStateError as e:
        raise _conflict(e)
    return {"paused": paused, "session": session.state()}


@router.post("/session/timer/resume")
async def resume_timer(session: ActiveWorkoutSession = Depends(get_workout_session)):
    try:
        resumed = session.resume_timer()
    except SessionStateError as e:
        raise _conflict(e)
    return {"resumed": resumed, "session": session.state()}


@router.post("/session/end-early")
async def end_early(session: ActiveWorkoutSession = Depends(get_workout_session)):
    try:
        session.end_workout_early()
    except SessionStateError as e:
        raise _conflict(e)
    return session.state()


@router.post("/session/complete")
async def complete_session(
    session: ActiveWorkoutSession = Depends(get_workout_session),
    store: WorkoutStore = Depends(get_store),
):
    # A second request waits here and finds the session already reset
    async with session.completion_lock:
        try:
            log = await session.complete_workout()
        except WorkoutPersistenceError as e:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

        if log is None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="No workout in progress")

        report = await run_completion_pipeline(store, log)
        session.reset()
    return {"completed": True, "log": log, "report": report}


@router.post("/session/discard")
async def discard_session(session: ActiveWorkoutSession = Depends(get_workout_session)):
    await session.discard()
    return {"discarded": True}


@router.post("/session/visibility-hidden")
async def visibility_hidden(session: ActiveWorkoutSession = Depends(get_workout_session)):
    task = session.on_visibility_hidden()
    return {"scheduled": task is not None}


# --- Crash recovery ---

@router.get("/recovery")
async def get_recovery(
    session: ActiveWorkoutSession = Depends(get_workout_session),
    store: WorkoutStore = Depends(get_store),
):
    snapshot = await load_crash_recovery(store, session.settings.RECOVERY_MAX_AGE_SEC)
    return {"available": snapshot is not None, "recovery": snapshot}


@router.post("/recovery/resume")
async def resume_recovery(
    session: ActiveWorkoutSession = Depends(get_workout_session),
    store: WorkoutStore = Depends(get_store),
):
    snapshot = await load_crash_recovery(store, session.settings.RECOVERY_MAX_AGE_SEC)
    if not snapshot:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No workout to recover")

    names = await store.get_exercise_names(template_exercise_ids(snapshot.template_snapshot))
    if not session.restore_from_recovery(snapshot, exercise_names=names):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A workout is already in progress")

    session.start_autosave()
    return {"resumed": True, "session": session.state()}


@router.delete("/recovery")
async def discard_recovery(store: WorkoutStore = Depends(get_store)):
    await store.clear_crash_recovery()
    return {"discarded": True}


# --- Logs and history ---

@router.get("/logs")
async def list_logs(
    limit: int = Query(default=50, ge=1, le=500),
    store: WorkoutStore = Depends(get_store),
):
    return await store.list_logs(limit=limit)


@router.get("/logs/{log_id}")
async def get_log(log_id: str, store: WorkoutStore = Depends(get_store)):
    log = await store.get_log(log_id)
    if not log:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Workout log not found")
    return log


@router.delete("/logs/{log_id}")
async def delete_log(log_id: str, store: WorkoutStore = Depends(get_store)):
    if not await store.delete_log(log_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Workout log not found")
    logger.info("Workout log %s deleted", log_id)
    return {"deleted": True, "log_id": log_id}


@router.get("/history/last")
async def last_sets_for_exercises(
    exercise_ids: list[str] = Query(default=[]),
    store: WorkoutStore = Depends(get_store),
):
    return await get_last_performed_sets_for_multiple(store, exercise_ids)


@router.get("/history/{exercise_id}/last")
async def last_sets_for_exercise(exercise_id: str, store: WorkoutStore = Depends(get_store)):
    sets = await get_last_performed_sets(store, exercise_id)
    return {"exercise_id": exercise_id, "sets": sets}
