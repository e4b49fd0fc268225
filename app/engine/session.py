"""
Active workout session.

Walks the generated steps, collects performed sets, drives the rest timer
and writes crash-recovery snapshots. Phases go idle -> active -> recap ->
complete. One instance serves one session at a time; every mutation runs on
the event loop. Only saving the log spans an await, so it is serialized.
"""

import asyncio
import logging
import math
from collections.abc import Mapping, Sequence
from datetime import timedelta
from enum import Enum

from sqlalchemy.exc import SQLAlchemyError

from app.core.clock import utc_now
from app.core.config import Settings, settings as default_settings
from app.core.errors import SessionStateError, WorkoutPersistenceError
from app.engine.calculations import total_volume
from app.engine.devices import DeviceNotifier, NullDeviceNotifier, notify
from app.engine.steps import (
    count_exercise_steps,
    exercise_step_index_at,
    generate_steps,
)
from app.engine.timer import CountdownTimer, TimerState
from app.schemas.workouts import (
    MAX_REPS,
    MAX_WEIGHT_G,
    CompleteStep,
    CrashRecoveryData,
    ExerciseStep,
    PerformedSet,
    RestStep,
    SessionStateOut,
    TemplateBlock,
    TimerStateOut,
    WorkoutLogOut,
    WorkoutStep,
)
from app.services.store import WorkoutStore, new_id

logger = logging.getLogger(__name__)


class SessionPhase(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    RECAP = "recap"
    COMPLETE = "complete"


def _clamp(value: int, upper: int) -> int:
    return max(0, min(value, upper))


async def load_crash_recovery(store: WorkoutStore, max_age_sec: int) -> CrashRecoveryData | None:
    """Return the saved snapshot if it is recent enough to offer; stale ones are cleared."""
    snapshot = await store.get_crash_recovery()
    if snapshot is None:
        return None
    if utc_now() - snapshot.saved_at > timedelta(seconds=max_age_sec):
        logger.info("Dropping stale crash recovery snapshot from %s", snapshot.saved_at)
        await store.clear_crash_recovery()
        return None
    return snapshot


class ActiveWorkoutSession:
    def __init__(
        self,
        store: WorkoutStore,
        settings: Settings = default_settings,
        devices: DeviceNotifier | None = None,
        timer: CountdownTimer | None = None,
    ):
        self.store = store
        self.settings = settings
        self.devices = devices or NullDeviceNotifier()
        self.timer = timer or CountdownTimer(tick_interval=settings.TIMER_TICK_MS / 1000)
        self.timer.on_complete = self._on_timer_complete
        self.timer.on_tick = self._on_timer_tick
        self._autosave_task: asyncio.Task | None = None
        self._recovery_writes: set[asyncio.Task] = set()
        # Serializes log saves; overlapping completes must not save twice
        self._save_lock = asyncio.Lock()
        # Held by callers that save the log and then derive from it as one unit
        self.completion_lock = asyncio.Lock()
        self._reset_state()

    def _reset_state(self) -> None:
        self.phase = SessionPhase.IDLE
        self.session_id: str | None = None
        self.template_id: str | None = None
        self.template_name = ""
        self.template_snapshot: list[TemplateBlock] = []
        self.steps: list[WorkoutStep] = []
        self.current_step_index = 0
        # keyed by exercise-step index
        self.performed: dict[int, PerformedSet] = {}
        self.exercise_names: dict[str, str] = {}
        self.started_at = None
        self.ended_early = False
        self.log: WorkoutLogOut | None = None
        self._timer_step_index: int | None = None
        self._pending_entry_elapsed = 0.0
        self._last_cue_sec: int | None = None

    # --- Derived state ---

    @property
    def current_step(self) -> WorkoutStep | None:
        if 0 <= self.current_step_index < len(self.steps):
            return self.steps[self.current_step_index]
        return None

    @property
    def current_exercise_step_index(self) -> int:
        return exercise_step_index_at(self.steps, self.current_step_index)

    @property
    def exercise_steps(self) -> list[ExerciseStep]:
        return [s for s in self.steps if isinstance(s, ExerciseStep)]

    @property
    def performed_sets(self) -> list[PerformedSet]:
        return [self.performed[i] for i in sorted(self.performed)]

    def _require_phase(self, *phases: SessionPhase) -> None:
        if self.phase not in phases:
            allowed = ", ".join(p.value for p in phases)
            raise SessionStateError(
                f"Not allowed while session is {self.phase.value} (needs {allowed})",
                phase=self.phase.value,
            )

    # --- Lifecycle ---

    def start_workout(
        self,
        template_id: str | None,
        template_name: str,
        blocks: Sequence[TemplateBlock],
        template_rest_override: int | None,
        global_rest: int,
        global_transition: int,
        exercise_names: Mapping[str, str] | None = None,
    ) -> bool:
        """Generate steps and enter the active phase. No-op unless idle."""
        if self.phase is not SessionPhase.IDLE:
            logger.info("start_workout ignored: session already %s", self.phase.value)
            return False

        self._reset_state()
        self.steps = generate_steps(blocks, template_rest_override, global_rest, global_transition)
        self.session_id = new_id()
        self.template_id = template_id
        self.template_name = template_name
        self.template_snapshot = list(blocks)
        self.exercise_names = dict(exercise_names or {})
        self.started_at = utc_now()
        self.phase = SessionPhase.ACTIVE

        logger.info(
            "Workout %s started from template %s: %d steps, %d sets",
            self.session_id,
            template_id,
            len(self.steps),
            count_exercise_steps(self.steps),
        )
        return True

    def advance_step(self) -> WorkoutStep | None:
        """Move the cursor forward one step; landing on the complete step enters recap."""
        self._require_phase(SessionPhase.ACTIVE)
        self._stop_timer()

        if self.current_step_index < len(self.steps) - 1:
            self.current_step_index += 1

        if isinstance(self.current_step, CompleteStep):
            self._enter_recap()
        return self.current_step

    def start_rest_timer(self, entry_elapsed_sec: float = 0) -> bool:
        """
        Start the countdown for the current rest step.

        Time already spent entering data is taken off the rest (never below
        zero). When nothing is left, the rest is skipped instead.
        """
        self._require_phase(SessionPhase.ACTIVE)
        step = self.current_step
        if not isinstance(step, RestStep):
            return False

        elapsed = entry_elapsed_sec + self._pending_entry_elapsed
        self._pending_entry_elapsed = 0.0
        remaining = max(0.0, step.rest_duration_sec - elapsed)
        if remaining <= 0:
            self.advance_step()
            return False

        self._timer_step_index = self.current_step_index
        self._last_cue_sec = None
        self.timer.start(remaining)
        return True

    def _advance_after_entry(self, entry_elapsed_sec: float) -> None:
        step = self.advance_step()
        if not isinstance(step, RestStep):
            self._pending_entry_elapsed = 0.0
            return

        if step.rest_duration_sec - entry_elapsed_sec <= 0:
            # Entry took the whole rest
            self.advance_step()
        elif self.settings.AUTO_START_REST_TIMER:
            self.start_rest_timer(entry_elapsed_sec)
        else:
            self._pending_entry_elapsed = entry_elapsed_sec

    def _build_set(self, step: ExerciseStep, weight_g: int, reps_done: int, name: str | None = None) -> PerformedSet:
        return PerformedSet(
            exercise_id=step.exercise_id,
            exercise_name_snapshot=name or self.exercise_names.get(step.exercise_id, step.exercise_id),
            block_path=f"block-{step.block_index}",
            set_index=step.set_index,
            reps_target_min=step.reps_min,
            reps_target_max=step.reps_max,
            reps_done=_clamp(reps_done, MAX_REPS),
            weight_g=_clamp(weight_g, MAX_WEIGHT_G),
        )

    def record_set_and_advance(self, weight_g: int, reps_done: int, entry_elapsed_sec: float = 0) -> PerformedSet:
        """Log the current exercise step and move on, starting the rest timer per settings."""
        self._require_phase(SessionPhase.ACTIVE)
        step = self.current_step
        if not isinstance(step, ExerciseStep):
            raise SessionStateError("Current step is not an exercise", phase=self.phase.value)

        performed = self._build_set(step, weight_g, reps_done)
        self.upsert_set(self.current_exercise_step_index, performed)
        self._advance_after_entry(entry_elapsed_sec)
        return performed

    def skip_set(self, entry_elapsed_sec: float = 0) -> None:
        self._require_phase(SessionPhase.ACTIVE)
        if not isinstance(self.current_step, ExerciseStep):
            raise SessionStateError("Current step is not an exercise", phase=self.phase.value)
        self._advance_after_entry(entry_elapsed_sec)

    def upsert_set(self, exercise_step_index: int, performed_set: PerformedSet) -> None:
        """Record or replace the set at a position among exercise steps only."""
        self._require_phase(SessionPhase.ACTIVE, SessionPhase.RECAP)
        if not 0 <= exercise_step_index < count_exercise_steps(self.steps):
            raise ValueError(f"Exercise step index {exercise_step_index} out of range")
        self.performed[exercise_step_index] = performed_set

    def edit_set(self, exercise_step_index: int, weight_g: int, reps_done: int) -> PerformedSet:
        """Change (or add, for a skipped set) weight and reps, e.g. during recap."""
        exercise_steps = self.exercise_steps
        if not 0 <= exercise_step_index < len(exercise_steps):
            raise ValueError(f"Exercise step index {exercise_step_index} out of range")
        existing = self.performed.get(exercise_step_index)
        performed = self._build_set(
            exercise_steps[exercise_step_index],
            weight_g,
            reps_done,
            name=existing.exercise_name_snapshot if existing else None,
        )
        self.upsert_set(exercise_step_index, performed)
        return performed

    def end_workout_early(self) -> None:
        """Stop wherever we are and go to recap; the saved log will be partial."""
        self._require_phase(SessionPhase.ACTIVE)
        self._stop_timer()
        self.current_step_index = len(self.steps) - 1
        self.ended_early = True
        self._enter_recap()

    def _enter_recap(self) -> None:
        self._stop_timer()
        self.stop_autosave()
        self.phase = SessionPhase.RECAP
        logger.info(
            "Workout %s in recap (%s): %d/%d sets logged",
            self.session_id,
            "ended early" if self.ended_early else "finished",
            len(self.performed),
            count_exercise_steps(self.steps),
        )

    async def complete_workout(self) -> WorkoutLogOut | None:
        """
        Build and save the workout log.

        Returns None for a session that never started. A failed save raises
        WorkoutPersistenceError and leaves the session in recap for a retry.
        A call that overlaps one already saving waits for it and gets the
        same log back.
        """
        async with self._save_lock:
            if self.phase is SessionPhase.IDLE or self.started_at is None:
                return None
            if self.phase is SessionPhase.COMPLETE:
                return self.log
            if self.phase is SessionPhase.ACTIVE:
                self.end_workout_early()
            return await self._save_log()

    async def _save_log(self) -> WorkoutLogOut:
        ended_at = utc_now()
        performed_sets = self.performed_sets
        all_logged = len(performed_sets) == count_exercise_steps(self.steps)
        log = WorkoutLogOut(
            id=new_id(),
            status="completed" if all_logged and not self.ended_early else "partial",
            template_id=self.template_id,
            template_name=self.template_name,
            template_snapshot=self.template_snapshot,
            performed_sets=performed_sets,
            started_at=self.started_at,
            ended_at=ended_at,
            duration_sec=math.floor((ended_at - self.started_at).total_seconds()),
            total_volume_g=total_volume(performed_sets),
        )

        try:
            await self.store.add_log(log)
        except SQLAlchemyError as e:
            logger.error("Failed to save workout log for session %s: %s", self.session_id, e)
            raise WorkoutPersistenceError(f"Failed to complete workout: {e}") from e

        self.log = log
        self.phase = SessionPhase.COMPLETE
        logger.info(
            "Workout log %s saved (%s, %d sets, %d g volume, %d s)",
            log.id, log.status, len(log.performed_sets), log.total_volume_g, log.duration_sec,
        )

        await self._clear_recovery()
        if self.template_id:
            try:
                await self.store.mark_template_performed(self.template_id, ended_at)
            except SQLAlchemyError as e:
                logger.warning("Failed to stamp template %s as performed: %s", self.template_id, e)

        notify(self.devices, "session_saved")
        return log

    def reset(self) -> None:
        """Back to pre-start defaults."""
        self._stop_timer()
        self.stop_autosave()
        self._reset_state()

    async def discard(self) -> None:
        """Abandon the session without saving anything."""
        logger.info("Workout %s discarded", self.session_id)
        self.reset()
        await self._clear_recovery()

    # --- Timer ---

    def _stop_timer(self) -> None:
        self._timer_step_index = None
        self.timer.stop()

    def skip_rest(self) -> None:
        self._require_phase(SessionPhase.ACTIVE)
        if not isinstance(self.current_step, RestStep):
            raise SessionStateError("Current step is not a rest", phase=self.phase.value)
        if not self.timer.skip():
            self.advance_step()

    def adjust_timer(self, delta_sec: float) -> None:
        self._require_phase(SessionPhase.ACTIVE)
        self.timer.adjust(delta_sec)

    def pause_timer(self) -> bool:
        self._require_phase(SessionPhase.ACTIVE)
        return self.timer.pause()

    def resume_timer(self) -> bool:
        self._require_phase(SessionPhase.ACTIVE)
        return self.timer.resume()

    def _on_timer_complete(self) -> None:
        token, self._timer_step_index = self._timer_step_index, None
        if self.phase is not SessionPhase.ACTIVE or token != self.current_step_index:
            logger.debug(
                "Ignoring timer completion for step %s (cursor %s, phase %s)",
                token, self.current_step_index, self.phase.value,
            )
            return
        notify(self.devices, "timer_complete")
        self.advance_step()

    def _on_timer_tick(self, remaining_ms: int) -> None:
        seconds_left = math.ceil(remaining_ms / 1000)
        if 0 < seconds_left <= self.settings.NEAR_ZERO_CUE_SEC and seconds_left != self._last_cue_sec:
            self._last_cue_sec = seconds_left
            notify(self.devices, "timer_near_zero", seconds_left)

    # --- Crash recovery ---

    def build_recovery_snapshot(self) -> CrashRecoveryData:
        return CrashRecoveryData(
            session_id=self.session_id,
            template_id=self.template_id,
            template_name=self.template_name,
            template_snapshot=self.template_snapshot,
            steps=self.steps,
            current_step_index=self.current_step_index,
            performed_sets=dict(self.performed),
            timer_ends_at=self.timer.ends_at,
            timer_paused_remaining_ms=(
                self.timer.remaining_ms if self.timer.state is TimerState.PAUSED else None
            ),
            started_at=self.started_at,
            saved_at=utc_now(),
        )

    async def write_crash_recovery(self) -> bool:
        """Persist a resume snapshot. Only while active; failures are logged and ignored."""
        if self.phase is not SessionPhase.ACTIVE or self.session_id is None:
            return False
        snapshot = self.build_recovery_snapshot()
        try:
            await self.store.put_crash_recovery(snapshot)
        except SQLAlchemyError as e:
            logger.warning("Failed to write crash recovery for session %s: %s", self.session_id, e)
            return False
        return True

    def schedule_crash_recovery(self) -> asyncio.Task | None:
        """Fire-and-forget snapshot write."""
        if self.phase is not SessionPhase.ACTIVE:
            return None
        task = asyncio.get_running_loop().create_task(self.write_crash_recovery())
        self._recovery_writes.add(task)
        task.add_done_callback(self._recovery_writes.discard)
        return task

    def on_visibility_hidden(self) -> asyncio.Task | None:
        return self.schedule_crash_recovery()

    def start_autosave(self, interval_sec: float | None = None) -> None:
        if self._autosave_task is not None and not self._autosave_task.done():
            return
        interval = interval_sec or self.settings.CRASH_RECOVERY_INTERVAL_SEC
        self._autosave_task = asyncio.get_running_loop().create_task(self._autosave_loop(interval))

    def stop_autosave(self) -> None:
        task, self._autosave_task = self._autosave_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _autosave_loop(self, interval_sec: float) -> None:
        while self.phase is SessionPhase.ACTIVE:
            await asyncio.sleep(interval_sec)
            if self.phase is not SessionPhase.ACTIVE:
                break
            await self.write_crash_recovery()

    async def _clear_recovery(self) -> None:
        # In-flight writes must land before the delete, or they would resurrect it
        if self._recovery_writes:
            await asyncio.gather(*self._recovery_writes, return_exceptions=True)
        try:
            await self.store.clear_crash_recovery()
        except SQLAlchemyError as e:
            logger.warning("Failed to clear crash recovery: %s", e)

    def restore_from_recovery(
        self,
        snapshot: CrashRecoveryData,
        exercise_names: Mapping[str, str] | None = None,
    ) -> bool:
        """Resume a snapshot the user chose to continue. No-op unless idle."""
        if self.phase is not SessionPhase.IDLE:
            return False

        self._reset_state()
        self.session_id = snapshot.session_id
        self.template_id = snapshot.template_id
        self.template_name = snapshot.template_name
        self.template_snapshot = list(snapshot.template_snapshot)
        self.steps = list(snapshot.steps)
        self.current_step_index = max(0, min(snapshot.current_step_index, len(self.steps) - 1))
        self.performed = dict(snapshot.performed_sets)
        self.exercise_names = dict(exercise_names or {})
        self.started_at = snapshot.started_at
        self.phase = SessionPhase.ACTIVE
        logger.info("Workout %s restored at step %d", self.session_id, self.current_step_index)

        if isinstance(self.current_step, CompleteStep):
            self._enter_recap()
        elif isinstance(self.current_step, RestStep) and snapshot.timer_ends_at is not None:
            remaining = (snapshot.timer_ends_at - utc_now()).total_seconds()
            if remaining > 0:
                self._timer_step_index = self.current_step_index
                self.timer.start(remaining)
            else:
                self.advance_step()
        elif isinstance(self.current_step, RestStep) and snapshot.timer_paused_remaining_ms:
            self._timer_step_index = self.current_step_index
            self.timer.start_paused(snapshot.timer_paused_remaining_ms / 1000)
        return True

    # --- Snapshot for clients ---

    def state(self) -> SessionStateOut:
        return SessionStateOut(
            phase=self.phase.value,
            session_id=self.session_id,
            template_id=self.template_id,
            template_name=self.template_name,
            started_at=self.started_at,
            current_step_index=self.current_step_index,
            current_step=self.current_step,
            current_exercise_step_index=self.current_exercise_step_index,
            total_exercise_steps=count_exercise_steps(self.steps),
            steps=self.steps,
            performed_sets=dict(self.performed),
            timer=TimerStateOut(
                state=self.timer.state.value,
                remaining_ms=self.timer.remaining_ms,
                ends_at=self.timer.ends_at,
            ),
        )
