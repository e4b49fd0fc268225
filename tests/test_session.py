"""Tests for the active workout session state machine."""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from app.core.clock import utc_now
from app.core.config import Settings
from app.core.errors import SessionStateError, WorkoutPersistenceError
from app.engine.session import ActiveWorkoutSession, SessionPhase, load_crash_recovery
from app.engine.timer import TimerState
from app.schemas.workouts import CompleteStep, ExerciseBlock, ExerciseStep, RestStep


def _start(session: ActiveWorkoutSession, template, names=None) -> bool:
    return session.start_workout(
        template.id,
        template.name,
        template.blocks,
        template.default_rest_between_sets_sec,
        session.settings.DEFAULT_REST_BETWEEN_SETS_SEC,
        session.settings.DEFAULT_TRANSITION_SEC,
        exercise_names=names,
    )


def _db_error() -> OperationalError:
    return OperationalError("INSERT", {}, Exception("database is locked"))


@pytest.fixture
async def short_rest_template(store, bench):
    block = ExerciseBlock(id="b1", exercise_id=bench.id, sets=2, reps_min=5, reps_max=5, rest_between_sets_sec=1)
    return await store.create_template("Quick", [block])


class TestStartAndAdvance:
    """Starting a workout and walking its steps."""

    async def test_start_enters_active(self, workout_session, bench_template):
        assert workout_session.phase is SessionPhase.IDLE
        assert _start(workout_session, bench_template) is True

        assert workout_session.phase is SessionPhase.ACTIVE
        assert workout_session.session_id
        assert workout_session.started_at is not None
        assert workout_session.current_step_index == 0
        assert [s.type for s in workout_session.steps] == ["exercise", "rest", "exercise", "complete"]

    async def test_second_start_is_rejected(self, workout_session, bench_template):
        _start(workout_session, bench_template)
        session_id = workout_session.session_id

        assert _start(workout_session, bench_template) is False
        assert workout_session.session_id == session_id

    async def test_advance_never_passes_complete(self, workout_session, bench_template):
        _start(workout_session, bench_template)
        workout_session.advance_step()
        workout_session.advance_step()
        step = workout_session.advance_step()

        assert isinstance(step, CompleteStep)
        assert workout_session.phase is SessionPhase.RECAP
        with pytest.raises(SessionStateError):
            workout_session.advance_step()

    async def test_operations_need_an_active_session(self, workout_session):
        with pytest.raises(SessionStateError):
            workout_session.record_set_and_advance(100_000, 5)
        with pytest.raises(SessionStateError):
            workout_session.end_workout_early()


class TestRecordingSets:
    """Logging sets and the rest that follows."""

    async def test_record_builds_performed_set(self, workout_session, bench_template, bench):
        _start(workout_session, bench_template, names={bench.id: "Bench Press"})

        performed = workout_session.record_set_and_advance(100_000, 10)

        assert performed.exercise_id == bench.id
        assert performed.exercise_name_snapshot == "Bench Press"
        assert performed.block_path == "block-0"
        assert performed.set_index == 0
        assert (performed.reps_target_min, performed.reps_target_max) == (8, 12)
        assert workout_session.performed == {0: performed}

    async def test_values_are_clamped(self, workout_session, bench_template):
        _start(workout_session, bench_template)
        performed = workout_session.record_set_and_advance(5_000_000, 5000)

        assert performed.weight_g == 999_000
        assert performed.reps_done == 999

    async def test_rest_timer_auto_starts_minus_entry_time(self, workout_session, bench_template):
        _start(workout_session, bench_template)
        workout_session.record_set_and_advance(100_000, 10, entry_elapsed_sec=10)

        assert isinstance(workout_session.current_step, RestStep)
        assert workout_session.timer.state is TimerState.RUNNING
        assert 79_000 < workout_session.timer.remaining_ms <= 80_000

    async def test_entry_longer_than_rest_skips_it(self, workout_session, bench_template):
        _start(workout_session, bench_template)
        workout_session.record_set_and_advance(100_000, 10, entry_elapsed_sec=95)

        assert workout_session.current_step_index == 2
        assert isinstance(workout_session.current_step, ExerciseStep)
        assert workout_session.timer.state is not TimerState.RUNNING

    async def test_manual_timer_keeps_entry_time(self, store, devices, bench_template):
        session = ActiveWorkoutSession(store, Settings(_env_file=None, AUTO_START_REST_TIMER=False), devices)
        _start(session, bench_template)

        session.record_set_and_advance(100_000, 10, entry_elapsed_sec=10)
        assert isinstance(session.current_step, RestStep)
        assert session.timer.state is TimerState.IDLE

        assert session.start_rest_timer() is True
        assert 79_000 < session.timer.remaining_ms <= 80_000
        session.reset()

    async def test_timer_completion_advances(self, workout_session, short_rest_template, devices):
        _start(workout_session, short_rest_template)
        workout_session.record_set_and_advance(100_000, 5, entry_elapsed_sec=0.95)
        assert workout_session.timer.state is TimerState.RUNNING

        await asyncio.sleep(0.3)

        assert workout_session.current_step_index == 2
        assert ("timer_complete",) in devices.events

    async def test_stale_timer_completion_is_ignored(self, workout_session, bench_template):
        _start(workout_session, bench_template)
        workout_session.record_set_and_advance(100_000, 10)
        workout_session.advance_step()
        assert workout_session.current_step_index == 2

        # Late callback for the rest step the user already left
        workout_session._on_timer_complete()

        assert workout_session.current_step_index == 2

    async def test_skip_rest(self, workout_session, bench_template, devices):
        _start(workout_session, bench_template)
        workout_session.record_set_and_advance(100_000, 10)

        workout_session.skip_rest()

        assert workout_session.current_step_index == 2
        assert devices.names() == ["timer_complete"]

    async def test_near_zero_cue_once_per_second(self, workout_session, devices):
        workout_session._on_timer_tick(4_000)
        workout_session._on_timer_tick(2_500)
        workout_session._on_timer_tick(2_100)
        workout_session._on_timer_tick(1_200)

        assert devices.events == [("timer_near_zero", 3), ("timer_near_zero", 2)]

    async def test_skip_set_records_nothing(self, workout_session, bench_template):
        _start(workout_session, bench_template)
        workout_session.skip_set(entry_elapsed_sec=120)

        assert workout_session.performed == {}
        assert workout_session.current_step_index == 2

    async def test_record_on_rest_step_fails(self, workout_session, bench_template):
        _start(workout_session, bench_template)
        workout_session.record_set_and_advance(100_000, 10)

        with pytest.raises(SessionStateError):
            workout_session.record_set_and_advance(100_000, 10)

    async def test_last_set_enters_recap(self, workout_session, bench_template):
        _start(workout_session, bench_template)
        workout_session.record_set_and_advance(100_000, 10, entry_elapsed_sec=100)
        workout_session.record_set_and_advance(100_000, 8)

        assert workout_session.phase is SessionPhase.RECAP
        assert len(workout_session.performed_sets) == 2


class TestRecap:
    """Ending early and editing sets."""

    async def test_end_early(self, workout_session, bench_template):
        _start(workout_session, bench_template)
        workout_session.record_set_and_advance(100_000, 10)

        workout_session.end_workout_early()

        assert workout_session.phase is SessionPhase.RECAP
        assert workout_session.ended_early
        assert isinstance(workout_session.current_step, CompleteStep)
        assert workout_session.timer.state is TimerState.CANCELLED

    async def test_edit_set_in_recap(self, workout_session, bench_template):
        _start(workout_session, bench_template)
        workout_session.skip_set(entry_elapsed_sec=100)
        workout_session.record_set_and_advance(100_000, 8)

        edited = workout_session.edit_set(0, 90_000, 10)

        assert edited.set_index == 0
        assert workout_session.performed[0].weight_g == 90_000
        assert len(workout_session.performed) == 2

    async def test_upsert_out_of_range(self, workout_session, bench_template):
        _start(workout_session, bench_template)
        performed = workout_session.record_set_and_advance(100_000, 10)

        with pytest.raises(ValueError):
            workout_session.upsert_set(2, performed)


class TestCompleteWorkout:
    """Saving the workout log."""

    async def test_complete_full_workout(self, workout_session, bench_template, store, devices):
        _start(workout_session, bench_template)
        workout_session.record_set_and_advance(100_000, 10, entry_elapsed_sec=100)
        workout_session.record_set_and_advance(100_000, 8)

        log = await workout_session.complete_workout()

        assert log.status == "completed"
        assert log.total_volume_g == 100_000 * 18
        assert log.duration_sec >= 0
        assert log.template_id == bench_template.id
        assert workout_session.phase is SessionPhase.COMPLETE
        assert devices.names()[-1] == "session_saved"

        saved = await store.get_log(log.id)
        assert saved is not None
        assert len(saved.performed_sets) == 2
        template = await store.get_template(bench_template.id)
        assert template.last_performed_at is not None

    async def test_skipped_set_makes_partial(self, workout_session, bench_template):
        _start(workout_session, bench_template)
        workout_session.skip_set(entry_elapsed_sec=100)
        workout_session.record_set_and_advance(100_000, 8)

        log = await workout_session.complete_workout()
        assert log.status == "partial"

    async def test_ended_early_is_partial(self, workout_session, bench_template):
        _start(workout_session, bench_template)
        workout_session.record_set_and_advance(100_000, 10)
        workout_session.end_workout_early()

        log = await workout_session.complete_workout()
        assert log.status == "partial"
        assert len(log.performed_sets) == 1

    async def test_never_started(self, workout_session):
        assert await workout_session.complete_workout() is None

    async def test_complete_clears_recovery(self, workout_session, bench_template, store):
        _start(workout_session, bench_template)
        workout_session.record_set_and_advance(100_000, 10)
        await workout_session.write_crash_recovery()
        assert await store.get_crash_recovery() is not None

        workout_session.end_workout_early()
        await workout_session.complete_workout()

        assert await store.get_crash_recovery() is None

    async def test_store_failure_keeps_recap(self, workout_session, bench_template, store, monkeypatch):
        _start(workout_session, bench_template)
        workout_session.record_set_and_advance(100_000, 10)
        workout_session.end_workout_early()

        async def failing_add_log(log):
            raise _db_error()

        monkeypatch.setattr(store, "add_log", failing_add_log)
        with pytest.raises(WorkoutPersistenceError):
            await workout_session.complete_workout()
        assert workout_session.phase is SessionPhase.RECAP

        monkeypatch.undo()
        log = await workout_session.complete_workout()
        assert log is not None
        assert workout_session.phase is SessionPhase.COMPLETE

    async def test_overlapping_completes_save_one_log(self, workout_session, bench_template, store):
        _start(workout_session, bench_template)
        workout_session.record_set_and_advance(100_000, 10)
        workout_session.end_workout_early()

        first, second = await asyncio.gather(
            workout_session.complete_workout(),
            workout_session.complete_workout(),
        )

        assert first.id == second.id
        assert await store.count_logs() == 1


class TestCrashRecovery:
    """Snapshot writes and resume."""

    async def test_write_while_active(self, workout_session, bench_template, store):
        _start(workout_session, bench_template)
        workout_session.record_set_and_advance(100_000, 10)

        assert await workout_session.write_crash_recovery() is True

        snapshot = await store.get_crash_recovery()
        assert snapshot.session_id == workout_session.session_id
        assert snapshot.current_step_index == 1
        assert snapshot.performed_sets[0].weight_g == 100_000
        assert snapshot.timer_ends_at is not None

    async def test_no_write_in_recap(self, workout_session, bench_template, store):
        _start(workout_session, bench_template)
        workout_session.end_workout_early()

        assert await workout_session.write_crash_recovery() is False
        assert workout_session.schedule_crash_recovery() is None
        assert await store.get_crash_recovery() is None

    async def test_visibility_hidden_schedules_write(self, workout_session, bench_template, store):
        _start(workout_session, bench_template)

        task = workout_session.on_visibility_hidden()
        assert task is not None
        await task

        assert await store.get_crash_recovery() is not None

    async def test_autosave_writes_while_active(self, workout_session, bench_template, store):
        _start(workout_session, bench_template)
        workout_session.start_autosave()

        await asyncio.sleep(0.2)
        assert await store.get_crash_recovery() is not None

        workout_session.end_workout_early()
        await store.clear_crash_recovery()
        await asyncio.sleep(0.15)
        assert await store.get_crash_recovery() is None

    async def test_write_failure_is_swallowed(self, workout_session, bench_template, store, monkeypatch):
        _start(workout_session, bench_template)

        async def failing_put(data):
            raise _db_error()

        monkeypatch.setattr(store, "put_crash_recovery", failing_put)
        assert await workout_session.write_crash_recovery() is False

    async def test_restore_resumes_pending_rest(self, store, test_settings, devices, workout_session, bench_template):
        _start(workout_session, bench_template)
        workout_session.record_set_and_advance(100_000, 10)
        await workout_session.write_crash_recovery()
        snapshot = await store.get_crash_recovery()
        workout_session.reset()

        resumed = ActiveWorkoutSession(store, test_settings, devices)
        assert resumed.restore_from_recovery(snapshot) is True

        assert resumed.phase is SessionPhase.ACTIVE
        assert resumed.session_id == snapshot.session_id
        assert resumed.current_step_index == 1
        assert resumed.performed[0].reps_done == 10
        assert resumed.timer.state is TimerState.RUNNING
        resumed.reset()

    async def test_restore_keeps_paused_rest_paused(self, store, test_settings, devices, workout_session, bench_template):
        _start(workout_session, bench_template)
        workout_session.record_set_and_advance(100_000, 10)
        assert workout_session.pause_timer() is True
        paused_ms = workout_session.timer.remaining_ms
        await workout_session.write_crash_recovery()
        snapshot = await store.get_crash_recovery()
        workout_session.reset()

        assert snapshot.timer_ends_at is None
        assert snapshot.timer_paused_remaining_ms == paused_ms

        resumed = ActiveWorkoutSession(store, test_settings, devices)
        assert resumed.restore_from_recovery(snapshot) is True
        assert resumed.current_step_index == 1
        assert resumed.timer.state is TimerState.PAUSED
        restored_ms = resumed.timer.remaining_ms
        assert abs(restored_ms - paused_ms) <= 1

        await asyncio.sleep(0.05)
        assert resumed.timer.remaining_ms == restored_ms

        assert resumed.resume_timer() is True
        assert resumed.timer.state is TimerState.RUNNING
        resumed.reset()

    async def test_restore_with_elapsed_rest_advances(self, workout_session, bench_template, store):
        _start(workout_session, bench_template)
        workout_session.record_set_and_advance(100_000, 10)
        snapshot = workout_session.build_recovery_snapshot().model_copy(
            update={"timer_ends_at": utc_now() - timedelta(seconds=5)}
        )
        workout_session.reset()

        assert workout_session.restore_from_recovery(snapshot) is True
        assert workout_session.current_step_index == 2

    async def test_restore_needs_idle(self, workout_session, bench_template):
        _start(workout_session, bench_template)
        snapshot = workout_session.build_recovery_snapshot()

        assert workout_session.restore_from_recovery(snapshot) is False

    async def test_stale_snapshot_is_dropped(self, workout_session, bench_template, store):
        _start(workout_session, bench_template)
        snapshot = workout_session.build_recovery_snapshot().model_copy(
            update={"saved_at": utc_now() - timedelta(hours=5)}
        )
        await store.put_crash_recovery(snapshot)

        assert await load_crash_recovery(store, 4 * 60 * 60) is None
        assert await store.get_crash_recovery() is None

    async def test_fresh_snapshot_is_offered(self, workout_session, bench_template, store):
        _start(workout_session, bench_template)
        await workout_session.write_crash_recovery()

        snapshot = await load_crash_recovery(store, 4 * 60 * 60)
        assert snapshot.template_name == "Push Day"

    async def test_discard(self, workout_session, bench_template, store):
        _start(workout_session, bench_template)
        await workout_session.write_crash_recovery()

        await workout_session.discard()

        assert workout_session.phase is SessionPhase.IDLE
        assert workout_session.steps == []
        assert await store.get_crash_recovery() is None


class TestDeviceNotifications:
    """Device cues are best effort."""

    async def test_failing_notifier_is_ignored(self, store, test_settings, bench_template):
        class BrokenNotifier:
            def timer_near_zero(self, seconds_left):
                raise RuntimeError("no audio")

            def timer_complete(self):
                raise RuntimeError("no vibration")

            def session_saved(self):
                raise RuntimeError("no wake lock")

        session = ActiveWorkoutSession(store, test_settings, BrokenNotifier())
        _start(session, bench_template)
        session.record_set_and_advance(100_000, 10)

        session.skip_rest()

        assert session.current_step_index == 2
        session.reset()
