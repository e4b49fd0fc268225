"""
Post-completion pipeline.

Runs against a log that is already saved: denormalized exercise history,
personal-record detection and achievement evaluation. Each stage is
isolated; a failure is logged and reported, never raised to the caller.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from app.engine.achievements import check_achievements
from app.engine.records import detect_personal_records, group_by_exercise
from app.schemas.workouts import CompletionReport, ExerciseHistoryOut, WorkoutLogOut
from app.services.store import WorkoutStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


def build_exercise_history(log: WorkoutLogOut) -> list[ExerciseHistoryOut]:
    """One aggregate row per distinct exercise in the log."""
    entries = []
    for exercise_id, summary in group_by_exercise(log.performed_sets).items():
        entries.append(
            ExerciseHistoryOut(
                log_id=log.id,
                exercise_id=exercise_id,
                exercise_name=summary.name,
                performed_at=log.started_at,
                best_weight_g=max(s.weight_g for s in summary.sets),
                total_volume_g=summary.volume_g,
                total_sets=len(summary.sets),
                total_reps=sum(s.reps_done for s in summary.sets),
                estimated_1rm_g=summary.best_1rm_g,
            )
        )
    return entries


async def write_exercise_history(store: WorkoutStore, log: WorkoutLogOut) -> list[ExerciseHistoryOut]:
    entries = build_exercise_history(log)
    await store.bulk_add_history(entries)
    return entries


async def _run_stage(
    report: CompletionReport, stage: str, fn: Callable[[], Awaitable[T]]
) -> T | None:
    try:
        return await fn()
    except Exception as e:
        logger.exception("Completion stage %s failed for log %s", stage, report.log_id)
        report.errors[stage] = str(e) or type(e).__name__
        return None


async def run_completion_pipeline(store: WorkoutStore, log: WorkoutLogOut) -> CompletionReport:
    report = CompletionReport(log_id=log.id)

    records = await _run_stage(report, "personal_records", lambda: detect_personal_records(store, log))
    if records is not None:
        report.personal_records = records

    entries = await _run_stage(report, "history", lambda: write_exercise_history(store, log))
    if entries is not None:
        report.history_entries = len(entries)

    unlocked = await _run_stage(report, "achievements", lambda: check_achievements(store, log))
    if unlocked is not None:
        report.new_achievements = unlocked

    logger.info(
        "Completion pipeline for log %s: %d history rows, %d 1RM PRs, %d volume PRs, %d achievements, %d failed stages",
        log.id,
        report.history_entries,
        len(report.personal_records.one_rm),
        len(report.personal_records.volume),
        len(report.new_achievements),
        len(report.errors),
    )
    return report
