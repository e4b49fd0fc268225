"""Personal-record detection: this session's per-exercise bests against prior history."""

from collections.abc import Iterable
from dataclasses import dataclass

from app.engine.calculations import best_1rm, total_volume
from app.schemas.workouts import (
    ExerciseHistoryOut,
    PerformedSet,
    PersonalRecord,
    PersonalRecordSummary,
    WorkoutLogOut,
)
from app.services.store import WorkoutStore


@dataclass
class ExerciseSummary:
    name: str
    sets: list[PerformedSet]

    @property
    def volume_g(self) -> int:
        return total_volume(self.sets)

    @property
    def best_1rm_g(self) -> int | None:
        return best_1rm(self.sets)


def group_by_exercise(sets: Iterable[PerformedSet]) -> dict[str, ExerciseSummary]:
    """Group performed sets by exercise id, keeping first-seen order and name."""
    grouped: dict[str, ExerciseSummary] = {}
    for s in sets:
        summary = grouped.get(s.exercise_id)
        if summary is None:
            summary = grouped[s.exercise_id] = ExerciseSummary(name=s.exercise_name_snapshot, sets=[])
        summary.sets.append(s)
    return grouped


def compare_to_history(
    log: WorkoutLogOut, history: Iterable[ExerciseHistoryOut]
) -> PersonalRecordSummary:
    """
    Compare this log's per-exercise best 1RM and volume with prior history.

    History rows that belong to the log itself are ignored. A record needs a
    prior best above zero to beat, and has to beat it strictly.
    """
    prior_1rm: dict[str, int] = {}
    prior_volume: dict[str, int] = {}
    for h in history:
        if h.log_id == log.id:
            continue
        if h.estimated_1rm_g is not None and h.estimated_1rm_g > prior_1rm.get(h.exercise_id, 0):
            prior_1rm[h.exercise_id] = h.estimated_1rm_g
        if h.total_volume_g > prior_volume.get(h.exercise_id, 0):
            prior_volume[h.exercise_id] = h.total_volume_g

    summary = PersonalRecordSummary()
    for exercise_id, current in group_by_exercise(log.performed_sets).items():
        best_prior_1rm = prior_1rm.get(exercise_id, 0)
        current_1rm = current.best_1rm_g
        if current_1rm is not None and best_prior_1rm > 0 and current_1rm > best_prior_1rm:
            summary.one_rm.append(PersonalRecord(exercise_id=exercise_id, name=current.name))

        best_prior_volume = prior_volume.get(exercise_id, 0)
        if best_prior_volume > 0 and current.volume_g > best_prior_volume:
            summary.volume.append(PersonalRecord(exercise_id=exercise_id, name=current.name))

    return summary


async def detect_personal_records(store: WorkoutStore, log: WorkoutLogOut) -> PersonalRecordSummary:
    exercise_ids = {s.exercise_id for s in log.performed_sets}
    if not exercise_ids:
        return PersonalRecordSummary()
    history = await store.history_for_exercises(exercise_ids)
    return compare_to_history(log, history)
