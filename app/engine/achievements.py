"""Achievement catalog and evaluation against a saved workout log."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from app.core.clock import utc_now
from app.engine.records import compare_to_history
from app.schemas.workouts import (
    AchievementInfo,
    ExerciseHistoryOut,
    SupersetBlock,
    UnlockedAchievementOut,
    WorkoutLogOut,
)
from app.services.store import WorkoutStore

logger = logging.getLogger(__name__)

RECENT_WINDOW = timedelta(days=7)


@dataclass
class PrefetchedData:
    total_logs: int
    recent_logs: int
    history: list[ExerciseHistoryOut]
    existing_ids: set[str]


# (earned, context)
CheckResult = tuple[bool, str | None]


@dataclass(frozen=True)
class AchievementDefinition:
    id: str
    name: str
    description: str
    icon: str
    check: Callable[[WorkoutLogOut, PrefetchedData], CheckResult]


def _first_workout(log: WorkoutLogOut, data: PrefetchedData) -> CheckResult:
    return data.total_logs == 1, None


def _consistency(log: WorkoutLogOut, data: PrefetchedData) -> CheckResult:
    return data.recent_logs >= 3, f"{data.recent_logs} workouts this week"


def _total_logs_at_least(count: int, suffix: str = "") -> Callable[[WorkoutLogOut, PrefetchedData], CheckResult]:
    def check(log: WorkoutLogOut, data: PrefetchedData) -> CheckResult:
        return data.total_logs >= count, f"{data.total_logs} total workouts{suffix}"
    return check


def _one_rm_pr(log: WorkoutLogOut, data: PrefetchedData) -> CheckResult:
    records = compare_to_history(log, data.history).one_rm
    if not records:
        return False, None
    return True, f"{records[0].name} - new 1RM PR!"


def _volume_pr(log: WorkoutLogOut, data: PrefetchedData) -> CheckResult:
    records = compare_to_history(log, data.history).volume
    if not records:
        return False, None
    return True, f"{records[0].name} - volume PR!"


def _has_superset(log: WorkoutLogOut, data: PrefetchedData) -> CheckResult:
    return any(isinstance(b, SupersetBlock) for b in log.template_snapshot), None


ACHIEVEMENTS: list[AchievementDefinition] = [
    AchievementDefinition("first-workout", "First Rep", "Complete your first workout", "\U0001F4AA", _first_workout),
    AchievementDefinition("consistency-3", "Consistency", "3 workouts in a week", "\U0001F525", _consistency),
    AchievementDefinition("iron-will", "Iron Will", "10 total workouts", "\U0001F3CB\uFE0F", _total_logs_at_least(10)),
    AchievementDefinition("pr-1rm", "PR Breaker", "New highest estimated 1RM on any exercise", "\U0001F3C6", _one_rm_pr),
    AchievementDefinition("volume-king", "Volume King", "New highest session volume for an exercise", "\U0001F451", _volume_pr),
    AchievementDefinition("superset-master", "Superset Master", "Complete a workout containing supersets", "\u26A1", _has_superset),
    AchievementDefinition("century", "Century", "100 total workouts", "\U0001F4AF", _total_logs_at_least(100, "!")),
]

ACHIEVEMENTS_BY_ID = {a.id: a for a in ACHIEVEMENTS}


async def prefetch_achievement_data(
    store: WorkoutStore, log: WorkoutLogOut, now: datetime | None = None
) -> PrefetchedData:
    since = (now or utc_now()) - RECENT_WINDOW
    exercise_ids = {s.exercise_id for s in log.performed_sets}

    total_logs, recent_logs, history, existing_ids = await asyncio.gather(
        store.count_logs(),
        store.count_logs_since(since),
        store.history_for_exercises(exercise_ids),
        store.unlocked_achievement_ids(),
    )
    return PrefetchedData(
        total_logs=total_logs,
        recent_logs=recent_logs,
        history=history,
        existing_ids=existing_ids,
    )


async def check_achievements(
    store: WorkoutStore, log: WorkoutLogOut, now: datetime | None = None
) -> list[UnlockedAchievementOut]:
    """
    Evaluate the catalog against a saved log.

    Already unlocked achievements are skipped; only new unlocks are
    persisted and returned.
    """
    data = await prefetch_achievement_data(store, log, now)
    unlocked_at = now or utc_now()

    newly_unlocked: list[UnlockedAchievementOut] = []
    for achievement in ACHIEVEMENTS:
        if achievement.id in data.existing_ids:
            continue
        earned, context = achievement.check(log, data)
        if not earned:
            continue
        unlock = UnlockedAchievementOut(
            achievement_id=achievement.id,
            unlocked_at=unlocked_at,
            context=context,
        )
        if await store.put_achievement(unlock):
            logger.info("Achievement unlocked: %s (%s)", achievement.id, context)
            newly_unlocked.append(unlock)

    return newly_unlocked


def describe_achievement(unlock: UnlockedAchievementOut) -> AchievementInfo | None:
    definition = ACHIEVEMENTS_BY_ID.get(unlock.achievement_id)
    if definition is None:
        return None
    return AchievementInfo(
        id=definition.id,
        name=definition.name,
        description=definition.description,
        icon=definition.icon,
        unlocked_at=unlock.unlocked_at,
        context=unlock.context,
    )


async def get_unlocked_achievements(store: WorkoutStore) -> list[AchievementInfo]:
    """Unlocked achievements, most recent first."""
    unlocked = await store.list_achievements()
    return [info for info in map(describe_achievement, unlocked) if info is not None]
