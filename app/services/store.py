"""
Persistence for the workout engine.

Every method opens its own AsyncSession from the factory, so independent
reads (e.g. the achievement prefetch) can run concurrently.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Sequence
from datetime import datetime

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.crash_recovery import RECOVERY_KEY, CrashRecovery
from app.models.exercise import Exercise
from app.models.exercise_history import ExerciseHistory
from app.models.unlocked_achievement import UnlockedAchievement
from app.models.workout_log import WorkoutLog
from app.models.workout_template import WorkoutTemplate
from app.schemas.workouts import (
    CrashRecoveryData,
    ExerciseHistoryOut,
    ExerciseOut,
    TemplateBlock,
    TemplateOut,
    UnlockedAchievementOut,
    WorkoutLogOut,
)


def new_id() -> str:
    return str(uuid.uuid4())


class WorkoutStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # --- Exercise library ---

    async def create_exercise(self, name: str) -> ExerciseOut:
        async with self._session_factory() as db:
            ex = Exercise(id=new_id(), name=name)
            db.add(ex)
            await db.commit()
            await db.refresh(ex)
            return ExerciseOut.model_validate(ex)

    async def list_exercises(self) -> list[ExerciseOut]:
        async with self._session_factory() as db:
            res = await db.execute(select(Exercise).order_by(Exercise.name.asc()))
            return [ExerciseOut.model_validate(e) for e in res.scalars().all()]

    async def get_exercise_names(self, exercise_ids: Iterable[str]) -> dict[str, str]:
        ids = list(set(exercise_ids))
        if not ids:
            return {}
        async with self._session_factory() as db:
            res = await db.execute(select(Exercise.id, Exercise.name).where(Exercise.id.in_(ids)))
            return {row.id: row.name for row in res.all()}

    # --- Templates ---

    async def create_template(
        self,
        name: str,
        blocks: Sequence[TemplateBlock],
        default_rest_between_sets_sec: int | None = None,
    ) -> TemplateOut:
        async with self._session_factory() as db:
            template = WorkoutTemplate(
                id=new_id(),
                name=name,
                blocks=[b.model_dump(mode="json") for b in blocks],
                default_rest_between_sets_sec=default_rest_between_sets_sec,
                is_archived=False,
            )
            db.add(template)
            await db.commit()
            await db.refresh(template)
            return TemplateOut.model_validate(template)

    async def get_template(self, template_id: str) -> TemplateOut | None:
        async with self._session_factory() as db:
            template = await db.get(WorkoutTemplate, template_id)
            return TemplateOut.model_validate(template) if template else None

    async def list_templates(self, include_archived: bool = False) -> list[TemplateOut]:
        stmt = select(WorkoutTemplate).order_by(WorkoutTemplate.created_at.desc())
        if not include_archived:
            stmt = stmt.where(WorkoutTemplate.is_archived.is_(False))
        async with self._session_factory() as db:
            res = await db.execute(stmt)
            return [TemplateOut.model_validate(t) for t in res.scalars().all()]

    async def archive_template(self, template_id: str) -> bool:
        async with self._session_factory() as db:
            template = await db.get(WorkoutTemplate, template_id)
            if not template:
                return False
            template.is_archived = True
            await db.commit()
            return True

    async def mark_template_performed(self, template_id: str, performed_at: datetime) -> None:
        async with self._session_factory() as db:
            template = await db.get(WorkoutTemplate, template_id)
            if template:
                template.last_performed_at = performed_at
                await db.commit()

    # --- Logs ---

    async def add_log(self, log: WorkoutLogOut) -> None:
        async with self._session_factory() as db:
            db.add(
                WorkoutLog(
                    id=log.id,
                    status=log.status,
                    template_id=log.template_id,
                    template_name=log.template_name,
                    template_snapshot=[b.model_dump(mode="json") for b in log.template_snapshot],
                    performed_sets=[s.model_dump(mode="json") for s in log.performed_sets],
                    started_at=log.started_at,
                    ended_at=log.ended_at,
                    duration_sec=log.duration_sec,
                    total_volume_g=log.total_volume_g,
                )
            )
            await db.commit()

    async def get_log(self, log_id: str) -> WorkoutLogOut | None:
        async with self._session_factory() as db:
            log = await db.get(WorkoutLog, log_id)
            return WorkoutLogOut.model_validate(log) if log else None

    async def bulk_get_logs(self, log_ids: Iterable[str]) -> dict[str, WorkoutLogOut]:
        ids = list(set(log_ids))
        if not ids:
            return {}
        async with self._session_factory() as db:
            res = await db.execute(select(WorkoutLog).where(WorkoutLog.id.in_(ids)))
            return {log.id: WorkoutLogOut.model_validate(log) for log in res.scalars().all()}

    async def list_logs(self, limit: int = 50) -> list[WorkoutLogOut]:
        async with self._session_factory() as db:
            res = await db.execute(
                select(WorkoutLog).order_by(WorkoutLog.started_at.desc()).limit(limit)
            )
            return [WorkoutLogOut.model_validate(log) for log in res.scalars().all()]

    async def count_logs(self) -> int:
        async with self._session_factory() as db:
            res = await db.execute(select(func.count(WorkoutLog.id)))
            return int(res.scalar_one())

    async def count_logs_since(self, since: datetime) -> int:
        async with self._session_factory() as db:
            res = await db.execute(
                select(func.count(WorkoutLog.id)).where(WorkoutLog.started_at > since)
            )
            return int(res.scalar_one())

    async def delete_log(self, log_id: str) -> bool:
        """Delete a log together with its history rows."""
        async with self._session_factory() as db:
            log = await db.get(WorkoutLog, log_id)
            if not log:
                return False
            await db.execute(delete(ExerciseHistory).where(ExerciseHistory.log_id == log_id))
            await db.delete(log)
            await db.commit()
            return True

    # --- Exercise history ---

    async def bulk_add_history(self, entries: Sequence[ExerciseHistoryOut]) -> int:
        if not entries:
            return 0
        async with self._session_factory() as db:
            db.add_all(
                [ExerciseHistory(**e.model_dump(exclude={"id"})) for e in entries]
            )
            await db.commit()
            return len(entries)

    async def history_for_exercises(self, exercise_ids: Iterable[str]) -> list[ExerciseHistoryOut]:
        ids = list(set(exercise_ids))
        if not ids:
            return []
        async with self._session_factory() as db:
            res = await db.execute(
                select(ExerciseHistory)
                .where(ExerciseHistory.exercise_id.in_(ids))
                .order_by(ExerciseHistory.performed_at.asc(), ExerciseHistory.id.asc())
            )
            return [ExerciseHistoryOut.model_validate(h) for h in res.scalars().all()]

    async def latest_history_for_exercise(self, exercise_id: str) -> ExerciseHistoryOut | None:
        async with self._session_factory() as db:
            res = await db.execute(
                select(ExerciseHistory)
                .where(ExerciseHistory.exercise_id == exercise_id)
                .order_by(ExerciseHistory.performed_at.desc(), ExerciseHistory.id.desc())
                .limit(1)
            )
            entry = res.scalar_one_or_none()
            return ExerciseHistoryOut.model_validate(entry) if entry else None

    # --- Achievements ---

    async def list_achievements(self) -> list[UnlockedAchievementOut]:
        async with self._session_factory() as db:
            res = await db.execute(
                select(UnlockedAchievement).order_by(UnlockedAchievement.unlocked_at.desc())
            )
            return [UnlockedAchievementOut.model_validate(a) for a in res.scalars().all()]

    async def unlocked_achievement_ids(self) -> set[str]:
        async with self._session_factory() as db:
            res = await db.execute(select(UnlockedAchievement.achievement_id))
            return set(res.scalars().all())

    async def put_achievement(self, achievement: UnlockedAchievementOut) -> bool:
        """Insert an unlock; an id that is already unlocked is left untouched."""
        async with self._session_factory() as db:
            if await db.get(UnlockedAchievement, achievement.achievement_id):
                return False
            db.add(UnlockedAchievement(**achievement.model_dump()))
            await db.commit()
            return True

    # --- Crash recovery ---

    async def get_crash_recovery(self) -> CrashRecoveryData | None:
        async with self._session_factory() as db:
            row = await db.get(CrashRecovery, RECOVERY_KEY)
            return CrashRecoveryData.model_validate(row.payload) if row else None

    async def put_crash_recovery(self, data: CrashRecoveryData) -> None:
        async with self._session_factory() as db:
            await db.merge(
                CrashRecovery(
                    id=RECOVERY_KEY,
                    payload=data.model_dump(mode="json"),
                    saved_at=data.saved_at,
                )
            )
            await db.commit()

    async def clear_crash_recovery(self) -> None:
        async with self._session_factory() as db:
            await db.execute(delete(CrashRecovery).where(CrashRecovery.id == RECOVERY_KEY))
            await db.commit()
