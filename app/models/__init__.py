from app.models.crash_recovery import CrashRecovery
from app.models.exercise import Exercise
from app.models.exercise_history import ExerciseHistory
from app.models.unlocked_achievement import UnlockedAchievement
from app.models.workout_log import WorkoutLog
from app.models.workout_template import WorkoutTemplate

__all__ = [
    "CrashRecovery",
    "Exercise",
    "ExerciseHistory",
    "UnlockedAchievement",
    "WorkoutLog",
    "WorkoutTemplate",
]
