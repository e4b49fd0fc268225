from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from app.core.clock import as_utc

# --- Limits ---

AMRAP_SENTINEL = 0  # reps_max value meaning "as many reps as possible"
WORKOUT_NAME_MAX = 100
EXERCISE_NAME_MAX = 80
MAX_SETS = 20
MAX_REPS = 999
MAX_WEIGHT_G = 999_000
MIN_REST_SEC = 5
MAX_REST_SEC = 600

LogStatus = Literal["completed", "partial"]

# Stored datetimes come back naive from SQLite
UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]

# --- Template blocks ---

class SupersetExercise(BaseModel):
    exercise_id: str
    reps_min: int
    reps_max: int

class ExerciseBlock(BaseModel):
    type: Literal["exercise"] = "exercise"
    id: str
    exercise_id: str
    sets: int
    reps_min: int
    reps_max: int
    rest_between_sets_sec: int | None = None
    # Rest after this block; None falls back to the global transition default
    transition_rest_sec: int | None = None

class SupersetBlock(BaseModel):
    type: Literal["superset"] = "superset"
    id: str
    sets: int
    exercises: list[SupersetExercise]
    rest_between_exercises_sec: int
    rest_between_supersets_sec: int
    transition_rest_sec: int | None = None

TemplateBlock = Annotated[Union[ExerciseBlock, SupersetBlock], Field(discriminator="type")]

# --- Steps ---

class ExerciseStep(BaseModel):
    type: Literal["exercise"] = "exercise"
    block_index: int
    exercise_id: str
    set_index: int
    total_sets: int
    reps_min: int
    reps_max: int
    is_superset: bool = False
    superset_exercise_index: int | None = None
    superset_total_exercises: int | None = None

class RestStep(BaseModel):
    type: Literal["rest", "superset-rest"] = "rest"
    block_index: int
    rest_duration_sec: int
    is_superset: bool = False

class CompleteStep(BaseModel):
    type: Literal["complete"] = "complete"
    block_index: int

WorkoutStep = Annotated[Union[ExerciseStep, RestStep, CompleteStep], Field(discriminator="type")]

# --- Performed sets and logs ---

class PerformedSet(BaseModel):
    exercise_id: str
    exercise_name_snapshot: str
    block_path: str
    set_index: int
    reps_target_min: int
    reps_target_max: int
    reps_done: int = Field(ge=0, le=MAX_REPS)
    weight_g: int = Field(ge=0, le=MAX_WEIGHT_G)

class WorkoutLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    status: LogStatus
    template_id: str | None = None
    template_name: str
    template_snapshot: list[TemplateBlock] = []
    performed_sets: list[PerformedSet] = []
    started_at: UtcDatetime
    ended_at: UtcDatetime | None = None
    duration_sec: int
    total_volume_g: int

class ExerciseHistoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int | None = None
    log_id: str
    exercise_id: str
    exercise_name: str
    performed_at: UtcDatetime
    best_weight_g: int
    total_volume_g: int
    total_sets: int
    total_reps: int
    estimated_1rm_g: int | None = None

class UnlockedAchievementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    achievement_id: str
    unlocked_at: UtcDatetime
    context: str | None = None

class AchievementInfo(BaseModel):
    """Unlocked achievement enriched with its catalog entry, for display."""
    id: str
    name: str
    description: str
    icon: str
    unlocked_at: UtcDatetime
    context: str | None = None

# --- Completion pipeline results ---

class PersonalRecord(BaseModel):
    exercise_id: str
    name: str

class PersonalRecordSummary(BaseModel):
    one_rm: list[PersonalRecord] = []
    volume: list[PersonalRecord] = []

class CompletionReport(BaseModel):
    log_id: str
    history_entries: int = 0
    personal_records: PersonalRecordSummary = Field(default_factory=PersonalRecordSummary)
    new_achievements: list[UnlockedAchievementOut] = []
    # stage name -> error message, for stages that failed
    errors: dict[str, str] = {}

# --- Crash recovery ---

class CrashRecoveryData(BaseModel):
    session_id: str
    template_id: str | None = None
    template_name: str
    template_snapshot: list[TemplateBlock] = []
    steps: list[WorkoutStep] = []
    current_step_index: int = 0
    # keyed by exercise-step index (position among exercise steps only)
    performed_sets: dict[int, PerformedSet] = {}
    timer_ends_at: UtcDatetime | None = None
    # set instead of timer_ends_at while the rest timer is paused
    timer_paused_remaining_ms: int | None = None
    started_at: UtcDatetime
    saved_at: UtcDatetime

# --- Exercise library / templates ---

class CreateExerciseIn(BaseModel):
    name: str

class ExerciseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    created_at: UtcDatetime

class CreateTemplateIn(BaseModel):
    name: str
    blocks: list[TemplateBlock]
    default_rest_between_sets_sec: int | None = None

class TemplateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    blocks: list[TemplateBlock]
    default_rest_between_sets_sec: int | None = None
    is_archived: bool = False
    created_at: UtcDatetime
    last_performed_at: UtcDatetime | None = None

# --- Active session requests ---

class StartSessionIn(BaseModel):
    template_id: str

class LogSetIn(BaseModel):
    weight_g: int = Field(ge=0, le=MAX_WEIGHT_G)
    reps_done: int = Field(ge=0, le=MAX_REPS)
    entry_elapsed_sec: float = Field(default=0, ge=0)

class SkipSetIn(BaseModel):
    entry_elapsed_sec: float = Field(default=0, ge=0)

class StartTimerIn(BaseModel):
    entry_elapsed_sec: float = Field(default=0, ge=0)

class AdjustTimerIn(BaseModel):
    delta_sec: float

class UpdateSetIn(BaseModel):
    weight_g: int = Field(ge=0, le=MAX_WEIGHT_G)
    reps_done: int = Field(ge=0, le=MAX_REPS)

class TimerStateOut(BaseModel):
    state: str
    remaining_ms: int
    ends_at: UtcDatetime | None = None

class SessionStateOut(BaseModel):
    phase: str
    session_id: str | None = None
    template_id: str | None = None
    template_name: str = ""
    started_at: UtcDatetime | None = None
    current_step_index: int = 0
    current_step: WorkoutStep | None = None
    current_exercise_step_index: int = -1
    total_exercise_steps: int = 0
    steps: list[WorkoutStep] = []
    performed_sets: dict[int, PerformedSet] = {}
    timer: TimerStateOut
