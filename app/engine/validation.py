"""Template validation. Each check returns an error message or None."""

import re
from collections.abc import Sequence

from app.schemas.workouts import (
    AMRAP_SENTINEL,
    EXERCISE_NAME_MAX,
    MAX_REPS,
    MAX_REST_SEC,
    MAX_SETS,
    MIN_REST_SEC,
    WORKOUT_NAME_MAX,
    ExerciseBlock,
    SupersetBlock,
    TemplateBlock,
)

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_WHITESPACE = re.compile(r"\s+")


def sanitize_text(value: str) -> str:
    """Trim, strip control characters and collapse whitespace."""
    return _WHITESPACE.sub(" ", _CONTROL_CHARS.sub("", value.strip()))


def validate_workout_name(name: str) -> str | None:
    clean = sanitize_text(name)
    if not clean:
        return "Workout name is required"
    if len(clean) > WORKOUT_NAME_MAX:
        return f"Name must be {WORKOUT_NAME_MAX} chars or less"
    return None


def validate_exercise_name(name: str) -> str | None:
    clean = sanitize_text(name)
    if not clean:
        return "Exercise name is required"
    if len(clean) > EXERCISE_NAME_MAX:
        return f"Name must be {EXERCISE_NAME_MAX} chars or less"
    return None


def validate_sets(sets: int) -> str | None:
    if sets < 1:
        return "Sets must be at least 1"
    if sets > MAX_SETS:
        return f"Maximum {MAX_SETS} sets"
    return None


def validate_rep_range(reps_min: int, reps_max: int) -> str | None:
    if reps_min < 1:
        return "Minimum reps must be at least 1"
    if reps_max == AMRAP_SENTINEL:
        return None
    if reps_max > MAX_REPS:
        return f"Maximum {MAX_REPS} reps"
    if reps_min > reps_max:
        return "Min reps cannot exceed max reps"
    return None


def validate_rest_time(seconds: int) -> str | None:
    if seconds < MIN_REST_SEC:
        return f"Minimum {MIN_REST_SEC} seconds"
    if seconds > MAX_REST_SEC:
        return f"Maximum {MAX_REST_SEC} seconds"
    return None


def validate_block(block: TemplateBlock) -> list[str]:
    errors: list[str] = []

    sets_err = validate_sets(block.sets)
    if sets_err:
        errors.append(sets_err)

    if isinstance(block, ExerciseBlock):
        if not block.exercise_id:
            errors.append("Exercise is required")
        rep_err = validate_rep_range(block.reps_min, block.reps_max)
        if rep_err:
            errors.append(rep_err)
        if block.rest_between_sets_sec is not None:
            rest_err = validate_rest_time(block.rest_between_sets_sec)
            if rest_err:
                errors.append(rest_err)
    elif isinstance(block, SupersetBlock):
        if len(block.exercises) < 2:
            errors.append("Superset must have at least 2 exercises")
        for ex in block.exercises:
            if not ex.exercise_id:
                errors.append("All superset exercises require an exercise")
            rep_err = validate_rep_range(ex.reps_min, ex.reps_max)
            if rep_err:
                errors.append(f"Superset exercise: {rep_err}")
        between = validate_rest_time(block.rest_between_exercises_sec)
        if between:
            errors.append(f"Rest between exercises: {between}")
        after = validate_rest_time(block.rest_between_supersets_sec)
        if after:
            errors.append(f"Rest between supersets: {after}")

    if block.transition_rest_sec is not None:
        rest_err = validate_rest_time(block.transition_rest_sec)
        if rest_err:
            errors.append(f"Transition rest: {rest_err}")

    return errors


def validate_template(name: str, blocks: Sequence[TemplateBlock]) -> list[str]:
    """Validate a template name and its blocks; an empty list means valid."""
    errors: list[str] = []

    name_err = validate_workout_name(name)
    if name_err:
        errors.append(name_err)

    if not blocks:
        errors.append("At least one exercise block is required")

    for i, block in enumerate(blocks, start=1):
        for err in validate_block(block):
            errors.append(f"Block {i}: {err}")

    return errors
