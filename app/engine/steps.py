"""
Step generation.

Expands template blocks into the flat list of steps a session walks through:
exercise sets, rests between them, and a terminal complete step.
"""

from collections.abc import Sequence

from app.engine.rest import resolve_rest, resolve_transition_rest
from app.schemas.workouts import (
    CompleteStep,
    ExerciseBlock,
    ExerciseStep,
    RestStep,
    SupersetBlock,
    TemplateBlock,
    WorkoutStep,
)


def _exercise_block_steps(
    block: ExerciseBlock,
    block_index: int,
    template_default_rest: int | None,
    global_default_rest: int,
) -> list[WorkoutStep]:
    # Set 1 -> rest -> Set 2 -> ... -> Set N, no trailing rest
    steps: list[WorkoutStep] = []
    rest_sec = resolve_rest(block.rest_between_sets_sec, template_default_rest, global_default_rest)

    for set_index in range(block.sets):
        steps.append(
            ExerciseStep(
                block_index=block_index,
                exercise_id=block.exercise_id,
                set_index=set_index,
                total_sets=block.sets,
                reps_min=block.reps_min,
                reps_max=block.reps_max,
            )
        )
        if set_index < block.sets - 1:
            steps.append(RestStep(block_index=block_index, rest_duration_sec=rest_sec))

    return steps


def _superset_block_steps(block: SupersetBlock, block_index: int) -> list[WorkoutStep]:
    # A1 -> rest -> B1 -> superset-rest -> A2 -> rest -> B2 ...
    steps: list[WorkoutStep] = []
    exercise_count = len(block.exercises)

    for set_index in range(block.sets):
        for ex_index, ex in enumerate(block.exercises):
            steps.append(
                ExerciseStep(
                    block_index=block_index,
                    exercise_id=ex.exercise_id,
                    set_index=set_index,
                    total_sets=block.sets,
                    reps_min=ex.reps_min,
                    reps_max=ex.reps_max,
                    is_superset=True,
                    superset_exercise_index=ex_index,
                    superset_total_exercises=exercise_count,
                )
            )
            if ex_index < exercise_count - 1:
                steps.append(
                    RestStep(
                        block_index=block_index,
                        rest_duration_sec=block.rest_between_exercises_sec,
                        is_superset=True,
                    )
                )

        # An empty superset never gets a round rest either
        if set_index < block.sets - 1 and exercise_count > 0:
            steps.append(
                RestStep(
                    type="superset-rest",
                    block_index=block_index,
                    rest_duration_sec=block.rest_between_supersets_sec,
                    is_superset=True,
                )
            )

    return steps


def generate_steps(
    blocks: Sequence[TemplateBlock],
    template_default_rest: int | None,
    global_default_rest: int,
    global_default_transition: int,
) -> list[WorkoutStep]:
    """
    Generate the ordered steps for a workout.

    Args:
        blocks: Template blocks (the frozen snapshot used for the session)
        template_default_rest: Template-level rest between sets, or None
        global_default_rest: Rest between sets when nothing overrides it
        global_default_transition: Rest between blocks when the block has no override

    Returns:
        Steps ending with exactly one complete step. Zero-second transition
        rests are left out entirely.
    """
    steps: list[WorkoutStep] = []

    for block_index, block in enumerate(blocks):
        if isinstance(block, ExerciseBlock):
            block_steps = _exercise_block_steps(
                block, block_index, template_default_rest, global_default_rest
            )
        elif isinstance(block, SupersetBlock):
            block_steps = _superset_block_steps(block, block_index)
        else:
            raise TypeError(f"Unknown block type: {type(block).__name__}")

        steps.extend(block_steps)

        if block_index < len(blocks) - 1 and block_steps:
            rest_sec = resolve_transition_rest(block.transition_rest_sec, global_default_transition)
            if rest_sec > 0:
                steps.append(RestStep(block_index=block_index, rest_duration_sec=rest_sec))

    # Only reachable when trailing blocks expanded to nothing
    if steps and isinstance(steps[-1], RestStep):
        steps.pop()

    steps.append(CompleteStep(block_index=len(blocks)))
    return steps


def is_rest_step(step: WorkoutStep | None) -> bool:
    return isinstance(step, RestStep)


def count_exercise_steps(steps: Sequence[WorkoutStep]) -> int:
    return sum(1 for s in steps if isinstance(s, ExerciseStep))


def get_exercise_step_at(steps: Sequence[WorkoutStep], index: int) -> ExerciseStep | None:
    if index < 0 or index >= len(steps):
        return None
    step = steps[index]
    return step if isinstance(step, ExerciseStep) else None


def exercise_step_index_at(steps: Sequence[WorkoutStep], index: int) -> int:
    """Position of steps[index] among exercise steps only, or -1 if it is not one."""
    if get_exercise_step_at(steps, index) is None:
        return -1
    return count_exercise_steps(steps[:index])


def template_exercise_ids(blocks: Sequence[TemplateBlock]) -> set[str]:
    ids: set[str] = set()
    for block in blocks:
        if isinstance(block, ExerciseBlock):
            ids.add(block.exercise_id)
        elif isinstance(block, SupersetBlock):
            ids.update(ex.exercise_id for ex in block.exercises)
    return ids
