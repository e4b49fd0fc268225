"""Pure helpers for weights, volume and 1RM. All weight is integer grams."""

from collections.abc import Iterable

from app.schemas.workouts import PerformedSet

GRAMS_PER_LB = 453.592
EPLEY_MAX_REPS = 12


def grams_to_kg(grams: int) -> float:
    return grams / 1000


def grams_to_lb(grams: int) -> float:
    return grams / GRAMS_PER_LB


def kg_to_grams(kg: float) -> int:
    return round(kg * 1000)


def lb_to_grams(lb: float) -> int:
    return round(lb * GRAMS_PER_LB)


def epley_1rm(weight_g: int, reps: int) -> int | None:
    """
    Estimated one-rep max using the Epley formula.

    Returns None outside the range where the estimate is trustworthy
    (reps above 12, or no reps/weight). A single rep is its own 1RM.
    """
    if reps > EPLEY_MAX_REPS or reps <= 0 or weight_g <= 0:
        return None
    if reps == 1:
        return weight_g
    return round(weight_g * (1 + reps / 30))


def set_volume(weight_g: int, reps: int) -> int:
    return weight_g * reps


def total_volume(sets: Iterable[PerformedSet]) -> int:
    return sum(set_volume(s.weight_g, s.reps_done) for s in sets)


def best_1rm(sets: Iterable[PerformedSet]) -> int | None:
    best: int | None = None
    for s in sets:
        e1rm = epley_1rm(s.weight_g, s.reps_done)
        if e1rm is not None and (best is None or e1rm > best):
            best = e1rm
    return best


def format_rep_target(reps_min: int, reps_max: int) -> str:
    # reps_max of 0 is the AMRAP sentinel
    if reps_max == 0:
        return f"{reps_min}+"
    if reps_min == reps_max:
        return f"{reps_min}"
    return f"{reps_min}-{reps_max}"


def format_time(seconds: int) -> str:
    clamped = max(0, seconds)
    return f"{clamped // 60}:{clamped % 60:02d}"
