"""Rest duration resolution.

Rest between sets falls back block -> template -> global default; rest
between top-level blocks (transition rest) falls back block -> global.
"""


def resolve_rest(block_rest: int | None, template_rest: int | None, global_rest: int) -> int:
    if block_rest is not None:
        return block_rest
    if template_rest is not None:
        return template_rest
    return global_rest


def resolve_transition_rest(block_transition: int | None, global_transition: int) -> int:
    return block_transition if block_transition is not None else global_transition
