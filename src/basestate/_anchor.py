"""Computation arena — live computations indexed by integer id.

Signals never hold a computation object directly. They keep the ids of their
dependents and resolve them here at notification time, so a disposed
computation simply disappears from the arena and any stale id is skipped.
"""

import itertools

# Live computations: comp_id -> Effect
computations: dict[int, object] = {}

# ID generation
_id_counter = itertools.count(1)


def new_id() -> int:
    return next(_id_counter)


def register(comp_id: int, computation) -> None:
    computations[comp_id] = computation


def lookup(comp_id: int):
    return computations.get(comp_id)


def release(comp_id: int) -> None:
    computations.pop(comp_id, None)
