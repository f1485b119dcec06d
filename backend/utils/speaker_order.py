"""
Deterministic speaker order.

Any client can recompute the same seating/turn order from (room_id, players)
without asking the server, so the recurrence below must stay exactly as the
frontend implements it: a Fisher–Yates shuffle driven by the LCG
s = (s * 9301 + 49297) mod 233280.
"""
from typing import Callable, List, Sequence, TypeVar

T = TypeVar("T")

LCG_MULTIPLIER = 9301
LCG_INCREMENT = 49297
LCG_MODULUS = 233280
SEED_MODULUS = 1_000_000


def seed_for_room(room_id: int) -> int:
    return room_id % SEED_MODULUS


def lcg_random(seed: int) -> Callable[[], float]:
    """Return a generator of floats in [0, 1) from the seeded LCG."""
    state = seed

    def _next() -> float:
        nonlocal state
        state = (state * LCG_MULTIPLIER + LCG_INCREMENT) % LCG_MODULUS
        return state / LCG_MODULUS

    return _next


def shuffle_for_room(room_id: int, items: Sequence[T]) -> List[T]:
    """Fisher–Yates shuffle of items, seeded by the room id. Input is not mutated."""
    shuffled = list(items)
    rand = lcg_random(seed_for_room(room_id))
    m = len(shuffled)
    while m:
        i = int(rand() * m)
        m -= 1
        shuffled[m], shuffled[i] = shuffled[i], shuffled[m]
    return shuffled
