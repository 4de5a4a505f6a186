"""Deterministic source of randomness for one trial.

Generators never touch a global RNG. Every ``produce`` call receives a
Cursor, so the same seed always yields the same value.
"""

import random
from typing import Sequence, TypeVar

T = TypeVar("T")

SEED_BITS = 64


class Cursor:
    """A seeded stream of random draws."""

    def __init__(self, seed: int):
        self.seed = seed
        self._random = random.Random(seed)

    def boolean(self) -> bool:
        return self._random.getrandbits(1) == 1

    def chance(self, probability: float) -> bool:
        return self._random.random() < probability

    def integer(self, low: int, high: int) -> int:
        """Uniform integer in [low, high]."""
        return self._random.randint(low, high)

    def real(self, low: float, high: float) -> float:
        return self._random.uniform(low, high)

    def choice(self, options: Sequence[T]) -> T:
        return options[self._random.randrange(len(options))]

    def index(self, size: int) -> int:
        return self._random.randrange(size)


class SeedSequence:
    """Derives one independent trial seed after another from a master seed."""

    def __init__(self, seed: int):
        self.seed = seed
        self._random = random.Random(seed)

    def next_seed(self) -> int:
        return self._random.getrandbits(SEED_BITS)

    def next_cursor(self) -> Cursor:
        return Cursor(self.next_seed())
