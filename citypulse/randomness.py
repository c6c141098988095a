"""Injectable random source.

Every nondeterministic decision in the engine (conversation draws, group
sizes, template choice, cascade trials and delays) goes through a
``RandomSource`` so tests can pin outcomes with a seed or a scripted stub.
"""

from __future__ import annotations

import random
from typing import Optional, Sequence, TypeVar

T = TypeVar("T")


class RandomSource:
    """Thin wrapper around :class:`random.Random`.

    Subclass and override ``random()`` to script outcomes; every other helper
    is derived from it except ``choice``/``randint`` which use the wrapped
    generator.
    """

    def __init__(self, seed: Optional[int] = None) -> None:
        self._rng = random.Random(seed)

    def random(self) -> float:
        """Return a float in [0, 1)."""
        return self._rng.random()

    def chance(self, probability: float) -> bool:
        """Bernoulli trial that succeeds with ``probability``."""
        return self.random() < probability

    def uniform(self, low: float, high: float) -> float:
        return low + (high - low) * self.random()

    def randint(self, low: int, high: int) -> int:
        """Return an int in the closed range [low, high]."""
        return self._rng.randint(low, high)

    def choice(self, items: Sequence[T]) -> T:
        if not items:
            raise IndexError("Cannot choose from an empty sequence")
        return items[self._rng.randrange(len(items))]


class ScriptedRandom(RandomSource):
    """Random source that replays a fixed list of ``random()`` values.

    Once the script is exhausted it keeps returning the last value. ``choice``
    and ``randint`` stay seeded so tests remain deterministic.
    """

    def __init__(self, values: Sequence[float], seed: int = 0) -> None:
        super().__init__(seed)
        if not values:
            raise ValueError("ScriptedRandom needs at least one value")
        self._values = list(values)
        self._index = 0

    def random(self) -> float:
        value = self._values[min(self._index, len(self._values) - 1)]
        self._index += 1
        return value
