"""Random perturbation sources for sensor and plant noise.

Every source returns zero-mean samples in [-0.5, 0.5). The loop scales
them by the configured noise amplitude, so a deterministic source makes a
whole simulation run reproducible.
"""

import random
from abc import ABC, abstractmethod
from collections.abc import Iterable


class NoiseSource(ABC):
    """Interface for injectable noise generators."""

    @abstractmethod
    def uniform(self) -> float:
        """Return a sample in [-0.5, 0.5)."""


class RandomNoise(NoiseSource):
    """Uniform noise from a private, optionally seeded, generator."""

    def __init__(self, seed: int | None = None):
        self.seed = seed
        self._rng = random.Random(seed)

    def uniform(self) -> float:
        return self._rng.random() - 0.5


class ZeroNoise(NoiseSource):
    def uniform(self) -> float:
        return 0.0


class SequenceNoise(NoiseSource):
    """Replays a fixed list of samples cyclically."""

    def __init__(self, values: Iterable[float]):
        self.values = [float(v) for v in values]
        if not self.values:
            raise ValueError("SequenceNoise needs at least one value")
        self._index = 0

    def uniform(self) -> float:
        value = self.values[self._index % len(self.values)]
        self._index += 1
        return value
