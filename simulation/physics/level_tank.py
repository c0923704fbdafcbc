"""Liquid level process model: a lagged first-order tank with deadtime.

Model:
    response  = (u - pv) * dt / lag
    candidate = pv + response + plant noise
    level     = c * candidate + (1 - c) * pv        (c = filter coefficient)

The new level is not written immediately: it is queued and becomes the
process variable `deadtime` seconds later. Queued writes are applied in
the order they were scheduled.
"""

import math
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import asdict, dataclass, fields, replace

import numpy as np

from simulation.core.errors import InvalidConfigurationError
from simulation.physics.noise import NoiseSource, RandomNoise

LEVEL_MIN = 0.0
LEVEL_MAX = 100.0

# Smoothing coefficient shared by the controller and the tank (0 < c <= 1,
# lower = smoother)
FILTER_COEFF = 0.2

MIN_LAG = 1e-6          # s
DUE_TOLERANCE = 1e-9    # s, absorbs float drift of accumulated tick times


def clamp_level(value: float) -> float:
    """Clamp a level/output value to the 0-100 % range."""
    return float(np.clip(value, LEVEL_MIN, LEVEL_MAX))


@dataclass(frozen=True)
class ProcessParameters:
    """Operator-editable description of the simulated tank."""

    static_gain: float = 2.5    # process gain applied to controller output
    lag: float = 2.5            # s, first-order time constant
    deadtime: float = 0.0       # s, transport delay
    load: float = 0.0           # constant disturbance
    deadband: float = 0.0       # error band with attenuated output
    sensor_noise: float = 0.0   # measurement noise amplitude
    plant_noise: float = 0.0    # process noise amplitude
    initial_pv: float = 30.0    # %, level restored on stop

    def validate(self) -> "ProcessParameters":
        for name, value in asdict(self).items():
            if not math.isfinite(value):
                raise InvalidConfigurationError(name, value, "must be a finite number")
        if self.lag <= 0:
            raise InvalidConfigurationError("lag", self.lag, "must be greater than zero")
        for name in ("deadtime", "deadband", "sensor_noise", "plant_noise"):
            value = getattr(self, name)
            if value < 0:
                raise InvalidConfigurationError(name, value, "must not be negative")
        if not LEVEL_MIN <= self.initial_pv <= LEVEL_MAX:
            raise InvalidConfigurationError(
                "initial_pv", self.initial_pv, f"must be within {LEVEL_MIN}-{LEVEL_MAX}"
            )
        return self

    def updated(self, **changes) -> "ProcessParameters":
        """Return a validated copy with `changes` applied."""
        known = {f.name for f in fields(self)}
        coerced = {}
        for name, value in changes.items():
            if name not in known:
                raise InvalidConfigurationError(name, value, "unknown process parameter")
            try:
                coerced[name] = float(value)
            except (TypeError, ValueError):
                raise InvalidConfigurationError(name, value, "must be a number") from None
        return replace(self, **coerced).validate()

    @classmethod
    def from_dict(cls, data: dict) -> "ProcessParameters":
        return cls().updated(**data)

    def to_dict(self) -> dict:
        return asdict(self)


class ProcessModel(ABC):
    """Anything that turns a controller output into a process variable.

    The simulated `LevelTank` is the default; a live sensor/actuator feed
    can be plugged into the loop by implementing the same contract.
    """

    @abstractmethod
    def advance(self, current_pv: float, controller_output: float, dt: float,
                process: ProcessParameters, now: float) -> float:
        """Drive the process for `dt` seconds and return the level at `now`."""

    @abstractmethod
    def clear(self):
        """Drop any response that has not reached the process variable yet."""

    def get_state(self) -> dict:
        return {}

    def load_state(self, state: dict):
        pass


class LevelTank(ProcessModel):
    """Simulated tank with first-order lag, noise and an ordered deadtime queue."""

    def __init__(self, noise: NoiseSource | None = None,
                 filter_coeff: float = FILTER_COEFF):
        if not 0.0 < filter_coeff <= 1.0:
            raise InvalidConfigurationError("filter_coeff", filter_coeff, "must be within (0, 1]")
        self.noise = noise or RandomNoise()
        self.filter_coeff = filter_coeff
        self._pending: deque[tuple[float, float]] = deque()

    @property
    def pending(self) -> list[tuple[float, float]]:
        """Queued (due_time, level) writes, oldest first."""
        return list(self._pending)

    def advance(self, current_pv: float, controller_output: float, dt: float,
                process: ProcessParameters, now: float) -> float:
        if dt <= 0:
            return self.apply_due(current_pv, now)

        c = self.filter_coeff
        lag = max(process.lag, MIN_LAG)

        response = (controller_output - current_pv) * (dt / lag)
        candidate = current_pv + response
        noise = self.noise.uniform() * process.plant_noise * c
        level = c * (candidate + noise) + (1 - c) * current_pv

        self.schedule(clamp_level(level), now + process.deadtime)
        return self.apply_due(current_pv, now)

    def schedule(self, level: float, due: float):
        """Queue a level write; it never lands before an earlier-queued one."""
        if self._pending and due < self._pending[-1][0]:
            due = self._pending[-1][0]
        self._pending.append((due, level))

    def apply_due(self, current_pv: float, now: float) -> float:
        level = current_pv
        while self._pending and self._pending[0][0] <= now + DUE_TOLERANCE:
            _, level = self._pending.popleft()
        return level

    def clear(self):
        self._pending.clear()

    def get_state(self) -> dict:
        return {"pending": [[due, level] for due, level in self._pending]}

    def load_state(self, state: dict):
        self._pending = deque(
            (float(due), float(level)) for due, level in state.get("pending", [])
        )
