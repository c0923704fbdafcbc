"""PID controller for the tank level loop.

Discrete PID with:
    - low-pass filtered measurement
    - integral anti-windup clamp at ±100 / (Kc·Ti)
    - derivative on measurement (damps PV movement, no kick on SP steps)
    - deadband attenuation, load and sensor noise injection
    - low-pass filtered output, clamped to 0-100 %

Ti and Td are entered in "minutes" on the operator panel but are applied
directly against dt in seconds, as the panel always has.
"""

import math
from dataclasses import asdict, dataclass, fields, replace

from simulation.core.errors import InvalidConfigurationError
from simulation.physics.level_tank import FILTER_COEFF, ProcessParameters, clamp_level
from simulation.physics.noise import NoiseSource, RandomNoise

INTEGRAL_SPAN = 100.0


@dataclass(frozen=True)
class ControllerTuning:
    kc: float = 0.5     # proportional gain
    ti: float = 1.0     # integral time, 0 disables integral action
    td: float = 0.1     # derivative time, 0 disables derivative action

    def validate(self) -> "ControllerTuning":
        for name, value in asdict(self).items():
            if not math.isfinite(value):
                raise InvalidConfigurationError(name, value, "must be a finite number")
        if self.ti < 0:
            raise InvalidConfigurationError("ti", self.ti, "must not be negative")
        if self.td < 0:
            raise InvalidConfigurationError("td", self.td, "must not be negative")
        return self

    def updated(self, **changes) -> "ControllerTuning":
        known = {f.name for f in fields(self)}
        coerced = {}
        for name, value in changes.items():
            if name not in known:
                raise InvalidConfigurationError(name, value, "unknown tuning parameter")
            try:
                coerced[name] = float(value)
            except (TypeError, ValueError):
                raise InvalidConfigurationError(name, value, "must be a number") from None
        return replace(self, **coerced).validate()

    @classmethod
    def from_dict(cls, data: dict) -> "ControllerTuning":
        return cls().updated(**data)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ControllerState:
    """Memory carried by the controller from one tick to the next."""

    integral: float = 0.0
    last_error: float = 0.0
    filtered_pv: float = 0.0
    last_output: float = 0.0          # smoothed, before clamping
    last_tick: float | None = None    # monotonic seconds
    p_term: float = 0.0
    i_term: float = 0.0
    d_term: float = 0.0

    @classmethod
    def from_dict(cls, data: dict) -> "ControllerState":
        """Build a state from exported values; every field must be a finite number."""
        known = {f.name for f in fields(cls)}
        values = {}
        for name, value in data.items():
            if name not in known:
                raise InvalidConfigurationError(name, value, "unknown controller state field")
            if name == "last_tick" and value is None:
                values[name] = None
                continue
            try:
                number = float(value)
            except (TypeError, ValueError):
                raise InvalidConfigurationError(name, value, "must be a number") from None
            if not math.isfinite(number):
                raise InvalidConfigurationError(name, value, "must be a finite number")
            values[name] = number
        return cls(**values)


class PIDController:
    """Discrete PID controller with anti-windup and output smoothing."""

    def __init__(
        self,
        tuning: ControllerTuning | None = None,
        noise: NoiseSource | None = None,
        filter_coeff: float = FILTER_COEFF,
        initial_pv: float = 0.0,
    ):
        if not 0.0 < filter_coeff <= 1.0:
            raise InvalidConfigurationError("filter_coeff", filter_coeff, "must be within (0, 1]")
        self.tuning = (tuning or ControllerTuning()).validate()
        self.noise = noise or RandomNoise()
        self.filter_coeff = filter_coeff
        self.state = ControllerState(filtered_pv=initial_pv)

    @property
    def integral_limit(self) -> float | None:
        """Anti-windup bound, or None when integral action is disabled."""
        span = self.tuning.kc * self.tuning.ti
        if span == 0:
            return None
        return abs(INTEGRAL_SPAN / span)

    def update(self, measured_value: float, setpoint: float, dt: float,
               process: ProcessParameters) -> float:
        """Compute the controller output.

        Args:
            measured_value: Current process variable (0-100 %).
            setpoint: Desired process variable (0-100 %).
            dt: Elapsed time since the previous evaluation, in seconds.
            process: Process parameters (gain, deadband, load, sensor noise).

        Returns:
            Controller output, clamped to 0-100 %.
        """
        s = self.state
        if dt <= 0:
            return clamp_level(s.last_output)

        c = self.filter_coeff
        kc, ti, td = self.tuning.kc, self.tuning.ti, self.tuning.td

        # Measurement filter
        previous_pv = s.filtered_pv
        filtered_pv = c * measured_value + (1 - c) * previous_pv
        error = setpoint - filtered_pv

        # Proportional
        p_term = kc * error

        # Integral with anti-windup
        limit = self.integral_limit
        if limit is not None:
            s.integral = min(limit, max(-limit, s.integral + error * dt))
        i_term = kc * s.integral / ti if ti > 0 else 0.0

        # Derivative on measurement
        d_term = -td * kc * (filtered_pv - previous_pv) / dt

        output = (p_term + i_term + d_term) * process.static_gain

        if process.deadband > 0 and abs(error) < process.deadband:
            output *= abs(error) / process.deadband

        output += self.noise.uniform() * process.sensor_noise * c
        output += process.load * c

        smoothed = c * output + (1 - c) * s.last_output

        s.filtered_pv = filtered_pv
        s.last_error = error
        s.last_output = smoothed
        s.p_term, s.i_term, s.d_term = p_term, i_term, d_term

        return clamp_level(smoothed)

    def reset(self, pv: float, now: float | None = None, full: bool = False):
        """Clear accumulated state.

        The integral, the last error and the derivative history are always
        cleared. `full` also drops the smoothed output (fresh loop start).
        """
        s = self.state
        s.integral = 0.0
        s.last_error = 0.0
        s.filtered_pv = pv
        s.last_tick = now
        s.p_term = s.i_term = s.d_term = 0.0
        if full:
            s.last_output = 0.0

    def get_state(self) -> dict:
        return asdict(self.state)

    def load_state(self, state: dict):
        self.state = ControllerState.from_dict(state)
