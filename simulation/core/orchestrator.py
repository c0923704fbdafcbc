"""Level control loop orchestrator.

Owns the simulation state and wires the PID controller to the process
model once per tick:

    STOPPED --start()--> RUNNING --stop()--> STOPPED

    RUNNING / AUTOMATIC: measured PV -> PID -> output -> tank -> new PV
    RUNNING / MANUAL:    controller and tank bypassed, the operator sets
                         the output (and with it the level) directly

`tick()` uses the real elapsed time since the previous evaluation, so a
late or early scheduler wake-up still integrates correctly. Offline runs
use a SimPy clock instead of the wall clock (`run()`).
"""

import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from enum import Enum

import simpy

from simulation.control.pid_controller import ControllerState, ControllerTuning, PIDController
from simulation.core.errors import InvalidConfigurationError
from simulation.core.recorder import TrendHistory
from simulation.physics.level_tank import (
    FILTER_COEFF,
    LevelTank,
    ProcessModel,
    ProcessParameters,
    clamp_level,
)
from simulation.physics.noise import NoiseSource, RandomNoise

logger = logging.getLogger(__name__)

DEFAULT_SETPOINT = 46.7681   # %
TICK_PERIOD = 0.1            # s
HISTORY_LENGTH = 100         # samples


class LoopMode(str, Enum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"


@dataclass
class SimulationState:
    process_variable: float = 30.0
    setpoint: float = DEFAULT_SETPOINT
    control_output: float = 0.0
    mode: LoopMode = LoopMode.AUTOMATIC
    running: bool = False


TickCallback = Callable[[dict], None]


def _finite(name: str, value) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidConfigurationError(name, value, "must be a number") from None
    if not math.isfinite(number):
        raise InvalidConfigurationError(name, value, "must be a finite number")
    return number


class LoopOrchestrator:
    """Runs the PID controller against a process model, one tick at a time."""

    def __init__(
        self,
        tuning: ControllerTuning | None = None,
        process: ProcessParameters | None = None,
        setpoint: float = DEFAULT_SETPOINT,
        noise: NoiseSource | None = None,
        plant: ProcessModel | None = None,
        clock: Callable[[], float] = time.monotonic,
        tick_period: float = TICK_PERIOD,
        history_length: int = HISTORY_LENGTH,
        filter_coeff: float = FILTER_COEFF,
    ):
        self.process = (process or ProcessParameters()).validate()
        self.tick_period = tick_period
        self._clock = clock
        self._lock = threading.RLock()
        self._subscribers: list[TickCallback] = []

        noise = noise or RandomNoise()
        self.controller = PIDController(
            tuning=tuning,
            noise=noise,
            filter_coeff=filter_coeff,
            initial_pv=self.process.initial_pv,
        )
        self.plant = plant or LevelTank(noise=noise, filter_coeff=filter_coeff)

        self.state = SimulationState(
            process_variable=self.process.initial_pv,
            setpoint=clamp_level(setpoint),
        )
        self.history = TrendHistory(
            length=history_length,
            pv=self.state.process_variable,
            sp=self.state.setpoint,
        )
        self.simulation_time = 0.0
        self.tick_count = 0

        # Offline (simulated time) execution
        self.env = simpy.Environment()
        self._sim_process: simpy.Process | None = None

    @property
    def tuning(self) -> ControllerTuning:
        return self.controller.tuning

    @property
    def running(self) -> bool:
        return self.state.running

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self, now: float | None = None) -> bool:
        """Start ticking. Returns False if already running."""
        with self._lock:
            if self.state.running:
                return False
            now = self._clock() if now is None else now
            self.controller.reset(self.state.process_variable, now, full=True)
            self.plant.clear()
            self.simulation_time = 0.0
            self.state.running = True
        logger.info("Loop started (pv=%.2f, sp=%.2f, mode=%s)",
                    self.state.process_variable, self.state.setpoint, self.state.mode.value)
        return True

    def stop(self) -> bool:
        """Stop ticking and restore the initial level. Returns False if already stopped."""
        with self._lock:
            was_running = self.state.running
            self.state.running = False
            self.plant.clear()
            self.state.process_variable = self.process.initial_pv
            self.state.control_output = 0.0
            self.history.reset(self.state.process_variable, self.state.setpoint)
        if was_running:
            logger.info("Loop stopped after %.1f s (%d ticks)", self.simulation_time, self.tick_count)
        return was_running

    # ------------------------------------------------------------------
    # Operator intents
    # ------------------------------------------------------------------
    def set_mode(self, mode: LoopMode | str):
        mode = LoopMode(mode)
        with self._lock:
            if mode == self.state.mode:
                return
            self.state.mode = mode
            if mode == LoopMode.MANUAL:
                # operator owns the level from here on
                self.plant.clear()
        logger.info("Loop mode set to %s", mode.value)

    def set_setpoint(self, value: float) -> bool:
        """Change the setpoint. Only effective in automatic mode."""
        value = _finite("setpoint", value)
        with self._lock:
            if self.state.mode != LoopMode.AUTOMATIC:
                return False
            self.state.setpoint = clamp_level(value)
        return True

    def set_manual_output(self, value: float) -> bool:
        """Drive the output directly. Only effective in manual mode.

        While running, the level follows the output. A stopped loop holds its
        initial level, so only the output is preset.
        """
        value = clamp_level(_finite("manual_output", value))
        with self._lock:
            if self.state.mode != LoopMode.MANUAL:
                return False
            self.state.control_output = value
            if self.state.running:
                self.state.process_variable = value
        return True

    def set_tuning(self, **changes) -> ControllerTuning:
        """Apply new kc / ti / td values and reset the controller memory."""
        with self._lock:
            try:
                tuning = self.controller.tuning.updated(**changes)
            except InvalidConfigurationError as e:
                logger.warning("Rejected tuning change: %s", e)
                raise
            self.controller.tuning = tuning
            self._reset_controller()
        logger.info("Tuning updated: kc=%g ti=%g td=%g", tuning.kc, tuning.ti, tuning.td)
        return tuning

    def set_process_parameters(self, **changes) -> ProcessParameters:
        """Apply new process parameters and reset the controller memory."""
        with self._lock:
            try:
                process = self.process.updated(**changes)
            except InvalidConfigurationError as e:
                logger.warning("Rejected process parameter change: %s", e)
                raise
            self.process = process
            self._reset_controller()
            if not self.state.running:
                self.state.process_variable = process.initial_pv
                self.history.fill("pv", process.initial_pv)
        logger.info("Process parameters updated: %s", changes)
        return process

    def _reset_controller(self):
        now = self._clock() if self.state.running else None
        self.controller.reset(self.state.process_variable, now)

    # ------------------------------------------------------------------
    # Tick evaluation
    # ------------------------------------------------------------------
    def tick(self, now: float | None = None) -> dict | None:
        """Evaluate one control cycle.

        Returns the tick sample, or None when stopped or when the clock
        did not advance since the previous evaluation.
        """
        with self._lock:
            if not self.state.running:
                return None
            now = self._clock() if now is None else now
            last_tick = self.controller.state.last_tick
            if last_tick is None:
                self.controller.state.last_tick = now
                return None
            dt = now - last_tick
            if dt <= 0:
                return None

            self.controller.state.last_tick = now
            self.simulation_time += dt
            self.tick_count += 1

            if self.state.mode == LoopMode.AUTOMATIC:
                pv = self.state.process_variable
                output = self.controller.update(pv, self.state.setpoint, dt, self.process)
                self.state.control_output = output
                new_pv = self.plant.advance(pv, output, dt, self.process, now)
                self.state.process_variable = clamp_level(new_pv)

            sample = self._sample(dt)
            self.history.record(sample)

        self._notify(sample)
        return sample

    def _sample(self, dt: float) -> dict:
        cs = self.controller.state
        return {
            "simulation_time": self.simulation_time,
            "dt": dt,
            "process_variable": self.state.process_variable,
            "setpoint": self.state.setpoint,
            "control_output": self.state.control_output,
            "mode": self.state.mode.value,
            "error": cs.last_error,
            "p_term": cs.p_term,
            "i_term": cs.i_term,
            "d_term": cs.d_term,
        }

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------
    def subscribe(self, callback: TickCallback) -> Callable[[], None]:
        """Call `callback(sample)` after every evaluated tick.

        Returns a function that removes the subscription.
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self, sample: dict):
        for callback in list(self._subscribers):
            try:
                callback(sample)
            except Exception:
                logger.exception("Tick subscriber %r failed", callback)

    def get_snapshot(self) -> dict:
        """State as of the last completed tick."""
        with self._lock:
            cs = self.controller.state
            return {
                "process_variable": self.state.process_variable,
                "setpoint": self.state.setpoint,
                "control_output": self.state.control_output,
                "mode": self.state.mode.value,
                "running": self.state.running,
                "simulation_time": self.simulation_time,
                "tick_count": self.tick_count,
                "error": cs.last_error,
                "integral": cs.integral,
                "p_term": cs.p_term,
                "i_term": cs.i_term,
                "d_term": cs.d_term,
            }

    # ------------------------------------------------------------------
    # Offline execution
    # ------------------------------------------------------------------
    def _simulation_loop(self, env: simpy.Environment):
        """SimPy process: one tick per period while running."""
        while self.state.running:
            yield env.timeout(self.tick_period)
            self.tick(now=env.now)

    def run(self, duration_s: float) -> list[dict]:
        """Run for `duration_s` of simulated time, as fast as possible.

        Returns the samples produced during the run.
        """
        samples: list[dict] = []
        unsubscribe = self.subscribe(samples.append)
        try:
            if not self.state.running:
                self.start(now=self.env.now)
            else:
                with self._lock:
                    self.controller.state.last_tick = self.env.now
            if self._sim_process is None or not self._sim_process.is_alive:
                self._sim_process = self.env.process(self._simulation_loop(self.env))
            self.env.run(until=self.env.now + duration_s)
        finally:
            unsubscribe()
        return samples

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def to_dict(self) -> dict:
        """Everything needed to resume this loop elsewhere."""
        with self._lock:
            state = asdict(self.state)
            state["mode"] = self.state.mode.value
            return {
                "tuning": self.controller.tuning.to_dict(),
                "process": self.process.to_dict(),
                "filter_coeff": self.controller.filter_coeff,
                "tick_period": self.tick_period,
                "state": state,
                "controller": self.controller.get_state(),
                "plant": self.plant.get_state(),
                "simulation_time": self.simulation_time,
                "tick_count": self.tick_count,
                "history": self.history.to_dict(),
            }

    def load_dict(self, data: dict, rebase: bool = False):
        """Replace configuration and state with a `to_dict()` export.

        Timestamps in an export belong to the exporting clock. With `rebase`,
        they are shifted so the last tick happened now on this loop's clock.
        Nothing is changed if the export is invalid.
        """
        tuning = ControllerTuning.from_dict(data["tuning"])
        process = ProcessParameters.from_dict(data["process"])
        controller_state = ControllerState.from_dict(data["controller"])
        pending = [[_finite("pending.due", due), clamp_level(_finite("pending.level", level))]
                   for due, level in data.get("plant", {}).get("pending", [])]

        if rebase and controller_state.last_tick is not None:
            now = self._clock()
            shift = now - controller_state.last_tick
            controller_state.last_tick = now
            for item in pending:
                item[0] += shift

        raw = data["state"]
        running = bool(raw["running"])
        state = SimulationState(
            process_variable=clamp_level(_finite("process_variable", raw["process_variable"])),
            setpoint=clamp_level(_finite("setpoint", raw["setpoint"])),
            control_output=clamp_level(_finite("control_output", raw["control_output"])),
            mode=LoopMode(raw["mode"]),
            running=running,
        )
        if not running:
            state.process_variable = process.initial_pv

        history = TrendHistory(
            length=self.history.length,
            pv=state.process_variable,
            sp=state.setpoint,
            lcv=state.control_output,
        )
        if data.get("history"):
            history.load(data["history"])
        simulation_time = _finite("simulation_time", data.get("simulation_time", 0.0))
        tick_count = int(data.get("tick_count", 0))

        with self._lock:
            self.controller.tuning = tuning
            self.controller.state = controller_state
            self.process = process
            self.plant.load_state({"pending": pending})
            self.state = state
            self.history = history
            self.simulation_time = simulation_time
            self.tick_count = tick_count
        logger.info("Loop state restored (pv=%.2f, running=%s)",
                    state.process_variable, state.running)

    @classmethod
    def from_dict(cls, data: dict, noise: NoiseSource | None = None,
                  plant: ProcessModel | None = None,
                  clock: Callable[[], float] = time.monotonic,
                  rebase: bool = False) -> "LoopOrchestrator":
        loop = cls(
            tuning=ControllerTuning.from_dict(data["tuning"]),
            process=ProcessParameters.from_dict(data["process"]),
            noise=noise,
            plant=plant,
            clock=clock,
            tick_period=data.get("tick_period", TICK_PERIOD),
            history_length=len(data.get("history", {}).get("pv", [])) or HISTORY_LENGTH,
            filter_coeff=data.get("filter_coeff", FILTER_COEFF),
        )
        loop.load_dict(data, rebase=rebase)
        return loop
