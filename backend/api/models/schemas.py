"""Pydantic schemas for API request/response models."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field

from simulation.core.orchestrator import LoopMode


class LoopStatus(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"


class TuningUpdate(BaseModel):
    """PID tuning. Omitted fields keep their current value."""
    kc: float | None = Field(default=None, description="Proportional gain")
    ti: float | None = Field(default=None, description="Integral time (min), 0 disables")
    td: float | None = Field(default=None, description="Derivative time (min), 0 disables")


class ProcessUpdate(BaseModel):
    """Process parameters. Omitted fields keep their current value."""
    static_gain: float | None = Field(default=None, description="Process gain")
    lag: float | None = Field(default=None, description="First-order time constant (s), > 0")
    deadtime: float | None = Field(default=None, description="Transport delay (s)")
    load: float | None = Field(default=None, description="Load disturbance")
    deadband: float | None = Field(default=None, description="Error deadband")
    sensor_noise: float | None = Field(default=None, description="Measurement noise amplitude")
    plant_noise: float | None = Field(default=None, description="Process noise amplitude")
    initial_pv: float | None = Field(default=None, description="Level restored on stop (%)")


class LoopCreate(BaseModel):
    """Request to create a new control loop (created stopped)."""
    setpoint: float | None = Field(default=None, ge=0.0, le=100.0)
    tuning: TuningUpdate | None = None
    process: ProcessUpdate | None = None
    seed: int | None = Field(default=None, description="Noise generator seed")
    autostart: bool = False


class LoopResponse(BaseModel):
    """Response after creating a loop."""
    id: UUID
    status: LoopStatus
    mode: LoopMode
    created_at: datetime


class ModeUpdate(BaseModel):
    mode: LoopMode


class ValueUpdate(BaseModel):
    """A single 0-100 % operator value (setpoint or manual output)."""
    value: float = Field(ge=0.0, le=100.0)


class TuningState(BaseModel):
    kc: float
    ti: float
    td: float


class ProcessState(BaseModel):
    static_gain: float
    lag: float
    deadtime: float
    load: float
    deadband: float
    sensor_noise: float
    plant_noise: float
    initial_pv: float


class LoopSnapshot(BaseModel):
    """Loop state as of the last completed tick."""
    loop_id: UUID
    process_variable: float = Field(description="Current level (%)")
    setpoint: float = Field(description="Desired level (%)")
    control_output: float = Field(description="Controller output / LCV (%)")
    mode: LoopMode
    running: bool
    simulation_time: float = Field(description="Time since start (s)")
    tick_count: int
    error: float
    integral: float
    p_term: float
    i_term: float
    d_term: float


class LoopConfig(BaseModel):
    tuning: TuningState
    process: ProcessState


class TrendHistoryResponse(BaseModel):
    loop_id: UUID
    pv: list[float]
    sp: list[float]
    lcv: list[float]
