"""Operator control endpoints.

Mode, setpoint, manual output and tuning changes for a running or
stopped loop. Edits are applied between ticks.
"""

from uuid import UUID

from fastapi import APIRouter, HTTPException

from backend.api.models.schemas import (
    LoopConfig,
    LoopSnapshot,
    ModeUpdate,
    ProcessUpdate,
    TuningUpdate,
    ValueUpdate,
)
from backend.api.routes.loops import get_loop_or_404, snapshot_response
from simulation.core.errors import InvalidConfigurationError

router = APIRouter()


def config_response(loop) -> LoopConfig:
    orchestrator = loop.orchestrator
    return LoopConfig(
        tuning=orchestrator.tuning.to_dict(),
        process=orchestrator.process.to_dict(),
    )


@router.put("/{loop_id}/mode", response_model=LoopSnapshot)
async def set_mode(loop_id: UUID, update: ModeUpdate):
    """Switch between automatic and manual mode."""
    loop = get_loop_or_404(loop_id)
    loop.orchestrator.set_mode(update.mode)
    return snapshot_response(loop)


@router.put("/{loop_id}/setpoint", response_model=LoopSnapshot)
async def set_setpoint(loop_id: UUID, update: ValueUpdate):
    """Change the setpoint (automatic mode only)."""
    loop = get_loop_or_404(loop_id)
    try:
        applied = loop.orchestrator.set_setpoint(update.value)
    except InvalidConfigurationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    if not applied:
        raise HTTPException(status_code=409, detail="Setpoint can only be changed in automatic mode")
    return snapshot_response(loop)


@router.put("/{loop_id}/manual-output", response_model=LoopSnapshot)
async def set_manual_output(loop_id: UUID, update: ValueUpdate):
    """Drive the controller output directly (manual mode only)."""
    loop = get_loop_or_404(loop_id)
    try:
        applied = loop.orchestrator.set_manual_output(update.value)
    except InvalidConfigurationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    if not applied:
        raise HTTPException(status_code=409, detail="Output can only be set in manual mode")
    return snapshot_response(loop)


@router.get("/{loop_id}/config", response_model=LoopConfig)
async def get_config(loop_id: UUID):
    """Current tuning and process parameters."""
    return config_response(get_loop_or_404(loop_id))


@router.put("/{loop_id}/tuning", response_model=LoopConfig)
async def set_tuning(loop_id: UUID, update: TuningUpdate):
    """Change Kc / Ti / Td. Resets the controller memory."""
    loop = get_loop_or_404(loop_id)
    try:
        loop.orchestrator.set_tuning(**update.model_dump(exclude_none=True))
    except InvalidConfigurationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return config_response(loop)


@router.put("/{loop_id}/process", response_model=LoopConfig)
async def set_process(loop_id: UUID, update: ProcessUpdate):
    """Change process parameters. Resets the controller memory."""
    loop = get_loop_or_404(loop_id)
    try:
        loop.orchestrator.set_process_parameters(**update.model_dump(exclude_none=True))
    except InvalidConfigurationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return config_response(loop)
