"""Control loop lifecycle endpoints.

Create, start, stop, query and persist level control loops.
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, HTTPException

from backend.api.models.schemas import (
    LoopCreate,
    LoopResponse,
    LoopSnapshot,
    TrendHistoryResponse,
)
from backend.services.loop_manager import LoopInstance, LoopManager
from simulation.core.errors import InvalidConfigurationError, LoopStartupError

router = APIRouter()
manager = LoopManager()


def get_loop_or_404(loop_id: UUID) -> LoopInstance:
    loop = manager.get_loop(loop_id)
    if loop is None:
        raise HTTPException(status_code=404, detail="Loop not found")
    return loop


def snapshot_response(loop: LoopInstance) -> LoopSnapshot:
    return LoopSnapshot(loop_id=loop.id, **loop.orchestrator.get_snapshot())


@router.post("", response_model=LoopResponse)
async def create_loop(params: LoopCreate):
    """Create a new level control loop."""
    try:
        loop = await manager.create_loop(
            setpoint=params.setpoint,
            tuning=params.tuning.model_dump(exclude_none=True) if params.tuning else None,
            process=params.process.model_dump(exclude_none=True) if params.process else None,
            seed=params.seed,
            autostart=params.autostart,
        )
    except InvalidConfigurationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except LoopStartupError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except RuntimeError as e:
        raise HTTPException(status_code=429, detail=str(e))
    return LoopResponse(
        id=loop.id,
        status=loop.status,
        mode=loop.orchestrator.state.mode,
        created_at=loop.created_at,
    )


@router.get("/list")
async def list_loops():
    """List all loops."""
    return {
        "loops": manager.all_loops,
        "active_count": manager.active_count,
    }


@router.post("/{loop_id}/start", response_model=LoopSnapshot)
async def start_loop(loop_id: UUID):
    """Start ticking a loop."""
    loop = get_loop_or_404(loop_id)
    try:
        loop.start()
    except LoopStartupError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return snapshot_response(loop)


@router.post("/{loop_id}/stop", response_model=LoopSnapshot)
async def stop_loop(loop_id: UUID):
    """Stop a loop; the level returns to its initial value."""
    loop = get_loop_or_404(loop_id)
    await loop.stop()
    return snapshot_response(loop)


@router.get("/{loop_id}/state", response_model=LoopSnapshot)
async def get_loop_state(loop_id: UUID):
    """Get the loop state as of the last completed tick."""
    return snapshot_response(get_loop_or_404(loop_id))


@router.get("/{loop_id}/history", response_model=TrendHistoryResponse)
async def get_loop_history(loop_id: UUID):
    """Get the rolling PV / SP / LCV trend."""
    loop = get_loop_or_404(loop_id)
    return TrendHistoryResponse(loop_id=loop.id, **loop.orchestrator.history.to_dict())


@router.get("/{loop_id}/export")
async def export_loop(loop_id: UUID):
    """Export configuration and full loop state."""
    return get_loop_or_404(loop_id).orchestrator.to_dict()


@router.post("/{loop_id}/import", response_model=LoopSnapshot)
async def import_loop(loop_id: UUID, data: dict[str, Any]):
    """Replace a loop's configuration and state with an export."""
    loop = get_loop_or_404(loop_id)
    try:
        loop.restore(data)
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise HTTPException(status_code=422, detail=f"Invalid loop export: {e}")
    except LoopStartupError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return snapshot_response(loop)


@router.delete("/{loop_id}")
async def delete_loop(loop_id: UUID):
    """Stop and forget a loop."""
    if not await manager.delete_loop(loop_id):
        raise HTTPException(status_code=404, detail="Loop not found")
    return {"status": "deleted", "loop_id": str(loop_id)}
