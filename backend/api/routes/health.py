"""Liveness endpoint."""

from fastapi import APIRouter

from backend.core.config import settings
from backend.services.loop_manager import LoopManager

router = APIRouter()
manager = LoopManager()


@router.get("/health")
async def health():
    return {
        "status": "ok",
        "version": settings.VERSION,
        "loops": len(manager.all_loops),
        "active_loops": manager.active_count,
    }
