"""WebSocket endpoint for real-time loop samples."""

import asyncio
from uuid import UUID

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from backend.core.config import settings
from backend.services.loop_manager import LoopInstance, LoopManager

router = APIRouter()
manager = LoopManager()


async def _pump_samples(websocket: WebSocket, loop: LoopInstance, queue: asyncio.Queue):
    while True:
        try:
            sample = await asyncio.wait_for(queue.get(), timeout=settings.WS_IDLE_TIMEOUT_S)
        except asyncio.TimeoutError:
            await websocket.send_json({"event": "idle", "running": loop.orchestrator.running})
            continue
        await websocket.send_json(sample)


@router.websocket("/{loop_id}")
async def loop_stream(websocket: WebSocket, loop_id: UUID):
    """Stream one JSON frame per tick.

    Frames carry simulation_time, process_variable, setpoint,
    control_output, mode and the P/I/D terms. A slow client only ever
    receives the newest sample. While no ticks arrive, an
    {"event": "idle"} frame is sent every WS_IDLE_TIMEOUT_S seconds.
    """
    await websocket.accept()
    loop = manager.get_loop(loop_id)
    if loop is None:
        await websocket.send_json({"error": "loop not found"})
        await websocket.close()
        return

    queue, close_stream = loop.open_stream()
    pump = asyncio.create_task(_pump_samples(websocket, loop, queue))
    try:
        while True:
            await websocket.receive_text()  # heartbeat
    except WebSocketDisconnect:
        pass
    finally:
        close_stream()
        pump.cancel()
        await asyncio.gather(pump, return_exceptions=True)
