"""Control loop lifecycle manager.

Handles creation, execution, and cleanup of level control loops.
Each running loop ticks in an asyncio background task at the configured
period; the orchestrator measures the real elapsed time of every tick.
"""

import asyncio
import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone

from backend.api.models.schemas import LoopStatus
from backend.core.config import settings
from simulation.control.pid_controller import ControllerTuning
from simulation.core.errors import LoopStartupError
from simulation.core.orchestrator import LoopOrchestrator
from simulation.physics.level_tank import ProcessParameters
from simulation.physics.noise import RandomNoise

logger = logging.getLogger(__name__)


class LoopInstance:
    """A single control loop with its tick task."""

    def __init__(
        self,
        loop_id: uuid.UUID,
        orchestrator: LoopOrchestrator,
        tick_period: float = settings.TICK_PERIOD_S,
    ):
        self.id = loop_id
        self.orchestrator = orchestrator
        self.tick_period = tick_period
        self.created_at = datetime.now(timezone.utc)
        self._task: asyncio.Task | None = None

    @property
    def status(self) -> LoopStatus:
        return LoopStatus.RUNNING if self.orchestrator.running else LoopStatus.STOPPED

    def start(self) -> bool:
        """Start the loop and its tick task. Returns False if already running."""
        started = self.orchestrator.start()
        self._ensure_task()
        return started

    def restore(self, data: dict):
        """Load an exported loop state; resumes ticking if it was running."""
        self.orchestrator.load_dict(data, rebase=True)
        if self.orchestrator.running:
            self._ensure_task()

    def _ensure_task(self):
        if self._task is not None and not self._task.done():
            return
        try:
            self._task = asyncio.get_running_loop().create_task(self.run_loop())
        except RuntimeError as e:
            self.orchestrator.stop()
            raise LoopStartupError(f"Cannot schedule ticks for loop {self.id}: {e}") from e

    async def stop(self) -> bool:
        """Stop the loop and cancel its tick task. Returns False if already stopped."""
        stopped = self.orchestrator.stop()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        return stopped

    async def run_loop(self):
        """Tick loop, runs as an asyncio background task."""
        logger.info("Loop %s ticking every %.3f s", self.id, self.tick_period)
        try:
            while self.orchestrator.running:
                await asyncio.sleep(self.tick_period)
                self.orchestrator.tick()
        except asyncio.CancelledError:
            logger.info("Loop %s tick task cancelled", self.id)
        except Exception:
            logger.exception("Loop %s tick task failed", self.id)
            self.orchestrator.stop()

    def open_stream(self) -> tuple[asyncio.Queue, Callable[[], None]]:
        """Subscribe a single-slot queue to the tick samples.

        An unread sample is replaced by the newer one. Returns the queue and
        the function that closes the stream.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=1)

        def push(sample: dict):
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(sample)

        return queue, self.orchestrator.subscribe(push)

    def summary(self) -> dict:
        snapshot = self.orchestrator.get_snapshot()
        return {
            "id": str(self.id),
            "status": self.status.value,
            "mode": snapshot["mode"],
            "process_variable": round(snapshot["process_variable"], 4),
            "setpoint": round(snapshot["setpoint"], 4),
            "created_at": self.created_at.isoformat(),
        }


class LoopManager:
    """Singleton manager for all control loops."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._loops: dict[uuid.UUID, LoopInstance] = {}
        return cls._instance

    async def create_loop(
        self,
        setpoint: float | None = None,
        tuning: dict | None = None,
        process: dict | None = None,
        seed: int | None = None,
        autostart: bool = False,
    ) -> LoopInstance:
        """Create a loop (stopped unless `autostart`)."""
        if len(self._loops) >= settings.MAX_LOOPS:
            raise RuntimeError(f"Max control loops ({settings.MAX_LOOPS}) reached")

        orchestrator = LoopOrchestrator(
            tuning=ControllerTuning().updated(**(tuning or {})),
            process=ProcessParameters().updated(**(process or {})),
            setpoint=settings.DEFAULT_SETPOINT if setpoint is None else setpoint,
            noise=RandomNoise(seed),
            tick_period=settings.TICK_PERIOD_S,
            history_length=settings.HISTORY_LENGTH,
            filter_coeff=settings.FILTER_COEFF,
        )
        loop = LoopInstance(uuid.uuid4(), orchestrator, settings.TICK_PERIOD_S)
        self._loops[loop.id] = loop
        logger.info("Loop %s created", loop.id)

        if autostart:
            loop.start()
        return loop

    def get_loop(self, loop_id: uuid.UUID) -> LoopInstance | None:
        return self._loops.get(loop_id)

    async def start_loop(self, loop_id: uuid.UUID) -> bool:
        loop = self._loops.get(loop_id)
        if loop is None:
            return False
        loop.start()
        return True

    async def stop_loop(self, loop_id: uuid.UUID) -> bool:
        loop = self._loops.get(loop_id)
        if loop is None:
            return False
        await loop.stop()
        return True

    async def delete_loop(self, loop_id: uuid.UUID) -> bool:
        """Stop a loop and forget it."""
        loop = self._loops.pop(loop_id, None)
        if loop is None:
            return False
        await loop.stop()
        logger.info("Loop %s deleted", loop_id)
        return True

    async def shutdown(self):
        for loop_id in list(self._loops):
            await self.delete_loop(loop_id)

    @property
    def active_count(self) -> int:
        return sum(1 for loop in self._loops.values() if loop.status == LoopStatus.RUNNING)

    @property
    def all_loops(self) -> list[dict]:
        return [loop.summary() for loop in self._loops.values()]
