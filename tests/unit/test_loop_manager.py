"""Tests for the control loop manager."""

import asyncio
import uuid

import pytest

from backend.api.models.schemas import LoopStatus
from backend.core.config import settings
from backend.services.loop_manager import LoopInstance, LoopManager
from simulation.core.errors import InvalidConfigurationError, LoopStartupError
from simulation.core.orchestrator import LoopOrchestrator
from simulation.physics.noise import ZeroNoise


class TestLoopInstance:
    """Loop instance outside of a running event loop."""

    def test_initial_status(self):
        loop = LoopInstance(uuid.uuid4(), LoopOrchestrator(noise=ZeroNoise()))
        assert loop.status == LoopStatus.STOPPED
        summary = loop.summary()
        assert summary["status"] == "stopped"
        assert summary["mode"] == "automatic"
        assert summary["process_variable"] == 30.0

    def test_start_without_event_loop(self):
        loop = LoopInstance(uuid.uuid4(), LoopOrchestrator(noise=ZeroNoise()))
        with pytest.raises(LoopStartupError):
            loop.start()
        assert loop.status == LoopStatus.STOPPED


class TestLoopManager:
    """Loop manager lifecycle."""

    @pytest.fixture(autouse=True)
    def reset_singleton(self):
        """Reset the singleton between tests."""
        LoopManager._instance = None
        yield
        LoopManager._instance = None

    def test_singleton(self):
        assert LoopManager() is LoopManager()

    def test_create_loop_stopped(self):
        async def run():
            mgr = LoopManager()
            loop = await mgr.create_loop(seed=1)
            assert loop.status == LoopStatus.STOPPED
            assert mgr.active_count == 0
            assert mgr.get_loop(loop.id) is loop
        asyncio.run(run())

    def test_create_with_overrides(self):
        async def run():
            mgr = LoopManager()
            loop = await mgr.create_loop(
                setpoint=60.0,
                tuning={"kc": 1.2},
                process={"deadtime": 1.5},
            )
            o = loop.orchestrator
            assert o.state.setpoint == 60.0
            assert o.tuning.kc == 1.2
            assert o.tuning.ti == 1.0
            assert o.process.deadtime == 1.5
        asyncio.run(run())

    def test_create_invalid_process(self):
        async def run():
            mgr = LoopManager()
            with pytest.raises(InvalidConfigurationError):
                await mgr.create_loop(process={"lag": 0.0})
            assert mgr.all_loops == []
        asyncio.run(run())

    def test_max_loops(self, monkeypatch):
        monkeypatch.setattr(settings, "MAX_LOOPS", 1)

        async def run():
            mgr = LoopManager()
            await mgr.create_loop()
            with pytest.raises(RuntimeError):
                await mgr.create_loop()
        asyncio.run(run())

    def test_start_ticks_and_stop(self):
        async def run():
            mgr = LoopManager()
            loop = await mgr.create_loop(seed=1)
            assert await mgr.start_loop(loop.id) is True
            assert mgr.active_count == 1
            await asyncio.sleep(0.35)
            assert loop.orchestrator.tick_count > 0
            assert loop.orchestrator.simulation_time > 0

            assert await mgr.stop_loop(loop.id) is True
            assert loop.status == LoopStatus.STOPPED
            assert mgr.active_count == 0
            assert loop.orchestrator.state.process_variable == 30.0
            ticks = loop.orchestrator.tick_count
            await asyncio.sleep(0.25)
            assert loop.orchestrator.tick_count == ticks
        asyncio.run(run())

    def test_autostart(self):
        async def run():
            mgr = LoopManager()
            loop = await mgr.create_loop(autostart=True)
            assert loop.status == LoopStatus.RUNNING
            await mgr.shutdown()
            assert mgr.all_loops == []
        asyncio.run(run())

    def test_stream_receives_samples(self):
        async def run():
            mgr = LoopManager()
            loop = await mgr.create_loop(autostart=True)
            queue, close_stream = loop.open_stream()
            sample = await asyncio.wait_for(queue.get(), timeout=1.0)
            assert "process_variable" in sample
            assert sample["mode"] == "automatic"
            close_stream()
            await mgr.shutdown()
        asyncio.run(run())

    def test_restore_resumes_ticking(self):
        async def run():
            mgr = LoopManager()
            source = await mgr.create_loop(seed=3, autostart=True)
            await asyncio.sleep(0.25)
            exported = source.orchestrator.to_dict()
            await mgr.delete_loop(source.id)

            target = await mgr.create_loop()
            target.restore(exported)
            assert target.status == LoopStatus.RUNNING
            assert target.orchestrator.tick_count == exported["tick_count"]
            await asyncio.sleep(0.25)
            assert target.orchestrator.tick_count > exported["tick_count"]
            await mgr.shutdown()
        asyncio.run(run())

    def test_not_found(self):
        async def run():
            mgr = LoopManager()
            missing = uuid.uuid4()
            assert mgr.get_loop(missing) is None
            assert await mgr.start_loop(missing) is False
            assert await mgr.stop_loop(missing) is False
            assert await mgr.delete_loop(missing) is False
        asyncio.run(run())

    def test_list_loops(self):
        async def run():
            mgr = LoopManager()
            loop = await mgr.create_loop()
            loops = mgr.all_loops
            assert len(loops) == 1
            assert loops[0]["id"] == str(loop.id)
            assert loops[0]["status"] == "stopped"
        asyncio.run(run())
