"""Unit tests for the PID controller."""

import math
import random

import pytest

from simulation.control.pid_controller import ControllerState, ControllerTuning, PIDController
from simulation.core.errors import InvalidConfigurationError
from simulation.physics.level_tank import ProcessParameters
from simulation.physics.noise import SequenceNoise, ZeroNoise


def make_controller(kc=0.5, ti=1.0, td=0.1, initial_pv=30.0, noise=None):
    return PIDController(
        tuning=ControllerTuning(kc=kc, ti=ti, td=td),
        noise=noise or ZeroNoise(),
        initial_pv=initial_pv,
    )


class TestControllerTuning:
    def test_defaults(self):
        t = ControllerTuning()
        assert (t.kc, t.ti, t.td) == (0.5, 1.0, 0.1)

    def test_updated_returns_new_tuning(self):
        t = ControllerTuning()
        t2 = t.updated(kc="1.5")
        assert t2.kc == 1.5
        assert t.kc == 0.5

    @pytest.mark.parametrize("changes", [
        {"ti": -1.0},
        {"td": -0.1},
        {"kc": float("nan")},
        {"kc": float("inf")},
        {"kc": "fast"},
        {"gain": 1.0},
    ])
    def test_rejects_invalid_values(self, changes):
        with pytest.raises(InvalidConfigurationError):
            ControllerTuning().updated(**changes)

    def test_negative_gain_is_allowed(self):
        assert ControllerTuning().updated(kc=-2.0).kc == -2.0

    def test_dict_round_trip(self):
        t = ControllerTuning(kc=1.2, ti=0.4, td=0.0)
        assert ControllerTuning.from_dict(t.to_dict()) == t


class TestControllerState:
    def test_from_dict_converts_numbers(self):
        s = ControllerState.from_dict({"integral": "1.5", "last_tick": None, "filtered_pv": 30})
        assert s.integral == 1.5
        assert s.filtered_pv == 30.0
        assert s.last_tick is None

    @pytest.mark.parametrize("field, value", [
        ("integral", "abc"),
        ("last_error", float("inf")),
        ("last_output", None),
        ("last_tick", float("nan")),
        ("gain", 1.0),
    ])
    def test_from_dict_rejects_invalid(self, field, value):
        with pytest.raises(InvalidConfigurationError):
            ControllerState.from_dict({field: value})

    def test_load_state_validates(self):
        pid = make_controller()
        with pytest.raises(InvalidConfigurationError):
            pid.load_state({"integral": "abc"})
        assert pid.state.integral == 0.0


class TestAntiWindup:
    def test_integral_limit(self):
        assert make_controller().integral_limit == 200.0
        assert make_controller(kc=-2.0, ti=0.5).integral_limit == 100.0
        assert make_controller(ti=0.0).integral_limit is None
        assert make_controller(kc=0.0).integral_limit is None

    def test_integral_clamped_high(self):
        pid = make_controller(initial_pv=0.0)
        for _ in range(1000):
            pid.update(0.0, 100.0, 1.0, ProcessParameters())
        assert pid.state.integral == 200.0

    def test_integral_clamped_low(self):
        pid = make_controller(initial_pv=100.0)
        for _ in range(1000):
            pid.update(100.0, 0.0, 1.0, ProcessParameters())
        assert pid.state.integral == -200.0

    def test_huge_dt_stays_within_limit(self):
        pid = make_controller(initial_pv=0.0)
        pid.update(0.0, 100.0, 1e6, ProcessParameters())
        assert abs(pid.state.integral) <= pid.integral_limit


class TestDisabledTerms:
    def test_zero_ti_disables_integral(self):
        pid = make_controller(ti=0.0)
        rng = random.Random(5)
        for _ in range(200):
            pid.update(rng.uniform(0, 100), rng.uniform(0, 100), 0.1, ProcessParameters())
            assert pid.state.i_term == 0.0
            assert pid.state.integral == 0.0

    def test_zero_gain_freezes_integral(self):
        pid = make_controller(kc=0.0)
        for _ in range(50):
            output = pid.update(20.0, 80.0, 0.1, ProcessParameters())
            assert pid.state.integral == 0.0
            assert pid.state.i_term == 0.0
            assert output == 0.0

    def test_zero_deadband_does_not_attenuate(self):
        pid = make_controller(kc=1.0, ti=0.0, td=0.0, initial_pv=45.0)
        output = pid.update(45.0, 50.0, 0.1, ProcessParameters(static_gain=1.0, deadband=0.0))
        assert output == pytest.approx(1.0)


class TestControlAction:
    def test_settled_loop_outputs_zero(self):
        pid = make_controller(initial_pv=0.0)
        for _ in range(100):
            assert pid.update(0.0, 0.0, 0.1, ProcessParameters()) == 0.0

    def test_settled_loop_at_setpoint(self):
        pid = make_controller(initial_pv=50.0)
        for _ in range(100):
            output = pid.update(50.0, 50.0, 0.1, ProcessParameters())
        assert output == pytest.approx(0.0, abs=1e-9)

    def test_output_moves_toward_error(self):
        pid = make_controller()
        output = pid.update(30.0, 46.7681, 0.1, ProcessParameters())
        assert output > 0
        assert pid.state.last_error == pytest.approx(16.7681)

    def test_no_derivative_kick_on_setpoint_step(self):
        pid = make_controller(kc=1.0, ti=0.0, td=1.0, initial_pv=50.0)
        pid.update(50.0, 80.0, 0.1, ProcessParameters(static_gain=1.0))
        assert pid.state.d_term == pytest.approx(0.0, abs=1e-9)

    def test_derivative_opposes_rising_pv(self):
        pid = make_controller(kc=1.0, ti=0.0, td=1.0, initial_pv=50.0)
        pid.update(60.0, 50.0, 0.1, ProcessParameters(static_gain=1.0))
        # filtered PV moves 50 -> 52
        assert pid.state.d_term == pytest.approx(-20.0)

    def test_measurement_is_filtered(self):
        pid = make_controller(initial_pv=30.0)
        pid.update(80.0, 50.0, 0.1, ProcessParameters())
        assert pid.state.filtered_pv == pytest.approx(40.0)

    def test_deadband_attenuates(self):
        process = ProcessParameters(static_gain=1.0)
        plain = make_controller(kc=1.0, ti=0.0, td=0.0, initial_pv=45.0)
        banded = make_controller(kc=1.0, ti=0.0, td=0.0, initial_pv=45.0)
        out_plain = plain.update(45.0, 50.0, 0.1, process)
        out_banded = banded.update(45.0, 50.0, 0.1, process.updated(deadband=10.0))
        assert out_banded == pytest.approx(out_plain * 0.5)

    def test_error_outside_deadband_not_attenuated(self):
        process = ProcessParameters(static_gain=1.0, deadband=2.0)
        pid = make_controller(kc=1.0, ti=0.0, td=0.0, initial_pv=45.0)
        assert pid.update(45.0, 50.0, 0.1, process) == pytest.approx(1.0)

    def test_sensor_noise_injection(self):
        pid = make_controller(initial_pv=0.0, noise=SequenceNoise([0.5]))
        output = pid.update(0.0, 0.0, 0.1, ProcessParameters(sensor_noise=10.0))
        assert output == pytest.approx(0.2)

    def test_load_injection(self):
        pid = make_controller(initial_pv=0.0)
        output = pid.update(0.0, 0.0, 0.1, ProcessParameters(load=10.0))
        assert output == pytest.approx(0.4)

    def test_smoothed_output_kept_unclamped(self):
        pid = make_controller(initial_pv=0.0, noise=SequenceNoise([-0.5]))
        output = pid.update(0.0, 0.0, 0.1, ProcessParameters(sensor_noise=10.0))
        assert output == 0.0
        assert pid.state.last_output == pytest.approx(-0.2)


class TestBounds:
    def test_output_bounded_under_adversarial_input(self):
        rng = random.Random(11)
        pid = make_controller(kc=25.0, ti=0.01, td=5.0, noise=SequenceNoise([0.49, -0.5, 0.1]))
        process = ProcessParameters(static_gain=50.0, load=1e4, sensor_noise=1e4)
        for _ in range(1000):
            output = pid.update(
                rng.uniform(-1e6, 1e6),
                rng.uniform(-1e6, 1e6),
                rng.choice([1e-6, 0.1, 1e6]),
                process,
            )
            assert math.isfinite(output)
            assert 0.0 <= output <= 100.0

    def test_non_positive_dt_keeps_state(self):
        pid = make_controller()
        first = pid.update(30.0, 46.7681, 0.1, ProcessParameters())
        before = pid.get_state()
        assert pid.update(90.0, 10.0, 0.0, ProcessParameters()) == first
        assert pid.update(90.0, 10.0, -1.0, ProcessParameters()) == first
        assert pid.get_state() == before


class TestReset:
    def test_reset_clears_memory_but_keeps_output(self):
        pid = make_controller()
        for _ in range(10):
            pid.update(30.0, 60.0, 0.1, ProcessParameters())
        last_output = pid.state.last_output
        pid.reset(35.0, now=12.5)
        s = pid.state
        assert s.integral == 0.0
        assert s.last_error == 0.0
        assert s.filtered_pv == 35.0
        assert s.last_tick == 12.5
        assert (s.p_term, s.i_term, s.d_term) == (0.0, 0.0, 0.0)
        assert s.last_output == last_output

    def test_full_reset_drops_output(self):
        pid = make_controller()
        pid.update(30.0, 60.0, 0.1, ProcessParameters())
        pid.reset(30.0, full=True)
        assert pid.state.last_output == 0.0
        assert pid.state.last_tick is None

    def test_state_round_trip(self):
        pid = make_controller()
        for _ in range(5):
            pid.update(30.0, 60.0, 0.1, ProcessParameters())
        other = make_controller()
        other.load_state(pid.get_state())
        assert other.update(31.0, 60.0, 0.1, ProcessParameters()) == \
            pid.update(31.0, 60.0, 0.1, ProcessParameters())
