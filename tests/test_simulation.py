import re

import numpy as np
import pytest

from haulsim import des
from haulsim.config import SimulationConfig
from haulsim.des import EventKind, Simulation, TruckPhase
from haulsim.recorder import StateRecorder

FIXED = dict(loading=[(4, 1.0)], weighing=[(3, 1.0)], travel=[(10, 1.0)])


def _run(config, seed=0):
    sim = Simulation(config, rng=np.random.default_rng(seed))
    recorder = StateRecorder()
    sim.register_observer(recorder)
    result = sim.run()
    return sim, recorder, result


class InvariantChecker:
    """Checks the model state after every processed event."""

    def __init__(self):
        self.times = []

    def on_event_processed(self, simulation, event):
        self.times.append(simulation.clock)
        config = simulation.config
        res = simulation.resources
        phases = simulation.phase_counts()

        assert res.loaders_busy <= config.loader_capacity
        assert res.scales_busy <= config.scale_capacity

        assert phases[TruckPhase.LOADING] == res.loaders_busy
        assert phases[TruckPhase.WEIGHING] == res.scales_busy
        assert phases[TruckPhase.IN_LOADER_QUEUE] == res.loader_queue_len == len(res.loader_queue)
        assert phases[TruckPhase.IN_SCALE_QUEUE] == res.scale_queue_len == len(res.scale_queue)
        assert sum(phases.values()) == config.truck_count

        # every truck is either waiting in a queue or has exactly one pending event
        assert len(simulation.fel) + res.loader_queue_len + res.scale_queue_len == config.truck_count

        waiting = list(res.loader_queue) + list(res.scale_queue)
        in_service = res.loader.serving | res.scale.serving
        assert len(set(waiting)) == len(waiting)
        assert not set(waiting) & in_service
        assert not res.loader.serving & res.scale.serving


@pytest.mark.parametrize("trucks, loaders, scales", [(6, 2, 1), (10, 2, 1), (3, 1, 2), (8, 3, 2), (1, 1, 1)])
@pytest.mark.parametrize("seed", [0, 1, 2])
def test_invariants_hold_for_every_event(trucks, loaders, scales, seed):
    config = SimulationConfig(truck_count=trucks, loader_capacity=loaders, scale_capacity=scales, horizon=500)
    sim = Simulation(config, rng=np.random.default_rng(seed))
    checker = InvariantChecker()
    sim.register_observer(checker)

    result = sim.run()

    assert checker.times, "expected events to be processed"
    assert checker.times == sorted(checker.times)
    assert result.total_time == 500
    assert 0 <= result.loader_utilization <= 100
    assert 0 <= result.scale_utilization <= 100
    assert result.loader_busy_time <= loaders * result.total_time + 1e-9
    assert result.scale_busy_time <= scales * result.total_time + 1e-9
    assert result.events_processed == len(checker.times)


def test_single_truck_cycles_without_queueing():
    config = SimulationConfig(truck_count=1, loader_capacity=1, scale_capacity=1, horizon=100, **FIXED)
    sim, recorder, result = _run(config)
    frame = recorder.as_frame()

    assert frame["loader_queue_len"].max() == 0
    assert frame["scale_queue_len"].max() == 0
    assert sim.resources.loader.status_log()["queue_length"].max() == 0

    # ALQ -> loading, EL -> weighing, EW -> traveling, repeated every 17 minutes
    assert frame["event"].tolist() == ["ARRIVE_AT_LOADER_QUEUE", "END_LOADING", "END_WEIGHING"] * 6
    assert frame["time"].tolist()[:6] == [0, 4, 7, 17, 21, 24]
    assert frame["LOADING"].tolist()[:3] == [1, 0, 0]
    assert frame["WEIGHING"].tolist()[:3] == [0, 1, 0]
    assert frame["TRAVELING"].tolist()[:3] == [0, 0, 1]

    # next arrival at 102 is past the horizon
    assert result.total_time == 100
    assert sim.fel.peek_time() == 102
    assert len(sim.fel) == 1
    assert result.events_processed == 18
    assert result.loader_utilization == pytest.approx(24.0)
    assert result.scale_utilization == pytest.approx(18.0)


def test_zero_horizon_gives_zero_time_and_utilization():
    for config in (SimulationConfig(horizon=0), SimulationConfig(truck_count=3, horizon=0)):
        result = Simulation(config, rng=np.random.default_rng(5)).run()

        assert result.total_time == 0
        assert result.loader_utilization == 0
        assert result.scale_utilization == 0


def test_textbook_fleet_starts_with_five_trucks_at_loaders_and_one_on_scale():
    sim = Simulation(SimulationConfig(horizon=0), rng=np.random.default_rng(3))
    result = sim.run()

    phases = [truck.phase for truck in sim.trucks]
    assert phases == [
        TruckPhase.LOADING,
        TruckPhase.LOADING,
        TruckPhase.IN_LOADER_QUEUE,
        TruckPhase.IN_LOADER_QUEUE,
        TruckPhase.IN_LOADER_QUEUE,
        TruckPhase.WEIGHING,
    ]
    assert list(sim.resources.loader_queue) == [3, 4, 5]
    assert sim.resources.scales_busy == 1
    assert sim.events_processed == 0
    assert "Using problem-specific initial state" in result.log[1]


def test_general_fleet_enters_through_loader_queue():
    config = SimulationConfig(truck_count=3, loader_capacity=2, scale_capacity=1, horizon=0)
    sim = Simulation(config, rng=np.random.default_rng(3))
    result = sim.run()

    assert [truck.phase for truck in sim.trucks] == [
        TruckPhase.LOADING,
        TruckPhase.LOADING,
        TruckPhase.IN_LOADER_QUEUE,
    ]
    assert sim.event_log()["event"].tolist() == ["ARRIVE_AT_LOADER_QUEUE"] * 3
    assert "Using general initial state: 3 trucks" in result.log[1]


def test_textbook_fleet_hand_simulation():
    config = SimulationConfig(horizon=30, loading=[(5, 1.0)], weighing=[(12, 1.0)], travel=[(40, 1.0)])
    sim, recorder, result = _run(config)

    assert sim.event_log()[["time", "truck"]].values.tolist() == [
        [5, 1], [5, 2], [10, 3], [10, 4], [12, 6], [15, 5], [24, 1],
    ]
    assert result.loader_busy_time == pytest.approx(25.0)
    assert result.scale_busy_time == pytest.approx(30.0)
    assert result.summary() == {"total_time": 30.0, "loader_utilization": 41.67, "scale_utilization": 100.0}
    assert list(sim.resources.scale_queue) == [3, 4, 5]
    assert [t.phase for t in sim.trucks] == [
        TruckPhase.TRAVELING,
        TruckPhase.WEIGHING,
        TruckPhase.IN_SCALE_QUEUE,
        TruckPhase.IN_SCALE_QUEUE,
        TruckPhase.IN_SCALE_QUEUE,
        TruckPhase.TRAVELING,
    ]


def test_freed_loader_is_handed_over_in_the_same_step():
    config = SimulationConfig(truck_count=2, loader_capacity=1, scale_capacity=1, horizon=30, **FIXED)
    sim, recorder, result = _run(config)
    frame = recorder.as_frame()

    first_end = frame[(frame["event"] == "END_LOADING") & (frame["truck"] == 1)].iloc[0]
    assert first_end["time"] == 4
    assert first_end["loaders_busy"] == 1
    assert first_end["loader_queue_len"] == 0
    assert first_end["LOADING"] == 1
    assert first_end["pending_events"] == 2
    assert (frame["time"] == 4).sum() == 1
    assert "[T=4.00]     DT2 (from queue) starts loading (finishes at T=8.00). L=1" in result.log


def test_simultaneous_events_follow_scheduling_order():
    # at T=21 truck 2 arrives (scheduled at T=11) before truck 1 ends loading (scheduled at T=17)
    config = SimulationConfig(truck_count=2, loader_capacity=1, scale_capacity=1, horizon=21, **FIXED)
    sim, recorder, result = _run(config)
    frame = recorder.as_frame()
    at_21 = frame[frame["time"] == 21]

    assert at_21["event"].tolist() == ["ARRIVE_AT_LOADER_QUEUE", "END_LOADING"]
    assert at_21["truck"].tolist() == [2, 1]
    assert at_21["loader_queue"].tolist() == [(2,), ()]
    assert sim.trucks[1].phase is TruckPhase.LOADING


def test_trace_lines_are_timestamped_in_order():
    sim, _, result = _run(SimulationConfig(horizon=200), seed=11)
    pattern = re.compile(r"^\[T=(\d+\.\d{2})\] *")

    times = []
    for line in result.log:
        match = pattern.match(line)
        assert match, line
        assert line[12] == " "
        times.append(float(match.group(1)))

    assert times == sorted(times)
    assert result.log[0].endswith("Simulation started.")
    assert result.log[-1].endswith("Simulation ended at T=200.00.")
    assert result.log == sim.trace


def test_same_seed_reproduces_the_run():
    first = Simulation(SimulationConfig(horizon=300), rng=np.random.default_rng(42)).run()
    second = Simulation(SimulationConfig(horizon=300), rng=np.random.default_rng(42)).run()

    assert first.log == second.log
    assert first.loader_utilization == second.loader_utilization


def test_simulation_runs_only_once():
    sim = Simulation(SimulationConfig(horizon=10))
    sim.run()

    with pytest.raises(RuntimeError):
        sim.run()


def test_every_event_kind_has_a_handler():
    sim = Simulation(SimulationConfig())

    assert set(sim._handlers) == set(EventKind)


def test_event_log_disabled():
    sim = Simulation(SimulationConfig(horizon=50), rng=np.random.default_rng(0), log=False)
    result = sim.run()

    assert result.events_processed > 0
    assert sim.event_log().empty
    assert sim.resources.loader.status_log().empty


def test_textbook_constant():
    assert des.TEXTBOOK_FLEET == (6, 2, 1)
