"""Observers that watch a :class:`~haulsim.des.Simulation` while it runs.

Register an observer with :meth:`Simulation.register_observer`. The engine
calls ``on_run_started``, ``on_event_processed`` after every processed event
and ``on_run_finished``; observers only need to implement the hooks they care
about.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from pandas import DataFrame

from haulsim.des import Event, SimulationResult, TruckPhase


class SimulationObserver(Protocol):  # pragma: no cover - interface only
    def on_run_started(self, simulation):
        ...

    def on_event_processed(self, simulation, event: Event):
        ...

    def on_run_finished(self, simulation, result: SimulationResult):
        ...


@dataclass
class StateRecorder:
    """Snapshot of the model state after every processed event.

    Each snapshot holds the event, the station counters, the number of trucks
    per phase and the number of pending events. :meth:`as_frame` returns them
    as a DataFrame, one row per event.
    """

    snapshots: list[dict[str, Any]] = field(default_factory=list)
    result: SimulationResult | None = None

    def on_event_processed(self, simulation, event: Event):
        row = {
            "time": simulation.clock,
            "event": event.kind.name,
            "truck": event.truck_id,
            **simulation.resources.snapshot(),
            "pending_events": len(simulation.fel),
            "loader_queue": tuple(simulation.resources.loader_queue),
            "scale_queue": tuple(simulation.resources.scale_queue),
        }
        for phase, count in simulation.phase_counts().items():
            row[phase.name] = count
        self.snapshots.append(row)

    def on_run_finished(self, simulation, result: SimulationResult):
        self.result = result

    def as_frame(self) -> DataFrame:
        columns = [
            "time", "event", "truck", "loaders_busy", "loader_queue_len", "scales_busy",
            "scale_queue_len", "pending_events", "loader_queue", "scale_queue",
        ] + [phase.name for phase in TruckPhase]
        return DataFrame(self.snapshots, columns=columns)
