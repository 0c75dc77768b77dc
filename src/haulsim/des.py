"""Discrete-event engine for the dump-truck loading, weighing and travel cycle.

A fixed fleet of trucks circulates forever between a pool of loaders, a pool
of scales and the haul road. The engine keeps a future event list of three
event kinds (arrival at the loader queue, end of loading, end of weighing),
advances a logical clock from event to event, and integrates the number of
busy loaders and scales over time to report their utilization.

Example
-------
.. code-block:: python

    import numpy as np
    from haulsim import Simulation, SimulationConfig

    sim = Simulation(SimulationConfig.default(), rng=np.random.default_rng(1))
    result = sim.run()
    print(result.summary())
"""
from __future__ import annotations
from collections import Counter, deque
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional

import numpy as np
import simpy
from numpy import append, array
from pandas import DataFrame

from haulsim.dist import RandomSource
from haulsim.log_cfg import logger

if TYPE_CHECKING:  # pragma: no cover - type hinting only
    from haulsim.config import SimulationConfig
    from haulsim.recorder import SimulationObserver


class EventKind(Enum):
    """The events that drive a truck around the cycle."""

    ARRIVE_AT_LOADER_QUEUE = "ALQ"
    END_LOADING = "EL"
    END_WEIGHING = "EW"


@dataclass(frozen=True)
class Event:
    """A scheduled event. Never changed once created."""

    time: float
    kind: EventKind
    truck_id: int


class FutureEventList:
    """Pending events ordered by time, ties broken by insertion order.

    The list is a :class:`simpy.Environment` used only as an event calendar:
    each pushed event becomes a timeout carrying the event as its value, and
    popping steps the calendar exactly once.
    """

    def __init__(self):
        self._calendar = simpy.Environment()
        self._pending = 0
        self._popped: Optional[Event] = None

    def __len__(self) -> int:
        return self._pending

    @property
    def now(self) -> float:
        """Time of the last popped event."""
        return self._calendar.now

    def push(self, event: Event) -> None:
        """Insert an event. Events earlier than :attr:`now` are rejected."""
        delay = event.time - self._calendar.now
        if delay < 0:
            raise ValueError(f"{event} is scheduled before the current time {self._calendar.now}")
        timeout = self._calendar.timeout(delay, value=event)
        timeout.callbacks.append(self._collect)
        self._pending += 1

    def _collect(self, timeout: simpy.Timeout) -> None:
        self._popped = timeout.value

    def peek_time(self) -> Optional[float]:
        """Return the time of the earliest pending event, or ``None``."""
        if not self._pending:
            return None
        return self._calendar.peek()

    def pop_earliest(self) -> Optional[Event]:
        """Remove and return the earliest event, or ``None`` when empty."""
        if not self._pending:
            return None
        self._calendar.step()
        event, self._popped = self._popped, None
        self._pending -= 1
        return event


class TruckPhase(Enum):
    IDLE = "idle"
    IN_LOADER_QUEUE = "in loader queue"
    LOADING = "loading"
    IN_SCALE_QUEUE = "in scale queue"
    WEIGHING = "weighing"
    TRAVELING = "traveling"


@dataclass
class Truck:
    id: int
    phase: TruckPhase = TruckPhase.IDLE


class Station:
    """A pool of identical servers (loaders or scales) with a FIFO wait-list.

    The station knows which trucks it is serving and which are waiting, so a
    truck can never be served twice or wait while in service.
    """

    def __init__(self, name: str, capacity: int, log: bool = True):
        if capacity < 1:
            raise ValueError(f"{name} capacity must be at least 1, got {capacity}")
        self.name = name
        self.capacity = capacity
        self.log = log
        self.serving: set[int] = set()
        self.queue: deque[int] = deque()

        # time, busy, idle, queue-length
        self._status_log = array([[0, 0, 0, 0]])

    def __repr__(self) -> str:
        return f"Station({self.name!r}, capacity={self.capacity}, busy={self.busy}, queue={list(self.queue)})"

    @property
    def busy(self) -> int:
        return len(self.serving)

    @property
    def idle(self) -> int:
        return self.capacity - self.busy

    @property
    def queue_length(self) -> int:
        return len(self.queue)

    def has_free_server(self) -> bool:
        return self.busy < self.capacity

    def seize(self, truck_id: int, now: float) -> None:
        """Start serving ``truck_id`` on a free server."""
        if not self.has_free_server():
            raise ValueError(f"all {self.capacity} {self.name}(s) are busy")
        if truck_id in self.serving or truck_id in self.queue:
            raise ValueError(f"truck {truck_id} is already at the {self.name}")
        self.serving.add(truck_id)
        self._record(now)

    def release(self, truck_id: int, now: float) -> None:
        """Finish serving ``truck_id``."""
        if truck_id not in self.serving:
            raise ValueError(f"truck {truck_id} is not being served by the {self.name}")
        self.serving.remove(truck_id)
        self._record(now)

    def join_queue(self, truck_id: int, now: float) -> None:
        if truck_id in self.serving or truck_id in self.queue:
            raise ValueError(f"truck {truck_id} is already at the {self.name}")
        self.queue.append(truck_id)
        self._record(now)

    def next_in_queue(self, now: float) -> int:
        """Remove and return the truck at the head of the queue."""
        truck_id = self.queue.popleft()
        self._record(now)
        return truck_id

    def _record(self, now: float) -> None:
        if self.log:
            self._status_log = append(self._status_log, [[now, self.busy, self.idle, self.queue_length]], axis=0)

    def status_log(self) -> DataFrame:
        """
        Return a DataFrame of the station status after every change.
        """
        return DataFrame(data=self._status_log[1:, :], columns=["time", "busy", "idle", "queue_length"])


class ResourceState:
    """Loader and scale stations of one run."""

    def __init__(self, loader_capacity: int, scale_capacity: int, log: bool = True):
        self.loader = Station("loader", loader_capacity, log)
        self.scale = Station("scale", scale_capacity, log)

    @property
    def loaders_busy(self) -> int:
        return self.loader.busy

    @property
    def loader_queue_len(self) -> int:
        return self.loader.queue_length

    @property
    def loader_queue(self) -> deque[int]:
        return self.loader.queue

    @property
    def scales_busy(self) -> int:
        return self.scale.busy

    @property
    def scale_queue_len(self) -> int:
        return self.scale.queue_length

    @property
    def scale_queue(self) -> deque[int]:
        return self.scale.queue

    def snapshot(self) -> dict[str, int]:
        return {
            "loaders_busy": self.loaders_busy,
            "loader_queue_len": self.loader_queue_len,
            "scales_busy": self.scales_busy,
            "scale_queue_len": self.scale_queue_len,
        }


@dataclass
class UtilizationAccumulator:
    """Time-weighted integrals of the number of busy loaders and scales."""

    loader_busy_time: float = 0.0
    scale_busy_time: float = 0.0
    last_update_time: float = 0.0

    def update(self, now: float, loaders_busy: int, scales_busy: int) -> None:
        """Add ``busy * elapsed`` for the interval ending at ``now``.

        The counts must be the ones that held during the interval, i.e.
        before the event at ``now`` changes them.
        """
        elapsed = now - self.last_update_time
        if elapsed > 0:
            self.loader_busy_time += loaders_busy * elapsed
            self.scale_busy_time += scales_busy * elapsed
            self.last_update_time = now

    def finalize(self, total_time: float, loader_capacity: int, scale_capacity: int) -> tuple[float, float]:
        """Return loader and scale utilization in percent."""
        if total_time <= 0:
            return 0.0, 0.0
        return (
            100.0 * self.loader_busy_time / (loader_capacity * total_time),
            100.0 * self.scale_busy_time / (scale_capacity * total_time),
        )


@dataclass
class SimulationResult:
    """Outcome of one run."""

    total_time: float
    loader_utilization: float
    scale_utilization: float
    loader_busy_time: float
    scale_busy_time: float
    events_processed: int
    log: list[str] = field(default_factory=list)

    def summary(self, decimals: int = 2) -> dict[str, float]:
        """Return the display statistics rounded to ``decimals``."""
        return {
            "total_time": round(self.total_time, decimals),
            "loader_utilization": round(self.loader_utilization, decimals),
            "scale_utilization": round(self.scale_utilization, decimals),
        }


TEXTBOOK_FLEET = (6, 2, 1)
"""(trucks, loaders, scales) of the classic dump-truck problem, which starts
with five trucks at the loaders and one on the scale."""


class Simulation:
    """One run of the dump-truck model.

    The simulation owns its clock, future event list, stations, trucks and
    accumulator. It is meant to be run once: build a new instance for every
    run, passing a seeded random source when the run has to be reproducible.
    """

    def __init__(
        self,
        config: "SimulationConfig",
        rng: Optional[RandomSource] = None,
        print_actions: bool = False,
        log: bool = True,
    ):
        """Create a simulation ready to :meth:`run`.

        Parameters
        ----------
        config : SimulationConfig
            Validated fleet size, capacities, horizon and duration tables.
        rng : object with a ``random()`` method, optional
            Source of uniform numbers in [0, 1). Defaults to a fresh
            :func:`numpy.random.default_rng`.
        print_actions : bool, optional
            When ``True``, echo trace lines to stdout.
        log : bool, optional
            When ``True``, keep the station status logs and the event log.
        """
        self.config = config
        self.rng = rng if rng is not None else np.random.default_rng()
        self.print_actions = print_actions
        self.log = log

        self.clock = 0.0
        self.fel = FutureEventList()
        self.resources = ResourceState(config.loader_capacity, config.scale_capacity, log)
        self.trucks = [Truck(i) for i in range(1, config.truck_count + 1)]
        self.accumulator = UtilizationAccumulator()
        self.trace: list[str] = []
        self.events_processed = 0
        self.result: Optional[SimulationResult] = None
        self._started = False
        self._observers: list["SimulationObserver"] = []

        self._handlers: dict[EventKind, Callable[[Event], None]] = {
            EventKind.ARRIVE_AT_LOADER_QUEUE: self._on_arrive_at_loader_queue,
            EventKind.END_LOADING: self._on_end_loading,
            EventKind.END_WEIGHING: self._on_end_weighing,
        }

        # time, event code, truck id
        self._event_codes = {kind: code for code, kind in enumerate(EventKind, start=1)}
        self._event_log = array([[0, 0, 0]])

    def __repr__(self) -> str:
        c = self.config
        return f"Simulation(trucks={c.truck_count}, loaders={c.loader_capacity}, scales={c.scale_capacity}, horizon={c.horizon})"

    # ------------------------------------------------------------------
    # Observer helpers
    # ------------------------------------------------------------------
    def register_observer(self, observer: "SimulationObserver"):
        """Register a new simulation observer."""
        self._observers.append(observer)

    def _notify_observers(self, method_name: str, **kwargs):
        for observer in self._observers:
            if hasattr(observer, method_name):
                getattr(observer, method_name)(**kwargs)

    # ------------------------------------------------------------------
    # Trace
    # ------------------------------------------------------------------
    def _log(self, message: str) -> None:
        line = f"{f'[T={self.clock:.2f}]':<12} {message}"
        self.trace.append(line)
        logger.debug(line)
        if self.print_actions:
            print(line)

    def event_log(self) -> DataFrame:
        """
        Return a DataFrame of the processed events (time, event, truck).
        """
        df = DataFrame(data=self._event_log[1:, :], columns=["time", "event", "truck"])
        names = {code: kind.name for kind, code in self._event_codes.items()}
        df["event"] = df["event"].map(names)
        df["truck"] = df["truck"].astype(int)
        return df

    def phase_counts(self) -> dict[TruckPhase, int]:
        """Number of trucks in every phase."""
        counts = Counter(truck.phase for truck in self.trucks)
        return {phase: counts.get(phase, 0) for phase in TruckPhase}

    # ------------------------------------------------------------------
    # Scheduling and station moves
    # ------------------------------------------------------------------
    def _truck(self, truck_id: int) -> Truck:
        return self.trucks[truck_id - 1]

    def _schedule(self, kind: EventKind, truck_id: int, delay: float) -> Event:
        event = Event(self.clock + delay, kind, truck_id)
        self.fel.push(event)
        return event

    def _start_loading(self, truck: Truck, from_queue: bool = False) -> None:
        self.resources.loader.seize(truck.id, self.clock)
        truck.phase = TruckPhase.LOADING
        event = self._schedule(EventKind.END_LOADING, truck.id, self.config.loading.sample(self.rng))
        source = " (from queue)" if from_queue else ""
        self._log(f"DT{truck.id}{source} starts loading (finishes at T={event.time:.2f}). L={self.resources.loaders_busy}")

    def _start_weighing(self, truck: Truck, from_queue: bool = False) -> None:
        self.resources.scale.seize(truck.id, self.clock)
        truck.phase = TruckPhase.WEIGHING
        event = self._schedule(EventKind.END_WEIGHING, truck.id, self.config.weighing.sample(self.rng))
        source = " (from queue)" if from_queue else ""
        self._log(f"DT{truck.id}{source} starts weighing (finishes at T={event.time:.2f}). W={self.resources.scales_busy}")

    def _admit_to_loader(self, truck: Truck) -> None:
        if self.resources.loader.has_free_server():
            self._start_loading(truck)
        else:
            self.resources.loader.join_queue(truck.id, self.clock)
            truck.phase = TruckPhase.IN_LOADER_QUEUE
            self._log(f"DT{truck.id} joins loader queue (LQ={self.resources.loader_queue_len}).")

    def _admit_to_scale(self, truck: Truck) -> None:
        if self.resources.scale.has_free_server():
            self._start_weighing(truck)
        else:
            self.resources.scale.join_queue(truck.id, self.clock)
            truck.phase = TruckPhase.IN_SCALE_QUEUE
            self._log(f"DT{truck.id} joins weigh queue (WQ={self.resources.scale_queue_len}).")

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------
    def _on_arrive_at_loader_queue(self, event: Event) -> None:
        truck = self._truck(event.truck_id)
        self._log(f"DT{truck.id} arrives at loader queue.")
        truck.phase = TruckPhase.IN_LOADER_QUEUE
        self._admit_to_loader(truck)

    def _on_end_loading(self, event: Event) -> None:
        truck = self._truck(event.truck_id)
        self.resources.loader.release(truck.id, self.clock)
        truck.phase = TruckPhase.IN_SCALE_QUEUE
        self._log(f"DT{truck.id} ends loading. L={self.resources.loaders_busy}")
        self._admit_to_scale(truck)

        # the freed loader goes to the next truck within this same step
        if self.resources.loader_queue_len > 0:
            next_truck = self._truck(self.resources.loader.next_in_queue(self.clock))
            self._start_loading(next_truck, from_queue=True)

    def _on_end_weighing(self, event: Event) -> None:
        truck = self._truck(event.truck_id)
        self.resources.scale.release(truck.id, self.clock)
        truck.phase = TruckPhase.TRAVELING
        self._log(f"DT{truck.id} ends weighing. W={self.resources.scales_busy}")
        arrival = self._schedule(EventKind.ARRIVE_AT_LOADER_QUEUE, truck.id, self.config.travel.sample(self.rng))
        self._log(f"DT{truck.id} starts traveling (arrives at loader at T={arrival.time:.2f}).")

        if self.resources.scale_queue_len > 0:
            next_truck = self._truck(self.resources.scale.next_in_queue(self.clock))
            self._start_weighing(next_truck, from_queue=True)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------
    def is_textbook_fleet(self) -> bool:
        c = self.config
        return (c.truck_count, c.loader_capacity, c.scale_capacity) == TEXTBOOK_FLEET

    def _initialize(self) -> None:
        if self.is_textbook_fleet():
            self._log("Using problem-specific initial state: 5 trucks at loaders, 1 at scale.")
            for truck in self.trucks[:5]:
                self._admit_to_loader(truck)
            self._admit_to_scale(self.trucks[5])
        else:
            self._log(f"Using general initial state: {len(self.trucks)} trucks arrive at loader at T=0.")
            for truck in self.trucks:
                self._schedule(EventKind.ARRIVE_AT_LOADER_QUEUE, truck.id, 0.0)

    def run(self) -> SimulationResult:
        """Run until the event list is empty or the horizon is passed.

        Returns
        -------
        SimulationResult
            Total simulated time, utilizations in percent and the trace.

        Raises
        ------
        RuntimeError
            If this simulation has already been run.
        """
        if self._started:
            raise RuntimeError("Simulation has already been run; create a new Simulation for another run.")
        self._started = True

        horizon = float(self.config.horizon)
        logger.info("Run started: %r", self)
        self._notify_observers("on_run_started", simulation=self)

        self._log("Simulation started.")
        self._initialize()

        while len(self.fel) > 0:
            if self.fel.peek_time() > horizon:
                # the earliest event stays unprocessed
                self.clock = horizon
                break
            event = self.fel.pop_earliest()

            self.accumulator.update(event.time, self.resources.loaders_busy, self.resources.scales_busy)
            self.clock = event.time
            self._handlers[event.kind](event)

            self.events_processed += 1
            if self.log:
                self._event_log = append(
                    self._event_log,
                    [[event.time, self._event_codes[event.kind], event.truck_id]],
                    axis=0,
                )
            self._notify_observers("on_event_processed", simulation=self, event=event)

        self.accumulator.update(self.clock, self.resources.loaders_busy, self.resources.scales_busy)
        self._log(f"Simulation ended at T={self.clock:.2f}.")

        loader_util, scale_util = self.accumulator.finalize(
            self.clock, self.config.loader_capacity, self.config.scale_capacity
        )
        self.result = SimulationResult(
            total_time=self.clock,
            loader_utilization=loader_util,
            scale_utilization=scale_util,
            loader_busy_time=self.accumulator.loader_busy_time,
            scale_busy_time=self.accumulator.scale_busy_time,
            events_processed=self.events_processed,
            log=list(self.trace),
        )
        logger.info(
            "Run finished at T=%.2f: loader utilization %.2f%%, scale utilization %.2f%%",
            self.clock, loader_util, scale_util,
        )
        self._notify_observers("on_run_finished", simulation=self, result=self.result)
        return self.result
