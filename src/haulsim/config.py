"""Run configuration: fleet size, station capacities, horizon and duration tables.

Everything a run consumes is validated here, so a :class:`~haulsim.des.Simulation`
built from a :class:`SimulationConfig` cannot fail on bad input once it starts.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from numbers import Integral, Real
from typing import Union

from haulsim.dist import Table, empirical_table, make_duration_table, parse_table

# Classic dump-truck problem: minutes and their probabilities.
DEFAULT_LOADING = ((5, 0.30), (10, 0.50), (15, 0.20))
DEFAULT_WEIGHING = ((12, 0.30), (14, 0.40), (16, 0.30))
DEFAULT_TRAVEL = ((40, 0.40), (60, 0.30), (80, 0.30))

DEFAULT_TRUCKS = 6
DEFAULT_LOADERS = 2
DEFAULT_SCALES = 1
DEFAULT_HORIZON = 100.0

DurationInput = Union[empirical_table, Table]


class ConfigError(ValueError):
    """A count or the horizon of a configuration is invalid."""


def _positive_int(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, Integral) or value < 1:
        raise ConfigError(f"{name} must be a positive integer, got {value!r}")
    return int(value)


@dataclass
class SimulationConfig:
    """Validated input of one run.

    Attributes
    ----------
    truck_count, loader_capacity, scale_capacity : int
        Positive integers.
    horizon : float
        Finite, non-negative simulation time limit.
    loading, weighing, travel : empirical_table
        Duration distributions. Plain ``(value, probability)`` sequences are
        accepted and converted on construction.
    """

    truck_count: int = DEFAULT_TRUCKS
    loader_capacity: int = DEFAULT_LOADERS
    scale_capacity: int = DEFAULT_SCALES
    horizon: float = DEFAULT_HORIZON
    loading: DurationInput = DEFAULT_LOADING
    weighing: DurationInput = DEFAULT_WEIGHING
    travel: DurationInput = DEFAULT_TRAVEL

    def __post_init__(self):
        self.truck_count = _positive_int(self.truck_count, "truck_count")
        self.loader_capacity = _positive_int(self.loader_capacity, "loader_capacity")
        self.scale_capacity = _positive_int(self.scale_capacity, "scale_capacity")

        if isinstance(self.horizon, bool) or not isinstance(self.horizon, Real) or not 0 <= self.horizon < math.inf:
            raise ConfigError(f"horizon must be a finite non-negative number, got {self.horizon!r}")
        self.horizon = float(self.horizon)

        self.loading = make_duration_table(self.loading)
        self.weighing = make_duration_table(self.weighing)
        self.travel = make_duration_table(self.travel)

    @classmethod
    def default(cls) -> "SimulationConfig":
        """The classic six trucks, two loaders, one scale problem."""
        return cls()

    @classmethod
    def from_text(
        cls,
        loading: str,
        weighing: str,
        travel: str,
        truck_count: int = DEFAULT_TRUCKS,
        loader_capacity: int = DEFAULT_LOADERS,
        scale_capacity: int = DEFAULT_SCALES,
        horizon: float = DEFAULT_HORIZON,
    ) -> "SimulationConfig":
        """Build a configuration from ``"<value>, <probability>"`` text tables."""
        return cls(
            truck_count=truck_count,
            loader_capacity=loader_capacity,
            scale_capacity=scale_capacity,
            horizon=horizon,
            loading=parse_table(loading),
            weighing=parse_table(weighing),
            travel=parse_table(travel),
        )
