from __future__ import annotations

from typing import Iterable, Optional, Union

import numpy as np

from .config import SimulationConfig
from .des import Simulation
from .dist import RandomSource


def run(
    config_or_simulation: Union[SimulationConfig, Simulation, None] = None,
    *,
    seed: Optional[int] = None,
    rng: Optional[RandomSource] = None,
    observers: Iterable = (),
    print_actions: bool = False,
) -> Simulation:
    """Run one dump-truck simulation.

    Parameters
    ----------
    config_or_simulation:
        Either

        - a :class:`haulsim.config.SimulationConfig` (a fresh
          :class:`Simulation` is built from it),
        - a ready-made, not yet run :class:`Simulation`, or
        - ``None`` for :meth:`SimulationConfig.default`.

    seed:
        Seed for a new :func:`numpy.random.default_rng`. Ignored when ``rng``
        is given.

    rng:
        Random source for a new simulation. Cannot be combined with a
        ready-made simulation, which already owns one.

    observers:
        Objects registered with :meth:`Simulation.register_observer` before
        the run.

    print_actions:
        Echo the trace to stdout while running a new simulation.

    Returns
    -------
    Simulation
        The finished simulation; its ``result`` holds the statistics and log.
    """
    if isinstance(config_or_simulation, Simulation):
        if seed is not None or rng is not None:
            raise ValueError("seed/rng cannot be used with a ready-made Simulation; " "pass them to its constructor instead.")
        simulation = config_or_simulation
    else:
        config = config_or_simulation if config_or_simulation is not None else SimulationConfig.default()
        if not isinstance(config, SimulationConfig):
            raise TypeError(f"First argument to haulsim.run must be a SimulationConfig or a Simulation, got {type(config)!r}.")
        if rng is None:
            rng = np.random.default_rng(seed)
        simulation = Simulation(config, rng=rng, print_actions=print_actions)

    for observer in observers:
        simulation.register_observer(observer)

    simulation.run()
    return simulation
