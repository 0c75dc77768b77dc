"""
Dump Truck Problem

Six dump trucks haul coal from the loaders to the railhead. Every truck
cycles through:
    1. Loader queue, then loading by one of 2 loaders
    2. Scale queue, then weighing on the single scale
    3. Travel back to the loaders

The classic problem starts with five trucks at the loaders (two loading, three
waiting) and one truck on the scale. Durations come from small tables of
observed times and their probabilities.

KEY METRICS:
    - Loader utilization percentage
    - Scale utilization percentage

@author: haulsim example
@version: 1.0
"""
import logging

import haulsim
from haulsim import SimulationConfig
from haulsim.log_cfg import LogConfig
from haulsim.recorder import StateRecorder

LOADING = """
5, 0.30
10, 0.50
15, 0.20
"""

WEIGHING = """
12, 0.30
14, 0.40
16, 0.30
"""

TRAVEL = """
40, 0.40
60, 0.30
80, 0.30
"""


if __name__ == "__main__":
    LogConfig(enabled=True, console_level=logging.INFO, file_path=None)

    config = SimulationConfig.from_text(
        loading=LOADING,
        weighing=WEIGHING,
        travel=TRAVEL,
        truck_count=6,
        loader_capacity=2,
        scale_capacity=1,
        horizon=76,
    )
    recorder = StateRecorder()
    sim = haulsim.run(config, seed=2024, observers=[recorder])

    print("\n".join(sim.result.log))
    print()
    stats = sim.result.summary()
    print(f"Simulation complete after {stats['total_time']:.2f} minutes.")
    print(f"Loader Utilization: {stats['loader_utilization']:.2f}% (of {config.loader_capacity} loaders)")
    print(f"Scale Utilization: {stats['scale_utilization']:.2f}% (of {config.scale_capacity} scales)")

    # queue lengths over time
    print(recorder.as_frame()[["time", "loader_queue_len", "scale_queue_len"]].to_string(index=False))
