"""haulsim is a discrete event simulation of dump trucks cycling between loaders, a weigh scale and the haul road. It reports the time-weighted utilization of loaders and scales. Current subpackage includes des (the simulation engine), dist (empirical duration tables) and config modules.
"""
from haulsim.des import *
from haulsim.dist import *
from haulsim.config import ConfigError, SimulationConfig
from haulsim.log_cfg import log_config, logger
from haulsim.runner import run

__version__ = "1.0.0"
