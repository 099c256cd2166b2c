"""
Battery trading: ROI strategy scheduling and real-time fleet allocation.

- optimization: LP-based hour-by-hour charge/discharge schedule (ROI strategy)
- operational: XOM loop splitting live household power over a battery fleet
- config: dataclass/YAML configuration
"""

from .config import FleetConfig, XomSettings
from .errors import (
    BatteryTradingError,
    CollaboratorUnavailableError,
    InfeasibleModelError,
    InputError,
    SolverError,
    TransientTelemetryError,
)
from .optimization import RoiStrategyOptimizer, Schedule, ScheduleEntry, get_strategy
from .operational import XomLoop, allocate

__version__ = "0.1.0"

__all__ = [
    'FleetConfig',
    'XomSettings',
    'BatteryTradingError',
    'CollaboratorUnavailableError',
    'InfeasibleModelError',
    'InputError',
    'SolverError',
    'TransientTelemetryError',
    'RoiStrategyOptimizer',
    'Schedule',
    'ScheduleEntry',
    'get_strategy',
    'XomLoop',
    'allocate',
]
