"""
ROI strategy optimization module.

Provides the LP model builder, the solver capability, the strategy
summarizer and a memoization cache.
"""

from .lp_model import BatteryParams, LPModel, SpeedTier, build_roi_model
from .roi_action import RoiAction, stop_delay_minutes
from .roi_strategy import RoiStrategyOptimizer, Schedule, ScheduleEntry, get_strategy, summarize_strategy
from .solver import HighsSolver, LinearProgramSolver, VariableAssignment
from .strategy_cache import StrategyCache

__all__ = [
    'BatteryParams',
    'LPModel',
    'SpeedTier',
    'build_roi_model',
    'RoiAction',
    'stop_delay_minutes',
    'RoiStrategyOptimizer',
    'Schedule',
    'ScheduleEntry',
    'get_strategy',
    'summarize_strategy',
    'HighsSolver',
    'LinearProgramSolver',
    'VariableAssignment',
    'StrategyCache',
]
