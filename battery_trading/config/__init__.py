"""
Configuration module for battery scheduling and XOM allocation.

Provides dataclass-based configuration management with YAML support.

Usage:
    >>> from battery_trading.config import FleetConfig
    >>>
    >>> config = FleetConfig.from_yaml("configs/fleet.yaml")
    >>> print(config.battery.capacity_kwh)
    >>> print(config.xom.smoothing_percent)
"""

from .strategy_config import (
    BatteryConfig,
    FleetConfig,
    RoiConfig,
    SpeedTier,
    XomLoopConfig,
    XomSettings,
)

__all__ = [
    "BatteryConfig",
    "FleetConfig",
    "RoiConfig",
    "SpeedTier",
    "XomLoopConfig",
    "XomSettings",
]
