"""
Configuration for ROI strategy scheduling and the XOM allocation loop.

Sections:
1. battery: capacity and charge/discharge speed tiers
2. roi: scheduler settings (price delta, price interval, clean-up, horizon)
3. xom: live allocator settings (smoothing, offset, deadband, strategy)
4. loop: control loop timing and plausibility limits
"""

import math
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple, Union

import yaml

from battery_trading.errors import InputError


@dataclass(frozen=True)
class SpeedTier:
    """A selectable charge or discharge rate with its efficiency."""
    power_watts: float
    efficiency: float = 1.0

    def __post_init__(self):
        if not math.isfinite(self.power_watts) or self.power_watts < 0:
            raise InputError(f"Speed tier power must be a finite value >= 0, got {self.power_watts}")
        if not (0 < self.efficiency <= 1):
            raise InputError(f"Speed tier efficiency must be in (0, 1], got {self.efficiency}")

    @classmethod
    def from_loss(cls, power_watts: float, loss_percent: float) -> "SpeedTier":
        """Create a tier from a loss percentage, as battery settings store it."""
        return cls(power_watts=power_watts, efficiency=1 - (loss_percent / 100))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SpeedTier":
        """Parse {power_watts, efficiency} or {power_watts, loss_percent}."""
        if 'power_watts' not in data:
            raise ValueError(f"Speed tier requires 'power_watts': {dict(data)}")
        if 'loss_percent' in data:
            return cls.from_loss(float(data['power_watts']), float(data['loss_percent']))
        return cls(float(data['power_watts']), float(data.get('efficiency', 1.0)))

    @property
    def power_kw(self) -> float:
        return self.power_watts / 1000


# Sessy home battery defaults
DEFAULT_CHARGE_TIERS = (SpeedTier(2200, 0.90), SpeedTier(1050, 0.95))
DEFAULT_DISCHARGE_TIERS = (SpeedTier(1700, 0.92), SpeedTier(765, 0.96))


@dataclass
class BatteryConfig:
    """Battery parameters used by the scheduler."""
    capacity_kwh: float = 5.05
    charge_tiers: List[SpeedTier] = field(default_factory=lambda: list(DEFAULT_CHARGE_TIERS))
    discharge_tiers: List[SpeedTier] = field(default_factory=lambda: list(DEFAULT_DISCHARGE_TIERS))

    def __post_init__(self):
        if self.capacity_kwh <= 0:
            raise ValueError(f"capacity_kwh must be positive, got {self.capacity_kwh}")


@dataclass
class RoiConfig:
    """ROI strategy scheduler settings."""
    min_price_delta: float = 0.1
    price_interval_minutes: int = 60
    clean_up: bool = True
    max_steps: int = 120
    max_horizon_hours: float = 48

    def __post_init__(self):
        if self.min_price_delta < 0:
            raise ValueError(f"min_price_delta must be >= 0, got {self.min_price_delta}")
        if self.price_interval_minutes <= 0 or 60 % self.price_interval_minutes != 0:
            raise ValueError(f"price_interval_minutes must divide 60, got {self.price_interval_minutes}")


AllocationStrategy = Literal["proportional", "priority"]


@dataclass
class XomSettings:
    """
    Live allocator settings, read fresh every tick.

    Attributes:
        smoothing_percent: 0 = no smoothing, 100 = blend over 120 seconds
        x: Manual offset [W] subtracted from the household target
        min_load_watts: Deadband below which a battery target is forced to 0
        strategy: 'proportional' (SoC-weighted split) or 'priority' (fewest batteries)
    """
    smoothing_percent: float = 50.0
    x: float = 0.0
    min_load_watts: float = 50.0
    strategy: AllocationStrategy = "proportional"

    # Keys as stored by the flow settings (camelCase) mapped to field names
    _ALIASES = {'smoothing': 'smoothing_percent', 'minLoad': 'min_load_watts'}

    def __post_init__(self):
        if not (0 <= self.smoothing_percent <= 100):
            raise ValueError(f"smoothing_percent must be in [0, 100], got {self.smoothing_percent}")
        if not math.isfinite(self.x):
            raise ValueError(f"x must be finite, got {self.x}")
        if not math.isfinite(self.min_load_watts) or self.min_load_watts < 0:
            raise ValueError(f"min_load_watts must be >= 0, got {self.min_load_watts}")
        if self.strategy not in ("proportional", "priority"):
            raise ValueError(f"Unknown allocation strategy '{self.strategy}'")

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "XomSettings":
        """Build settings from a stored mapping; missing keys use defaults."""
        if not data:
            return cls()
        values = {}
        for key, value in data.items():
            name = cls._ALIASES.get(key, key)
            if name in ('smoothing_percent', 'x', 'min_load_watts'):
                values[name] = float(value)
            elif name == 'strategy':
                values[name] = str(value)
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'smoothing_percent': self.smoothing_percent,
            'x': self.x,
            'min_load_watts': self.min_load_watts,
            'strategy': self.strategy,
        }


@dataclass
class XomLoopConfig:
    """Timing of the XOM control loop."""
    interval_seconds: float = 10.0
    warmup_seconds: float = 20.0
    max_abs_power_watts: float = 30000.0
    settings_key: str = "xomSettings"

    def __post_init__(self):
        if self.interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {self.interval_seconds}")
        if self.warmup_seconds < 0:
            raise ValueError(f"warmup_seconds must be >= 0, got {self.warmup_seconds}")


def _parse_tiers(raw: Optional[List[Mapping[str, Any]]],
                 default: Tuple[SpeedTier, ...]) -> List[SpeedTier]:
    if raw is None:
        return list(default)
    return [SpeedTier.from_dict(item) for item in raw]


@dataclass
class FleetConfig:
    """
    Master configuration for one battery fleet.

    Each fleet runs its own scheduler settings and its own XOM loop.
    """
    name: str = "fleet"
    battery: BatteryConfig = field(default_factory=BatteryConfig)
    roi: RoiConfig = field(default_factory=RoiConfig)
    xom: XomSettings = field(default_factory=XomSettings)
    loop: XomLoopConfig = field(default_factory=XomLoopConfig)

    @classmethod
    def from_yaml(cls, yaml_path: Union[str, Path]) -> "FleetConfig":
        """
        Load fleet configuration from YAML file.

        Args:
            yaml_path: Path to YAML configuration file

        Returns:
            FleetConfig instance

        Raises:
            FileNotFoundError: If YAML file doesn't exist
            ValueError: If YAML is invalid or contains invalid values
        """
        yaml_path = Path(yaml_path)

        if not yaml_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        with open(yaml_path, 'r') as f:
            config_dict = yaml.safe_load(f)

        if config_dict is None:
            raise ValueError(f"Empty or invalid YAML file: {yaml_path}")

        return cls.from_dict(config_dict)

    @classmethod
    def from_dict(cls, config_dict: Mapping[str, Any]) -> "FleetConfig":
        """Build configuration from a (YAML-loaded) dictionary."""
        config = cls(name=config_dict.get('name', 'fleet'))

        if 'battery' in config_dict:
            battery_dict = config_dict['battery'] or {}
            config.battery = BatteryConfig(
                capacity_kwh=battery_dict.get('capacity_kwh', 5.05),
                charge_tiers=_parse_tiers(battery_dict.get('charge_tiers'), DEFAULT_CHARGE_TIERS),
                discharge_tiers=_parse_tiers(battery_dict.get('discharge_tiers'), DEFAULT_DISCHARGE_TIERS),
            )

        if 'roi' in config_dict:
            roi_dict = config_dict['roi'] or {}
            config.roi = RoiConfig(
                min_price_delta=roi_dict.get('min_price_delta', 0.1),
                price_interval_minutes=roi_dict.get('price_interval_minutes', 60),
                clean_up=roi_dict.get('clean_up', True),
                max_steps=roi_dict.get('max_steps', 120),
                max_horizon_hours=roi_dict.get('max_horizon_hours', 48),
            )

        if 'xom' in config_dict:
            config.xom = XomSettings.from_mapping(config_dict['xom'] or {})

        if 'loop' in config_dict:
            loop_dict = config_dict['loop'] or {}
            config.loop = XomLoopConfig(
                interval_seconds=loop_dict.get('interval_seconds', 10.0),
                warmup_seconds=loop_dict.get('warmup_seconds', 20.0),
                max_abs_power_watts=loop_dict.get('max_abs_power_watts', 30000.0),
                settings_key=loop_dict.get('settings_key', 'xomSettings'),
            )

        return config

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary (YAML-serializable)."""
        return {
            'name': self.name,
            'battery': {
                'capacity_kwh': self.battery.capacity_kwh,
                'charge_tiers': [asdict(tier) for tier in self.battery.charge_tiers],
                'discharge_tiers': [asdict(tier) for tier in self.battery.discharge_tiers],
            },
            'roi': asdict(self.roi),
            'xom': self.xom.to_dict(),
            'loop': asdict(self.loop),
        }

    def to_yaml(self, yaml_path: Union[str, Path]) -> None:
        """Save configuration to YAML file."""
        with open(Path(yaml_path), 'w') as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)
