"""
Linear Programming model for the ROI charge/discharge strategy.

Builds a solver-agnostic LP for one battery over a known price horizon:
- Decision variables: time fraction per price slot and per speed tier
  (cs[c,t] charging, ds[d,t] discharging), plus a fixed startSoC variable
- Objective: minimize net cost of moving energy, including a fixed cost of
  half the minimum price delta per kWh (no-trade threshold)
- Constraints: time available per slot, cumulative SoC within [0, capacity]

The matrices follow the scipy.optimize.linprog conventions
(minimize c @ x subject to A_ub @ x <= b_ub and bounds).
"""

import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from battery_trading.config.strategy_config import (
    DEFAULT_CHARGE_TIERS,
    DEFAULT_DISCHARGE_TIERS,
    SpeedTier,
)
from battery_trading.errors import InputError


__all__ = [
    'DEFAULT_CHARGE_TIERS',
    'DEFAULT_DISCHARGE_TIERS',
    'SpeedTier',
    'BatteryParams',
    'LPModel',
    'build_roi_model',
    'horizon_slots',
    'validate_prices',
    'validate_price_interval',
]


@dataclass(frozen=True)
class BatteryParams:
    """
    Battery parameters for one scheduling invocation.

    Tiers with zero power are dropped; at least one charge and one
    discharge tier must remain.
    """
    capacity_kwh: float
    start_soc_percent: float = 0.0
    charge_tiers: Tuple[SpeedTier, ...] = DEFAULT_CHARGE_TIERS
    discharge_tiers: Tuple[SpeedTier, ...] = DEFAULT_DISCHARGE_TIERS
    min_price_delta: float = 0.1

    def __post_init__(self):
        charge = tuple(tier for tier in self.charge_tiers if tier.power_watts > 0)
        discharge = tuple(tier for tier in self.discharge_tiers if tier.power_watts > 0)
        object.__setattr__(self, 'charge_tiers', charge)
        object.__setattr__(self, 'discharge_tiers', discharge)

        if not math.isfinite(self.capacity_kwh) or self.capacity_kwh <= 0:
            raise InputError(f"capacity_kwh must be positive, got {self.capacity_kwh}")
        if not (0 <= self.start_soc_percent <= 100):
            raise InputError(f"start_soc_percent must be in [0, 100], got {self.start_soc_percent}")
        if not math.isfinite(self.min_price_delta) or self.min_price_delta < 0:
            raise InputError(f"min_price_delta must be >= 0, got {self.min_price_delta}")
        if not charge:
            raise InputError("At least one charge speed tier with power > 0 is required")
        if not discharge:
            raise InputError("At least one discharge speed tier with power > 0 is required")

    @property
    def fixed_cost_per_kwh(self) -> float:
        """Fixed cost charged on every kWh moved in or out."""
        return 0.5 * self.min_price_delta

    @property
    def start_energy_kwh(self) -> float:
        return (self.start_soc_percent / 100) * self.capacity_kwh


@dataclass
class LPModel:
    """LP in linprog form, with variable naming for the summarizer."""
    c: np.ndarray
    A_ub: np.ndarray
    b_ub: np.ndarray
    bounds: List[Tuple[float, float]]
    variable_names: List[str]
    n_slots: int
    n_charge: int
    n_discharge: int
    time_available: np.ndarray
    A_eq: Optional[np.ndarray] = None
    b_eq: Optional[np.ndarray] = None
    name: str = field(default='roi_strategy')

    @property
    def vars_per_slot(self) -> int:
        return self.n_charge + self.n_discharge

    @property
    def n_vars(self) -> int:
        return self.n_slots * self.vars_per_slot + 1

    @property
    def start_soc_index(self) -> int:
        return self.n_vars - 1

    def charge_index(self, tier: int, slot: int) -> int:
        return slot * self.vars_per_slot + tier

    def discharge_index(self, tier: int, slot: int) -> int:
        return slot * self.vars_per_slot + self.n_charge + tier


def validate_prices(prices) -> np.ndarray:
    """
    Convert a price sequence (list, array or pandas Series) to a float array.

    Raises:
        InputError: If prices are empty, not one-dimensional or not finite
    """
    if prices is None:
        raise InputError("No prices available")
    if isinstance(prices, pd.Series):
        prices = prices.to_numpy()
    try:
        values = np.asarray(prices, dtype=float)
    except (TypeError, ValueError) as exc:
        raise InputError(f"Prices must be numeric: {exc}") from exc

    if values.ndim != 1:
        raise InputError(f"Prices must be a one-dimensional sequence, got shape {values.shape}")
    if values.size == 0:
        raise InputError("Empty price series")
    if not np.all(np.isfinite(values)):
        raise InputError("Price series contains non-finite values")
    return values


def validate_price_interval(price_interval_minutes: int) -> int:
    if price_interval_minutes <= 0 or 60 % price_interval_minutes != 0:
        raise InputError(
            f"price_interval_minutes must divide 60, got {price_interval_minutes}"
        )
    return int(price_interval_minutes)


def horizon_slots(n_prices: int,
                  price_interval_minutes: int = 60,
                  max_steps: int = 120,
                  max_horizon_hours: float = 48) -> int:
    """Number of leading price slots taken into the optimization."""
    slots_per_hour = 60 / price_interval_minutes
    horizon_hours = min(max_horizon_hours, max_steps / slots_per_hour)
    limit = math.ceil(horizon_hours * slots_per_hour)
    return max(1, min(n_prices, limit))


def build_roi_model(prices: Sequence[float],
                    battery: BatteryParams,
                    start_minute: int = 0,
                    price_interval_minutes: int = 60) -> LPModel:
    """
    Build the LP model for the ROI strategy.

    Args:
        prices: Price per slot, chronological, first entry = current slot
        battery: Battery capacity, start SoC, speed tiers and price delta
        start_minute: Minutes already elapsed in the current hour (0-59)
        price_interval_minutes: Slot length in minutes (60 = hourly prices)

    Returns:
        LPModel ready for a LinearProgramSolver

    Raises:
        InputError: If prices or timing parameters are invalid
    """
    price_values = validate_prices(prices)
    interval = validate_price_interval(price_interval_minutes)
    if not (0 <= start_minute < 60):
        raise InputError(f"start_minute must be in [0, 59], got {start_minute}")

    T = len(price_values)
    C = len(battery.charge_tiers)
    D = len(battery.discharge_tiers)
    k = C + D
    n_vars = T * k + 1
    slot_hours = interval / 60
    fc = battery.fixed_cost_per_kwh

    names = []
    c = np.zeros(n_vars)
    # Energy moved into (+) or out of (-) storage per unit of slot time [kWh]
    energy = np.zeros(n_vars)

    for t, price in enumerate(price_values):
        for i, tier in enumerate(battery.charge_tiers):
            idx = t * k + i
            names.append(f'cs{i}T{t}')
            # Incoming energy is paid in full, losses are on the DC side
            c[idx] = tier.power_kw * slot_hours * (fc + price)
            energy[idx] = tier.power_kw * slot_hours * tier.efficiency
        for j, tier in enumerate(battery.discharge_tiers):
            idx = t * k + C + j
            names.append(f'ds{j}T{t}')
            # Outgoing energy is reduced by the discharge efficiency
            c[idx] = tier.power_kw * slot_hours * tier.efficiency * (fc - price)
            energy[idx] = -tier.power_kw * slot_hours
    names.append('startSoC')

    # Time available per slot: only the remaining minutes of the first slot
    time_available = np.ones(T)
    time_available[0] = (interval - (start_minute % interval)) / interval

    time_rows = np.zeros((T, n_vars))
    for t in range(T):
        time_rows[t, t * k:(t + 1) * k] = 1.0

    # Cumulative SoC at end of slot t: startSoC + sum of energy moved so far
    soc_rows = np.zeros((T, n_vars))
    for t in range(T):
        soc_rows[t, :(t + 1) * k] = energy[:(t + 1) * k]
        soc_rows[t, -1] = 1.0

    A_ub = np.vstack([time_rows, soc_rows, -soc_rows])
    b_ub = np.concatenate([
        time_available,
        np.full(T, battery.capacity_kwh),  # SoC <= capacity
        np.zeros(T),                       # SoC >= 0
    ])

    bounds = [(0.0, 1.0)] * (T * k)
    start_energy = battery.start_energy_kwh
    bounds.append((start_energy, start_energy))

    return LPModel(
        c=c,
        A_ub=A_ub,
        b_ub=b_ub,
        bounds=bounds,
        variable_names=names,
        n_slots=T,
        n_charge=C,
        n_discharge=D,
        time_available=time_available,
    )
