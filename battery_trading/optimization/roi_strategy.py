"""
ROI strategy: optimal charge/discharge schedule over a known price horizon.

Solves the LP built by lp_model and summarizes the per-tier time allocation
into one action per price slot (net power, duration, resulting SoC).

Sign convention: positive power = discharging, negative power = charging.
"""

import json
import logging
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Dict, Iterator, Optional, Sequence

import numpy as np
import pandas as pd

from battery_trading.config.strategy_config import BatteryConfig, RoiConfig
from battery_trading.optimization.lp_model import (
    DEFAULT_CHARGE_TIERS,
    DEFAULT_DISCHARGE_TIERS,
    BatteryParams,
    LPModel,
    SpeedTier,
    build_roi_model,
    horizon_slots,
    validate_price_interval,
    validate_prices,
)
from battery_trading.optimization.solver import HighsSolver, LinearProgramSolver, VariableAssignment
from battery_trading.optimization.strategy_cache import StrategyCache

logger = logging.getLogger(__name__)

# Solver values below this are treated as zero time
ACTIVE_TIME_TOLERANCE = 1e-9
# Percent of capacity that counts as "almost full" / "almost empty"
SOC_MARGIN_PERCENT = 5


@dataclass(frozen=True)
class ScheduleEntry:
    """Summarized action for one price slot."""
    hour_index: int
    power_watts: int         # + discharge, - charge
    duration_minutes: int
    soc_percent: int         # SoC at end of slot
    price: float

    @property
    def is_charging(self) -> bool:
        return self.power_watts < 0

    @property
    def is_discharging(self) -> bool:
        return self.power_watts > 0

    @property
    def energy_kwh(self) -> float:
        """Net energy exchanged with the grid side (+ delivered, - consumed)."""
        return (self.power_watts / 1000) * (self.duration_minutes / 60)


class Schedule(Mapping):
    """Ordered mapping slot index -> ScheduleEntry."""

    def __init__(self,
                 entries: Dict[int, ScheduleEntry],
                 start_soc_percent: float,
                 price_interval_minutes: int = 60,
                 objective_value: Optional[float] = None):
        self._entries = dict(sorted(entries.items()))
        self.start_soc_percent = start_soc_percent
        self.price_interval_minutes = price_interval_minutes
        self.objective_value = objective_value

    def __getitem__(self, index: int) -> ScheduleEntry:
        return self._entries[index]

    def __iter__(self) -> Iterator[int]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"Schedule({len(self)} slots, start_soc={self.start_soc_percent}%)"

    @property
    def first(self) -> ScheduleEntry:
        return self._entries[next(iter(self._entries))]

    def power_series(self) -> np.ndarray:
        return np.array([entry.power_watts for entry in self.values()], dtype=float)

    def soc_series(self) -> np.ndarray:
        return np.array([entry.soc_percent for entry in self.values()], dtype=float)

    def expected_profit(self) -> float:
        """Trading result at slot prices (+ earned, - paid), ignoring fixed costs."""
        return float(sum(entry.energy_kwh * entry.price for entry in self.values()))

    def to_dict(self) -> Dict[str, dict]:
        """Serializable form: {index: {power, duration, soc, price}}."""
        return {
            str(index): {
                'power': entry.power_watts,
                'duration': entry.duration_minutes,
                'soc': entry.soc_percent,
                'price': entry.price,
            }
            for index, entry in self.items()
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    def to_dataframe(self, timestamps: Optional[pd.DatetimeIndex] = None) -> pd.DataFrame:
        """
        Convert schedule to DataFrame.

        Args:
            timestamps: Optional slot start times, same length as the schedule

        Returns:
            DataFrame indexed by hour_index, or by timestamp when given
        """
        df = pd.DataFrame([asdict(entry) for entry in self.values()])
        if timestamps is not None:
            if len(timestamps) != len(df):
                raise ValueError(f"timestamps length {len(timestamps)} != schedule length {len(df)}")
            df.index = pd.DatetimeIndex(timestamps, name='timestamp')
            return df
        return df.set_index('hour_index')


def _soc_percent(stored_kwh: float, capacity_kwh: float) -> int:
    return int(min(100, max(0, round(100 * stored_kwh / capacity_kwh))))


def summarize_strategy(assignment: VariableAssignment,
                       model: LPModel,
                       prices: Sequence[float],
                       battery: BatteryParams,
                       price_interval_minutes: int = 60,
                       clean_up: bool = True) -> Dict[int, ScheduleEntry]:
    """
    Reduce the per-tier time allocation to one action per slot.

    Clean-up (when enabled):
    - Short actions (below interval/6 minutes) are dropped unless they bring
      the battery within 5% of full (charging) or empty (discharging).
    - Actions that leave only a short break (above interval - interval/12
      minutes) while within 5% of full/empty are extended to the full slot.
      The extra energy uses the same tier efficiencies as the solved part.
    """
    interval = price_interval_minutes
    slot_hours = interval / 60
    min_duration = max(1, round(interval / 6))
    extend_above = interval - interval / 12
    capacity = battery.capacity_kwh

    strategy = {}
    stored_energy = battery.start_energy_kwh

    for t, price in enumerate(prices):
        soc_at_start = stored_energy
        total_time = 0.0
        signed_power = 0.0  # kW x time fraction

        for i, tier in enumerate(battery.charge_tiers):
            time_fraction = assignment[model.charge_index(i, t)]
            if time_fraction <= ACTIVE_TIME_TOLERANCE:
                continue
            total_time += time_fraction
            signed_power -= time_fraction * tier.power_kw
            stored_energy += time_fraction * tier.power_kw * tier.efficiency * slot_hours

        for j, tier in enumerate(battery.discharge_tiers):
            time_fraction = assignment[model.discharge_index(j, t)]
            if time_fraction <= ACTIVE_TIME_TOLERANCE:
                continue
            total_time += time_fraction
            signed_power += time_fraction * tier.power_kw
            stored_energy -= time_fraction * tier.power_kw * slot_hours

        duration = int(round(total_time * interval))
        if duration == 0:
            stored_energy = soc_at_start
        power = int(round(signed_power * 1000 / total_time)) if duration > 0 else 0
        soc = _soc_percent(stored_energy, capacity)

        if clean_up:
            if duration < min_duration and (
                    (power < 0 and soc < 100 - SOC_MARGIN_PERCENT)
                    or (power > 0 and soc > SOC_MARGIN_PERCENT)):
                # Short charge or discharge that does not reach full/empty
                power = 0
                duration = 0
                stored_energy = soc_at_start
                soc = _soc_percent(stored_energy, capacity)
            elif extend_above < duration < interval and (
                    (power < 0 and soc > 100 - SOC_MARGIN_PERCENT)
                    or (power > 0 and soc < SOC_MARGIN_PERCENT)):
                # Short break just before full/empty: run the whole slot
                duration = interval
                stored_energy = soc_at_start + (stored_energy - soc_at_start) / total_time
                stored_energy = min(capacity, max(0.0, stored_energy))
                soc = _soc_percent(stored_energy, capacity)

        strategy[t] = ScheduleEntry(
            hour_index=t,
            power_watts=power,
            duration_minutes=duration,
            soc_percent=soc,
            price=float(price),
        )

    return strategy


def get_strategy(prices,
                 min_price_delta: float = 0.1,
                 soc: float = 0.0,
                 start_minute: int = 0,
                 capacity_kwh: float = 5.05,
                 charge_tiers: Sequence[SpeedTier] = DEFAULT_CHARGE_TIERS,
                 discharge_tiers: Sequence[SpeedTier] = DEFAULT_DISCHARGE_TIERS,
                 price_interval_minutes: int = 60,
                 clean_up: bool = True,
                 max_steps: int = 120,
                 max_horizon_hours: float = 48,
                 solver: Optional[LinearProgramSolver] = None) -> Schedule:
    """
    Compute the best trading strategy for all known coming price slots.

    Args:
        prices: Price per slot, chronological, first entry = current slot
        min_price_delta: Minimum price difference worth a round trip
        soc: Battery SoC at the start of the first slot [%]
        start_minute: Minutes already elapsed in the current hour
        capacity_kwh: Battery capacity [kWh]
        charge_tiers: Selectable charge speeds
        discharge_tiers: Selectable discharge speeds
        price_interval_minutes: Slot length (60 = hourly prices)
        clean_up: Apply the short-action / short-break heuristics
        max_steps: Maximum number of slots taken into the model
        max_horizon_hours: Maximum optimization horizon
        solver: LP solver, defaults to HiGHS

    Returns:
        Schedule with one entry per optimized slot

    Raises:
        InputError: If prices or battery parameters are invalid
        InfeasibleModelError: If the solver cannot satisfy the model
        SolverError: On any other solver failure
    """
    price_values = validate_prices(prices)
    interval = validate_price_interval(price_interval_minutes)
    battery = BatteryParams(
        capacity_kwh=capacity_kwh,
        start_soc_percent=soc,
        charge_tiers=tuple(charge_tiers),
        discharge_tiers=tuple(discharge_tiers),
        min_price_delta=min_price_delta,
    )

    limit = horizon_slots(len(price_values), interval, max_steps, max_horizon_hours)
    price_values = price_values[:limit]

    model = build_roi_model(price_values, battery, start_minute=start_minute,
                            price_interval_minutes=interval)
    solver = solver or HighsSolver()
    assignment = solver.solve(model)

    entries = summarize_strategy(assignment, model, price_values, battery,
                                 price_interval_minutes=interval, clean_up=clean_up)
    schedule = Schedule(entries, start_soc_percent=soc,
                        price_interval_minutes=interval,
                        objective_value=assignment.objective_value)

    first = schedule.first
    logger.info(
        f"ROI strategy over {len(schedule)} slots: first action {first.power_watts} W "
        f"for {first.duration_minutes} min, objective {assignment.objective_value:.4f}"
    )
    return schedule


class RoiStrategyOptimizer:
    """
    ROI strategy scheduler for one battery.

    Wraps get_strategy with configuration and a memoization cache, so that
    repeated requests with identical inputs are served without re-solving.
    """

    def __init__(self,
                 battery_config: Optional[BatteryConfig] = None,
                 roi_config: Optional[RoiConfig] = None,
                 solver: Optional[LinearProgramSolver] = None,
                 cache: Optional[StrategyCache] = None):
        self.battery_config = battery_config or BatteryConfig()
        self.roi_config = roi_config or RoiConfig()
        self.solver = solver or HighsSolver()
        self.cache = cache if cache is not None else StrategyCache()

    def optimize(self,
                 prices,
                 soc: float,
                 start_minute: int = 0,
                 min_price_delta: Optional[float] = None) -> Schedule:
        """
        Compute (or fetch from cache) the schedule for the given state.

        Args:
            prices: Price per slot, chronological, first entry = current slot
            soc: Battery SoC at start [%]
            start_minute: Minutes already elapsed in the current hour
            min_price_delta: Overrides the configured minimum price delta

        Returns:
            Schedule with one entry per optimized slot
        """
        price_values = validate_prices(prices)
        if min_price_delta is None:
            min_price_delta = self.roi_config.min_price_delta

        battery = self.battery_config
        roi = self.roi_config
        key = (
            tuple(price_values.tolist()),
            float(min_price_delta),
            float(soc),
            int(start_minute),
            float(battery.capacity_kwh),
            tuple(battery.charge_tiers),
            tuple(battery.discharge_tiers),
            int(roi.price_interval_minutes),
            bool(roi.clean_up),
            int(roi.max_steps),
            float(roi.max_horizon_hours),
        )

        return self.cache.get_or_compute(key, lambda: get_strategy(
            price_values,
            min_price_delta=min_price_delta,
            soc=soc,
            start_minute=start_minute,
            capacity_kwh=battery.capacity_kwh,
            charge_tiers=battery.charge_tiers,
            discharge_tiers=battery.discharge_tiers,
            price_interval_minutes=roi.price_interval_minutes,
            clean_up=roi.clean_up,
            max_steps=roi.max_steps,
            max_horizon_hours=roi.max_horizon_hours,
            solver=self.solver,
        ))
