"""
Fleet state for the XOM allocation loop.

Tracks per-battery telemetry and the smoothed target power, the only state
carried from one loop tick to the next. The state is owned by one loop;
controllers only receive the emitted values.
"""

import math
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from battery_trading.errors import InputError


@dataclass(frozen=True)
class BatteryTelemetry:
    """Snapshot of one battery as reported by the device registry."""
    id: str
    soc_percent: float
    actual_power_watts: float
    max_charge_watts: float
    max_discharge_watts: float
    efficient_charge_watts: Optional[float] = None
    efficient_discharge_watts: Optional[float] = None
    name: str = ""


@dataclass
class FleetMember:
    """
    Live state of one battery in the fleet.

    Telemetry fields are refreshed every tick; smoothed_target_watts is
    written by the allocation loop only (None until the first tick).
    """
    id: str
    max_charge_watts: float
    max_discharge_watts: float
    soc_percent: float
    actual_power_watts: float
    smoothed_target_watts: Optional[float] = None
    efficient_charge_watts: Optional[float] = None
    efficient_discharge_watts: Optional[float] = None
    name: str = ""

    @classmethod
    def from_telemetry(cls, telemetry: BatteryTelemetry) -> "FleetMember":
        member = cls(id=telemetry.id, max_charge_watts=0.0, max_discharge_watts=0.0,
                     soc_percent=math.nan, actual_power_watts=math.nan)
        member.update_telemetry(telemetry)
        return member

    def update_telemetry(self, telemetry: BatteryTelemetry) -> None:
        self.max_charge_watts = telemetry.max_charge_watts
        self.max_discharge_watts = telemetry.max_discharge_watts
        self.soc_percent = telemetry.soc_percent
        self.actual_power_watts = telemetry.actual_power_watts
        self.efficient_charge_watts = telemetry.efficient_charge_watts
        self.efficient_discharge_watts = telemetry.efficient_discharge_watts
        self.name = telemetry.name

    @property
    def is_available(self) -> bool:
        """Battery reports usable SoC and power this tick."""
        return _is_finite(self.soc_percent) and _is_finite(self.actual_power_watts)

    @property
    def efficient_charge_limit(self) -> float:
        return self.efficient_charge_watts or self.max_charge_watts

    @property
    def efficient_discharge_limit(self) -> float:
        return self.efficient_discharge_watts or self.max_discharge_watts


def _is_finite(value) -> bool:
    try:
        return math.isfinite(value)
    except TypeError:
        return False


def smoothing_samples(smoothing_percent: float, interval_seconds: float) -> int:
    """
    Number of ticks over which a new target is blended in.

    100% smoothing spreads a change over 120 seconds worth of ticks.
    """
    if interval_seconds <= 0:
        raise InputError(f"interval_seconds must be positive, got {interval_seconds}")
    return max(1, round((smoothing_percent / 100) * (120 / interval_seconds)))


def smooth_target(previous: Optional[float], target: float, samples: int) -> float:
    """Exponential blend of target into the previous smoothed value."""
    if previous is None:
        previous = target
    return (target / samples) + previous * ((samples - 1) / samples)


class FleetState:
    """
    Allocator-owned state of a battery fleet, keyed by battery id.

    Each fleet (battery group) has its own FleetState.
    """

    def __init__(self):
        self.members: Dict[str, FleetMember] = {}

    def __len__(self) -> int:
        return len(self.members)

    def __contains__(self, member_id: str) -> bool:
        return member_id in self.members

    def get(self, member_id: str) -> Optional[FleetMember]:
        return self.members.get(member_id)

    def sync(self, telemetry: Iterable[BatteryTelemetry]) -> List[FleetMember]:
        """
        Refresh telemetry from a registry snapshot.

        Batteries missing from the snapshot are dropped together with their
        smoothing state. Returns members in snapshot order.
        """
        current = []
        seen = set()
        for item in telemetry:
            if item.id in seen:
                raise InputError(f"Duplicate battery id in telemetry: {item.id}")
            seen.add(item.id)
            member = self.members.get(item.id)
            if member is None:
                member = FleetMember.from_telemetry(item)
            else:
                member.update_telemetry(item)
            current.append(member)

        self.members = {member.id: member for member in current}
        return current

    def smooth(self, member_id: str, target: float, samples: int) -> float:
        """Blend a raw target into the member's smoothed target and return it."""
        member = self.members[member_id]
        member.smoothed_target_watts = smooth_target(member.smoothed_target_watts, target, samples)
        return member.smoothed_target_watts

    def smoothed_targets(self) -> Dict[str, Optional[float]]:
        return {member_id: member.smoothed_target_watts for member_id, member in self.members.items()}
