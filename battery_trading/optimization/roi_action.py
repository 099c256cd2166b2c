"""
Current-slot action derived from an ROI schedule.

A controller acts on the first schedule entry only. When that action covers
just part of the slot, it has to be stopped again after `duration` minutes;
stop_delay_minutes tells when.
"""

from dataclasses import dataclass, replace
from typing import Dict, Optional

from battery_trading.optimization.roi_strategy import Schedule


@dataclass(frozen=True)
class RoiAction:
    """Action for the current slot (+ discharge, - charge)."""
    power: int
    duration: int
    end_soc: int
    scheme: str

    @classmethod
    def from_schedule(cls, schedule: Schedule) -> "RoiAction":
        first = schedule.first
        return cls(
            power=first.power_watts,
            duration=first.duration_minutes,
            end_soc=first.soc_percent,
            scheme=schedule.to_json(),
        )

    def stopped(self) -> "RoiAction":
        """The same action with power and duration cleared."""
        return replace(self, power=0, duration=0)

    def to_tokens(self, invert_power: bool = False) -> Dict[str, object]:
        """Flow tokens; invert_power flips the sign for charge-positive controllers."""
        return {
            'power': -self.power if invert_power else self.power,
            'duration': self.duration,
            'endSoC': self.end_soc,
            'scheme': self.scheme,
        }


def stop_delay_minutes(action: RoiAction,
                       start_minute: int,
                       price_interval_minutes: int = 60) -> Optional[int]:
    """
    Minutes after which a partial action should be stopped, or None.

    No stop is needed when the action is idle, runs into the next slot
    (within a small buffer), or drives the battery to empty or full.
    """
    if action.duration == 0:
        return None
    buffer = max(2, round(price_interval_minutes / 12))
    if (start_minute % price_interval_minutes) + action.duration >= price_interval_minutes - buffer:
        return None
    if action.power > 0 and action.end_soc <= 1:
        return None
    if action.power < 0 and action.end_soc >= 99:
        return None
    return action.duration
