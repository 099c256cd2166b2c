"""
Real-time power allocation over a battery fleet (XOM).

Splits a household power target over the available batteries:
1. Initial split by SoC (proportional) or over the fewest batteries that
   can cover the target (priority)
2. Clamp to each battery's charge/discharge limit
3. Deadband: targets below min_load are forced to 0
4. Redistribute the unallocated remainder, first proportionally over
   active batteries with headroom, then greedily by best SoC; a remainder
   below min_load stops or starts one battery at min_load

Sign convention: positive = discharge, negative = charge.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Sequence

from battery_trading.config.strategy_config import XomSettings
from battery_trading.errors import InputError
from battery_trading.operational.fleet_state import FleetMember

logger = logging.getLogger(__name__)

TOLERANCE_WATTS = 10.0
SOC_HYSTERESIS_PERCENT = 2.0
MIN_SOC_WEIGHT = 0.1


@dataclass
class AllocationResult:
    """Raw (pre-smoothing) target for one battery."""
    id: str
    target_watts: float
    headroom_watts: float
    soc_percent: float
    max_charge_watts: float
    max_discharge_watts: float
    fraction: float = 0.0


@dataclass
class Allocation:
    """Outcome of one allocation over the fleet."""
    total_target_watts: float
    results: List[AllocationResult] = field(default_factory=list)
    strategy: str = 'proportional'

    @property
    def allocated_watts(self) -> float:
        return sum(result.target_watts for result in self.results)

    @property
    def unallocated_watts(self) -> float:
        return self.total_target_watts - self.allocated_watts

    @property
    def is_complete(self) -> bool:
        return abs(self.unallocated_watts) <= TOLERANCE_WATTS

    def by_id(self) -> Dict[str, AllocationResult]:
        return {result.id: result for result in self.results}

    def target_for(self, member_id: str) -> float:
        """Raw target for a battery, 0 when it was not part of this allocation."""
        result = self.by_id().get(member_id)
        return result.target_watts if result is not None else 0.0


def _direction(value: float) -> int:
    if value > 0:
        return 1
    if value < 0:
        return -1
    return 0


def compute_total_target(cumulative_power_watts: float,
                         members: Sequence[FleetMember],
                         x: float = 0.0) -> float:
    """
    Power the fleet should deliver (+) or absorb (-).

    Live household power (+ import, - export) plus what the batteries
    already deliver, minus the manual offset x.
    """
    return cumulative_power_watts + sum(member.actual_power_watts for member in members) - x


def filter_available(members: Sequence[FleetMember]) -> List[FleetMember]:
    """Batteries with finite SoC and actual power."""
    return [member for member in members if member.is_available]


def _check_members(members: Sequence[FleetMember]) -> None:
    for member in members:
        values = (member.soc_percent, member.max_charge_watts, member.max_discharge_watts)
        try:
            finite = all(math.isfinite(v) for v in values)
        except TypeError:
            finite = False
        if not finite:
            raise InputError(f"Battery {member.id} has non-finite telemetry")
        if member.max_charge_watts < 0 or member.max_discharge_watts < 0:
            raise InputError(f"Battery {member.id} has negative power limits")


def _clamp(target: float, member: FleetMember) -> float:
    return min(max(target, -member.max_charge_watts), member.max_discharge_watts)


def _deadband(target: float, min_load_watts: float) -> float:
    return 0.0 if abs(target) < min_load_watts else target


def _headroom(result: AllocationResult, total_target: float) -> float:
    """Remaining power in the direction of total_target."""
    if total_target > 0:
        return max(0.0, result.max_discharge_watts - result.target_watts) if result.soc_percent > 0 else 0.0
    if total_target < 0:
        return max(0.0, result.max_charge_watts + result.target_watts) if result.soc_percent < 100 else 0.0
    return 0.0


def _room(result: AllocationResult, direction: int, total_direction: int) -> float:
    """How far a target may move in direction without flipping sign."""
    if direction == total_direction:
        return result.headroom_watts
    return abs(result.target_watts)


def _shift(result: AllocationResult, wanted: float, total_target: float, min_load_watts: float) -> float:
    """Move a target by up to wanted watts; returns the delta actually applied."""
    direction = _direction(wanted)
    room = _room(result, direction, _direction(total_target))
    delta = direction * min(abs(wanted), room)
    new_target = result.target_watts + delta

    if 0 < abs(new_target) < min_load_watts:
        if result.target_watts == 0:
            # An idle battery is not started below the deadband
            return 0.0
        new_target = math.copysign(min_load_watts, result.target_watts)
        delta = new_target - result.target_watts

    result.target_watts = new_target
    result.headroom_watts = _headroom(result, total_target)
    return delta


def _walk(results: List[AllocationResult], rest: float, total_target: float, min_load_watts: float) -> float:
    """Offer rest to each battery in SoC order; returns the watts placed."""
    direction = _direction(rest)
    total_direction = _direction(total_target)
    placed = 0.0
    for result in sorted(results, key=lambda r: r.soc_percent, reverse=direction > 0):
        left = rest - placed
        if abs(left) <= TOLERANCE_WATTS:
            break
        if _room(result, direction, total_direction) <= 0:
            continue
        if result.target_watts == 0 and abs(left) < min_load_watts:
            continue
        placed += _shift(result, left, total_target, min_load_watts)
    return placed


def _cross_deadband(results: List[AllocationResult], rest: float, total_target: float,
                    min_load_watts: float) -> float:
    """
    Resolve a remainder below min_load that no single battery can take.

    Too much power: stop the least suited active battery; the others pick up
    the difference on the next walk. Too little: start the best idle battery
    at min_load when an active one can give the excess back.
    """
    direction = _direction(rest)
    ordered = sorted(results, key=lambda r: r.soc_percent, reverse=direction > 0)
    active = [result for result in ordered if result.target_watts != 0]

    if direction != _direction(total_target):
        if len(active) < 2:
            return 0.0
        stopped = active[0]
        others_room = sum(result.headroom_watts for result in active[1:])
        if others_room < abs(stopped.target_watts) - abs(rest):
            return 0.0
        delta = -stopped.target_watts
        stopped.target_watts = 0.0
        stopped.headroom_watts = _headroom(stopped, total_target)
        return delta

    excess = min_load_watts - abs(rest)
    if excess <= 0 or not any(abs(result.target_watts) - excess >= min_load_watts for result in active):
        return 0.0
    for result in ordered:
        if result.target_watts == 0 and result.headroom_watts >= min_load_watts:
            result.target_watts = direction * min_load_watts
            result.headroom_watts = _headroom(result, total_target)
            return result.target_watts
    return 0.0


def redistribute(results: List[AllocationResult], total_target: float, min_load_watts: float = 50.0) -> float:
    """
    Place the unallocated remainder on batteries with room left.

    Pass 1 spreads it over active batteries in proportion to their room.
    Pass 2 walks all batteries by SoC (highest first when more discharge or
    less charge is needed, lowest first otherwise). A remainder smaller than
    min_load is resolved by stopping or starting one battery at min_load and
    walking again.

    Returns:
        Remainder that could not be placed [W]
    """
    rest = total_target - sum(result.target_watts for result in results)
    if abs(rest) <= TOLERANCE_WATTS:
        return rest

    total_direction = _direction(total_target)
    direction = _direction(rest)

    rooms = [(result, _room(result, direction, total_direction))
             for result in results if result.target_watts != 0]
    rooms = [(result, room) for result, room in rooms if room > 0]
    total_room = sum(room for _, room in rooms)

    if rooms and total_room > 0:
        to_place = rest
        for result, room in rooms:
            if abs(rest) <= TOLERANCE_WATTS:
                break
            rest -= _shift(result, to_place * (room / total_room), total_target, min_load_watts)

    for _ in range(2 * len(results)):
        if abs(rest) <= TOLERANCE_WATTS:
            break
        placed = _walk(results, rest, total_target, min_load_watts)
        if abs(rest - placed) > TOLERANCE_WATTS:
            placed += _cross_deadband(results, rest - placed, total_target, min_load_watts)
        if placed == 0:
            break
        rest -= placed

    if abs(rest) > TOLERANCE_WATTS:
        logger.warning(f"Fleet cannot follow target {total_target:.0f} W, {rest:.0f} W unallocated")
    return rest


def _result_for(member: FleetMember, target: float, fraction: float,
                total_target: float, min_load_watts: float) -> AllocationResult:
    result = AllocationResult(
        id=member.id,
        target_watts=_deadband(_clamp(target, member), min_load_watts),
        headroom_watts=0.0,
        soc_percent=member.soc_percent,
        max_charge_watts=member.max_charge_watts,
        max_discharge_watts=member.max_discharge_watts,
        fraction=fraction,
    )
    result.headroom_watts = _headroom(result, total_target)
    return result


def allocate_proportional(members: Sequence[FleetMember],
                          total_target: float,
                          min_load_watts: float = 50.0) -> Allocation:
    """
    Split total_target over all batteries by SoC share.

    Discharging uses soc/total_soc, charging uses 1 - soc/total_soc; the
    redistribution passes correct any over- or under-allocation.
    """
    _check_members(members)
    total_soc = sum(member.soc_percent for member in members)

    results = []
    for member in members:
        fraction = 0.0
        if total_soc > 0:
            if total_target > 0:
                fraction = member.soc_percent / total_soc
            elif total_target < 0:
                fraction = 1 - (member.soc_percent / total_soc)
        results.append(_result_for(member, total_target * fraction, fraction, total_target, min_load_watts))

    redistribute(results, total_target, min_load_watts)
    allocation = Allocation(total_target_watts=total_target, results=results, strategy='proportional')
    logger.debug(f"Proportional allocation of {total_target:.0f} W: "
                 f"{[(r.id, round(r.target_watts)) for r in results]}")
    return allocation


def _priority_order(members: Sequence[FleetMember], total_target: float) -> List[FleetMember]:
    """Best SoC first; batteries already moving the right way get a small bonus."""
    def score(member: FleetMember) -> float:
        smoothed = member.smoothed_target_watts or 0.0
        if total_target > 0:
            return member.soc_percent + (SOC_HYSTERESIS_PERCENT if smoothed > TOLERANCE_WATTS else 0.0)
        return member.soc_percent - (SOC_HYSTERESIS_PERCENT if smoothed < -TOLERANCE_WATTS else 0.0)

    return sorted(members, key=score, reverse=total_target > 0)


def _subset_split(subset: Sequence[FleetMember], total_target: float) -> Dict[str, tuple]:
    if total_target > 0:
        weights = [max(member.soc_percent, MIN_SOC_WEIGHT) for member in subset]
    else:
        weights = [max(100 - member.soc_percent, MIN_SOC_WEIGHT) for member in subset]
    total_weight = sum(weights)
    split = {}
    for member, weight in zip(subset, weights):
        fraction = weight / total_weight
        split[member.id] = (fraction, _clamp(total_target * fraction, member))
    return split


def _within_efficient_power(member: FleetMember, target: float) -> bool:
    if target > 0.1:
        return target <= member.efficient_discharge_limit
    if target < -0.1:
        return -target <= member.efficient_charge_limit
    return True


def allocate_priority(members: Sequence[FleetMember],
                      total_target: float,
                      min_load_watts: float = 50.0) -> Allocation:
    """
    Use the fewest batteries that can cover total_target.

    Leading subsets of the priority order are tried one size at a time; the
    first subset covering the target within its efficient power wins,
    otherwise the first subset covering it at all, otherwise the whole fleet.
    """
    _check_members(members)
    chosen: Dict[str, tuple] = {}

    if total_target != 0 and members:
        ordered = _priority_order(members, total_target)
        fallback = None
        for size in range(1, len(ordered) + 1):
            subset = ordered[:size]
            split = _subset_split(subset, total_target)
            covered = sum(target for _, target in split.values())
            if abs(total_target - covered) >= TOLERANCE_WATTS:
                continue
            if all(_within_efficient_power(member, split[member.id][1]) for member in subset):
                chosen = split
                break
            if fallback is None:
                fallback = split
        else:
            chosen = fallback if fallback is not None else _subset_split(ordered, total_target)

    results = []
    for member in members:
        fraction, target = chosen.get(member.id, (0.0, 0.0))
        results.append(_result_for(member, target, fraction, total_target, min_load_watts))

    redistribute(results, total_target, min_load_watts)
    allocation = Allocation(total_target_watts=total_target, results=results, strategy='priority')
    logger.debug(f"Priority allocation of {total_target:.0f} W: "
                 f"{[(r.id, round(r.target_watts)) for r in results]}")
    return allocation


ALLOCATORS: Dict[str, Callable[..., Allocation]] = {
    'proportional': allocate_proportional,
    'priority': allocate_priority,
}


def allocate(members: Sequence[FleetMember], total_target: float, settings: XomSettings) -> Allocation:
    """Allocate with the strategy and deadband from settings."""
    try:
        allocator = ALLOCATORS[settings.strategy]
    except KeyError:
        raise InputError(f"Unknown allocation strategy '{settings.strategy}'") from None
    return allocator(members, total_target, settings.min_load_watts)
