"""
Operational (real-time) battery fleet control.

Provides the fleet state, the XOM allocators and the control loop.
"""

from .allocator import (
    Allocation,
    AllocationResult,
    allocate,
    allocate_priority,
    allocate_proportional,
    compute_total_target,
    filter_available,
    redistribute,
)
from .fleet_state import BatteryTelemetry, FleetMember, FleetState, smooth_target, smoothing_samples
from .xom_loop import (
    BatteryController,
    FleetRegistry,
    InMemorySettingsStore,
    PowerMeter,
    SettingsStore,
    XomLoop,
    XomTokens,
    YamlSettingsStore,
    run_fleets,
)

__all__ = [
    'Allocation',
    'AllocationResult',
    'allocate',
    'allocate_priority',
    'allocate_proportional',
    'compute_total_target',
    'filter_available',
    'redistribute',
    'BatteryTelemetry',
    'FleetMember',
    'FleetState',
    'smooth_target',
    'smoothing_samples',
    'BatteryController',
    'FleetRegistry',
    'InMemorySettingsStore',
    'PowerMeter',
    'SettingsStore',
    'XomLoop',
    'XomTokens',
    'YamlSettingsStore',
    'run_fleets',
]
