"""
Error taxonomy for battery scheduling and real-time allocation.

Scheduler errors are fatal for one invocation and propagate to the caller.
Telemetry errors only skip a single allocator tick.
"""


class BatteryTradingError(Exception):
    """Base class for all package errors."""


class InputError(BatteryTradingError, ValueError):
    """Malformed or empty input (prices, battery parameters, telemetry)."""


class SolverError(BatteryTradingError, RuntimeError):
    """LP solver failed or returned an unusable assignment."""


class InfeasibleModelError(SolverError):
    """LP solver could not satisfy the model constraints."""


class TransientTelemetryError(BatteryTradingError, RuntimeError):
    """Live power reading missing or implausible; retry next tick."""


class CollaboratorUnavailableError(TransientTelemetryError):
    """Meter, settings store or device registry not ready yet."""
