"""
XOM control loop: keeps a battery fleet following the live household power.

Every tick reads the live net power, the fleet telemetry and the XOM
settings, allocates a target per battery, smooths it and hands the rounded
result to the battery controller. The next tick is scheduled only after the
current one has completed, so ticks never overlap.
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

import anyio
import yaml

from battery_trading.config.strategy_config import XomLoopConfig, XomSettings
from battery_trading.errors import CollaboratorUnavailableError, TransientTelemetryError
from battery_trading.operational.allocator import Allocation, allocate, compute_total_target, filter_available
from battery_trading.operational.fleet_state import BatteryTelemetry, FleetState, smoothing_samples

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class XomTokens:
    """Values emitted to a battery controller once per tick."""
    power: int
    x: float
    smoothing: float
    min_load: float

    def inverted(self) -> "XomTokens":
        """Same tokens for controllers using charge-positive power."""
        return replace(self, power=-self.power)

    def to_dict(self) -> Dict[str, Any]:
        return {'power': self.power, 'x': self.x, 'smoothing': self.smoothing, 'minLoad': self.min_load}


class PowerMeter(ABC):
    """Live household net power (+ import, - export)."""

    @abstractmethod
    async def read_power_watts(self) -> Optional[float]:
        pass


class FleetRegistry(ABC):
    """Source of per-tick battery telemetry."""

    @abstractmethod
    async def get_telemetry(self) -> List[BatteryTelemetry]:
        pass


class SettingsStore(ABC):
    """Key-value store holding the XOM settings."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Mapping[str, Any]]:
        pass


class BatteryController(ABC):
    """Receives the smoothed target of one battery."""

    @abstractmethod
    async def apply_target(self, member_id: str, tokens: XomTokens) -> None:
        pass


class InMemorySettingsStore(SettingsStore):
    def __init__(self, values: Optional[Dict[str, Mapping[str, Any]]] = None):
        self.values = dict(values or {})

    def set(self, key: str, value: Mapping[str, Any]) -> None:
        self.values[key] = dict(value)

    async def get(self, key: str) -> Optional[Mapping[str, Any]]:
        return self.values.get(key)


class YamlSettingsStore(SettingsStore):
    """Reads settings from a YAML file on every access."""

    def __init__(self, yaml_path: Union[str, Path]):
        self.yaml_path = Path(yaml_path)

    async def get(self, key: str) -> Optional[Mapping[str, Any]]:
        path = anyio.Path(self.yaml_path)
        if not await path.exists():
            return None
        data = yaml.safe_load(await path.read_text())
        if data is None:
            return None
        if not isinstance(data, Mapping):
            raise ValueError(f"Settings file {self.yaml_path} must contain a mapping")
        return data.get(key)


class XomLoop:
    """
    Self-rescheduling allocation loop for one battery fleet.

    The loop owns the fleet's smoothing state; nothing else writes it.
    Telemetry problems skip a tick and leave the smoothing state untouched.
    """

    def __init__(self,
                 meter: Optional[PowerMeter],
                 registry: FleetRegistry,
                 settings_store: SettingsStore,
                 controller: BatteryController,
                 config: Optional[XomLoopConfig] = None,
                 name: str = "fleet"):
        self.meter = meter
        self.registry = registry
        self.settings_store = settings_store
        self.controller = controller
        self.config = config or XomLoopConfig()
        self.name = name

        self.state = FleetState()
        self.tick_count = 0
        self.skipped_ticks = 0
        self.last_allocation: Optional[Allocation] = None

        self._cancel_scope: Optional[anyio.CancelScope] = None
        self._stop_requested = False

    @property
    def is_running(self) -> bool:
        return self._cancel_scope is not None

    def connect_meter(self, meter: PowerMeter) -> None:
        self.meter = meter

    def stop(self) -> None:
        """Stop the loop; no further ticks are scheduled."""
        self._stop_requested = True
        if self._cancel_scope is not None:
            self._cancel_scope.cancel()

    async def run(self) -> None:
        """Run until stop() is called or the surrounding task is cancelled."""
        self._stop_requested = False
        with anyio.CancelScope() as scope:
            self._cancel_scope = scope
            try:
                await anyio.sleep(self.config.warmup_seconds)
                logger.info(f"Start XOM loop '{self.name}' @{self.config.interval_seconds}s interval")
                while not self._stop_requested:
                    await self._tick_safely()
                    await anyio.sleep(self.config.interval_seconds)
            finally:
                self._cancel_scope = None
        logger.info(f"XOM loop '{self.name}' stopped after {self.tick_count} ticks")

    async def _tick_safely(self) -> None:
        try:
            await self.tick()
        except TransientTelemetryError as exc:
            self.skipped_ticks += 1
            logger.warning(f"XOM tick skipped for '{self.name}': {exc}")
        except Exception:
            logger.exception(f"XOM tick failed for '{self.name}'")

    async def tick(self) -> Allocation:
        """
        Run one allocation cycle.

        Returns:
            Allocation with the raw per-battery targets

        Raises:
            TransientTelemetryError: If the live power reading is missing or implausible
            CollaboratorUnavailableError: If the meter or registry is not ready
        """
        power = await self._read_power()
        settings = await self._read_settings()
        telemetry = await self._read_telemetry()

        members = self.state.sync(telemetry)
        available = filter_available(members)
        total_target = compute_total_target(power, available, settings.x)
        allocation = allocate(available, total_target, settings)
        samples = smoothing_samples(settings.smoothing_percent, self.config.interval_seconds)

        for member in members:
            target = allocation.target_for(member.id)
            previous = member.smoothed_target_watts
            smoothed = self.state.smooth(member.id, target, samples)
            tokens = XomTokens(
                power=int(round(smoothed)),
                x=settings.x,
                smoothing=settings.smoothing_percent,
                min_load=settings.min_load_watts,
            )
            logger.debug(
                f"{member.name or member.id} Raw: {round(target)}W | Smoothed: {tokens.power}W "
                f"(was {previous if previous is None else round(previous)}W) | Samples: {samples}"
            )
            await self.controller.apply_target(member.id, tokens)

        self.tick_count += 1
        self.last_allocation = allocation
        return allocation

    async def _read_power(self) -> float:
        if self.meter is None:
            raise CollaboratorUnavailableError("Live power meter is not connected")
        reading = await self.meter.read_power_watts()
        if reading is None:
            raise CollaboratorUnavailableError("Live power reading not available")
        try:
            power = float(reading)
        except (TypeError, ValueError):
            raise TransientTelemetryError(f"Cumulative power is not numeric: {reading!r}") from None
        if not math.isfinite(power):
            raise TransientTelemetryError(f"Cumulative power is not finite: {power}")
        if abs(power) > self.config.max_abs_power_watts:
            raise TransientTelemetryError(f"Cumulative power is not valid: {power} W")
        return power

    async def _read_settings(self) -> XomSettings:
        return XomSettings.from_mapping(await self.settings_store.get(self.config.settings_key))

    async def _read_telemetry(self) -> List[BatteryTelemetry]:
        if self.registry is None:
            raise CollaboratorUnavailableError("Battery registry is not ready")
        return list(await self.registry.get_telemetry())


async def run_fleets(loops: Iterable[XomLoop]) -> None:
    """Run independent fleet loops side by side until all have stopped."""
    async with anyio.create_task_group() as tg:
        for loop in loops:
            tg.start_soon(loop.run)
