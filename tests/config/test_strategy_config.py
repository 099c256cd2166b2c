"""
Unit tests for FleetConfig and related dataclasses.
"""

from pathlib import Path

import pytest
import yaml

from battery_trading.config import (
    BatteryConfig,
    FleetConfig,
    RoiConfig,
    SpeedTier,
    XomLoopConfig,
    XomSettings,
)
from battery_trading.errors import InputError


class TestSpeedTier:
    """Test speed tier dataclass."""

    def test_from_loss(self):
        """Test loss percentage conversion to efficiency."""
        tier = SpeedTier.from_loss(2200, 10)
        assert tier.power_watts == 2200
        assert tier.efficiency == pytest.approx(0.90)
        assert tier.power_kw == pytest.approx(2.2)

    def test_from_dict(self):
        """Test parsing with either efficiency or loss_percent."""
        assert SpeedTier.from_dict({'power_watts': 1700, 'efficiency': 0.92}) == SpeedTier(1700, 0.92)
        assert SpeedTier.from_dict({'power_watts': 765, 'loss_percent': 4}).efficiency == pytest.approx(0.96)

    def test_invalid_values(self):
        """Test validation of power and efficiency."""
        with pytest.raises(InputError):
            SpeedTier(-1, 0.9)
        with pytest.raises(InputError):
            SpeedTier(1000, 0)
        with pytest.raises(InputError):
            SpeedTier(1000, 1.2)
        with pytest.raises(ValueError, match="power_watts"):
            SpeedTier.from_dict({'efficiency': 0.9})


class TestBatteryAndRoiConfig:
    """Test battery and scheduler configuration."""

    def test_default_values(self):
        """Test default battery configuration values."""
        config = BatteryConfig()
        assert config.capacity_kwh == 5.05
        assert config.charge_tiers[0] == SpeedTier(2200, 0.90)
        assert config.discharge_tiers[1] == SpeedTier(765, 0.96)

    def test_invalid_capacity(self):
        """Test capacity must be positive."""
        with pytest.raises(ValueError, match="capacity_kwh"):
            BatteryConfig(capacity_kwh=0)

    def test_roi_defaults(self):
        """Test scheduler defaults."""
        config = RoiConfig()
        assert config.min_price_delta == 0.1
        assert config.price_interval_minutes == 60
        assert config.clean_up is True
        assert config.max_steps == 120
        assert config.max_horizon_hours == 48

    def test_price_interval_must_divide_hour(self):
        """Test price interval validation."""
        RoiConfig(price_interval_minutes=15)
        with pytest.raises(ValueError, match="price_interval_minutes"):
            RoiConfig(price_interval_minutes=7)


class TestXomSettings:
    """Test live allocator settings."""

    def test_missing_settings_use_defaults(self):
        """Test empty or missing stored settings."""
        assert XomSettings.from_mapping(None) == XomSettings()
        assert XomSettings.from_mapping({}) == XomSettings()

    def test_stored_keys(self):
        """Test camelCase keys as stored by flows."""
        settings = XomSettings.from_mapping({'smoothing': 20, 'x': -150, 'minLoad': 100, 'unknown': 1})
        assert settings.smoothing_percent == 20
        assert settings.x == -150
        assert settings.min_load_watts == 100
        assert settings.strategy == "proportional"

    def test_field_names(self):
        """Test snake_case field names are accepted too."""
        settings = XomSettings.from_mapping({'smoothing_percent': 0, 'strategy': 'priority'})
        assert settings.smoothing_percent == 0
        assert settings.strategy == "priority"

    def test_invalid_settings(self):
        """Test validation of settings."""
        with pytest.raises(ValueError, match="smoothing_percent"):
            XomSettings(smoothing_percent=150)
        with pytest.raises(ValueError, match="min_load_watts"):
            XomSettings(min_load_watts=-1)
        with pytest.raises(ValueError, match="strategy"):
            XomSettings.from_mapping({'strategy': 'random'})

    @pytest.mark.parametrize("min_load", [float('nan'), float('inf')])
    def test_non_finite_min_load(self, min_load):
        """Test a non-finite deadband is rejected."""
        with pytest.raises(ValueError, match="min_load_watts"):
            XomSettings(min_load_watts=min_load)
        with pytest.raises(ValueError, match="min_load_watts"):
            XomSettings.from_mapping({'minLoad': min_load})


class TestXomLoopConfig:
    """Test control loop timing."""

    def test_defaults(self):
        """Test default loop timing."""
        config = XomLoopConfig()
        assert config.interval_seconds == 10
        assert config.warmup_seconds == 20
        assert config.settings_key == "xomSettings"

    def test_invalid_interval(self):
        """Test interval must be positive."""
        with pytest.raises(ValueError, match="interval_seconds"):
            XomLoopConfig(interval_seconds=0)


class TestFleetConfig:
    """Test master fleet configuration."""

    def test_from_yaml(self, tmp_path):
        """Test loading configuration from YAML."""
        config_file = tmp_path / "fleet.yaml"
        config_file.write_text(yaml.safe_dump({
            'name': 'garage',
            'battery': {
                'capacity_kwh': 10.0,
                'charge_tiers': [{'power_watts': 3000, 'loss_percent': 8}],
                'discharge_tiers': [{'power_watts': 2500, 'efficiency': 0.93}],
            },
            'roi': {'min_price_delta': 0.05, 'price_interval_minutes': 15},
            'xom': {'smoothing': 0, 'minLoad': 75, 'strategy': 'priority'},
            'loop': {'interval_seconds': 5},
        }))

        config = FleetConfig.from_yaml(config_file)

        assert config.name == 'garage'
        assert config.battery.capacity_kwh == 10.0
        assert len(config.battery.charge_tiers) == 1
        assert config.battery.charge_tiers[0].power_watts == 3000
        assert config.battery.charge_tiers[0].efficiency == pytest.approx(0.92)
        assert config.battery.discharge_tiers == [SpeedTier(2500, 0.93)]
        assert config.roi.min_price_delta == 0.05
        assert config.roi.price_interval_minutes == 15
        assert config.roi.clean_up is True
        assert config.xom.min_load_watts == 75
        assert config.xom.strategy == 'priority'
        assert config.loop.interval_seconds == 5
        assert config.loop.warmup_seconds == 20

    def test_partial_yaml_uses_defaults(self, tmp_path):
        """Test omitted sections keep their defaults."""
        config_file = tmp_path / "fleet.yaml"
        config_file.write_text("name: attic\n")

        config = FleetConfig.from_yaml(config_file)

        assert config.name == 'attic'
        assert config.battery == BatteryConfig()
        assert config.xom == XomSettings()

    def test_missing_file(self, tmp_path):
        """Test error for missing configuration file."""
        with pytest.raises(FileNotFoundError):
            FleetConfig.from_yaml(tmp_path / "missing.yaml")

    def test_empty_file(self, tmp_path):
        """Test error for empty configuration file."""
        config_file = tmp_path / "empty.yaml"
        config_file.write_text("")
        with pytest.raises(ValueError, match="Empty"):
            FleetConfig.from_yaml(config_file)

    def test_save_and_reload(self, tmp_path):
        """Test configuration survives a save/load cycle."""
        config = FleetConfig(name='shed', roi=RoiConfig(min_price_delta=0.2))
        config.xom.smoothing_percent = 30
        config_file = tmp_path / "saved.yaml"

        config.to_yaml(config_file)
        loaded = FleetConfig.from_yaml(config_file)

        assert loaded.name == 'shed'
        assert loaded.roi.min_price_delta == 0.2
        assert loaded.xom.smoothing_percent == 30
        assert loaded.battery.charge_tiers == config.battery.charge_tiers

    def test_example_config(self):
        """Test the shipped example configuration loads."""
        config_file = Path(__file__).resolve().parents[2] / "configs" / "fleet.yaml"

        config = FleetConfig.from_yaml(config_file)

        assert config.name == 'home'
        assert config.battery == BatteryConfig()
        assert config.xom == XomSettings()
