"""
Unit tests for the ROI strategy LP model builder.
"""

import numpy as np
import pandas as pd
import pytest

from battery_trading.errors import InputError
from battery_trading.optimization.lp_model import (
    BatteryParams,
    SpeedTier,
    build_roi_model,
    horizon_slots,
    validate_prices,
)


@pytest.fixture
def battery():
    """5 kWh battery at 50% with one charge and one discharge tier."""
    return BatteryParams(
        capacity_kwh=5.0,
        start_soc_percent=50,
        charge_tiers=(SpeedTier(2000, 0.9),),
        discharge_tiers=(SpeedTier(1700, 0.92),),
        min_price_delta=0.1,
    )


class TestBatteryParams:
    """Test battery parameter validation."""

    def test_derived_values(self, battery):
        """Test fixed cost and start energy."""
        assert battery.fixed_cost_per_kwh == pytest.approx(0.05)
        assert battery.start_energy_kwh == pytest.approx(2.5)

    def test_default_tiers(self):
        """Test default speed tiers are used when none are given."""
        params = BatteryParams(capacity_kwh=5.05)
        assert len(params.charge_tiers) == 2
        assert len(params.discharge_tiers) == 2

    def test_zero_power_tiers_dropped(self):
        """Test tiers with zero power are ignored."""
        params = BatteryParams(
            capacity_kwh=5.0,
            charge_tiers=(SpeedTier(2000, 0.9), SpeedTier(0, 0.95)),
            discharge_tiers=(SpeedTier(1700, 0.92),),
        )
        assert params.charge_tiers == (SpeedTier(2000, 0.9),)

    def test_no_usable_tier(self):
        """Test at least one tier per direction is required."""
        with pytest.raises(InputError, match="charge"):
            BatteryParams(capacity_kwh=5.0, charge_tiers=(SpeedTier(0, 0.9),))

    @pytest.mark.parametrize("kwargs", [
        {'capacity_kwh': 0},
        {'capacity_kwh': 5.0, 'start_soc_percent': 101},
        {'capacity_kwh': 5.0, 'start_soc_percent': -1},
        {'capacity_kwh': 5.0, 'min_price_delta': -0.1},
    ])
    def test_invalid_values(self, kwargs):
        """Test out-of-range battery parameters."""
        with pytest.raises(InputError):
            BatteryParams(**kwargs)


class TestValidatePrices:
    """Test price series validation."""

    def test_accepts_series(self):
        """Test pandas Series input."""
        values = validate_prices(pd.Series([0.1, 0.2, 0.3]))
        np.testing.assert_allclose(values, [0.1, 0.2, 0.3])

    @pytest.mark.parametrize("prices", [None, [], [0.1, float('nan')], [[0.1, 0.2]], ['cheap']])
    def test_invalid_prices(self, prices):
        """Test empty, non-finite and malformed price series."""
        with pytest.raises(InputError):
            validate_prices(prices)


class TestHorizonSlots:
    """Test optimization horizon limits."""

    def test_hourly_prices_capped_at_48_hours(self):
        """Test hourly horizon is capped by max_horizon_hours."""
        assert horizon_slots(200, 60) == 48

    def test_quarter_hour_prices_capped_at_max_steps(self):
        """Test 15-minute horizon is capped by max_steps."""
        assert horizon_slots(400, 15) == 120

    def test_short_series_unchanged(self):
        """Test short price series are used completely."""
        assert horizon_slots(24, 60) == 24


class TestBuildRoiModel:
    """Test LP matrices."""

    def test_shapes_and_names(self, battery):
        """Test variable layout per slot and the fixed startSoC variable."""
        model = build_roi_model([0.1, 0.2, 0.3], battery)

        assert model.n_vars == 7
        assert model.variable_names == ['cs0T0', 'ds0T0', 'cs0T1', 'ds0T1', 'cs0T2', 'ds0T2', 'startSoC']
        assert model.A_ub.shape == (9, 7)
        assert model.b_ub.shape == (9,)
        assert model.charge_index(0, 1) == 2
        assert model.discharge_index(0, 2) == 5
        assert model.start_soc_index == 6

    def test_objective(self, battery):
        """Test charge cost and discharge revenue coefficients."""
        model = build_roi_model([0.1, 0.5], battery)

        # 2 kW x 1 h x (0.05 + 0.1)
        assert model.c[model.charge_index(0, 0)] == pytest.approx(0.3)
        # 1.7 kW x 1 h x 0.92 x (0.05 - 0.5)
        assert model.c[model.discharge_index(0, 1)] == pytest.approx(1.7 * 0.92 * -0.45)
        assert model.c[model.start_soc_index] == 0

    def test_bounds(self, battery):
        """Test time fractions in [0, 1] and a fixed start energy."""
        model = build_roi_model([0.1, 0.2], battery)

        assert model.bounds[:-1] == [(0.0, 1.0)] * 4
        assert model.bounds[-1] == (pytest.approx(2.5), pytest.approx(2.5))

    def test_time_available_first_slot(self, battery):
        """Test only the remaining part of the first slot can be used."""
        model = build_roi_model([0.1, 0.2, 0.3], battery, start_minute=30)
        np.testing.assert_allclose(model.time_available, [0.5, 1.0, 1.0])
        np.testing.assert_allclose(model.b_ub[:3], [0.5, 1.0, 1.0])

    def test_time_available_quarter_hour_prices(self, battery):
        """Test elapsed minutes are taken within the current 15-minute slot."""
        model = build_roi_model([0.1, 0.2], battery, start_minute=20, price_interval_minutes=15)
        assert model.time_available[0] == pytest.approx(10 / 15)

    def test_cumulative_soc_rows(self, battery):
        """Test SoC rows integrate efficiency-scaled charge and raw discharge."""
        model = build_roi_model([0.1, 0.2], battery)
        soc_row_t1 = model.A_ub[2 + 1]

        assert soc_row_t1[model.charge_index(0, 0)] == pytest.approx(1.8)
        assert soc_row_t1[model.discharge_index(0, 1)] == pytest.approx(-1.7)
        assert soc_row_t1[model.start_soc_index] == 1.0
        np.testing.assert_allclose(model.b_ub[2:4], [5.0, 5.0])
        np.testing.assert_allclose(model.b_ub[4:], [0.0, 0.0])
        np.testing.assert_allclose(model.A_ub[4:], -model.A_ub[2:4])

    @pytest.mark.parametrize("kwargs", [
        {'start_minute': 60},
        {'start_minute': -1},
        {'price_interval_minutes': 7},
    ])
    def test_invalid_timing(self, battery, kwargs):
        """Test invalid start minute and price interval."""
        with pytest.raises(InputError):
            build_roi_model([0.1, 0.2], battery, **kwargs)
