#!/usr/bin/env python3
"""
Battery Trading - command line entry point
==========================================

Usage:
    battery-trading strategy --prices data/prices.csv --soc 50
    battery-trading strategy --config configs/fleet.yaml --prices data/prices.csv --soc 50 --json
    battery-trading init-config configs/fleet.yaml
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

import pandas as pd

from battery_trading.config import FleetConfig
from battery_trading.errors import BatteryTradingError
from battery_trading.optimization import RoiAction, RoiStrategyOptimizer, stop_delay_minutes

logger = logging.getLogger(__name__)


def load_prices(file_path, price_col: str = 'price',
                timestamp_col: str = 'timestamp') -> Tuple[pd.Series, Optional[pd.DatetimeIndex]]:
    """
    Load a price series from CSV.

    Args:
        file_path: CSV with a price column and an optional timestamp column
        price_col: Name of the price column (first data column if absent)
        timestamp_col: Name of the timestamp column

    Returns:
        (prices, timestamps or None)

    Raises:
        FileNotFoundError: If file doesn't exist
        ValueError: If file contains no prices
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"Price data file not found: {file_path}")

    df = pd.read_csv(file_path)
    if df.empty:
        raise ValueError(f"Price data file is empty: {file_path}")

    timestamps = None
    if timestamp_col in df.columns:
        timestamps = pd.DatetimeIndex(pd.to_datetime(df[timestamp_col]))
        df = df.drop(columns=[timestamp_col])

    if price_col in df.columns:
        prices = df[price_col]
    else:
        prices = df.iloc[:, 0]

    logger.info(f"Loaded {len(prices)} prices from {file_path}")
    return prices.astype(float).reset_index(drop=True), timestamps


def run_strategy(args) -> int:
    """Compute and print the ROI schedule for the given prices and SoC."""
    config = FleetConfig.from_yaml(args.config) if args.config else FleetConfig()
    prices, timestamps = load_prices(args.prices)

    optimizer = RoiStrategyOptimizer(config.battery, config.roi)
    schedule = optimizer.optimize(prices, soc=args.soc, start_minute=args.start_minute,
                                  min_price_delta=args.min_price_delta)

    action = RoiAction.from_schedule(schedule)
    delay = stop_delay_minutes(action, args.start_minute, config.roi.price_interval_minutes)

    if args.json:
        print(schedule.to_json())
    else:
        if timestamps is not None:
            timestamps = timestamps[:len(schedule)]
        print(schedule.to_dataframe(timestamps).to_string())
        print(f"\nNow: power {action.power} W for {action.duration} min, end SoC {action.end_soc}%")
        if delay is not None:
            print(f"Stop after {delay} min")

    if args.output:
        schedule.to_dataframe().to_csv(args.output)
        logger.info(f"Schedule saved to {args.output}")
    return 0


def init_config(args) -> int:
    """Write a default fleet configuration file."""
    output = Path(args.output)
    if output.exists() and not args.force:
        print(f"Error: {output} already exists (use --force to overwrite)")
        return 1
    output.parent.mkdir(parents=True, exist_ok=True)
    FleetConfig(name=args.name).to_yaml(output)
    print(f"Configuration written to {output}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Battery Trading - ROI strategy scheduling",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  battery-trading strategy --prices data/prices.csv --soc 50
  battery-trading strategy --config configs/fleet.yaml --prices data/prices.csv --soc 20 --start-minute 15
  battery-trading init-config configs/fleet.yaml
        """
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    strategy_parser = subparsers.add_parser("strategy", help="Compute the ROI charge/discharge schedule")
    strategy_parser.add_argument("--config", type=str, default=None,
                                 help="Path to YAML configuration file")
    strategy_parser.add_argument("--prices", type=str, required=True,
                                 help="CSV with 'price' (and optional 'timestamp') column")
    strategy_parser.add_argument("--soc", type=float, required=True,
                                 help="Current state of charge (%%)")
    strategy_parser.add_argument("--start-minute", type=int, default=0,
                                 help="Minutes already elapsed in the current hour")
    strategy_parser.add_argument("--min-price-delta", type=float, default=None,
                                 help="Override minimum price delta from config")
    strategy_parser.add_argument("--json", action="store_true",
                                 help="Print schedule as JSON")
    strategy_parser.add_argument("--output", type=str, default=None,
                                 help="Save schedule to CSV")

    init_parser = subparsers.add_parser("init-config", help="Write a default configuration file")
    init_parser.add_argument("output", type=str, help="Path of the YAML file to write")
    init_parser.add_argument("--name", type=str, default="fleet", help="Fleet name")
    init_parser.add_argument("--force", action="store_true", help="Overwrite an existing file")

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    if args.command == "strategy":
        try:
            return run_strategy(args)
        except (BatteryTradingError, FileNotFoundError, ValueError) as e:
            print(f"Error: {e}")
            return 1
    if args.command == "init-config":
        return init_config(args)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
