#!/usr/bin/env python3
"""
Promo Analytics CLI

Command-line interface for forecasts, trend analysis, backtests and
Monte Carlo simulations over local CSV/JSON files.

Usage:
    # 14-step ensemble forecast from a CSV with timestamp,value columns
    python -m promo_analytics.scripts.cli forecast sales.csv --horizon 14

    # Trend, seasonality and change points
    python -m promo_analytics.scripts.cli trend sales.csv --output json

    # Walk-forward backtest of each model family
    python -m promo_analytics.scripts.cli backtest sales.csv --holdout 7

    # Monte Carlo simulation from a JSON spec
    python -m promo_analytics.scripts.cli simulate promo_spec.json --seed 42

Copyright (c) 2024-2025 Tim Kaye / Local Cannabis Co.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Tuple

import pandas as pd

from promo_analytics.core.backtesting import BacktestRunner
from promo_analytics.core.config import MODEL_FAMILIES
from promo_analytics.core.engine import AnalyticsEngine
from promo_analytics.core.ensemble import MODEL_SELECTORS, ForecastOptions
from promo_analytics.core.errors import PromoAnalyticsError
from promo_analytics.core.signals import TimeSeriesPoint, series_from_frame, series_from_records

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def load_series(path: str, timestamp_col: str = "timestamp", value_col: str = "value") -> Tuple[TimeSeriesPoint, ...]:
    """Load a series from CSV or JSON (a list of rows, or {"series": [...]})."""
    source = Path(path)
    if source.suffix.lower() == ".json":
        with open(source) as f:
            data = json.load(f)
        rows = data.get("series", []) if isinstance(data, dict) else data
        series = series_from_records(rows, timestamp_key=timestamp_col, value_key=value_col)
    else:
        df = pd.read_csv(source)
        series = series_from_frame(df, timestamp_col=timestamp_col, value_col=value_col)

    logger.info(f"Loaded {len(series):,} points from {source.name}")
    return series


def cmd_forecast(args):
    """Generate a recursive multi-step forecast."""
    series = load_series(args.input, args.timestamp_col, args.value_col)
    options = ForecastOptions(
        model=args.model,
        confidence_level=args.confidence,
        non_negative=not args.allow_negative,
    )

    logger.info(f"Forecasting {args.horizon} steps with {args.model}")
    results = AnalyticsEngine().forecast(series, args.horizon, options)

    if args.output == "json":
        print(json.dumps([r.to_dict() for r in results], indent=2))
        return 0

    df = pd.DataFrame(
        {
            "timestamp": [r.timestamp for r in results],
            "predicted": [round(r.predicted_value, 2) for r in results],
            "lower": [round(r.confidence_lower, 2) for r in results],
            "upper": [round(r.confidence_upper, 2) for r in results],
        }
    )
    first = results[0]
    print(f"\n{'='*80}")
    print(f"FORECAST: {args.horizon} steps ({first.model_id})")
    print(f"{'='*80}")
    print(df.to_string(index=False))
    print()
    print(f"Accuracy estimate: {first.accuracy_estimate:.0%}")
    for insight in first.insights:
        print(f"  - {insight}")
    print()
    return 0


def cmd_trend(args):
    """Analyze trend direction, seasonality and change points."""
    series = load_series(args.input, args.timestamp_col, args.value_col)
    analysis = AnalyticsEngine().analyze_trend(series)

    if args.output == "json":
        print(json.dumps(analysis.to_dict(), indent=2, default=str))
        return 0

    print(f"\n{'='*80}")
    print("TREND ANALYSIS")
    print(f"{'='*80}")
    print(f"Direction: {analysis.direction.value}")
    print(f"Strength:  {analysis.strength:.3f}")
    print(f"Slope:     {analysis.slope:,.4f} per step")
    if analysis.seasonality.detected:
        print(f"Seasonality: period {analysis.seasonality.period} (strength {analysis.seasonality.strength or 0.0:.2f})")
    else:
        print("Seasonality: none detected")
    if analysis.change_points:
        print("Change points:")
        for cp in analysis.change_points:
            print(f"  {cp.timestamp}  {cp.type.value}  magnitude {cp.magnitude:,.2f}")
    print()
    return 0


def cmd_backtest(args):
    """Run a walk-forward backtest of every model family."""
    series = load_series(args.input, args.timestamp_col, args.value_col)
    runner = BacktestRunner(holdout=args.holdout)
    result = runner.run(series)

    if args.save_results:
        result.daily_results.to_csv(args.save_results, index=False)
        logger.info(f"Saved daily results to {args.save_results}")

    if args.output == "json":
        output = {
            "holdout": result.holdout,
            "metrics": {name: m.to_dict() for name, m in result.metrics.items()},
            "best_family": result.best_family(),
            "fallbacks": result.fallbacks,
            "suggested_weights": runner.inverse_error_weights(result).as_dict(),
        }
        print(json.dumps(output, indent=2))
        return 0

    print(f"\n{'='*80}")
    print(f"BACKTEST: last {result.holdout} points held out")
    print(f"{'='*80}")
    print(f"{'Family':<12}{'MAE':>14}{'MAPE':>10}{'RMSE':>14}{'Bias':>14}")
    for name, m in result.metrics.items():
        print(f"{name:<12}{m.mae:>14,.2f}{m.mape:>9.1f}%{m.rmse:>14,.2f}{m.bias:>14,.2f}")
    print()
    print(f"Best family: {result.best_family()}")
    if result.fallbacks:
        print(f"Fell back to moving average: {', '.join(result.fallbacks)}")
    print()
    return 0


def cmd_simulate(args):
    """Run a Monte Carlo simulation from a JSON spec."""
    with open(args.spec) as f:
        spec = json.load(f)
    if args.iterations is not None:
        spec["iterations"] = args.iterations
    if args.seed is not None:
        spec["seed"] = args.seed

    result = AnalyticsEngine().simulate(spec)

    if args.output == "json":
        print(json.dumps(result.to_dict(), indent=2))
        return 0

    summary = result.summary
    print(f"\n{'='*80}")
    print(f"SIMULATION: {result.type.value} ({result.iterations:,} iterations)")
    print(f"{'='*80}")
    print(f"Mean:   {summary.mean:,.2f}")
    print(f"Median: {summary.median:,.2f}")
    print(f"Std:    {summary.std:,.2f}")
    for label, value in summary.percentiles.items():
        print(f"  {label:>4}: {value:,.2f}")
    lower, upper = summary.confidence_interval
    print(f"Confidence interval: [{lower:,.2f}, {upper:,.2f}]")
    print()
    for name, scenario in result.scenarios.items():
        print(f"{name:<12}{scenario.value:>16,.2f}")
    print()
    for rec in result.recommendations:
        print(f"  - {rec}")
    print()
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Promo Analytics CLI - Forecasting, trends and risk simulation"
    )
    parser.add_argument(
        "--output",
        choices=["table", "json"],
        default="table",
        help="Output format (default: table)"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    series_args = argparse.ArgumentParser(add_help=False)
    series_args.add_argument("input", help="CSV or JSON file with the series")
    series_args.add_argument(
        "--timestamp-col",
        default="timestamp",
        help="Timestamp column/key (default: timestamp)"
    )
    series_args.add_argument(
        "--value-col",
        default="value",
        help="Value column/key (default: value)"
    )

    # Forecast command
    forecast_parser = subparsers.add_parser("forecast", parents=[series_args], help="Generate forecast")
    forecast_parser.add_argument(
        "--horizon",
        type=int,
        default=7,
        help="Number of steps to forecast (default: 7)"
    )
    forecast_parser.add_argument(
        "--model",
        choices=list(MODEL_SELECTORS),
        default="ensemble",
        help="Model family or ensemble (default: ensemble)"
    )
    forecast_parser.add_argument(
        "--confidence",
        type=float,
        default=95.0,
        help="Confidence level: 90, 95 or 99 (default: 95)"
    )
    forecast_parser.add_argument(
        "--allow-negative",
        action="store_true",
        help="Don't clamp predictions and bounds at zero"
    )
    forecast_parser.set_defaults(func=cmd_forecast)

    # Trend command
    trend_parser = subparsers.add_parser("trend", parents=[series_args], help="Analyze trend")
    trend_parser.set_defaults(func=cmd_trend)

    # Backtest command
    backtest_parser = subparsers.add_parser("backtest", parents=[series_args], help="Backtest model families")
    backtest_parser.add_argument(
        "--holdout",
        type=int,
        default=7,
        help=f"Points held out for each of {', '.join(MODEL_FAMILIES)} (default: 7)"
    )
    backtest_parser.add_argument(
        "--save-results",
        help="Save per-step predictions vs actuals to CSV file"
    )
    backtest_parser.set_defaults(func=cmd_backtest)

    # Simulate command
    simulate_parser = subparsers.add_parser("simulate", help="Run Monte Carlo simulation")
    simulate_parser.add_argument("spec", help="JSON file with the simulation spec")
    simulate_parser.add_argument(
        "--iterations",
        type=int,
        help="Override the iteration count in the file"
    )
    simulate_parser.add_argument(
        "--seed",
        type=int,
        help="Random seed for reproducible runs"
    )
    simulate_parser.set_defaults(func=cmd_simulate)

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if not args.command:
        parser.print_help()
        return 1

    try:
        return args.func(args)
    except PromoAnalyticsError as e:
        logger.error(f"{e.code}: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
