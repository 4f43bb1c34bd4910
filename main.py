from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from candlebot.backtest import MissingColumnsError, load_candles_csv, run_backtest
from candlebot.config import load_config

LOGGER = logging.getLogger("candlebot")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="First-candle intraday engine, replayed over a CSV of bars")
    parser.add_argument("--config", default="config.yaml", help="Path to YAML config")
    parser.add_argument("--data", default=None, help="CSV with timestamp/open/high/low/close columns")
    parser.add_argument("--start", default=None)
    parser.add_argument("--end", default=None)
    parser.add_argument("--json", action="store_true", help="Print the full report as JSON")
    return parser.parse_args(argv)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def resolve_path(root: Path, value: str) -> Path:
    path = Path(value)
    if path.is_absolute():
        return path
    cwd_candidate = Path.cwd() / path
    if cwd_candidate.exists():
        return cwd_candidate
    return root / path


def run(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    load_dotenv()
    setup_logging(os.getenv("LOG_LEVEL", "INFO"))

    root = Path(__file__).resolve().parent
    try:
        config = load_config(resolve_path(root, args.config))
    except FileNotFoundError as exc:
        LOGGER.error("Config file not found, refusing to start: %s", exc)
        return 2
    except (ValidationError, yaml.YAMLError) as exc:
        LOGGER.error("Invalid configuration, refusing to start:\n%s", exc)
        return 2

    data_raw = args.data or os.getenv("CANDLEBOT_DATA")
    if not data_raw:
        LOGGER.error("No bar data given (--data or CANDLEBOT_DATA)")
        return 2
    try:
        candles = load_candles_csv(resolve_path(root, data_raw), start=args.start, end=args.end)
    except (FileNotFoundError, MissingColumnsError) as exc:
        LOGGER.error("Could not load bars: %s", exc)
        return 2

    report = run_backtest(config, candles)
    if args.json:
        print(json.dumps(report.to_dict(), indent=2, ensure_ascii=True))
    else:
        metrics = report.metrics
        print(
            f"{report.symbol}: bars={report.bars} trades={metrics.get('trades_count', 0)} "
            f"pnl={metrics.get('total_pnl', 0.0):.2f} win_rate={metrics.get('win_rate_pct', 0.0):.1f}% "
            f"max_dd={metrics.get('max_drawdown_pct', 0.0):.2f}% outcomes={report.outcome_counts}"
        )
    return 0


if __name__ == "__main__":
    sys.exit(run())
