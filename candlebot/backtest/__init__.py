from candlebot.backtest.data_provider import MissingColumnsError, load_candles_csv, normalize_frame
from candlebot.backtest.engine import BacktestReport, run_backtest, symbol_from_config

__all__ = [
    "MissingColumnsError",
    "load_candles_csv",
    "normalize_frame",
    "BacktestReport",
    "run_backtest",
    "symbol_from_config",
]
