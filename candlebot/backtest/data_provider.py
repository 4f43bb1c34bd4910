from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

import pandas as pd

from candlebot.data.candles import Candle, parse_timestamp

LOGGER = logging.getLogger(__name__)

_CSV_TS_CANDIDATES = ("ts_utc", "timestamp", "datetime", "date", "time")
_CSV_OPEN_CANDIDATES = ("open", "o")
_CSV_HIGH_CANDIDATES = ("high", "h")
_CSV_LOW_CANDIDATES = ("low", "l")
_CSV_CLOSE_CANDIDATES = ("close", "c")
_CSV_VOLUME_CANDIDATES = ("volume", "vol", "tick_volume")
_CSV_BID_CANDIDATES = ("bid", "close_bid")
_CSV_ASK_CANDIDATES = ("ask", "close_ask")


class MissingColumnsError(ValueError):
    def __init__(self, path: Path, missing: list[str]):
        self.path = path
        self.missing = missing
        super().__init__(f"{path}: missing required column(s): {', '.join(missing)}")


def _to_utc(ts: datetime | str) -> datetime:
    if not isinstance(ts, datetime):
        return parse_timestamp(str(ts))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _pick_column(columns: dict[str, str], candidates: tuple[str, ...]) -> str | None:
    for candidate in candidates:
        if candidate in columns:
            return columns[candidate]
    return None


def normalize_frame(frame: pd.DataFrame, *, source: Path | None = None) -> pd.DataFrame:
    """Map loosely named OHLC columns onto ``ts_utc, open, high, low, close``."""
    columns = {str(column).strip().lower(): column for column in frame.columns}
    mapping = {
        "ts_utc": _pick_column(columns, _CSV_TS_CANDIDATES),
        "open": _pick_column(columns, _CSV_OPEN_CANDIDATES),
        "high": _pick_column(columns, _CSV_HIGH_CANDIDATES),
        "low": _pick_column(columns, _CSV_LOW_CANDIDATES),
        "close": _pick_column(columns, _CSV_CLOSE_CANDIDATES),
    }
    missing = [name for name, column in mapping.items() if column is None]
    if missing:
        raise MissingColumnsError(source or Path("<frame>"), missing)

    out = pd.DataFrame(
        {
            "ts_utc": pd.to_datetime(frame[mapping["ts_utc"]], utc=True, errors="coerce"),
            "open": pd.to_numeric(frame[mapping["open"]], errors="coerce"),
            "high": pd.to_numeric(frame[mapping["high"]], errors="coerce"),
            "low": pd.to_numeric(frame[mapping["low"]], errors="coerce"),
            "close": pd.to_numeric(frame[mapping["close"]], errors="coerce"),
        }
    )
    for target, candidates in (
        ("volume", _CSV_VOLUME_CANDIDATES),
        ("bid", _CSV_BID_CANDIDATES),
        ("ask", _CSV_ASK_CANDIDATES),
    ):
        column = _pick_column(columns, candidates)
        out[target] = pd.to_numeric(frame[column], errors="coerce") if column is not None else float("nan")

    before = len(out)
    out = out.dropna(subset=["ts_utc", "open", "high", "low", "close"])
    dropped = before - len(out)
    if dropped:
        LOGGER.warning("Dropped %d malformed row(s) from %s", dropped, source or "frame")
    out = out.drop_duplicates(subset=["ts_utc"], keep="last").sort_values("ts_utc")
    return out.reset_index(drop=True)


def frame_to_candles(frame: pd.DataFrame) -> list[Candle]:
    candles: list[Candle] = []
    for row in frame.itertuples(index=False):
        candles.append(
            Candle(
                timestamp=row.ts_utc.to_pydatetime(),
                open=float(row.open),
                high=float(row.high),
                low=float(row.low),
                close=float(row.close),
                bid=float(row.bid) if pd.notna(row.bid) else None,
                ask=float(row.ask) if pd.notna(row.ask) else None,
                volume=float(row.volume) if pd.notna(row.volume) else 0.0,
            )
        )
    return candles


def load_candles_csv(
    path: str | Path,
    *,
    start: datetime | str | None = None,
    end: datetime | str | None = None,
) -> list[Candle]:
    csv_path = Path(path)
    frame = normalize_frame(pd.read_csv(csv_path), source=csv_path)
    if start is not None:
        frame = frame[frame["ts_utc"] >= pd.Timestamp(_to_utc(start))]
    if end is not None:
        frame = frame[frame["ts_utc"] < pd.Timestamp(_to_utc(end))]
    candles = frame_to_candles(frame)
    LOGGER.info("Loaded %d candle(s) from %s", len(candles), csv_path)
    return candles
