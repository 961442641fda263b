from __future__ import annotations

import logging
import math
from typing import List, Sequence, Tuple

from .indicators import pct_delta
from .models import Candle

log = logging.getLogger("candles")

# KuCoin futures kline tuple: [time, open, close, high, low, volume, turnover]
_K_TIME, _K_OPEN, _K_CLOSE, _K_HIGH, _K_LOW, _K_VOLUME, _K_TURNOVER = range(7)


def _num(row: Sequence, idx: int, default: float = math.nan) -> float:
    try:
        return float(row[idx])
    except (IndexError, TypeError, ValueError):
        return default


def price_bounds(open_p: float, close: float, high: float, low: float, *, ts_ms: int = 0) -> Tuple[float, float]:
    """Return (low, high) over all four prices.

    Feeds occasionally report open/close outside the nominal high/low, so the
    bounds are taken over every finite value rather than trusted as given.
    """
    finite = [x for x in (open_p, close, high, low) if math.isfinite(x)]
    if not finite:
        log.warning("candle_anomaly ts=%s reason=no_finite_prices o=%s c=%s h=%s l=%s", ts_ms, open_p, close, high, low)
        return math.nan, math.nan
    lo = min(finite)
    hi = max(finite)
    if len(finite) < 4:
        log.warning("candle_anomaly ts=%s reason=non_finite_price o=%s c=%s h=%s l=%s", ts_ms, open_p, close, high, low)
    if hi < lo:
        log.warning("candle_anomaly ts=%s reason=hi_lt_lo hi=%s lo=%s", ts_ms, hi, lo)
    return lo, hi


def candle_from_kline(row: Sequence) -> Candle:
    raw_ts = _num(row, _K_TIME, 0.0)
    if not math.isfinite(raw_ts):
        log.warning("candle_anomaly reason=non_finite_time raw=%r", row[_K_TIME])
        raw_ts = 0.0
    ts = int(raw_ts)
    open_p = _num(row, _K_OPEN)
    close = _num(row, _K_CLOSE)
    lo, hi = price_bounds(open_p, close, _num(row, _K_HIGH), _num(row, _K_LOW), ts_ms=ts)
    volume = _num(row, _K_VOLUME, 0.0)
    turnover = _num(row, _K_TURNOVER, 0.0)
    return Candle(
        start_time_ms=ts,
        open=open_p,
        close=close,
        high=hi,
        low=lo,
        volume=volume if math.isfinite(volume) else 0.0,
        turnover=turnover if math.isfinite(turnover) else 0.0,
    )


def typical_price(c: Candle) -> float:
    return (c.high + c.low + c.close) / 3.0


def true_range(c: Candle) -> float:
    # Bar range only; the 15m series is a single aligned day with no gaps.
    rng = c.high - c.low
    return rng if rng > 0 else 0.0


def jump_ratio(c: Candle) -> float:
    return pct_delta(c.low, c.high)


def close_position(c: Candle) -> float:
    """Where the close sits inside the bar: 0 at the low, 1 at the high."""
    if not (math.isfinite(c.high) and math.isfinite(c.low)) or c.high <= c.low:
        return 0.0
    return (c.close - c.low) / (c.high - c.low)


def vwap_series(candles: Sequence[Candle]) -> List[float]:
    cum_pv = 0.0
    cum_v = 0.0
    out: List[float] = []
    for c in candles:
        tp = typical_price(c)
        cum_pv += tp * c.volume
        cum_v += c.volume
        out.append(cum_pv / cum_v if cum_v > 0 else tp)
    return out


def obv_series(candles: Sequence[Candle]) -> List[float]:
    if not candles:
        return []
    obv = 0.0
    out = [0.0]
    for prev, c in zip(candles, candles[1:]):
        if c.close > prev.close:
            obv += c.volume
        elif c.close < prev.close:
            obv -= c.volume
        out.append(obv)
    return out
