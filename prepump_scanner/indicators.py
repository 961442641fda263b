from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple
import math


@dataclass(frozen=True)
class MeanStd:
    mean: float
    std: float


def median(values: Sequence[float]) -> float:
    """Median of a copy of ``values``; 0 for an empty sequence (no baseline)."""
    if not values:
        return 0.0
    arr = sorted(values)
    mid = len(arr) // 2
    if len(arr) % 2:
        return float(arr[mid])
    return (arr[mid - 1] + arr[mid]) / 2.0


def window_mean_std(series: Sequence[float], index: int, lookback: int) -> Optional[Tuple[float, float]]:
    """Mean and sample std over ``[max(0, index-lookback+1), index]``."""
    start = max(0, index - lookback + 1)
    window = series[start:index + 1]
    n = len(window)
    if n < 2:
        return None
    mean = sum(window) / n
    var = sum((x - mean) * (x - mean) for x in window) / max(1, n - 1)
    return mean, math.sqrt(var)


def zscore(series: Sequence[float], index: int, lookback: int = 64) -> float:
    stats = window_mean_std(series, index, lookback)
    if stats is None:
        return 0.0
    mean, sd = stats
    if sd == 0:
        return 0.0
    return (series[index] - mean) / sd


def rolling_mean_std(series: Sequence[Optional[float]], period: int) -> List[Optional[MeanStd]]:
    """Rolling mean/population std; ``None`` until ``period`` samples are in."""
    out: List[Optional[MeanStd]] = []
    if period <= 0:
        return [None] * len(series)
    total = 0.0
    total_sq = 0.0
    for i, raw in enumerate(series):
        x = float(raw) if raw is not None else 0.0
        total += x
        total_sq += x * x
        if i >= period:
            old = series[i - period]
            y = float(old) if old is not None else 0.0
            total -= y
            total_sq -= y * y
        if i + 1 < period:
            out.append(None)
            continue
        mean = total / period
        out.append(MeanStd(mean=mean, std=math.sqrt(max(0.0, total_sq / period - mean * mean))))
    return out


def pct_delta(lo: float, hi: float) -> float:
    if not (math.isfinite(lo) and math.isfinite(hi)) or lo <= 0:
        return 0.0
    return (hi - lo) / lo
