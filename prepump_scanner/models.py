from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional


@dataclass(frozen=True)
class Candle:
    start_time_ms: int
    open: float
    close: float
    high: float  # max(open, close, high, low) as reported
    low: float   # min(open, close, high, low) as reported
    volume: float
    turnover: float


@dataclass(frozen=True)
class SymbolInfo:
    symbol: str
    base_currency: str
    funding_rate: float


@dataclass(frozen=True)
class DailyVolume:
    ts_ms: int
    volume: float


class SignalKind(str, Enum):
    VOLUME_SPIKE = "volume_spike"
    INTRABAR_JUMP = "intrabar_jump"
    COMPRESSION_EXPANSION = "compression_expansion"
    VWAP_DRIFT = "vwap_drift"
    TURNOVER_SPIKE = "turnover_spike"
    OBV_IMPULSE = "obv_impulse"
    SQUEEZE_BREAKOUT = "squeeze_breakout"
    WHALE_SWEEP = "whale_sweep"
    FUNDING_BIAS = "funding_bias"


@dataclass
class RunMetrics:
    """Per-run request and rate-limit counters.

    Shared by the provider and the fetcher; reset at run start and frozen
    with :meth:`snapshot` once the run is over.
    """

    requests: int = 0
    ok_2xx: int = 0
    rate_429: int = 0
    errors: int = 0
    pauses: int = 0
    retries: int = 0
    retry_success: int = 0
    retry_fail: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def reset(self, started_at: Optional[datetime] = None) -> None:
        self.requests = 0
        self.ok_2xx = 0
        self.rate_429 = 0
        self.errors = 0
        self.pauses = 0
        self.retries = 0
        self.retry_success = 0
        self.retry_fail = 0
        self.started_at = started_at
        self.finished_at = None

    def snapshot(self, finished_at: Optional[datetime] = None) -> "RunMetrics":
        if finished_at is not None:
            self.finished_at = finished_at
        return replace(self)

    @property
    def duration_s(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()
