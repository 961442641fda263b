from __future__ import annotations

import asyncio
import logging
import math
from typing import Dict, List, Optional

from .config import Config
from .models import Candle, DailyVolume, SignalKind, SymbolInfo
from .orchestrator import RateLimitedFetcher
from .scoring import SymbolEvaluation, evaluate_signals, passes_daily_pump_filter
from .signals import (
    SignalResult,
    detect_compression_expansion,
    detect_funding_bias,
    detect_intrabar_jumps,
    detect_obv_impulse,
    detect_squeeze_breakout,
    detect_turnover_spike,
    detect_volume_spike,
    detect_vwap_drift,
    detect_whale_sweeps,
)
from .window import DAY_MS, AnalysisWindow

log = logging.getLogger("scanner")

DAILY_GRANULARITY = 1440
MINUTE_GRANULARITY = 1


class SymbolScanner:
    """Fetches one symbol's data through the rate-limited fetcher and scores it."""

    def __init__(self, provider, fetcher: RateLimitedFetcher, cfg: Config):
        self.provider = provider
        self.fetcher = fetcher
        self.cfg = cfg

    async def _candles(self, symbol: str, granularity: int, from_ms: int, to_ms: int, label: str) -> Optional[List[Candle]]:
        return await self.fetcher.call(
            lambda: self.provider.fetch_candles(symbol, granularity, from_ms, to_ms),
            label,
        )

    async def fetch_daily_candle(self, symbol: str, window: AnalysisWindow) -> Optional[Candle]:
        arr = await self._candles(symbol, DAILY_GRANULARITY, window.start_ms, window.end_ms, f"GET kline 1d {symbol}")
        if not arr:
            log.warning("daily_missing symbol=%s window=%s", symbol, window.describe())
            return None
        for c in arr:
            if window.contains(c.start_time_ms):
                return c
        return arr[0]

    async def fetch_historical_daily_volumes(self, symbol: str, window: AnalysisWindow) -> List[DailyVolume]:
        """Roughly ``history_chunks * chunk_days`` days of daily volume before the window."""
        vs = self.cfg.signals.volume_spike
        calls = []
        for i in range(vs.history_chunks):
            from_ms = window.end_ms - ((i + 1) * vs.chunk_days + 1) * DAY_MS
            to_ms = window.end_ms - (i * vs.chunk_days + 2) * DAY_MS
            calls.append(self._candles(symbol, DAILY_GRANULARITY, from_ms, to_ms, f"GET 1d vols {symbol} [{i + 1}]"))
        chunks = await asyncio.gather(*calls)

        out: List[DailyVolume] = []
        for chunk in chunks:
            for c in chunk or []:
                if math.isfinite(c.volume) and c.volume > 0:
                    out.append(DailyVolume(ts_ms=c.start_time_ms, volume=c.volume))
        return out

    async def fetch_minute_candles(self, symbol: str, window: AnalysisWindow) -> List[Candle]:
        """The last ``whale_sweep.lookback_min`` minutes of the window."""
        lookback_ms = max(1, self.cfg.signals.whale_sweep.lookback_min) * 60_000
        from_ms = max(window.start_ms, window.end_ms - lookback_ms)
        arr = await self._candles(symbol, MINUTE_GRANULARITY, from_ms, window.end_ms, f"GET kline 1m {symbol}")
        if not arr:
            log.debug("minute_empty symbol=%s window=%s", symbol, window.describe())
            return []
        return arr

    async def evaluate(self, info: SymbolInfo, window: AnalysisWindow) -> Optional[SymbolEvaluation]:
        """Score one symbol; ``None`` means excluded from this run."""
        symbol = info.symbol
        sig_cfg = self.cfg.signals

        daily = await self.fetch_daily_candle(symbol, window)
        if not passes_daily_pump_filter(daily, sig_cfg.pump_filter):
            log.info("pump_filter_skip symbol=%s open=%s close=%s skip_above=%.2f", symbol, daily.open, daily.close, sig_cfg.pump_filter.skip_ratio)
            return None

        granularity = self.cfg.scan.granularity_min
        candles = await self._candles(symbol, granularity, window.start_ms, window.end_ms, f"GET kline {granularity}m {symbol}")
        if not candles:
            log.warning("candles_empty symbol=%s tf=%sm window=%s", symbol, granularity, window.describe())
            return None
        log.debug("candles symbol=%s tf=%sm count=%d", symbol, granularity, len(candles))

        history: List[DailyVolume] = []
        if sig_cfg.volume_spike.enabled:
            history = await self.fetch_historical_daily_volumes(symbol, window)
        today_volume = daily.volume if daily is not None else None

        signals: Dict[SignalKind, Optional[SignalResult]] = {
            SignalKind.VOLUME_SPIKE: detect_volume_spike(history, today_volume, sig_cfg.volume_spike),
            SignalKind.INTRABAR_JUMP: detect_intrabar_jumps(candles, sig_cfg.intrabar_jump),
            SignalKind.COMPRESSION_EXPANSION: detect_compression_expansion(candles, sig_cfg.compression_expansion),
            SignalKind.VWAP_DRIFT: detect_vwap_drift(candles, sig_cfg.vwap_drift),
            SignalKind.TURNOVER_SPIKE: detect_turnover_spike(candles, sig_cfg.turnover_spike),
            SignalKind.OBV_IMPULSE: detect_obv_impulse(candles, sig_cfg.obv_impulse),
            SignalKind.SQUEEZE_BREAKOUT: detect_squeeze_breakout(candles, sig_cfg.squeeze_breakout),
        }
        if sig_cfg.whale_sweep.enabled:
            minute = await self.fetch_minute_candles(symbol, window)
            signals[SignalKind.WHALE_SWEEP] = detect_whale_sweeps(minute, sig_cfg.whale_sweep)
        else:
            signals[SignalKind.WHALE_SWEEP] = None
        signals[SignalKind.FUNDING_BIAS] = detect_funding_bias(info.funding_rate, sig_cfg.funding_bias)

        return evaluate_signals(symbol, signals, self.cfg.scoring, sample_count=len(candles))
