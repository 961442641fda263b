from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import ClassVar, Dict, List, Optional, Sequence, Tuple, Union

from .candles import close_position, jump_ratio, obv_series, true_range, vwap_series
from .config import (
    CompressionConfig,
    FundingConfig,
    IntrabarJumpConfig,
    ObvConfig,
    SqueezeConfig,
    TurnoverConfig,
    VolumeSpikeConfig,
    VwapDriftConfig,
    WhaleSweepConfig,
)
from .indicators import median, rolling_mean_std, zscore
from .models import Candle, DailyVolume, SignalKind

# Default z-score lookback over 15m volume/turnover (16 hours).
VOLUME_Z_LOOKBACK = 64
# Trailing candles that define "the day's high" on the 15m series.
DAY_HIGH_LOOKBACK = 96


class _Result:
    kind: ClassVar[SignalKind]
    passed: bool

    def to_dict(self) -> Dict[str, object]:
        out = asdict(self)
        out["kind"] = self.kind.value
        out["passed"] = self.passed
        return out


@dataclass(frozen=True)
class VolumeSpikeResult(_Result):
    kind: ClassVar[SignalKind] = SignalKind.VOLUME_SPIKE
    passed: bool
    today_volume: float
    prev_max: float
    ratio: float
    history_len: int


@dataclass(frozen=True)
class Jump:
    start_time_ms: int
    ratio: float


@dataclass(frozen=True)
class IntrabarJumpResult(_Result):
    kind: ClassVar[SignalKind] = SignalKind.INTRABAR_JUMP
    jumps: Tuple[Jump, ...] = ()

    @property
    def passed(self) -> bool:
        return len(self.jumps) > 0

    @property
    def last_ratio(self) -> float:
        return self.jumps[-1].ratio if self.jumps else 0.0


@dataclass(frozen=True)
class CompressionExpansionResult(_Result):
    kind: ClassVar[SignalKind] = SignalKind.COMPRESSION_EXPANSION
    passed: bool
    tr_ratio: float
    vol_z: float
    near_high: bool
    base_tr: float
    recent_tr: float
    day_high: float
    last_close: float


@dataclass(frozen=True)
class VwapDriftResult(_Result):
    kind: ClassVar[SignalKind] = SignalKind.VWAP_DRIFT
    passed: bool
    deviation: float
    vol_z: float
    streak_ok: bool


@dataclass(frozen=True)
class TurnoverSpikeResult(_Result):
    kind: ClassVar[SignalKind] = SignalKind.TURNOVER_SPIKE
    passed: bool
    turnover_z: float
    last_turnover_per_volume: float
    median_turnover_per_volume: float


@dataclass(frozen=True)
class ObvImpulseResult(_Result):
    kind: ClassVar[SignalKind] = SignalKind.OBV_IMPULSE
    passed: bool
    obv_z: float


@dataclass(frozen=True)
class SqueezeBreakoutResult(_Result):
    kind: ClassVar[SignalKind] = SignalKind.SQUEEZE_BREAKOUT
    passed: bool
    was_squeezed: bool
    breakout_up: bool
    near_high: bool
    vol_z: float


@dataclass(frozen=True)
class WhaleSweepResult(_Result):
    kind: ClassVar[SignalKind] = SignalKind.WHALE_SWEEP
    passed: bool
    count: int
    last_vol_z: float


@dataclass(frozen=True)
class FundingBiasResult(_Result):
    kind: ClassVar[SignalKind] = SignalKind.FUNDING_BIAS
    passed: bool
    rate: float


SignalResult = Union[
    VolumeSpikeResult,
    IntrabarJumpResult,
    CompressionExpansionResult,
    VwapDriftResult,
    TurnoverSpikeResult,
    ObvImpulseResult,
    SqueezeBreakoutResult,
    WhaleSweepResult,
    FundingBiasResult,
]


def _volume_z(candles: Sequence[Candle]) -> float:
    vols = [c.volume for c in candles]
    return zscore(vols, len(vols) - 1, min(VOLUME_Z_LOOKBACK, len(vols)))


def detect_volume_spike(
    history: Sequence[DailyVolume],
    today_volume: Optional[float],
    cfg: VolumeSpikeConfig,
) -> Optional[VolumeSpikeResult]:
    if not cfg.enabled:
        return None
    if len(history) < cfg.min_history_days or today_volume is None or not math.isfinite(today_volume):
        return None
    prev_max = max((d.volume for d in history), default=0.0)
    ratio = today_volume / prev_max if prev_max > 0 else 0.0
    return VolumeSpikeResult(
        passed=ratio >= cfg.ratio,
        today_volume=today_volume,
        prev_max=prev_max,
        ratio=ratio,
        history_len=len(history),
    )


def detect_intrabar_jumps(candles: Sequence[Candle], cfg: IntrabarJumpConfig) -> IntrabarJumpResult:
    jumps: List[Jump] = []
    for c in candles:
        if c.low <= 0 or not math.isfinite(c.high):
            continue
        ratio = jump_ratio(c)
        if ratio > cfg.jump_ratio:
            jumps.append(Jump(start_time_ms=c.start_time_ms, ratio=ratio))
    return IntrabarJumpResult(jumps=tuple(jumps))


def detect_compression_expansion(candles: Sequence[Candle], cfg: CompressionConfig) -> Optional[CompressionExpansionResult]:
    """Quiet recent ranges versus the baseline, with volume waking up near the high."""
    n = len(candles)
    if not cfg.enabled or n < cfg.tr_lookback + cfg.tr_window:
        return None
    trs = [true_range(c) for c in candles]
    base_tr = median(trs[-cfg.tr_lookback:])
    recent_tr = median(trs[-cfg.tr_window:])
    tr_ratio = recent_tr / base_tr if base_tr > 0 else 1.0
    vol_z = _volume_z(candles)

    day_high = max(c.high for c in candles[-DAY_HIGH_LOOKBACK:])
    last_close = candles[-1].close
    near_high = day_high > 0 and (day_high - last_close) / day_high <= cfg.near_high_pct

    return CompressionExpansionResult(
        passed=tr_ratio <= cfg.tr_ratio_max and vol_z >= cfg.vol_z_min and near_high,
        tr_ratio=tr_ratio,
        vol_z=vol_z,
        near_high=near_high,
        base_tr=base_tr,
        recent_tr=recent_tr,
        day_high=day_high,
        last_close=last_close,
    )


def _deviation(close: float, vwap: float) -> float:
    return (close - vwap) / vwap if vwap else 0.0


def detect_vwap_drift(candles: Sequence[Candle], cfg: VwapDriftConfig) -> Optional[VwapDriftResult]:
    n = len(candles)
    if not cfg.enabled or n < cfg.window + cfg.streak:
        return None
    vwap = vwap_series(candles)
    devs = [_deviation(c.close, v) for c, v in zip(candles, vwap)]
    last = n - 1

    streak_ok = True
    for i in range(last - cfg.streak + 1, last + 1):
        if not (devs[i] > 0 and devs[i] >= devs[i - 1]):
            streak_ok = False
            break

    vol_z = _volume_z(candles)
    return VwapDriftResult(
        passed=devs[last] >= cfg.dev_min and vol_z >= cfg.vol_z_min and streak_ok,
        deviation=devs[last],
        vol_z=vol_z,
        streak_ok=streak_ok,
    )


def detect_turnover_spike(candles: Sequence[Candle], cfg: TurnoverConfig) -> Optional[TurnoverSpikeResult]:
    if not cfg.enabled or not candles:
        return None
    turnovers = [c.turnover for c in candles]
    last = len(turnovers) - 1
    to_z = zscore(turnovers, last, min(VOLUME_Z_LOOKBACK, len(turnovers)))

    per_volume = [c.turnover / c.volume if c.volume > 0 else 0.0 for c in candles]
    med = median([x for x in per_volume[-cfg.median_lookback:] if math.isfinite(x)])
    last_per_volume = per_volume[last]
    ratio_ok = med > 0 and last_per_volume / med >= cfg.ratio_min

    return TurnoverSpikeResult(
        passed=to_z >= cfg.z_min and ratio_ok,
        turnover_z=to_z,
        last_turnover_per_volume=last_per_volume,
        median_turnover_per_volume=med,
    )


def detect_obv_impulse(candles: Sequence[Candle], cfg: ObvConfig) -> Optional[ObvImpulseResult]:
    if not cfg.enabled or not candles:
        return None
    obv = obv_series(candles)
    obv_z = zscore(obv, len(obv) - 1, min(cfg.lookback, len(obv)))
    return ObvImpulseResult(passed=obv_z >= cfg.z_min, obv_z=obv_z)


def detect_squeeze_breakout(candles: Sequence[Candle], cfg: SqueezeConfig) -> Optional[SqueezeBreakoutResult]:
    """Bollinger band inside a Keltner-style channel on the prior bar, then a close above the band."""
    n = len(candles)
    if not cfg.enabled or n < max(cfg.bb_period, cfg.kc_period) + 2:
        return None
    closes = [c.close for c in candles]
    trs = [true_range(c) for c in candles]
    bb = rolling_mean_std(closes, cfg.bb_period)
    kc = rolling_mean_std(closes, cfg.kc_period)

    i = n - 1
    prev = i - 1
    if bb[i] is None or bb[prev] is None or kc[prev] is None:
        return None

    prev_atr = median(trs[prev - cfg.kc_period + 1:prev + 1])
    prev_bb_upper = bb[prev].mean + 2.0 * bb[prev].std
    prev_bb_lower = bb[prev].mean - 2.0 * bb[prev].std
    kc_upper = kc[prev].mean + cfg.kc_mult * prev_atr
    kc_lower = kc[prev].mean - cfg.kc_mult * prev_atr
    was_squeezed = prev_bb_upper < kc_upper and prev_bb_lower > kc_lower

    bb_upper = bb[i].mean + 2.0 * bb[i].std
    breakout_up = closes[i] > bb_upper
    near_high = close_position(candles[i]) >= 1.0 - cfg.near_high_pct
    vol_z = _volume_z(candles)

    return SqueezeBreakoutResult(
        passed=was_squeezed and breakout_up and near_high and vol_z >= cfg.vol_z_min,
        was_squeezed=was_squeezed,
        breakout_up=breakout_up,
        near_high=near_high,
        vol_z=vol_z,
    )


def detect_whale_sweeps(minute_candles: Sequence[Candle], cfg: WhaleSweepConfig) -> Optional[WhaleSweepResult]:
    """Count 1m bars with outsized volume that closed near their high."""
    if not cfg.enabled:
        return None
    m1 = list(minute_candles)[-cfg.lookback_min:] if cfg.lookback_min > 0 else list(minute_candles)
    if not m1:
        return None
    vols = [c.volume for c in m1]
    lookback = min(cfg.z_lookback, len(vols))
    vol_z = [zscore(vols, i, lookback) for i in range(len(vols))]

    count = 0
    for c, z in zip(m1, vol_z):
        if z >= cfg.vol_z_min and close_position(c) >= 1.0 - cfg.near_high_pct:
            count += 1
    return WhaleSweepResult(passed=count >= cfg.min_sweeps, count=count, last_vol_z=vol_z[-1])


def detect_funding_bias(rate: Optional[float], cfg: FundingConfig) -> Optional[FundingBiasResult]:
    if not cfg.enabled or rate is None or not math.isfinite(rate):
        return None
    return FundingBiasResult(passed=abs(rate) >= cfg.threshold, rate=rate)
