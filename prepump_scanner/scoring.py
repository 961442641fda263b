from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence

from .config import PumpFilterConfig, ScoringConfig
from .models import Candle, SignalKind
from .signals import IntrabarJumpResult, SignalResult, VolumeSpikeResult

log = logging.getLogger("scoring")

Signals = Mapping[SignalKind, Optional[SignalResult]]


@dataclass(frozen=True)
class SymbolEvaluation:
    symbol: str
    must_pass: bool
    score: float
    signals: Dict[SignalKind, Optional[SignalResult]]
    sample_count: int = 0

    def get(self, kind: SignalKind) -> Optional[SignalResult]:
        return self.signals.get(kind)

    @property
    def volume_spike_ratio(self) -> float:
        vs = self.signals.get(SignalKind.VOLUME_SPIKE)
        return vs.ratio if isinstance(vs, VolumeSpikeResult) else 0.0

    @property
    def last_jump_ratio(self) -> float:
        jumps = self.signals.get(SignalKind.INTRABAR_JUMP)
        return jumps.last_ratio if isinstance(jumps, IntrabarJumpResult) else 0.0

    @property
    def jump_count(self) -> int:
        jumps = self.signals.get(SignalKind.INTRABAR_JUMP)
        return len(jumps.jumps) if isinstance(jumps, IntrabarJumpResult) else 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "symbol": self.symbol,
            "must_pass": self.must_pass,
            "score": self.score,
            "sample_count": self.sample_count,
            "signals": {k.value: (r.to_dict() if r is not None else None) for k, r in self.signals.items()},
        }


def daily_pump_ratio(daily: Candle) -> Optional[float]:
    if not (math.isfinite(daily.open) and daily.open > 0 and math.isfinite(daily.close)):
        return None
    return (daily.close - daily.open) / daily.open


def passes_daily_pump_filter(daily: Optional[Candle], cfg: PumpFilterConfig) -> bool:
    """False when the aligned day already pumped past ``skip_ratio``."""
    if not cfg.enabled or daily is None:
        return True
    ratio = daily_pump_ratio(daily)
    if ratio is None:
        return True
    log.debug("daily_open_close open=%s close=%s delta=%.4f skip_above=%.2f", daily.open, daily.close, ratio, cfg.skip_ratio)
    return ratio <= cfg.skip_ratio


def gate_passes(volume_spike: Optional[VolumeSpikeResult], jumps: Optional[IntrabarJumpResult], require_both: bool) -> bool:
    vol_ok = volume_spike is not None and volume_spike.passed
    jump_ok = jumps is not None and jumps.passed
    if require_both:
        return vol_ok and jump_ok
    return vol_ok or jump_ok


def score_signals(signals: Signals, weights: Mapping[SignalKind, float]) -> float:
    """Sum the weights of signals that were evaluated and passed."""
    score = 0.0
    for kind, result in signals.items():
        if result is not None and result.passed:
            score += float(weights.get(kind, 0.0))
    return score


def evaluate_signals(symbol: str, signals: Signals, cfg: ScoringConfig, *, sample_count: int = 0) -> SymbolEvaluation:
    score = score_signals(signals, cfg.weights.as_mapping())
    gate = gate_passes(
        signals.get(SignalKind.VOLUME_SPIKE),
        signals.get(SignalKind.INTRABAR_JUMP),
        cfg.require_both_gates,
    )
    return SymbolEvaluation(
        symbol=symbol,
        must_pass=gate or score >= cfg.alt_pass_min,
        score=score,
        signals=dict(signals),
        sample_count=sample_count,
    )


def rank_winners(evaluations: Sequence[SymbolEvaluation]) -> List[SymbolEvaluation]:
    winners = [e for e in evaluations if e.must_pass]
    return sorted(winners, key=lambda e: (e.volume_spike_ratio, e.last_jump_ratio), reverse=True)


def select_near_misses(evaluations: Sequence[SymbolEvaluation], alert_min: float, limit: int = 15) -> List[SymbolEvaluation]:
    near = [e for e in evaluations if not e.must_pass and e.score >= alert_min]
    near.sort(key=lambda e: e.score, reverse=True)
    return near[:limit] if limit > 0 else near


def rank_candidates(evaluations: Sequence[SymbolEvaluation], limit: int = 15) -> List[SymbolEvaluation]:
    ranked = sorted(
        evaluations,
        key=lambda e: (e.must_pass, e.score, e.volume_spike_ratio, e.last_jump_ratio),
        reverse=True,
    )
    return ranked[:limit]
