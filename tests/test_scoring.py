from prepump_scanner.config import PumpFilterConfig, ScoreWeights, ScoringConfig
from prepump_scanner.models import Candle, SignalKind
from prepump_scanner.scoring import (
    SymbolEvaluation,
    evaluate_signals,
    gate_passes,
    passes_daily_pump_filter,
    rank_candidates,
    rank_winners,
    score_signals,
    select_near_misses,
)
from prepump_scanner.signals import (
    FundingBiasResult,
    IntrabarJumpResult,
    Jump,
    ObvImpulseResult,
    VolumeSpikeResult,
    WhaleSweepResult,
)


def _vol(passed: bool, ratio: float = 1.2) -> VolumeSpikeResult:
    return VolumeSpikeResult(passed=passed, today_volume=ratio * 100, prev_max=100.0, ratio=ratio, history_len=60)


def _jumps(*ratios: float) -> IntrabarJumpResult:
    return IntrabarJumpResult(jumps=tuple(Jump(start_time_ms=i, ratio=r) for i, r in enumerate(ratios)))


def _eval(symbol: str, must_pass: bool, score: float, vol_ratio: float = 0.0, last_jump: float = 0.0) -> SymbolEvaluation:
    signals = {
        SignalKind.VOLUME_SPIKE: _vol(vol_ratio >= 1.1, vol_ratio) if vol_ratio else None,
        SignalKind.INTRABAR_JUMP: _jumps(last_jump) if last_jump else _jumps(),
    }
    return SymbolEvaluation(symbol=symbol, must_pass=must_pass, score=score, signals=signals)


def test_gate_any_vs_both():
    vol = _vol(True)
    no_jumps = _jumps()
    assert gate_passes(vol, no_jumps, require_both=False)
    assert not gate_passes(vol, no_jumps, require_both=True)
    assert gate_passes(vol, _jumps(0.2), require_both=True)
    assert not gate_passes(None, no_jumps, require_both=False)


def test_evaluation_must_pass_follows_gate_policy():
    signals = {SignalKind.VOLUME_SPIKE: _vol(True), SignalKind.INTRABAR_JUMP: _jumps()}
    assert evaluate_signals("AAA", signals, ScoringConfig(require_both_gates=False)).must_pass
    assert not evaluate_signals("AAA", signals, ScoringConfig(require_both_gates=True)).must_pass


def test_score_only_counts_present_passing_signals():
    weights = {SignalKind.VOLUME_SPIKE: 2.0, SignalKind.INTRABAR_JUMP: 1.5}
    assert score_signals({SignalKind.VOLUME_SPIKE: _vol(True), SignalKind.INTRABAR_JUMP: None}, weights) == 2.0
    assert score_signals({SignalKind.VOLUME_SPIKE: _vol(False), SignalKind.INTRABAR_JUMP: _jumps(0.3)}, weights) == 1.5
    assert score_signals({}, weights) == 0.0


def test_alt_score_admits_without_gates():
    signals = {
        SignalKind.VOLUME_SPIKE: None,
        SignalKind.INTRABAR_JUMP: _jumps(),
        SignalKind.OBV_IMPULSE: ObvImpulseResult(passed=True, obv_z=3.0),
        SignalKind.WHALE_SWEEP: WhaleSweepResult(passed=True, count=2, last_vol_z=4.0),
        SignalKind.FUNDING_BIAS: FundingBiasResult(passed=True, rate=0.001),
    }
    weights = ScoreWeights(obv_impulse=1.5, whale_sweep=1.5, funding_bias=1.0)
    ev = evaluate_signals("BBB", signals, ScoringConfig(weights=weights, alt_pass_min=4.0))
    assert ev.score == 4.0
    assert ev.must_pass

    ev = evaluate_signals("BBB", signals, ScoringConfig(alt_pass_min=4.0))
    assert ev.score == 1.0 + 1.3 + 0.8
    assert not ev.must_pass


def test_daily_pump_filter():
    cfg = PumpFilterConfig(enabled=True, skip_ratio=0.20)
    pumped = Candle(start_time_ms=0, open=1.0, close=1.25, high=1.3, low=0.9, volume=1.0, turnover=1.0)
    calm = Candle(start_time_ms=0, open=1.0, close=1.1, high=1.2, low=0.9, volume=1.0, turnover=1.0)
    assert not passes_daily_pump_filter(pumped, cfg)
    assert passes_daily_pump_filter(calm, cfg)
    assert passes_daily_pump_filter(None, cfg)
    assert passes_daily_pump_filter(pumped, PumpFilterConfig(enabled=False))


def test_rank_winners_by_volume_then_jump():
    evs = [
        _eval("A", True, 2.0, vol_ratio=1.2, last_jump=0.11),
        _eval("B", True, 2.0, vol_ratio=1.5),
        _eval("C", True, 1.5, vol_ratio=1.2, last_jump=0.30),
        _eval("D", False, 9.0, vol_ratio=3.0),
    ]
    assert [e.symbol for e in rank_winners(evs)] == ["B", "C", "A"]


def test_near_misses_are_failing_high_scores_sorted_and_capped():
    evs = [
        _eval("A", False, 2.0),
        _eval("B", False, 3.5),
        _eval("C", True, 5.0),
        _eval("D", False, 2.7),
        _eval("E", False, 3.0),
    ]
    near = select_near_misses(evs, alert_min=2.6, limit=15)
    assert [e.symbol for e in near] == ["B", "E", "D"]
    assert [e.symbol for e in select_near_misses(evs, alert_min=2.6, limit=2)] == ["B", "E"]


def test_rank_candidates_puts_winners_first():
    evs = [_eval("A", False, 3.0), _eval("B", True, 1.0), _eval("C", False, 0.5)]
    assert [e.symbol for e in rank_candidates(evs, 2)] == ["B", "A"]
