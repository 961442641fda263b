from __future__ import annotations

import html
from typing import List, Optional, Sequence

from .config import Config
from .models import RunMetrics, SignalKind
from .scoring import SymbolEvaluation
from .window import AnalysisWindow

TELEGRAM_LIMIT = 4096
DASH = "-"


def _escape_markdown_v2(text: str) -> str:
    specials = r"\_*[]()~`>#+-=|{}.!"
    escaped = []
    for ch in str(text):
        if ch in specials:
            escaped.append("\\" + ch)
        else:
            escaped.append(ch)
    return "".join(escaped)


def _escape_text(text: str, parse_mode: str) -> str:
    if parse_mode == "MARKDOWNV2":
        return _escape_markdown_v2(text)
    return html.escape(str(text), quote=False)


def _bold(text: str, parse_mode: str) -> str:
    escaped = _escape_text(text, parse_mode)
    if parse_mode == "MARKDOWNV2":
        return f"*{escaped}*"
    return f"<b>{escaped}</b>"


def fmt_num(x: Optional[float]) -> str:
    if x is None:
        return DASH
    return f"{x:,.12g}"


def gate_label(cfg: Config) -> str:
    vol = cfg.signals.volume_spike.ratio
    jump = cfg.signals.intrabar_jump.jump_ratio * 100
    tf = cfg.scan.granularity_min
    if cfg.scoring.require_both_gates:
        return f"BOTH conditions (Vol >= {vol:.2f}x & {tf}m > {jump:.0f}%)"
    return f"ANY condition (Vol >= {vol:.2f}x or {tf}m > {jump:.0f}%)"


def _pass_or_dash(result, detail: str = "") -> str:
    if result is None or not result.passed:
        return DASH
    return f"PASS ({detail})" if detail else "PASS"


def evaluation_lines(ev: SymbolEvaluation, tf_min: int = 15) -> List[str]:
    """Plain-text block for one symbol."""
    vs = ev.get(SignalKind.VOLUME_SPIKE)
    ce = ev.get(SignalKind.COMPRESSION_EXPANSION)
    vd = ev.get(SignalKind.VWAP_DRIFT)
    to = ev.get(SignalKind.TURNOVER_SPIKE)
    obv = ev.get(SignalKind.OBV_IMPULSE)
    sqz = ev.get(SignalKind.SQUEEZE_BREAKOUT)
    m1 = ev.get(SignalKind.WHALE_SWEEP)
    fr = ev.get(SignalKind.FUNDING_BIAS)

    if vs is not None:
        vol_line = f"{vs.ratio * 100:.1f}% of prevMax (today={fmt_num(vs.today_volume)}, prevMax={fmt_num(vs.prev_max)}, hist={vs.history_len})"
    else:
        vol_line = DASH
    last_jump = f"{ev.last_jump_ratio * 100:.2f}%" if ev.jump_count else DASH
    funding = DASH
    if fr is not None:
        funding = f"{fr.rate * 100:.3f}%" + (" PASS" if fr.passed else "")

    return [
        f"• {ev.symbol} (score={ev.score:.2f})",
        f"   - Volume spike: {vol_line}",
        f"   - {tf_min}m jumps: {ev.jump_count} (last {last_jump})",
        f"   - CE: {_pass_or_dash(ce, f'TRr={ce.tr_ratio:.2f}, volZ={ce.vol_z:.2f}' if ce else '')}"
        f" | VWAP: {_pass_or_dash(vd, f'dev={vd.deviation * 100:.2f}%, volZ={vd.vol_z:.2f}' if vd else '')}",
        f"   - Turnover: {_pass_or_dash(to, f'z={to.turnover_z:.2f}' if to else '')}"
        f" | OBV: {_pass_or_dash(obv, f'z={obv.obv_z:.2f}' if obv else '')}"
        f" | Squeeze: {_pass_or_dash(sqz)}"
        f" | 1m: {_pass_or_dash(m1, f'count={m1.count}' if m1 else '')}"
        f" | Funding: {funding}",
    ]


def format_report(
    window: AnalysisWindow,
    winners: Sequence[SymbolEvaluation],
    near_misses: Sequence[SymbolEvaluation],
    cfg: Config,
) -> str:
    parse_mode = (cfg.alerts.parse_mode or "HTML").upper()
    tf = cfg.scan.granularity_min
    label = gate_label(cfg)

    lines = [
        _bold(f"{cfg.app.name}: {label}", parse_mode),
        _escape_text(f"Window: {window.describe()}", parse_mode),
        _escape_text(f"Winners: {len(winners)}", parse_mode),
        "",
    ]
    if not winners:
        lines.append(_escape_text("No matches", parse_mode))
    for ev in winners:
        lines.extend(_escape_text(line, parse_mode) for line in evaluation_lines(ev, tf))

    if near_misses:
        lines.append("")
        lines.append(_bold(f"Near-miss (high confluence >= {cfg.scoring.alert_min}): {len(near_misses)}", parse_mode))
        lines.append("")
        for ev in near_misses:
            lines.extend(_escape_text(line, parse_mode) for line in evaluation_lines(ev, tf))

    footer = (cfg.alerts.footer or "").strip()
    if footer:
        lines.append("")
        lines.append(_escape_text(footer, parse_mode))
    return "\n".join(lines)


def split_message(text: str, limit: int = TELEGRAM_LIMIT) -> List[str]:
    """Split on line boundaries so each chunk fits one Telegram message."""
    chunks: List[str] = []
    current: List[str] = []
    size = 0
    for line in text.split("\n"):
        while len(line) > limit:
            if current:
                chunks.append("\n".join(current))
                current, size = [], 0
            chunks.append(line[:limit])
            line = line[limit:]
        extra = len(line) + (1 if current else 0)
        if size + extra > limit:
            chunks.append("\n".join(current))
            current, size = [], 0
            extra = len(line)
        current.append(line)
        size += extra
    if current:
        chunks.append("\n".join(current))
    return chunks


def summary_lines(metrics: RunMetrics, winners: int, near_misses: int, sent: int = 0) -> List[str]:
    dur = metrics.duration_s
    return [
        "===== RUN SUMMARY =====",
        f"Duration: {dur:.1f}s" if dur is not None else "Duration: n/a",
        f"Requests: total={metrics.requests}, ok={metrics.ok_2xx}, 429={metrics.rate_429}, otherErr={metrics.errors}",
        f"Rate limit handling: pauses={metrics.pauses}, retries={metrics.retries}, retryOK={metrics.retry_success}, retryFail={metrics.retry_fail}",
        f"Winners: {winners} | Confluence near-misses: {near_misses} | Messages sent: {sent}",
        "=======================",
    ]
