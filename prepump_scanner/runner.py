from __future__ import annotations

import asyncio
import dataclasses
import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from .config import Config
from .errors import SymbolListUnavailable
from .formatters import gate_label, summary_lines
from .models import RunMetrics, SymbolInfo
from .orchestrator import PauseGate, RateLimitedFetcher, Sleep, run_in_batches
from .providers.kucoin import KucoinFuturesProvider
from .reporting import AlertReporter
from .scanner import SymbolScanner
from .scoring import SymbolEvaluation, rank_candidates, rank_winners, select_near_misses
from .window import AnalysisWindow, analysis_window, next_anchor, parse_tz

log = logging.getLogger("runner")

SANITY_SAMPLE_SIZE = 50


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _stable_signals_signature(cfg: Config) -> str:
    sig = {
        "signals": dataclasses.asdict(cfg.signals),
        "scoring": dataclasses.asdict(cfg.scoring),
        "granularity_min": cfg.scan.granularity_min,
    }
    payload = json.dumps(sig, sort_keys=True, separators=(",", ":"), ensure_ascii=True)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:12]


@dataclass(frozen=True)
class ScanReport:
    window: AnalysisWindow
    winners: List[SymbolEvaluation]
    near_misses: List[SymbolEvaluation]
    metrics: RunMetrics
    evaluated: int
    skipped: int
    sent: int = 0


class ScanRunner:
    """Drives one full scan over the active symbol universe."""

    def __init__(
        self,
        cfg: Config,
        *,
        provider=None,
        sink=None,
        now_fn: Callable[[], datetime] = _utcnow,
        sleep: Sleep = asyncio.sleep,
    ):
        self.cfg = cfg
        self.metrics = RunMetrics()
        self.provider = provider if provider is not None else KucoinFuturesProvider(
            cfg.provider.base_url,
            metrics=self.metrics,
            rest_timeout_s=cfg.provider.rest_timeout_s,
            rest_conn_limit=cfg.provider.rest_conn_limit,
            rest_conn_limit_per_host=cfg.provider.rest_conn_limit_per_host,
            trace_http=cfg.provider.trace_http,
        )
        self.sink = sink if sink is not None else AlertReporter(cfg)
        self.now_fn = now_fn
        self._sleep = sleep
        self.tz = parse_tz(cfg.window.timezone)

        self.gate = PauseGate(self.metrics, sleep=sleep)
        self.fetcher = RateLimitedFetcher(self.gate, self.metrics, pause_s=cfg.scan.rate_limit_pause_s)
        self.scanner = SymbolScanner(self.provider, self.fetcher, cfg)
        self._signals_sig = _stable_signals_signature(cfg)

    def current_window(self) -> AnalysisWindow:
        return analysis_window(self.now_fn(), self.tz, self.cfg.window.anchor_hour)

    async def _list_symbols(self) -> List[SymbolInfo]:
        symbols = await self.fetcher.call(self.provider.list_symbols, "symbols")
        if not symbols:
            raise SymbolListUnavailable("no active symbols returned")
        if self.cfg.scan.sanity_sample:
            symbols = symbols[:SANITY_SAMPLE_SIZE]
        return list(symbols)

    async def _evaluate_one(self, info: SymbolInfo, window: AnalysisWindow) -> Optional[SymbolEvaluation]:
        try:
            return await self.scanner.evaluate(info, window)
        except Exception as e:
            log.warning("scan_symbol_failed symbol=%s err=%r", info.symbol, e)
            return None

    async def run_scan(self) -> ScanReport:
        self.metrics.reset(started_at=self.now_fn())
        window = self.current_window()
        symbols = await self._list_symbols()
        log.info(
            "scan_start symbols=%d window=%s gate=%s signals_sig=%s",
            len(symbols),
            window.describe(),
            gate_label(self.cfg),
            self._signals_sig,
        )

        scan_cfg = self.cfg.scan
        results = await run_in_batches(
            symbols,
            lambda info: self._evaluate_one(info, window),
            batch_size=scan_cfg.batch_size,
            concurrency=scan_cfg.concurrency,
            pause_between_s=scan_cfg.sleep_between_batches_s,
            sleep=self._sleep,
        )
        evaluations = [r for r in results if r is not None]

        winners = rank_winners(evaluations)
        near_misses = select_near_misses(evaluations, self.cfg.scoring.alert_min, self.cfg.scoring.near_miss_limit)
        self._dump(evaluations)
        self._log_top_candidates(evaluations)

        frozen = self.metrics.snapshot(finished_at=self.now_fn())
        sent = await self.sink.report(window, winners, near_misses, frozen) or 0

        for line in summary_lines(frozen, len(winners), len(near_misses), sent):
            log.info(line)

        return ScanReport(
            window=window,
            winners=winners,
            near_misses=near_misses,
            metrics=frozen,
            evaluated=len(evaluations),
            skipped=len(results) - len(evaluations),
            sent=sent,
        )

    def _log_top_candidates(self, evaluations: Sequence[SymbolEvaluation]) -> None:
        top = rank_candidates(evaluations, self.cfg.scan.top_candidates)
        if not top:
            return
        log.info("top_candidates count=%d (including near-misses)", len(top))
        for ev in top:
            log.info(
                "candidate %s must_pass=%s score=%.2f vol_spike_ratio=%.1f%% last_jump=%.2f%%",
                ev.symbol,
                ev.must_pass,
                ev.score,
                ev.volume_spike_ratio * 100,
                ev.last_jump_ratio * 100,
            )

    def _is_notable(self, ev: SymbolEvaluation) -> bool:
        sig_cfg = self.cfg.signals
        return (
            ev.volume_spike_ratio >= sig_cfg.volume_spike.ratio * 0.9
            or ev.last_jump_ratio >= sig_cfg.intrabar_jump.jump_ratio * 0.9
            or ev.score >= self.cfg.scoring.alert_min
        )

    def _dump(self, evaluations: Sequence[SymbolEvaluation]) -> None:
        if not self.cfg.scan.dump_json:
            return
        limit = max(0, int(self.cfg.scan.dump_limit))
        dumps = 0
        for ev in evaluations:
            if dumps >= limit:
                break
            if ev.must_pass:
                kind = "WINNER"
            elif self._is_notable(ev):
                kind = "NEAR-MISS"
            else:
                continue
            dumps += 1
            log.info("%s DUMP %d/%d %s\n%s", kind, dumps, limit, ev.symbol, json.dumps(ev.to_dict(), indent=2, default=str))

    async def run_forever(self) -> None:
        """Run now (optionally), then once per day at the anchor hour."""
        if self.cfg.schedule.run_on_start:
            await self._run_logged()
        if not self.cfg.schedule.enabled:
            return
        while True:
            now = self.now_fn()
            target = next_anchor(now, self.tz, self.cfg.window.anchor_hour)
            wait_s = max(0.0, (target - now).total_seconds())
            log.info("next_scan at=%s in=%.0fs", target.isoformat(), wait_s)
            await self._sleep(wait_s)
            await self._run_logged()

    async def _run_logged(self) -> None:
        try:
            await self.run_scan()
        except Exception as e:
            log.exception("scan_failed err=%s", e)
