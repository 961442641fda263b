from __future__ import annotations

import logging
from typing import Any, Dict, Sequence

from .config import Config
from .formatters import format_report, gate_label
from .models import RunMetrics
from .notifier.telegram import TelegramNotifier
from .notifier.webhook import WebhookNotifier
from .scoring import SymbolEvaluation
from .window import AnalysisWindow

log = logging.getLogger("reporting")


def report_payload(
    window: AnalysisWindow,
    winners: Sequence[SymbolEvaluation],
    near_misses: Sequence[SymbolEvaluation],
    metrics: RunMetrics,
) -> Dict[str, Any]:
    return {
        "window": {
            "start_ms": window.start_ms,
            "end_ms": window.end_ms,
            "label": window.describe(),
        },
        "winners": [e.to_dict() for e in winners],
        "near_misses": [e.to_dict() for e in near_misses],
        "metrics": {
            "requests": metrics.requests,
            "ok_2xx": metrics.ok_2xx,
            "rate_429": metrics.rate_429,
            "errors": metrics.errors,
            "pauses": metrics.pauses,
            "retries": metrics.retries,
            "retry_success": metrics.retry_success,
            "retry_fail": metrics.retry_fail,
            "duration_s": metrics.duration_s,
        },
    }


class AlertReporter:
    """Reporting sink: Telegram message plus optional JSON webhook."""

    def __init__(self, cfg: Config):
        self.cfg = cfg
        self.tg = TelegramNotifier(
            token=cfg.telegram.token if cfg.telegram.enabled else "",
            chat_ids=cfg.telegram.chat_ids or [],
            disable_web_page_preview=cfg.telegram.disable_web_page_preview,
        )
        self.webhook = WebhookNotifier(
            enabled=cfg.webhook.enabled,
            url=cfg.webhook.url,
            secret=cfg.webhook.secret,
            timeout_s=cfg.webhook.timeout_s,
            headers=cfg.webhook.headers or {},
        )
        self.sent = 0

    async def report(
        self,
        window: AnalysisWindow,
        winners: Sequence[SymbolEvaluation],
        near_misses: Sequence[SymbolEvaluation],
        metrics: RunMetrics,
    ) -> int:
        """Deliver one run's report. Returns the number of messages sent."""
        if not winners and not near_misses and not self.cfg.alerts.send_empty:
            log.info("report_skipped reason=no_matches gate=%s", gate_label(self.cfg))
            return 0

        text = format_report(window, winners, near_misses, self.cfg)
        if self.cfg.alerts.dry_run:
            log.info("report_dry_run winners=%d near_misses=%d\n%s", len(winners), len(near_misses), text)
            return 0

        sent = 0
        if self.webhook.enabled:
            if await self.webhook.send_report(report_payload(window, winners, near_misses, metrics)):
                sent += 1

        if self.tg.enabled():
            parse_mode = (self.cfg.alerts.parse_mode or "HTML")
            delivered = await self.tg.send(text, parse_mode="MarkdownV2" if parse_mode.upper() == "MARKDOWNV2" else "HTML")
            sent += delivered
            log.info("report_sent messages=%d winners=%d near_misses=%d", delivered, len(winners), len(near_misses))
        elif not self.webhook.enabled:
            log.warning("report_not_sent reason=no_sink_configured")

        self.sent += sent
        return sent
