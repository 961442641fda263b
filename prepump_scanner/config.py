from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import os
import yaml

from .models import SignalKind


def _env_override(value: Any, env_key: str) -> Any:
    env_val = os.getenv(env_key)
    if env_val is None:
        return value
    # basic parsing
    if isinstance(value, bool):
        return env_val.strip().lower() in ("1", "true", "yes", "y", "on")
    if isinstance(value, int):
        try:
            return int(env_val)
        except ValueError:
            return value
    if isinstance(value, float):
        try:
            return float(env_val)
        except ValueError:
            return value
    return env_val


@dataclass
class AppConfig:
    name: str = "Pre-Pump Scanner"
    log_level: str = "INFO"


@dataclass
class ProviderConfig:
    type: str = "kucoin"
    base_url: str = "https://api-futures.kucoin.com/api/v1"
    rest_timeout_s: int = 20
    rest_conn_limit: int = 40
    rest_conn_limit_per_host: int = 10
    trace_http: bool = False


@dataclass
class WindowConfig:
    timezone: str = "America/Vancouver"  # IANA name, "UTC" or "UTC+3"
    anchor_hour: int = 17


@dataclass
class ScanConfig:
    batch_size: int = 22
    concurrency: int = 2
    sleep_between_batches_s: float = 10.0
    rate_limit_pause_s: float = 31.0
    granularity_min: int = 15
    sanity_sample: bool = False  # first 50 symbols only
    dump_json: bool = False
    dump_limit: int = 3
    top_candidates: int = 15


@dataclass
class ScheduleConfig:
    enabled: bool = True
    run_on_start: bool = True


@dataclass
class PumpFilterConfig:
    enabled: bool = True
    skip_ratio: float = 0.20  # skip if daily open->close gain is above this


@dataclass
class VolumeSpikeConfig:
    enabled: bool = True
    ratio: float = 1.10
    min_history_days: int = 50
    history_chunks: int = 8
    chunk_days: int = 100


@dataclass
class IntrabarJumpConfig:
    jump_ratio: float = 0.10  # strictly greater than


@dataclass
class CompressionConfig:
    enabled: bool = True
    tr_lookback: int = 96
    tr_window: int = 16
    tr_ratio_max: float = 0.70
    vol_z_min: float = 1.20
    near_high_pct: float = 0.05


@dataclass
class VwapDriftConfig:
    enabled: bool = True
    window: int = 32
    streak: int = 2
    dev_min: float = 0.002
    vol_z_min: float = 0.50


@dataclass
class TurnoverConfig:
    enabled: bool = True
    z_min: float = 1.8
    ratio_min: float = 1.25
    median_lookback: int = 64


@dataclass
class ObvConfig:
    enabled: bool = True
    z_min: float = 1.6
    lookback: int = 96


@dataclass
class SqueezeConfig:
    enabled: bool = True
    bb_period: int = 20
    kc_period: int = 20
    kc_mult: float = 1.5
    vol_z_min: float = 1.0
    near_high_pct: float = 0.30


@dataclass
class WhaleSweepConfig:
    enabled: bool = True
    lookback_min: int = 60
    z_lookback: int = 120
    vol_z_min: float = 2.0
    near_high_pct: float = 0.25
    min_sweeps: int = 1


@dataclass
class FundingConfig:
    enabled: bool = True
    threshold: float = 0.0005


@dataclass
class SignalsConfig:
    pump_filter: PumpFilterConfig = field(default_factory=PumpFilterConfig)
    volume_spike: VolumeSpikeConfig = field(default_factory=VolumeSpikeConfig)
    intrabar_jump: IntrabarJumpConfig = field(default_factory=IntrabarJumpConfig)
    compression_expansion: CompressionConfig = field(default_factory=CompressionConfig)
    vwap_drift: VwapDriftConfig = field(default_factory=VwapDriftConfig)
    turnover_spike: TurnoverConfig = field(default_factory=TurnoverConfig)
    obv_impulse: ObvConfig = field(default_factory=ObvConfig)
    squeeze_breakout: SqueezeConfig = field(default_factory=SqueezeConfig)
    whale_sweep: WhaleSweepConfig = field(default_factory=WhaleSweepConfig)
    funding_bias: FundingConfig = field(default_factory=FundingConfig)


@dataclass
class ScoreWeights:
    volume_spike: float = 2.0
    intrabar_jump: float = 1.5
    compression_expansion: float = 0.0
    vwap_drift: float = 0.0
    turnover_spike: float = 1.2
    obv_impulse: float = 1.0
    squeeze_breakout: float = 1.0
    whale_sweep: float = 1.3
    funding_bias: float = 0.8

    def as_mapping(self) -> Dict[SignalKind, float]:
        return {kind: float(getattr(self, kind.value)) for kind in SignalKind}


@dataclass
class ScoringConfig:
    require_both_gates: bool = False
    weights: ScoreWeights = field(default_factory=ScoreWeights)
    alert_min: float = 2.6
    alt_pass_min: float = 4.0
    near_miss_limit: int = 15


@dataclass
class TelegramConfig:
    enabled: bool = True
    token: str = ""
    chat_ids: List[str] = None
    disable_web_page_preview: bool = True


@dataclass
class WebhookConfig:
    enabled: bool = False
    url: str = ""
    secret: str = ""
    timeout_s: int = 10
    headers: Dict[str, str] = None


@dataclass
class AlertsConfig:
    parse_mode: str = "HTML"
    dry_run: bool = False  # log instead of send
    send_empty: bool = False
    footer: str = ""


@dataclass
class Config:
    app: AppConfig = field(default_factory=AppConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    window: WindowConfig = field(default_factory=WindowConfig)
    scan: ScanConfig = field(default_factory=ScanConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    signals: SignalsConfig = field(default_factory=SignalsConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    webhook: WebhookConfig = field(default_factory=WebhookConfig)
    alerts: AlertsConfig = field(default_factory=AlertsConfig)


def _signals_config(raw: Dict[str, Any]) -> SignalsConfig:
    return SignalsConfig(
        pump_filter=PumpFilterConfig(**raw.get("pump_filter", {})),
        volume_spike=VolumeSpikeConfig(**raw.get("volume_spike", {})),
        intrabar_jump=IntrabarJumpConfig(**raw.get("intrabar_jump", {})),
        compression_expansion=CompressionConfig(**raw.get("compression_expansion", {})),
        vwap_drift=VwapDriftConfig(**raw.get("vwap_drift", {})),
        turnover_spike=TurnoverConfig(**raw.get("turnover_spike", {})),
        obv_impulse=ObvConfig(**raw.get("obv_impulse", {})),
        squeeze_breakout=SqueezeConfig(**raw.get("squeeze_breakout", {})),
        whale_sweep=WhaleSweepConfig(**raw.get("whale_sweep", {})),
        funding_bias=FundingConfig(**raw.get("funding_bias", {})),
    )


def _scoring_config(raw: Dict[str, Any]) -> ScoringConfig:
    raw = dict(raw)
    weights = ScoreWeights(**(raw.pop("weights", None) or {}))
    return ScoringConfig(weights=weights, **raw)


def _split_ids(value: str) -> List[str]:
    return [x.strip() for x in value.split(",") if x.strip()]


def load_config(path: Optional[str]) -> Config:
    raw: Dict[str, Any] = {}
    if path:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}

    cfg = Config(
        app=AppConfig(**raw.get("app", {})),
        provider=ProviderConfig(**raw.get("provider", {})),
        window=WindowConfig(**raw.get("window", {})),
        scan=ScanConfig(**raw.get("scan", {})),
        schedule=ScheduleConfig(**raw.get("schedule", {})),
        signals=_signals_config(raw.get("signals", {}) or {}),
        scoring=_scoring_config(raw.get("scoring", {}) or {}),
        telegram=TelegramConfig(**raw.get("telegram", {})),
        webhook=WebhookConfig(**raw.get("webhook", {})),
        alerts=AlertsConfig(**raw.get("alerts", {})),
    )

    # env overrides (useful on servers)
    cfg.app.log_level = _env_override(cfg.app.log_level, "LOG_LEVEL")
    cfg.provider.base_url = _env_override(cfg.provider.base_url, "KUCOIN_BASE_URL")
    cfg.window.timezone = _env_override(cfg.window.timezone, "SCAN_TZ")
    cfg.scoring.require_both_gates = _env_override(cfg.scoring.require_both_gates, "REQUIRE_BOTH_GATES")

    cfg.telegram.token = _env_override(cfg.telegram.token, "TELEGRAM_TOKEN")
    if cfg.telegram.chat_ids is None:
        cfg.telegram.chat_ids = []
    # Allow TELEGRAM_CHAT_IDS="id1,id2"
    chat_env = os.getenv("TELEGRAM_CHAT_IDS")
    if chat_env:
        cfg.telegram.chat_ids = _split_ids(chat_env)

    cfg.webhook.secret = _env_override(cfg.webhook.secret, "WEBHOOK_SECRET")
    cfg.webhook.url = _env_override(cfg.webhook.url, "WEBHOOK_URL")
    if cfg.webhook.headers is None:
        cfg.webhook.headers = {}

    return cfg
