import textwrap

from prepump_scanner.config import Config, load_config
from prepump_scanner.models import SignalKind

ENV_KEYS = (
    "LOG_LEVEL",
    "KUCOIN_BASE_URL",
    "SCAN_TZ",
    "REQUIRE_BOTH_GATES",
    "TELEGRAM_TOKEN",
    "TELEGRAM_CHAT_IDS",
    "WEBHOOK_URL",
    "WEBHOOK_SECRET",
)


def _clear_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_defaults_without_a_file(monkeypatch):
    _clear_env(monkeypatch)
    cfg = load_config(None)
    assert cfg.window.timezone == "America/Vancouver"
    assert cfg.window.anchor_hour == 17
    assert cfg.scan.batch_size == 22 and cfg.scan.concurrency == 2
    assert cfg.scan.rate_limit_pause_s == 31.0
    assert cfg.signals.volume_spike.ratio == 1.10
    assert cfg.scoring.require_both_gates is False
    assert cfg.telegram.chat_ids == []
    assert cfg.webhook.headers == {}


def test_yaml_sections_and_nested_weights(tmp_path, monkeypatch):
    _clear_env(monkeypatch)
    path = tmp_path / "config.yaml"
    path.write_text(
        textwrap.dedent(
            """
            window:
              timezone: UTC+3
              anchor_hour: 9
            scan:
              batch_size: 5
            signals:
              volume_spike:
                ratio: 1.5
              whale_sweep:
                enabled: false
            scoring:
              require_both_gates: true
              alert_min: 3.0
              weights:
                obv_impulse: 2.5
            telegram:
              chat_ids: ["111"]
            """
        ),
        encoding="utf-8",
    )
    cfg = load_config(str(path))
    assert cfg.window.timezone == "UTC+3" and cfg.window.anchor_hour == 9
    assert cfg.scan.batch_size == 5 and cfg.scan.concurrency == 2
    assert cfg.signals.volume_spike.ratio == 1.5
    assert cfg.signals.volume_spike.min_history_days == 50
    assert cfg.signals.whale_sweep.enabled is False
    assert cfg.scoring.require_both_gates is True
    assert cfg.scoring.alert_min == 3.0
    weights = cfg.scoring.weights.as_mapping()
    assert weights[SignalKind.OBV_IMPULSE] == 2.5
    assert weights[SignalKind.VOLUME_SPIKE] == 2.0
    assert cfg.telegram.chat_ids == ["111"]


def test_empty_yaml_file_gives_defaults(tmp_path, monkeypatch):
    _clear_env(monkeypatch)
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")
    assert load_config(str(path)) == load_config(None)


def test_env_overrides(monkeypatch):
    _clear_env(monkeypatch)
    monkeypatch.setenv("TELEGRAM_TOKEN", "abc")
    monkeypatch.setenv("TELEGRAM_CHAT_IDS", "1, 2,,3")
    monkeypatch.setenv("REQUIRE_BOTH_GATES", "yes")
    monkeypatch.setenv("SCAN_TZ", "UTC")
    monkeypatch.setenv("WEBHOOK_URL", "https://example.invalid/hook")
    cfg = load_config(None)
    assert cfg.telegram.token == "abc"
    assert cfg.telegram.chat_ids == ["1", "2", "3"]
    assert cfg.scoring.require_both_gates is True
    assert cfg.window.timezone == "UTC"
    assert cfg.webhook.url == "https://example.invalid/hook"


def test_weights_cover_every_signal():
    assert set(Config().scoring.weights.as_mapping()) == set(SignalKind)
