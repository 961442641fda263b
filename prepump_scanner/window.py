from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone, tzinfo
import re

from zoneinfo import ZoneInfo


_TZ_RE = re.compile(r"^UTC([+-])(\d{1,2})$")

DAY_MS = 86_400_000


def parse_tz(tz_str: str) -> tzinfo:
    """Accept 'UTC', fixed offsets like 'UTC+3', or an IANA zone name."""
    raw = (tz_str or "UTC").strip()
    upper = raw.upper()
    if upper == "UTC":
        return timezone.utc
    m = _TZ_RE.match(upper)
    if m:
        sign = 1 if m.group(1) == "+" else -1
        return timezone(timedelta(hours=sign * int(m.group(2))))
    try:
        return ZoneInfo(raw)
    except (KeyError, ValueError) as e:
        raise ValueError(f"Unsupported timezone: {tz_str} (use 'UTC', 'UTC+3' or an IANA name)") from e


def _ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


@dataclass(frozen=True)
class AnalysisWindow:
    start_local: datetime
    end_local: datetime
    start_ms: int
    end_ms: int

    def describe(self) -> str:
        fmt = "%Y-%m-%d %H:%M %Z"
        return f"{self.start_local.strftime(fmt)} -> {self.end_local.strftime(fmt)}"

    def contains(self, ts_ms: int) -> bool:
        return self.start_ms <= ts_ms < self.end_ms


def latest_anchor(now: datetime, tz: tzinfo, anchor_hour: int) -> datetime:
    """Most recent local ``anchor_hour``:00 that is not after ``now``."""
    now_local = now.astimezone(tz)
    anchor = datetime.combine(now_local.date(), time(hour=anchor_hour), tzinfo=tz)
    if now_local < anchor:
        anchor = datetime.combine(now_local.date() - timedelta(days=1), time(hour=anchor_hour), tzinfo=tz)
    return anchor


def next_anchor(now: datetime, tz: tzinfo, anchor_hour: int) -> datetime:
    """First local ``anchor_hour``:00 strictly after ``now``."""
    last = latest_anchor(now, tz, anchor_hour)
    return datetime.combine(last.date() + timedelta(days=1), time(hour=anchor_hour), tzinfo=tz)


def analysis_window(now: datetime, tz: tzinfo, anchor_hour: int = 17) -> AnalysisWindow:
    """The local day ending at the latest anchor hour.

    Both ends sit on ``anchor_hour``:00 local time, so across a DST switch
    the span is 23 or 25 real hours.
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    end_local = latest_anchor(now, tz, anchor_hour)
    start_local = datetime.combine(end_local.date() - timedelta(days=1), time(hour=anchor_hour), tzinfo=tz)
    return AnalysisWindow(start_local=start_local, end_local=end_local, start_ms=_ms(start_local), end_ms=_ms(end_local))
