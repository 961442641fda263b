from __future__ import annotations

import asyncio
import logging
import math
import time
from typing import Any, Dict, List, Optional

import aiohttp

from ..candles import candle_from_kline
from ..errors import Throttled, TransportFailure
from ..models import Candle, RunMetrics, SymbolInfo

log = logging.getLogger("kucoin")

_OK_CODE = "200000"
_RATE_LIMIT_CODE = "429000"


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


class KucoinFuturesProvider:
    """KuCoin Futures REST client.

    Every request updates the shared :class:`RunMetrics`. Rate limiting
    surfaces as :class:`Throttled`; retrying is the fetcher's job, not ours.
    """

    def __init__(
        self,
        base_url: str = "https://api-futures.kucoin.com/api/v1",
        *,
        metrics: Optional[RunMetrics] = None,
        rest_timeout_s: int = 20,
        rest_conn_limit: int = 40,
        rest_conn_limit_per_host: int = 10,
        trace_http: bool = False,
    ):
        self.base_url = base_url.rstrip("/")
        self.metrics = metrics if metrics is not None else RunMetrics()
        self.rest_timeout_s = rest_timeout_s
        self.rest_conn_limit = rest_conn_limit
        self.rest_conn_limit_per_host = rest_conn_limit_per_host
        self.trace_http = trace_http

        self._session: Optional[aiohttp.ClientSession] = None

    async def close(self) -> None:
        """Close the shared aiohttp session (best-effort)."""
        if self._session is not None and not self._session.closed:
            await self._session.close()

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(
            total=self.rest_timeout_s,
            connect=min(10, self.rest_timeout_s),
            sock_connect=min(10, self.rest_timeout_s),
            sock_read=max(10, int(self.rest_timeout_s * 0.75)),
        )

    def _connector(self) -> aiohttp.TCPConnector:
        return aiohttp.TCPConnector(
            limit=self.rest_conn_limit,
            limit_per_host=self.rest_conn_limit_per_host,
            ttl_dns_cache=300,
            enable_cleanup_closed=True,
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout(), connector=self._connector())
        return self._session

    def _rate_limited(self, label: str, started: float, status: int) -> Throttled:
        self.metrics.rate_429 += 1
        log.warning("rest_rate_limited status=%s label=%s ms=%.0f", status, label, (time.monotonic() - started) * 1000)
        return Throttled(f"rate limited: {label}", status=status, label=label)

    def _failed(self, label: str, started: float, message: str, status: Optional[int] = None) -> TransportFailure:
        self.metrics.errors += 1
        log.warning("rest_failed label=%s ms=%.0f status=%s err=%s", label, (time.monotonic() - started) * 1000, status or "NO_STATUS", message)
        return TransportFailure(message, status=status, label=label)

    async def _get(self, path: str, params: Dict[str, Any], label: str) -> Any:
        url = self.base_url + path
        sess = await self._get_session()
        self.metrics.requests += 1
        started = time.monotonic()
        if self.trace_http:
            log.debug("rest_request label=%s", label)
        try:
            async with sess.get(url, params=params) as resp:
                if resp.status in (418, 429):
                    raise self._rate_limited(label, started, resp.status)
                if resp.status != 200:
                    txt = await resp.text()
                    raise self._failed(label, started, f"http {resp.status} {txt[:200]}", resp.status)
                # Some proxies return a wrong content-type; be tolerant.
                body = await resp.json(content_type=None)
        except (asyncio.TimeoutError, aiohttp.ClientError, ValueError) as e:
            raise self._failed(label, started, repr(e)) from e

        code = str((body or {}).get("code", "")) if isinstance(body, dict) else ""
        if code == _RATE_LIMIT_CODE:
            raise self._rate_limited(label, started, 429)
        if code != _OK_CODE:
            raise self._failed(label, started, f"api code={code or 'missing'} msg={(body or {}).get('msg') if isinstance(body, dict) else body}")

        self.metrics.ok_2xx += 1
        if self.trace_http:
            log.debug("rest_ok label=%s ms=%.0f", label, (time.monotonic() - started) * 1000)
        return body.get("data")

    async def list_symbols(self) -> List[SymbolInfo]:
        data = await self._get("/contracts/active", {}, "GET /contracts/active")
        seen = set()
        out: List[SymbolInfo] = []
        for row in data if isinstance(data, list) else []:
            symbol = str(row.get("symbol") or "").strip()
            if not symbol or symbol in seen:
                continue
            seen.add(symbol)
            out.append(SymbolInfo(
                symbol=symbol,
                base_currency=str(row.get("baseCurrency") or ""),
                funding_rate=_to_float(row.get("fundingFeeRate")),
            ))
        out.sort(key=lambda s: s.symbol)
        log.info("active_symbols count=%d", len(out))
        return out

    async def fetch_candles(self, symbol: str, granularity_min: int, from_ms: int, to_ms: int) -> List[Candle]:
        params = {
            "symbol": symbol,
            "granularity": int(granularity_min),
            "from": int(from_ms),
            "to": int(to_ms),
        }
        data = await self._get("/kline/query", params, f"GET kline {granularity_min}m {symbol}")
        rows = data if isinstance(data, list) else []
        return [candle_from_kline(row) for row in rows]
